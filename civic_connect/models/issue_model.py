from pydantic import BaseModel, Field, field_validator, model_validator
from typing import Optional, List
from datetime import datetime

from civic_connect.models.profile_model import Role

MAX_IMAGES = 3


class Coordinate(BaseModel):
    latitude: float = Field(..., ge=-90.0, le=90.0)
    longitude: float = Field(..., ge=-180.0, le=180.0)

    class Config:
        frozen = True


class AuthorProfile(BaseModel):
    display_name: Optional[str] = None
    email: str = ""
    role: Role = Role.CITIZEN

    @property
    def label(self) -> str:
        return self.display_name or self.email


class Issue(BaseModel):
    """Read-only snapshot of an issue row joined with its author's profile."""

    id: str
    title: str
    images: Optional[List[str]] = None
    location_lat: Optional[float] = None
    location_lng: Optional[float] = None
    location_address: Optional[str] = None
    created_at: datetime
    upvotes_count: int = Field(0, ge=0)
    comments_count: int = Field(0, ge=0)
    created_by: str
    ai_summary: Optional[str] = None
    profiles: Optional[AuthorProfile] = None

    @field_validator("images")
    @classmethod
    def _check_images(cls, v: Optional[List[str]]) -> Optional[List[str]]:
        if v is not None and len(v) > MAX_IMAGES:
            raise ValueError(f"an issue holds at most {MAX_IMAGES} images")
        return v

    @model_validator(mode="after")
    def _check_coordinate(self) -> "Issue":
        if (self.location_lat is None) != (self.location_lng is None):
            raise ValueError("location_lat and location_lng must be given together")
        return self

    @property
    def coordinate(self) -> Optional[Coordinate]:
        if self.location_lat is None or self.location_lng is None:
            return None
        return Coordinate(latitude=self.location_lat, longitude=self.location_lng)


class IssueCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    location_lat: Optional[float] = Field(None, ge=-90.0, le=90.0)
    location_lng: Optional[float] = Field(None, ge=-180.0, le=180.0)
    location_address: Optional[str] = None

    @field_validator("title")
    @classmethod
    def _strip_title(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("title must not be blank")
        return v

    @model_validator(mode="after")
    def _check_coordinate(self) -> "IssueCreate":
        if (self.location_lat is None) != (self.location_lng is None):
            raise ValueError("location_lat and location_lng must be given together")
        return self


class Comment(BaseModel):
    id: str
    issue_id: str
    text: str
    created_at: datetime
    created_by: str
    profiles: Optional[AuthorProfile] = None


class CommentCreate(BaseModel):
    text: str = Field(..., max_length=2000)

    @field_validator("text")
    @classmethod
    def _strip_text(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("comment must not be blank")
        return v


class FeedResult(BaseModel):
    issues: List[Issue] = []
    upvoted_issue_ids: List[str] = []
    role: Role = Role.CITIZEN
    ranked_by_distance: bool = False
    loaded_at: datetime = Field(default_factory=datetime.utcnow)

    def has_upvoted(self, issue_id: str) -> bool:
        return issue_id in self.upvoted_issue_ids


