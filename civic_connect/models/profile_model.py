from enum import Enum
from typing import Optional
from datetime import datetime

from pydantic import BaseModel, Field, field_validator


class Role(str, Enum):
    CITIZEN = "citizen"
    OFFICIAL = "official"
    ADMIN = "admin"

    @classmethod
    def parse(cls, value: Optional[str]) -> "Role":
        """Map stored or client-supplied role names onto a Role; unknown values are citizens."""
        if isinstance(value, Role):
            return value
        normalized = (value or "").strip().lower()
        if normalized == "user":
            return cls.CITIZEN
        try:
            return cls(normalized)
        except ValueError:
            return cls.CITIZEN


PRIVILEGED_ROLES = frozenset({Role.OFFICIAL, Role.ADMIN})


class Viewer(BaseModel):
    """The caller of an operation: an authenticated user or an anonymous visitor."""

    user_id: Optional[str] = None
    email: Optional[str] = None
    role: Role = Role.CITIZEN
    language: str = "en"

    @classmethod
    def anonymous(cls, language: str = "en") -> "Viewer":
        return cls(language=language)

    @property
    def is_authenticated(self) -> bool:
        return self.user_id is not None

    @property
    def is_privileged(self) -> bool:
        return self.role in PRIVILEGED_ROLES

    @property
    def can_view_summaries(self) -> bool:
        return self.is_authenticated and self.is_privileged

    def can_delete_comment(self, comment_author_id: str) -> bool:
        if not self.is_authenticated:
            return False
        return comment_author_id == self.user_id or self.is_privileged


class Profile(BaseModel):
    id: str = Field(..., alias="_id")
    email: str
    display_name: Optional[str] = None
    role: Role = Role.CITIZEN
    language: str = "en"
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Config:
        populate_by_name = True

    @field_validator("role", mode="before")
    @classmethod
    def _parse_role(cls, v):
        return Role.parse(v)


class ProfileInDB(Profile):
    password_hash: str
