import asyncio
import uuid
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Set, Tuple

import pytest

from civic_connect.core.exceptions import DuplicateRecord, ImageNotFound, StoreError, SummaryGenerationError
from civic_connect.models.issue_model import Comment, Issue
from civic_connect.models.profile_model import Profile, ProfileInDB, Role, Viewer

BASE_TIME = datetime(2024, 5, 1, 12, 0, 0)


def make_issue(
    issue_id: str,
    upvotes: int = 0,
    lat: Optional[float] = None,
    lng: Optional[float] = None,
    age_minutes: int = 0,
    **extra,
) -> Issue:
    fields = dict(
        id=issue_id,
        title=extra.pop("title", f"Issue {issue_id}"),
        location_lat=lat,
        location_lng=lng,
        created_at=BASE_TIME - timedelta(minutes=age_minutes),
        upvotes_count=upvotes,
        created_by=extra.pop("created_by", "author-1"),
    )
    fields.update(extra)
    return Issue(**fields)


def make_viewer(user_id: Optional[str] = "user-1", role: Role = Role.CITIZEN, language: str = "en") -> Viewer:
    if user_id is None:
        return Viewer.anonymous(language)
    return Viewer(user_id=user_id, email=f"{user_id}@example.com", role=role, language=language)


class FakeStore:
    """In-memory stand-in for MongoStore with switchable failures."""

    def __init__(self, issues: Optional[List[Issue]] = None):
        self.issues: List[Issue] = list(issues or [])
        self.upvotes: Set[Tuple[str, str]] = set()
        self.comments: Dict[str, Comment] = {}
        self.profiles: Dict[str, ProfileInDB] = {}

        self.fail_list = False
        self.fail_upvote_reads = False
        self.fail_upvote_writes = False
        self.fail_profiles = False
        self.write_gate: Optional[asyncio.Event] = None

        self.list_calls = 0
        self.upvote_writes = 0

    # issues
    def _index(self, issue_id: str) -> int:
        for i, issue in enumerate(self.issues):
            if issue.id == issue_id:
                return i
        raise KeyError(issue_id)

    def _bump(self, issue_id: str, field: str, delta: int) -> None:
        try:
            i = self._index(issue_id)
        except KeyError:
            return
        issue = self.issues[i]
        self.issues[i] = issue.model_copy(update={field: max(0, getattr(issue, field) + delta)})

    async def list_issues_with_authors(self) -> List[Issue]:
        self.list_calls += 1
        await asyncio.sleep(0)
        if self.fail_list:
            raise StoreError("issues unavailable")
        return sorted(self.issues, key=lambda issue: issue.created_at, reverse=True)

    async def get_issue(self, issue_id: str) -> Optional[Issue]:
        try:
            return self.issues[self._index(issue_id)]
        except KeyError:
            return None

    async def insert_issue(self, title, created_by, images=None, location_lat=None, location_lng=None, location_address=None) -> Issue:
        issue = Issue(
            id=str(uuid.uuid4()),
            title=title,
            images=images,
            location_lat=location_lat,
            location_lng=location_lng,
            location_address=location_address,
            created_at=datetime.utcnow(),
            created_by=created_by,
        )
        self.issues.append(issue)
        return issue

    # upvotes
    async def list_upvoted_issue_ids(self, user_id: str) -> Set[str]:
        if self.fail_upvote_reads:
            raise StoreError("upvotes unavailable")
        return {issue_id for issue_id, uid in self.upvotes if uid == user_id}

    async def has_upvoted(self, issue_id: str, user_id: str) -> bool:
        if self.fail_upvote_reads:
            raise StoreError("upvotes unavailable")
        return (issue_id, user_id) in self.upvotes

    async def _write(self) -> None:
        self.upvote_writes += 1
        if self.write_gate is not None:
            await self.write_gate.wait()
        if self.fail_upvote_writes:
            raise StoreError("write rejected")

    async def add_upvote(self, issue_id: str, user_id: str) -> bool:
        await self._write()
        if (issue_id, user_id) in self.upvotes:
            return False
        self.upvotes.add((issue_id, user_id))
        self._bump(issue_id, "upvotes_count", 1)
        return True

    async def remove_upvote(self, issue_id: str, user_id: str) -> bool:
        await self._write()
        if (issue_id, user_id) not in self.upvotes:
            return False
        self.upvotes.discard((issue_id, user_id))
        self._bump(issue_id, "upvotes_count", -1)
        return True

    # comments
    async def list_comments(self, issue_id: str) -> List[Comment]:
        return sorted(
            (c for c in self.comments.values() if c.issue_id == issue_id),
            key=lambda c: c.created_at,
        )

    async def get_comment(self, comment_id: str) -> Optional[Comment]:
        return self.comments.get(comment_id)

    async def insert_comment(self, issue_id: str, user_id: str, text: str) -> Comment:
        comment = Comment(
            id=str(uuid.uuid4()),
            issue_id=issue_id,
            text=text,
            created_at=datetime.utcnow(),
            created_by=user_id,
        )
        self.comments[comment.id] = comment
        self._bump(issue_id, "comments_count", 1)
        return comment

    async def delete_comment(self, comment_id: str) -> bool:
        comment = self.comments.pop(comment_id, None)
        if comment is None:
            return False
        self._bump(comment.issue_id, "comments_count", -1)
        return True

    # profiles
    def add_profile(self, user_id: str, role: Role = Role.CITIZEN, email: Optional[str] = None,
                    password_hash: str = "!", language: str = "en") -> ProfileInDB:
        profile = ProfileInDB(
            id=user_id,
            email=email or f"{user_id}@example.com",
            role=role,
            language=language,
            password_hash=password_hash,
        )
        self.profiles[user_id] = profile
        return profile

    async def create_profile(self, email, password_hash, display_name=None, role=Role.CITIZEN, language="en") -> Profile:
        if any(p.email == email for p in self.profiles.values()):
            raise DuplicateRecord(email)
        profile = self.add_profile(str(uuid.uuid4()), role, email, password_hash, language)
        profile.display_name = display_name
        return Profile(**profile.model_dump(exclude={"password_hash"}))

    async def find_profile_by_email(self, email: str) -> Optional[ProfileInDB]:
        for profile in self.profiles.values():
            if profile.email == email:
                return profile
        return None

    async def get_profile(self, user_id: str) -> Optional[Profile]:
        if self.fail_profiles:
            raise StoreError("profiles unavailable")
        profile = self.profiles.get(user_id)
        if profile is None:
            return None
        return Profile(**profile.model_dump(exclude={"password_hash"}))

    async def update_profile_language(self, user_id: str, language: str) -> Optional[Profile]:
        profile = self.profiles.get(user_id)
        if profile is None:
            return None
        profile.language = language
        return await self.get_profile(user_id)


class FakeSummarizer:
    """Records calls; titles listed in fail_titles raise, others get a canned summary."""

    def __init__(self, text: str = "Summary", delay: float = 0.0, fail_titles=()):
        self.text = text
        self.delay = delay
        self.fail_titles = set(fail_titles)
        self.calls: List[str] = []
        self.active = 0
        self.peak = 0
        self.finished = 0
        self.cancelled = 0

    async def generate(self, title, address=None, image_paths=None) -> str:
        self.calls.append(title)
        self.active += 1
        self.peak = max(self.peak, self.active)
        try:
            try:
                await asyncio.sleep(self.delay)
            except asyncio.CancelledError:
                self.cancelled += 1
                raise
            self.finished += 1
            if title in self.fail_titles:
                raise SummaryGenerationError("model unavailable")
            return f"{self.text}: {title}"
        finally:
            self.active -= 1


class FakeGridOut:
    def __init__(self, content: bytes, content_type: str):
        self.metadata = {"contentType": content_type}
        self._chunks = [content]

    async def readchunk(self) -> bytes:
        return self._chunks.pop(0) if self._chunks else b""


class FakeStorage:
    bucket_name = "issue-images"

    def __init__(self):
        self.files: Dict[str, Tuple[bytes, str]] = {}

    def public_url(self, path: str) -> str:
        return f"http://testserver/api/storage/{self.bucket_name}/{path}"

    async def upload(self, user_id, filename, content, content_type) -> str:
        path = f"{user_id}/{len(self.files)}-{filename}"
        self.files[path] = (content, content_type)
        return path

    async def open(self, path: str) -> FakeGridOut:
        if path not in self.files:
            raise ImageNotFound(path)
        content, content_type = self.files[path]
        return FakeGridOut(content, content_type)

    async def delete(self, path: str) -> None:
        self.files.pop(path, None)


class FakeGeocoder:
    def __init__(self, address: str = "MG Road, Bengaluru"):
        self.address = address
        self.calls = []

    async def reverse_geocode(self, lat: float, lng: float) -> str:
        self.calls.append((lat, lng))
        return self.address

    async def close(self) -> None:
        pass


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def summarizer():
    return FakeSummarizer()
