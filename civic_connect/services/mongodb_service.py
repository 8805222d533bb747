import asyncio
import logging
import time
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional, Set

from pymongo.errors import DuplicateKeyError, PyMongoError

from civic_connect.core.exceptions import DuplicateRecord, StoreError
from civic_connect.models.issue_model import MAX_IMAGES, AuthorProfile, Comment, Issue
from civic_connect.models.profile_model import Profile, ProfileInDB, Role

logger = logging.getLogger(__name__)

# Joins the author profile onto each row without leaking credentials
AUTHOR_LOOKUP = [
    {
        "$lookup": {
            "from": "profiles",
            "localField": "created_by",
            "foreignField": "_id",
            "as": "author",
        }
    },
    {"$unwind": {"path": "$author", "preserveNullAndEmptyArrays": True}},
    {"$project": {"author.password_hash": 0}},
]


def _new_id() -> str:
    return str(uuid.uuid4())


def _author_from_doc(doc: Dict[str, Any]) -> Optional[AuthorProfile]:
    author = doc.get("author")
    if not author:
        return None
    return AuthorProfile(
        display_name=author.get("display_name"),
        email=author.get("email", ""),
        role=Role.parse(author.get("role")),
    )


def issue_from_doc(doc: Dict[str, Any]) -> Issue:
    """Build an Issue snapshot from a raw row, repairing values that break model invariants."""
    lat, lng = doc.get("location_lat"), doc.get("location_lng")
    if lat is None or lng is None:
        lat = lng = None

    images = doc.get("images") or None
    if images and len(images) > MAX_IMAGES:
        logger.warning(f"⚠️ Issue {doc.get('_id')} has {len(images)} images; keeping first {MAX_IMAGES}")
        images = images[:MAX_IMAGES]

    return Issue(
        id=str(doc["_id"]),
        title=doc.get("title", ""),
        images=images,
        location_lat=lat,
        location_lng=lng,
        location_address=doc.get("location_address"),
        created_at=doc.get("created_at") or datetime.utcnow(),
        upvotes_count=max(0, int(doc.get("upvotes_count") or 0)),
        comments_count=max(0, int(doc.get("comments_count") or 0)),
        created_by=str(doc.get("created_by", "")),
        ai_summary=doc.get("ai_summary") or None,
        profiles=_author_from_doc(doc),
    )


def comment_from_doc(doc: Dict[str, Any]) -> Comment:
    return Comment(
        id=str(doc["_id"]),
        issue_id=str(doc["issue_id"]),
        text=doc.get("text", ""),
        created_at=doc.get("created_at") or datetime.utcnow(),
        created_by=str(doc.get("created_by", "")),
        profiles=_author_from_doc(doc),
    )


class MongoStore:
    """
    Data access for issues, upvotes, comments and profiles.

    Every driver failure is re-raised as StoreError so callers deal with a
    single failure type. Counters on the issue row are adjusted right after
    each upvote/comment write; readers accept that they may briefly lag.
    """

    def __init__(self, db, list_timeout_ms: int = 5000):
        self.db = db
        self.list_timeout_s = max(1.0, list_timeout_ms / 1000.0)

    # ---------------------------
    # Issues
    # ---------------------------
    async def list_issues_with_authors(self) -> List[Issue]:
        pipeline = [{"$sort": {"created_at": -1}}] + AUTHOR_LOOKUP
        start_ts = time.time()
        try:
            cursor = self.db.issues.aggregate(pipeline)
            docs = await asyncio.wait_for(cursor.to_list(length=None), timeout=self.list_timeout_s)
        except asyncio.TimeoutError as e:
            elapsed = (time.time() - start_ts) * 1000
            logger.warning(f"⚠️ Issue list timed out after {elapsed:.2f} ms")
            raise StoreError("Listing issues timed out") from e
        except PyMongoError as e:
            logger.error(f"❌ Issue list failed: {e}", exc_info=True)
            raise StoreError(f"Failed to list issues: {e}") from e

        issues = []
        for doc in docs:
            try:
                issues.append(issue_from_doc(doc))
            except (ValueError, KeyError) as e:
                logger.warning(f"Skipping invalid issue {doc.get('_id')}: {e}")
        logger.info(f"💾 Retrieved {len(issues)} issues in {(time.time() - start_ts) * 1000:.2f} ms")
        return issues

    async def get_issue(self, issue_id: str) -> Optional[Issue]:
        pipeline = [{"$match": {"_id": issue_id}}, {"$limit": 1}] + AUTHOR_LOOKUP
        try:
            docs = await self.db.issues.aggregate(pipeline).to_list(length=1)
        except PyMongoError as e:
            logger.error(f"Failed to retrieve issue {issue_id}: {e}", exc_info=True)
            raise StoreError(f"Failed to load issue: {e}") from e
        if not docs:
            return None
        return issue_from_doc(docs[0])

    async def insert_issue(
        self,
        title: str,
        created_by: str,
        images: Optional[List[str]] = None,
        location_lat: Optional[float] = None,
        location_lng: Optional[float] = None,
        location_address: Optional[str] = None,
    ) -> Issue:
        doc = {
            "_id": _new_id(),
            "title": title,
            "images": images or None,
            "location_lat": location_lat,
            "location_lng": location_lng,
            "location_address": location_address,
            "created_at": datetime.utcnow(),
            "upvotes_count": 0,
            "comments_count": 0,
            "created_by": created_by,
            "ai_summary": None,
        }
        try:
            await self.db.issues.insert_one(doc)
        except PyMongoError as e:
            logger.error(f"Failed to store issue: {e}", exc_info=True)
            raise StoreError(f"Failed to store issue: {e}") from e
        logger.info(f"📝 Issue {doc['_id']} created by {created_by}")
        return issue_from_doc(doc)

    # ---------------------------
    # Upvotes
    # ---------------------------
    async def list_upvoted_issue_ids(self, user_id: str) -> Set[str]:
        try:
            cursor = self.db.issue_upvotes.find({"user_id": user_id}, {"issue_id": 1, "_id": 0})
            docs = await cursor.to_list(length=None)
        except PyMongoError as e:
            raise StoreError(f"Failed to list upvotes: {e}") from e
        return {str(doc["issue_id"]) for doc in docs}

    async def has_upvoted(self, issue_id: str, user_id: str) -> bool:
        try:
            doc = await self.db.issue_upvotes.find_one({"issue_id": issue_id, "user_id": user_id}, {"_id": 1})
        except PyMongoError as e:
            raise StoreError(f"Failed to check upvote: {e}") from e
        return doc is not None

    async def add_upvote(self, issue_id: str, user_id: str) -> bool:
        """Create the upvote record. Returns False if it already existed."""
        try:
            await self.db.issue_upvotes.insert_one(
                {"_id": _new_id(), "issue_id": issue_id, "user_id": user_id, "created_at": datetime.utcnow()}
            )
        except DuplicateKeyError:
            logger.info(f"Upvote for issue {issue_id} by {user_id} already recorded")
            return False
        except PyMongoError as e:
            raise StoreError(f"Failed to add upvote: {e}") from e

        try:
            await self.db.issues.update_one({"_id": issue_id}, {"$inc": {"upvotes_count": 1}})
        except PyMongoError as e:
            raise StoreError(f"Failed to update upvote count: {e}") from e
        return True

    async def remove_upvote(self, issue_id: str, user_id: str) -> bool:
        """Delete the upvote record. Returns False if there was none."""
        try:
            result = await self.db.issue_upvotes.delete_one({"issue_id": issue_id, "user_id": user_id})
        except PyMongoError as e:
            raise StoreError(f"Failed to remove upvote: {e}") from e
        if result.deleted_count == 0:
            return False

        try:
            await self.db.issues.update_one(
                {"_id": issue_id, "upvotes_count": {"$gt": 0}}, {"$inc": {"upvotes_count": -1}}
            )
        except PyMongoError as e:
            raise StoreError(f"Failed to update upvote count: {e}") from e
        return True

    # ---------------------------
    # Comments
    # ---------------------------
    async def list_comments(self, issue_id: str) -> List[Comment]:
        pipeline = [{"$match": {"issue_id": issue_id}}, {"$sort": {"created_at": 1}}] + AUTHOR_LOOKUP
        try:
            docs = await self.db.issue_comments.aggregate(pipeline).to_list(length=None)
        except PyMongoError as e:
            logger.error(f"Error fetching comments for {issue_id}: {e}")
            raise StoreError(f"Failed to list comments: {e}") from e
        return [comment_from_doc(doc) for doc in docs]

    async def get_comment(self, comment_id: str) -> Optional[Comment]:
        try:
            doc = await self.db.issue_comments.find_one({"_id": comment_id})
        except PyMongoError as e:
            raise StoreError(f"Failed to load comment: {e}") from e
        return comment_from_doc(doc) if doc else None

    async def insert_comment(self, issue_id: str, user_id: str, text: str) -> Comment:
        doc = {
            "_id": _new_id(),
            "issue_id": issue_id,
            "text": text,
            "created_at": datetime.utcnow(),
            "created_by": user_id,
        }
        try:
            await self.db.issue_comments.insert_one(doc)
            await self.db.issues.update_one({"_id": issue_id}, {"$inc": {"comments_count": 1}})
        except PyMongoError as e:
            raise StoreError(f"Failed to post comment: {e}") from e
        return comment_from_doc(doc)

    async def delete_comment(self, comment_id: str) -> bool:
        try:
            doc = await self.db.issue_comments.find_one_and_delete({"_id": comment_id})
            if doc is None:
                return False
            await self.db.issues.update_one(
                {"_id": doc["issue_id"], "comments_count": {"$gt": 0}}, {"$inc": {"comments_count": -1}}
            )
        except PyMongoError as e:
            raise StoreError(f"Failed to delete comment: {e}") from e
        return True

    # ---------------------------
    # Profiles
    # ---------------------------
    async def create_profile(
        self,
        email: str,
        password_hash: str,
        display_name: Optional[str] = None,
        role: Role = Role.CITIZEN,
        language: str = "en",
    ) -> Profile:
        doc = {
            "_id": _new_id(),
            "email": email,
            "password_hash": password_hash,
            "display_name": display_name,
            "role": role.value,
            "language": language,
            "created_at": datetime.utcnow(),
        }
        try:
            await self.db.profiles.insert_one(doc)
        except DuplicateKeyError as e:
            raise DuplicateRecord(f"Profile already exists for {email}") from e
        except PyMongoError as e:
            raise StoreError(f"Failed to create profile: {e}") from e
        return Profile(**doc)

    async def find_profile_by_email(self, email: str) -> Optional[ProfileInDB]:
        try:
            doc = await self.db.profiles.find_one({"email": email})
        except PyMongoError as e:
            raise StoreError(f"Failed to load profile: {e}") from e
        return ProfileInDB(**doc) if doc else None

    async def get_profile(self, user_id: str) -> Optional[Profile]:
        try:
            doc = await self.db.profiles.find_one({"_id": user_id}, {"password_hash": 0})
        except PyMongoError as e:
            raise StoreError(f"Failed to load profile: {e}") from e
        return Profile(**doc) if doc else None

    async def update_profile_language(self, user_id: str, language: str) -> Optional[Profile]:
        try:
            result = await self.db.profiles.update_one({"_id": user_id}, {"$set": {"language": language}})
        except PyMongoError as e:
            raise StoreError(f"Failed to save settings: {e}") from e
        if result.matched_count == 0:
            return None
        return await self.get_profile(user_id)
