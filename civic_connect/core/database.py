# 🗄️ Database Connection
# MongoDB client lifecycle (connect on startup, close on shutdown) and index setup

import asyncio
import logging
from typing import Optional

import motor.motor_asyncio
from pymongo import ASCENDING, DESCENDING
from pymongo.errors import PyMongoError

from civic_connect.core.config import Settings

logger = logging.getLogger(__name__)

IMAGE_BUCKET = "issue-images"


class Database:
    """Owns the motor client, the database handle and the GridFS image bucket."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.client: Optional[motor.motor_asyncio.AsyncIOMotorClient] = None
        self.db = None
        self.fs = None

    @property
    def is_connected(self) -> bool:
        return self.db is not None

    async def connect(self, max_retries: int = 3, retry_delay: float = 2.0) -> bool:
        uri = self.settings.mongo_uri
        logger.info(f"🔄 Connecting to MongoDB ({'Atlas Cloud' if 'mongodb+srv' in uri else 'Local/Self-hosted'})...")

        self.client = motor.motor_asyncio.AsyncIOMotorClient(
            uri,
            serverSelectionTimeoutMS=15000,
            connectTimeoutMS=30000,
            socketTimeoutMS=45000,
            maxPoolSize=20,
            retryWrites=True,
        )

        for attempt in range(1, max_retries + 1):
            try:
                logger.info(f"🔄 Connection attempt {attempt}/{max_retries}...")
                await asyncio.wait_for(self.client.admin.command("ping"), timeout=10.0)
                break
            except (asyncio.TimeoutError, PyMongoError) as e:
                logger.warning(f"⚠️ Connection attempt {attempt} failed: {e}")
                if attempt == max_retries:
                    logger.error("❌ All MongoDB connection attempts failed")
                    logger.warning("⚠️ Application starting without MongoDB connection")
                    return False
                delay = retry_delay * (2 ** (attempt - 1))
                logger.info(f"⏳ Waiting {delay:.1f}s before retry...")
                await asyncio.sleep(delay)

        self.db = self.client[self.settings.db_name]
        self.fs = motor.motor_asyncio.AsyncIOMotorGridFSBucket(self.db, bucket_name=IMAGE_BUCKET)
        logger.info(f"✅ Connected to MongoDB database: {self.settings.db_name}")

        try:
            await self.create_indexes()
        except PyMongoError as e:
            logger.warning(f"⚠️ Index creation encountered an issue: {e}")
        return True

    async def create_indexes(self) -> None:
        """Indexes for the feed sort, the upvote uniqueness rule and the per-viewer lookups."""
        if self.db is None:
            raise RuntimeError("Database is not initialized for index creation")

        await self.db.issues.create_index([("created_at", DESCENDING)], name="created_at_desc")
        await self.db.issues.create_index([("created_by", ASCENDING)], name="created_by")

        await self.db.issue_upvotes.create_index(
            [("issue_id", ASCENDING), ("user_id", ASCENDING)], name="issue_user_unique", unique=True
        )
        await self.db.issue_upvotes.create_index([("user_id", ASCENDING)], name="user_id")

        await self.db.issue_comments.create_index(
            [("issue_id", ASCENDING), ("created_at", ASCENDING)], name="issue_created_at"
        )

        await self.db.profiles.create_index([("email", ASCENDING)], name="email_unique", unique=True)
        logger.info("📇 Core MongoDB indexes created/verified")

    async def ping(self) -> bool:
        if self.client is None:
            return False
        try:
            await asyncio.wait_for(self.client.admin.command("ping"), timeout=5.0)
            return True
        except (asyncio.TimeoutError, PyMongoError):
            return False

    async def close(self) -> None:
        if self.client is not None:
            self.client.close()
            logger.info("🔒 MongoDB connection closed")
        self.client = None
        self.db = None
        self.fs = None
