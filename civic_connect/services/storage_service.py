import logging
import secrets
import time
from typing import Optional
from urllib.parse import quote

import gridfs.errors
from pymongo.errors import PyMongoError

from civic_connect.core.database import IMAGE_BUCKET
from civic_connect.core.exceptions import ImageNotFound, StorageError

logger = logging.getLogger(__name__)


def build_image_path(user_id: str, filename: str, now_ms: Optional[int] = None) -> str:
    """Unique storage path scoped by uploader: {user_id}/{epoch_ms}-{random}.{ext}"""
    ext = filename.rsplit(".", 1)[-1].lower() if "." in filename else "jpg"
    stamp = now_ms if now_ms is not None else int(time.time() * 1000)
    return f"{user_id}/{stamp}-{secrets.token_hex(6)}.{ext}"


class ImageStorage:
    """Issue photos kept in a GridFS bucket, addressed by their storage path."""

    def __init__(self, bucket, public_base_url: str, bucket_name: str = IMAGE_BUCKET):
        self.bucket = bucket
        self.bucket_name = bucket_name
        self.public_base_url = public_base_url.rstrip("/")

    def public_url(self, path: str) -> str:
        return f"{self.public_base_url}/api/storage/{self.bucket_name}/{quote(path)}"

    async def upload(self, user_id: str, filename: str, content: bytes, content_type: str) -> str:
        path = build_image_path(user_id, filename)
        try:
            await self.bucket.upload_from_stream(
                path,
                content,
                metadata={"contentType": content_type, "uploaded_by": user_id},
            )
        except PyMongoError as e:
            logger.error(f"❌ Image upload failed for {path}: {e}")
            raise StorageError(f"Failed to upload {filename}") from e
        logger.info(f"🖼️ Stored image {path} ({len(content)} bytes)")
        return path

    async def open(self, path: str):
        """Open a download stream; the returned GridOut exposes .metadata and async reads."""
        try:
            return await self.bucket.open_download_stream_by_name(path)
        except gridfs.errors.NoFile as e:
            raise ImageNotFound(path) from e
        except PyMongoError as e:
            raise StorageError(f"Failed to read image {path}") from e

    async def delete(self, path: str) -> None:
        try:
            grid_out = await self.bucket.open_download_stream_by_name(path)
            await self.bucket.delete(grid_out._id)
        except gridfs.errors.NoFile:
            return
        except PyMongoError as e:
            raise StorageError(f"Failed to delete image {path}") from e
