from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse
import logging

from civic_connect.core.dependencies import get_storage
from civic_connect.core.exceptions import ImageNotFound, StorageError

logger = logging.getLogger(__name__)

router = APIRouter()


async def _iter_chunks(grid_out):
    while True:
        chunk = await grid_out.readchunk()
        if not chunk:
            break
        yield chunk


@router.get("/storage/{bucket}/{path:path}")
async def download_image(bucket: str, path: str, storage=Depends(get_storage)):
    """Serve a stored issue photo; image_urls in issue payloads point here."""
    if bucket != storage.bucket_name:
        raise HTTPException(status_code=404, detail="Image not found")
    try:
        grid_out = await storage.open(path)
    except ImageNotFound:
        raise HTTPException(status_code=404, detail="Image not found")
    except StorageError as e:
        logger.error(f"Error reading image {path}: {e}")
        raise HTTPException(status_code=500, detail="Failed to read image")

    metadata = grid_out.metadata or {}
    media_type = metadata.get("contentType", "application/octet-stream")
    return StreamingResponse(
        _iter_chunks(grid_out),
        media_type=media_type,
        headers={"Cache-Control": "public, max-age=86400"},
    )
