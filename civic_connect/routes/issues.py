from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from typing import List, Optional
import logging

from civic_connect.core.auth import get_current_viewer, get_optional_viewer
from civic_connect.core.dependencies import (
    get_feed_service,
    get_geocoder,
    get_storage,
    get_store,
    get_translator,
    get_upvote_registry,
)
from civic_connect.core.exceptions import InvalidImage, StorageError, StoreError
from civic_connect.models.issue_model import MAX_IMAGES, CommentCreate, Coordinate, IssueCreate
from civic_connect.models.profile_model import Viewer
from civic_connect.routes.serializers import comment_payload, feed_payload, issue_payload
from civic_connect.services.i18n_service import Translator
from civic_connect.services.upvote_service import ToggleOutcome
from civic_connect.utils.images import validate_image

logger = logging.getLogger(__name__)

router = APIRouter()


def _coordinate_or_400(lat: Optional[float], lng: Optional[float], translator: Translator, lang: str) -> Optional[Coordinate]:
    if lat is None and lng is None:
        return None
    if lat is None or lng is None:
        raise HTTPException(status_code=400, detail=translator.t("incompleteLocation", lang))
    return Coordinate(latitude=lat, longitude=lng)


async def _with_current_role(viewer: Viewer, feed) -> Viewer:
    """Tokens carry the role at sign-in time; permission checks use the stored one."""
    role = await feed.resolve_role(viewer)
    return viewer.model_copy(update={"role": role})


@router.get("/issues")
async def list_feed(
    lat: Optional[float] = Query(None, ge=-90.0, le=90.0),
    lng: Optional[float] = Query(None, ge=-180.0, le=180.0),
    viewer: Viewer = Depends(get_optional_viewer),
    feed=Depends(get_feed_service),
    storage=Depends(get_storage),
    translator: Translator = Depends(get_translator),
):
    """
    Ranked issue feed. Pass lat/lng once the client knows its position;
    without them the feed is ordered by upvotes only.
    """
    coordinate = _coordinate_or_400(lat, lng, translator, viewer.language)
    try:
        result = await feed.load(viewer, coordinate)
    except StoreError as e:
        logger.error(f"Failed to list issues: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=translator.t("loadIssuesFailed", viewer.language))
    return feed_payload(result, storage)


@router.get("/issues/{issue_id}")
async def get_issue_detail(
    issue_id: str,
    viewer: Viewer = Depends(get_optional_viewer),
    store=Depends(get_store),
    storage=Depends(get_storage),
    translator: Translator = Depends(get_translator),
):
    lang = viewer.language
    try:
        issue = await store.get_issue(issue_id)
    except StoreError as e:
        logger.error(f"Error fetching issue {issue_id}: {e}")
        raise HTTPException(status_code=500, detail=translator.t("loadIssueFailed", lang))
    if issue is None:
        raise HTTPException(status_code=404, detail=translator.t("issueNotFound", lang))

    comments = []
    try:
        comments = await store.list_comments(issue_id)
    except StoreError as e:
        logger.error(f"Error fetching comments for {issue_id}: {e}")

    viewer_upvoted = False
    if viewer.is_authenticated:
        try:
            viewer_upvoted = await store.has_upvoted(issue_id, viewer.user_id)
        except StoreError as e:
            logger.error(f"Error checking upvote on {issue_id}: {e}")

    payload = issue_payload(issue, storage)
    payload["viewer_upvoted"] = viewer_upvoted
    payload["comments"] = [comment_payload(comment) for comment in comments]
    payload["can_delete_comment_ids"] = [
        comment.id for comment in comments if viewer.can_delete_comment(comment.created_by)
    ]
    return payload


@router.post("/issues", status_code=201)
async def create_issue(
    title: str = Form(...),
    location_lat: Optional[float] = Form(None),
    location_lng: Optional[float] = Form(None),
    location_address: Optional[str] = Form(None),
    images: Optional[List[UploadFile]] = File(None),
    viewer: Viewer = Depends(get_current_viewer),
    store=Depends(get_store),
    storage=Depends(get_storage),
    geocoder=Depends(get_geocoder),
    translator: Translator = Depends(get_translator),
):
    lang = viewer.language
    try:
        draft = IssueCreate(
            title=title,
            location_lat=location_lat,
            location_lng=location_lng,
            location_address=(location_address or "").strip() or None,
        )
    except ValidationError as e:
        fields = {err["loc"][0] for err in e.errors() if err.get("loc")}
        key = "titleRequired" if "title" in fields else "incompleteLocation"
        raise HTTPException(status_code=400, detail=translator.t(key, lang))

    files = [upload for upload in images or [] if upload.filename]
    if len(files) > MAX_IMAGES:
        raise HTTPException(status_code=400, detail=translator.t("maxImages", lang))

    contents = []
    for upload in files:
        content = await upload.read()
        try:
            content_type = validate_image(content, upload.filename)
        except InvalidImage as e:
            logger.warning(f"Rejected image for new issue: {e}")
            raise HTTPException(status_code=400, detail=translator.t("invalidImage", lang))
        contents.append((upload.filename, content, content_type))

    address = draft.location_address
    if address is None and draft.location_lat is not None:
        address = await geocoder.reverse_geocode(draft.location_lat, draft.location_lng)

    uploaded: List[str] = []
    try:
        for filename, content, content_type in contents:
            uploaded.append(await storage.upload(viewer.user_id, filename, content, content_type))
        issue = await store.insert_issue(
            title=draft.title,
            created_by=viewer.user_id,
            images=uploaded or None,
            location_lat=draft.location_lat,
            location_lng=draft.location_lng,
            location_address=address,
        )
    except (StorageError, StoreError) as e:
        logger.error(f"Error posting issue: {e}", exc_info=True)
        for path in uploaded:
            try:
                await storage.delete(path)
            except StorageError as cleanup_error:
                logger.warning(f"⚠️ Could not remove orphaned image {path}: {cleanup_error}")
        raise HTTPException(status_code=500, detail=translator.t("postIssueFailed", lang))

    return {"message": translator.t("issuePosted", lang), "issue": issue_payload(issue, storage)}


@router.post("/issues/{issue_id}/upvote")
async def toggle_upvote(
    issue_id: str,
    viewer: Viewer = Depends(get_current_viewer),
    store=Depends(get_store),
    upvotes=Depends(get_upvote_registry),
    translator: Translator = Depends(get_translator),
):
    lang = viewer.language
    try:
        issue = await store.get_issue(issue_id)
    except StoreError as e:
        logger.error(f"Error fetching issue {issue_id}: {e}")
        raise HTTPException(status_code=500, detail=translator.t("upvoteFailed", lang))
    if issue is None:
        raise HTTPException(status_code=404, detail=translator.t("issueNotFound", lang))

    result = await upvotes.toggle(issue_id, viewer)

    if result.outcome == ToggleOutcome.IGNORED:
        return JSONResponse(
            status_code=202,
            content={"ignored": True, "upvoted": result.upvoted, "message": translator.t("upvoteIgnored", lang)},
        )
    if result.outcome == ToggleOutcome.FAILED:
        raise HTTPException(status_code=500, detail=translator.t("upvoteFailed", lang))

    # Count comes from a fresh read, not local arithmetic
    upvotes_count = None
    try:
        refreshed = await store.get_issue(issue_id)
        upvotes_count = refreshed.upvotes_count if refreshed else None
    except StoreError as e:
        logger.warning(f"⚠️ Could not refresh upvote count for {issue_id}: {e}")

    return {"ignored": False, "upvoted": result.upvoted, "upvotes_count": upvotes_count}


@router.post("/issues/{issue_id}/comments", status_code=201)
async def add_comment(
    issue_id: str,
    body: CommentCreate,
    viewer: Viewer = Depends(get_current_viewer),
    store=Depends(get_store),
    translator: Translator = Depends(get_translator),
):
    lang = viewer.language
    try:
        issue = await store.get_issue(issue_id)
        if issue is None:
            raise HTTPException(status_code=404, detail=translator.t("issueNotFound", lang))
        comment = await store.insert_comment(issue_id, viewer.user_id, body.text)
    except StoreError as e:
        logger.error(f"Error posting comment: {e}")
        raise HTTPException(status_code=500, detail=translator.t("postCommentFailed", lang))
    return comment_payload(comment)


@router.delete("/comments/{comment_id}")
async def delete_comment(
    comment_id: str,
    viewer: Viewer = Depends(get_current_viewer),
    store=Depends(get_store),
    feed=Depends(get_feed_service),
    translator: Translator = Depends(get_translator),
):
    lang = viewer.language
    try:
        comment = await store.get_comment(comment_id)
    except StoreError as e:
        logger.error(f"Error loading comment {comment_id}: {e}")
        raise HTTPException(status_code=500, detail=translator.t("deleteCommentFailed", lang))
    if comment is None:
        raise HTTPException(status_code=404, detail=translator.t("commentNotFound", lang))

    viewer = await _with_current_role(viewer, feed)
    if not viewer.can_delete_comment(comment.created_by):
        logger.warning(f"Permission denied: {viewer.user_id} ({viewer.role.value}) tried to delete comment {comment_id}")
        raise HTTPException(status_code=403, detail=translator.t("notAllowed", lang))

    try:
        await store.delete_comment(comment_id)
    except StoreError as e:
        logger.error(f"Error deleting comment: {e}")
        raise HTTPException(status_code=500, detail=translator.t("deleteCommentFailed", lang))
    return {"message": translator.t("commentDeleted", lang)}
