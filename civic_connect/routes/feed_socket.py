"""
Live feed over a websocket.

The socket opens with an unranked feed right away. The client reports its
position (or a permission denial) whenever the browser settles, and the feed
is pushed again, re-ranked by distance. Upvotes sent over the socket go
through the session's per-issue controls, so a second tap while a write is
pending is ignored rather than queued.

Client messages (JSON):
    {"type": "location", "lat": 12.97, "lng": 77.59}
    {"type": "location_denied"}
    {"type": "refresh"}
    {"type": "upvote", "issue_id": "..."}
    "ping"

Server messages:
    {"type": "feed", ...feed payload...}
    {"type": "upvote", "issue_id": "...", "outcome": "toggled", "upvoted": true}
    {"type": "notice", "key": "upvoteFailed", "message": "..."}
    {"type": "pong"}
"""

import asyncio
import json
import logging
from typing import Optional, Set

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from civic_connect.core.auth import viewer_from_token
from civic_connect.models.issue_model import Coordinate, FeedResult
from civic_connect.routes.serializers import feed_payload
from civic_connect.services.feed_session import FeedSession
from civic_connect.services.geolocation_service import DeferredGeolocation

logger = logging.getLogger(__name__)

router = APIRouter()


def finish_upvote_task(pending: Set[asyncio.Task], task: asyncio.Task) -> None:
    """Done-callback for upvotes sent over the socket; retrieves and logs any failure."""
    pending.discard(task)
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.error(f"Upvote over feed socket failed: {error}", exc_info=error)


@router.websocket("/ws/feed")
async def ws_feed(ws: WebSocket, token: Optional[str] = None, lang: Optional[str] = None):
    state = ws.app.state
    feed = getattr(state, "feed_service", None)
    if feed is None:
        await ws.close(code=1013)
        return

    translator = state.translator
    language = translator.negotiate(preferred=lang)
    viewer = viewer_from_token(token, state.settings, language)
    if not translator.supports(viewer.language):
        viewer.language = language
    storage = getattr(state, "storage", None)

    await ws.accept()
    logger.info(f"🔌 Feed socket opened for {viewer.user_id or 'anonymous'}")

    async def push_feed(result: FeedResult) -> None:
        await ws.send_json({"type": "feed", **feed_payload(result, storage)})

    async def push_notice(key: str) -> None:
        await ws.send_json({"type": "notice", "key": key, "message": translator.t(key, viewer.language)})

    geolocation = DeferredGeolocation()
    session = FeedSession(
        feed,
        viewer,
        geolocation=geolocation,
        geolocation_timeout=state.settings.geolocation_timeout_seconds,
        on_update=push_feed,
        notify=push_notice,
    )
    upvote_tasks: Set[asyncio.Task] = set()

    async def run_upvote(issue_id: str) -> None:
        result = await session.toggle_upvote(issue_id)
        await ws.send_json({
            "type": "upvote",
            "issue_id": issue_id,
            "outcome": result.outcome.value,
            "upvoted": result.upvoted,
        })

    try:
        await session.start()
        while True:
            raw = await ws.receive_text()
            if raw == "ping":
                await ws.send_json({"type": "pong"})
                continue
            try:
                message = json.loads(raw)
            except json.JSONDecodeError:
                logger.debug(f"Ignoring non-JSON feed socket message: {raw[:50]}")
                continue
            if not isinstance(message, dict):
                continue

            kind = message.get("type")
            if kind == "location":
                try:
                    coordinate = Coordinate(latitude=message.get("lat"), longitude=message.get("lng"))
                except ValidationError:
                    geolocation.deny("Client sent an invalid position")
                    continue
                geolocation.resolve(coordinate)
            elif kind == "location_denied":
                geolocation.deny()
            elif kind == "refresh":
                await session.refresh()
            elif kind == "upvote" and message.get("issue_id"):
                task = asyncio.create_task(run_upvote(str(message["issue_id"])))
                upvote_tasks.add(task)
                task.add_done_callback(lambda done: finish_upvote_task(upvote_tasks, done))
            else:
                logger.debug(f"Unknown feed socket message type: {kind}")
    except WebSocketDisconnect:
        logger.info(f"🔌 Feed socket closed for {viewer.user_id or 'anonymous'}")
    finally:
        await session.close()
        for task in list(upvote_tasks):
            task.cancel()
        if upvote_tasks:
            await asyncio.gather(*upvote_tasks, return_exceptions=True)
