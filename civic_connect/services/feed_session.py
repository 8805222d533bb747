"""
Lifecycle of one open feed view.

The first load never waits for geolocation: it runs with whatever position
is known (usually none) and a later position fix re-runs the whole load.
Loads are cancellable; once the session is closed no result is applied.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Dict, Optional, Set

from civic_connect.core.exceptions import StoreError
from civic_connect.models.issue_model import Coordinate, FeedResult
from civic_connect.models.profile_model import Viewer
from civic_connect.services.feed_service import FeedService
from civic_connect.services.geolocation_service import GeolocationProvider
from civic_connect.services.upvote_service import NotifyCallback, ToggleResult, UpvoteToggle

logger = logging.getLogger(__name__)

LOAD_FAILED = "loadIssuesFailed"

UpdateCallback = Callable[[FeedResult], Awaitable[None]]


class FeedSession:
    def __init__(
        self,
        feed: FeedService,
        viewer: Viewer,
        geolocation: Optional[GeolocationProvider] = None,
        geolocation_timeout: Optional[float] = 10.0,
        on_update: Optional[UpdateCallback] = None,
        notify: Optional[NotifyCallback] = None,
    ):
        self.feed = feed
        self.viewer = viewer
        self.geolocation = geolocation
        self.geolocation_timeout = geolocation_timeout
        self.on_update = on_update
        self.notify = notify

        self.coordinate: Optional[Coordinate] = None
        self.current: Optional[FeedResult] = None
        self.error: Optional[Exception] = None

        self._closed = False
        self._geo_task: Optional[asyncio.Task] = None
        self._loads: Set[asyncio.Task] = set()
        self._started = 0
        self._applied = 0
        self._controls: Dict[str, UpvoteToggle] = {}

    @property
    def closed(self) -> bool:
        return self._closed

    async def __aenter__(self) -> "FeedSession":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def start(self) -> Optional[FeedResult]:
        if self.geolocation is not None and self._geo_task is None:
            self._geo_task = asyncio.create_task(self._resolve_location())
        return await self.refresh()

    async def _resolve_location(self) -> None:
        try:
            if self.geolocation_timeout:
                coordinate = await asyncio.wait_for(self.geolocation.locate(), timeout=self.geolocation_timeout)
            else:
                coordinate = await self.geolocation.locate()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.info(f"📍 Location unavailable, keeping popularity order: {e}")
            return

        if self._closed:
            return
        self.coordinate = coordinate
        logger.debug(f"📍 Location resolved ({coordinate.latitude:.4f}, {coordinate.longitude:.4f}); re-ranking")
        await self.refresh()

    async def refresh(self) -> Optional[FeedResult]:
        """Run a full load and apply it unless a newer load already landed or the session closed."""
        if self._closed:
            return None

        self._started += 1
        generation = self._started
        task = asyncio.create_task(self.feed.load(self.viewer, self.coordinate))
        self._loads.add(task)
        try:
            result = await task
        except asyncio.CancelledError:
            if self._closed:
                return None
            raise
        except StoreError as e:
            logger.error(f"Error fetching issues: {e}")
            if not self._closed and generation >= self._applied:
                self.error = e
                if self.notify is not None:
                    await self.notify(LOAD_FAILED)
            return None
        finally:
            self._loads.discard(task)

        if self._closed or generation < self._applied:
            return None

        self._applied = generation
        self.current = result
        self.error = None
        for issue_id, control in self._controls.items():
            control.reconcile(result.has_upvoted(issue_id))

        if self.on_update is not None:
            await self.on_update(result)
        return result

    def control_for(self, issue_id: str) -> UpvoteToggle:
        control = self._controls.get(issue_id)
        if control is None:
            upvoted = self.current.has_upvoted(issue_id) if self.current else False
            control = UpvoteToggle(
                self.feed.store,
                issue_id,
                self.viewer,
                upvoted=upvoted,
                on_change=self.refresh,
                notify=self.notify,
            )
            self._controls[issue_id] = control
        return control

    async def toggle_upvote(self, issue_id: str) -> ToggleResult:
        return await self.control_for(issue_id).toggle()

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True

        pending = list(self._loads)
        if self._geo_task is not None:
            pending.append(self._geo_task)
        current = asyncio.current_task()
        pending = [task for task in pending if task is not current]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        logger.debug(f"Feed session for {self.viewer.user_id or 'anonymous'} closed")
