"""
Upvote toggling for one (issue, viewer) pair.

Each UpvoteToggle is the state of a single upvote control. While a write is
in flight the control ignores further toggles; it does not queue them. A
failed write leaves the known state alone and raises a notification; the
next refresh reconciles the displayed count.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Dict, Optional, Tuple

from civic_connect.core.exceptions import StoreError
from civic_connect.models.profile_model import Viewer

logger = logging.getLogger(__name__)

UPVOTE_FAILED = "upvoteFailed"

ChangeCallback = Callable[[], Awaitable[object]]
NotifyCallback = Callable[[str], Awaitable[None]]


class ToggleOutcome(str, Enum):
    TOGGLED = "toggled"
    IGNORED = "ignored"
    FAILED = "failed"
    UNAUTHENTICATED = "unauthenticated"


@dataclass
class ToggleResult:
    outcome: ToggleOutcome
    upvoted: bool
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.outcome == ToggleOutcome.TOGGLED


class UpvoteToggle:
    def __init__(
        self,
        store,
        issue_id: str,
        viewer: Viewer,
        upvoted: bool = False,
        on_change: Optional[ChangeCallback] = None,
        notify: Optional[NotifyCallback] = None,
        sync_state: bool = False,
    ):
        self._store = store
        self.issue_id = issue_id
        self.viewer = viewer
        self._upvoted = upvoted
        self._on_change = on_change
        self._notify = notify
        # Re-read the record before writing instead of trusting the last known state
        self._sync_state = sync_state
        self._in_flight = False

    @property
    def upvoted(self) -> bool:
        return self._upvoted

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    def reconcile(self, upvoted: bool) -> None:
        """Adopt the state reported by a fresh fetch unless a write is pending."""
        if not self._in_flight:
            self._upvoted = upvoted

    async def toggle(self) -> ToggleResult:
        if not self.viewer.is_authenticated:
            return ToggleResult(ToggleOutcome.UNAUTHENTICATED, self._upvoted)
        if self._in_flight:
            logger.debug(f"Upvote toggle already pending for issue {self.issue_id}; ignoring")
            return ToggleResult(ToggleOutcome.IGNORED, self._upvoted)

        self._in_flight = True
        try:
            if self._sync_state:
                self._upvoted = await self._store.has_upvoted(self.issue_id, self.viewer.user_id)
            if self._upvoted:
                await self._store.remove_upvote(self.issue_id, self.viewer.user_id)
            else:
                await self._store.add_upvote(self.issue_id, self.viewer.user_id)
            self._upvoted = not self._upvoted
        except StoreError as e:
            logger.error(f"Error updating upvote on issue {self.issue_id}: {e}")
            if self._notify is not None:
                await self._notify(UPVOTE_FAILED)
            return ToggleResult(ToggleOutcome.FAILED, self._upvoted, error=str(e))
        finally:
            self._in_flight = False

        logger.info(
            f"👍 Issue {self.issue_id} {'upvoted' if self._upvoted else 'un-upvoted'} by {self.viewer.user_id}"
        )
        if self._on_change is not None:
            await self._on_change()
        return ToggleResult(ToggleOutcome.TOGGLED, self._upvoted)


class UpvoteGuardRegistry:
    """
    Shares one UpvoteToggle per (issue, user) across concurrent requests so the
    in-flight guard applies server-wide within this process. Idle controls are
    dropped once their write completes.
    """

    def __init__(self, store):
        self._store = store
        self._controls: Dict[Tuple[str, str], UpvoteToggle] = {}

    def __len__(self) -> int:
        return len(self._controls)

    async def toggle(self, issue_id: str, viewer: Viewer) -> ToggleResult:
        if not viewer.is_authenticated:
            return ToggleResult(ToggleOutcome.UNAUTHENTICATED, False)

        key = (issue_id, viewer.user_id)
        control = self._controls.get(key)
        if control is None:
            control = UpvoteToggle(self._store, issue_id, viewer, sync_state=True)
            self._controls[key] = control

        try:
            return await control.toggle()
        finally:
            if self._controls.get(key) is control and not control.in_flight:
                del self._controls[key]
