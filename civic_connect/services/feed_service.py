import logging
import time
from typing import Optional

from civic_connect.core.exceptions import StoreError
from civic_connect.models.issue_model import Coordinate, FeedResult
from civic_connect.models.profile_model import Role, Viewer
from civic_connect.services.feed_ranker import NEARBY_THRESHOLD_KM, rank_issues
from civic_connect.services.summary_service import SummaryCache, SummaryGenerator

logger = logging.getLogger(__name__)


class FeedService:
    """
    Builds the issue feed for one viewer:
    role lookup → issue fetch → summaries (privileged only) → ranking → upvote annotations.

    Only the issue fetch can fail the load; every other step degrades.
    """

    def __init__(
        self,
        store,
        summarizer: SummaryGenerator,
        nearby_threshold_km: float = NEARBY_THRESHOLD_KM,
        ai_max_concurrency: int = 4,
        ai_timeout_seconds: Optional[float] = 20.0,
    ):
        self.store = store
        self.summarizer = summarizer
        self.nearby_threshold_km = nearby_threshold_km
        self.ai_max_concurrency = ai_max_concurrency
        self.ai_timeout_seconds = ai_timeout_seconds

    async def resolve_role(self, viewer: Optional[Viewer]) -> Role:
        if viewer is None or not viewer.is_authenticated:
            return Role.CITIZEN
        try:
            profile = await self.store.get_profile(viewer.user_id)
        except StoreError as e:
            logger.warning(f"⚠️ Role lookup failed for {viewer.user_id}, treating as citizen: {e}")
            return Role.CITIZEN
        return profile.role if profile is not None else Role.CITIZEN

    def new_summary_cache(self) -> SummaryCache:
        return SummaryCache(
            self.summarizer,
            max_concurrency=self.ai_max_concurrency,
            timeout=self.ai_timeout_seconds,
        )

    async def load(self, viewer: Optional[Viewer] = None, coordinate: Optional[Coordinate] = None) -> FeedResult:
        start_ts = time.time()
        role = await self.resolve_role(viewer)
        resolved = viewer.model_copy(update={"role": role}) if viewer is not None else Viewer.anonymous()

        # Raises StoreError: nothing to show without the issue list
        issues = await self.store.list_issues_with_authors()

        if resolved.can_view_summaries:
            cache = self.new_summary_cache()
            needing = [issue for issue in issues if not issue.ai_summary]
            if needing:
                logger.info(f"🤖 Generating summaries for {len(needing)} issues (role={role.value})")
            issues = await cache.ensure_summaries(issues)

        ranked = rank_issues(issues, coordinate, self.nearby_threshold_km)

        upvoted = set()
        if viewer is not None and viewer.is_authenticated:
            try:
                upvoted = await self.store.list_upvoted_issue_ids(viewer.user_id)
            except StoreError as e:
                logger.warning(f"⚠️ Could not load upvotes for {viewer.user_id}: {e}")

        logger.info(
            f"📰 Feed loaded: {len(ranked)} issues, role={role.value}, "
            f"distance ranking={'on' if coordinate else 'off'} in {(time.time() - start_ts) * 1000:.2f} ms"
        )
        return FeedResult(
            issues=ranked,
            upvoted_issue_ids=sorted(upvoted),
            role=role,
            ranked_by_distance=coordinate is not None,
        )
