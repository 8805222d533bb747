"""
Per-load summary memoization for privileged feed viewers.

A SummaryCache lives for exactly one feed load. It guarantees at most one
generator call per issue id during that load, bounds how many generator
calls run at once, and never lets a generator failure escape.
"""

import asyncio
import logging
from typing import Dict, Iterable, List, Optional, Protocol

from civic_connect.models.issue_model import Issue

logger = logging.getLogger(__name__)

FALLBACK_SUMMARY = "Unable to generate summary at this time."


class SummaryGenerator(Protocol):
    async def generate(
        self,
        title: str,
        address: Optional[str] = None,
        image_paths: Optional[List[str]] = None,
    ) -> str:
        ...


class SummaryCache:
    def __init__(
        self,
        generator: SummaryGenerator,
        max_concurrency: int = 4,
        timeout: Optional[float] = 20.0,
    ):
        self._generator = generator
        self._timeout = timeout
        self._semaphore = asyncio.Semaphore(max(1, max_concurrency))
        self._summaries: Dict[str, str] = {}
        self._pending: Dict[str, "asyncio.Task[str]"] = {}

    def __contains__(self, issue_id: str) -> bool:
        return issue_id in self._summaries

    async def ensure_summary(self, issue: Issue) -> Issue:
        if issue.ai_summary:
            return issue

        cached = self._summaries.get(issue.id)
        if cached is None:
            cached = await self._summary_for(issue)
        return issue.model_copy(update={"ai_summary": cached})

    async def ensure_summaries(self, issues: Iterable[Issue]) -> List[Issue]:
        """Summarize a batch; output order matches input order."""
        return list(await asyncio.gather(*(self.ensure_summary(issue) for issue in issues)))

    async def _summary_for(self, issue: Issue) -> str:
        task = self._pending.get(issue.id)
        if task is None:
            task = asyncio.ensure_future(self._generate(issue))
            self._pending[issue.id] = task
        # Cancelling a waiter cancels the model call with it
        return await task

    async def _generate(self, issue: Issue) -> str:
        try:
            async with self._semaphore:
                call = self._generator.generate(issue.title, issue.location_address, issue.images or None)
                if self._timeout:
                    text = await asyncio.wait_for(call, timeout=self._timeout)
                else:
                    text = await call
            text = (text or "").strip()
            if not text:
                logger.warning(f"⚠️ Empty summary returned for issue {issue.id}")
                text = FALLBACK_SUMMARY
        except asyncio.CancelledError:
            self._pending.pop(issue.id, None)
            raise
        except Exception as e:
            logger.error(f"Error generating summary for issue {issue.id}: {e}")
            text = FALLBACK_SUMMARY

        self._summaries[issue.id] = text
        self._pending.pop(issue.id, None)
        return text
