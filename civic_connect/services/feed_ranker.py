"""
Feed ordering: nearby issues first, then by popularity.

Only membership in the nearby band matters; the distance itself never
breaks ties. Python's sort is stable, so issues with equal keys keep the
order the store returned them in (newest first).
"""

import logging
from typing import Iterable, List, Optional

from civic_connect.models.issue_model import Coordinate, Issue
from civic_connect.utils.location import issue_distance_km

logger = logging.getLogger(__name__)

NEARBY_THRESHOLD_KM = 10.0


def is_nearby(issue: Issue, origin: Coordinate, threshold_km: float = NEARBY_THRESHOLD_KM) -> bool:
    return issue_distance_km(issue, origin) <= threshold_km


def rank_issues(
    issues: Iterable[Issue],
    viewer_coordinate: Optional[Coordinate] = None,
    threshold_km: float = NEARBY_THRESHOLD_KM,
) -> List[Issue]:
    """Return a new list in display order. The input sequence is left untouched."""
    issues = list(issues)

    if viewer_coordinate is None:
        return sorted(issues, key=lambda issue: -issue.upvotes_count)

    def _key(issue: Issue):
        band = 0 if is_nearby(issue, viewer_coordinate, threshold_km) else 1
        return band, -issue.upvotes_count

    ranked = sorted(issues, key=_key)
    logger.debug(
        f"Ranked {len(ranked)} issues around ({viewer_coordinate.latitude:.4f}, "
        f"{viewer_coordinate.longitude:.4f}) with {threshold_km} km threshold"
    )
    return ranked
