from typing import Any, Dict, Iterable, Optional

from civic_connect.models.issue_model import Comment, FeedResult, Issue
from civic_connect.utils.location import maps_link


def issue_payload(issue: Issue, storage=None, upvoted_ids: Optional[Iterable[str]] = None) -> Dict[str, Any]:
    data = issue.model_dump(mode="json")
    data["image_urls"] = [storage.public_url(path) for path in issue.images or []] if storage else []
    data["maps_link"] = maps_link(issue.coordinate)
    if upvoted_ids is not None:
        data["viewer_upvoted"] = issue.id in upvoted_ids
    return data


def comment_payload(comment: Comment) -> Dict[str, Any]:
    return comment.model_dump(mode="json")


def feed_payload(result: FeedResult, storage=None) -> Dict[str, Any]:
    upvoted = set(result.upvoted_issue_ids)
    return {
        "issues": [issue_payload(issue, storage, upvoted) for issue in result.issues],
        "upvoted_issue_ids": result.upvoted_issue_ids,
        "role": result.role.value,
        "ranked_by_distance": result.ranked_by_distance,
        "loaded_at": result.loaded_at.isoformat(),
    }
