"""Review pickup heuristic shared by all platform strategies.

The pickup time of a merge request is the first timestamped activity after
its creation by someone other than its author. Very short comments do not
count, and system notes (GitLab) only count when they record a reviewer
action.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime

MIN_REVIEWER_COMMENT_LENGTH = 3

REVIEW_SYSTEM_PHRASES = (
    "approved",
    "unapproved",
    "requested changes",
    "requested review",
    "review",
    "assigned",
    "marked this merge request as ready",
    "marked this merge request as draft",
    "closed",
    "reopened",
)


@dataclass(frozen=True)
class ReviewActivity:
    """One platform event on a merge request, reduced to what the heuristic needs."""

    actor: str | None
    timestamp: datetime | None
    body: str | None = None
    kind: str = "comment"  # comment | review | approval | system


def _counts(activity: ReviewActivity, min_comment_length: int) -> bool:
    if activity.kind == "comment":
        return len((activity.body or "").strip()) >= min_comment_length
    if activity.kind == "system":
        text = (activity.body or "").lower()
        return any(phrase in text for phrase in REVIEW_SYSTEM_PHRASES)
    return True


def first_review_activity(
    activities: Iterable[ReviewActivity],
    author: str | None,
    created_at: datetime | None,
    min_comment_length: int = MIN_REVIEWER_COMMENT_LENGTH,
) -> datetime | None:
    """Earliest qualifying non-author activity after creation, or None."""
    author_key = (author or "").strip().lower()
    earliest: datetime | None = None
    for activity in activities:
        if activity.timestamp is None or not activity.actor:
            continue
        if created_at is not None and activity.timestamp <= created_at:
            continue
        if author_key and activity.actor.strip().lower() == author_key:
            continue
        if not _counts(activity, min_comment_length):
            continue
        if earliest is None or activity.timestamp < earliest:
            earliest = activity.timestamp
    return earliest


def pickup_latency_ms(created_at: datetime | None, picked_at: datetime | None) -> int:
    """Milliseconds from creation to pickup; 0 when either end is unknown."""
    if created_at is None or picked_at is None:
        return 0
    return max(int((picked_at - created_at).total_seconds() * 1000), 0)
