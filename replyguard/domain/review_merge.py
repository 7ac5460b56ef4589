"""
Review Merge Rules
==================

Pure helpers used by the reconciler to fold one external review record into
local state. Each precedence rule lives in its own small function so it can be
tested without a database or an LLM.

FIELD PRECEDENCE:
    new analysis  >  existing local value  >  None

EXTERNAL REPLY STATE:
    If the review platform shows a reply, the merged status is Replied,
    whatever the local analysis says.
"""

import re
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Optional, TypeVar, Union

from .models import (
    ExternalReviewRecord,
    NoReply,
    PostedReply,
    ReplyEvidence,
    Review,
    ReviewAnalysis,
    ReviewStatus,
    Sentiment,
)

T = TypeVar("T")

STAR_RATINGS = {"ONE": 1, "TWO": 2, "THREE": 3, "FOUR": 4, "FIVE": 5}

# Keys under which review platforms have been seen to put the owner reply
REPLY_PAYLOAD_KEYS = ("reviewReply", "reply")

_FRACTION_RE = re.compile(r"\.(\d+)")


def normalize_rating(value: Union[int, float, str, None]) -> int:
    """
    Star rating as an int 1-5.

    Accepts numbers, numeric strings and the platform enum ("ONE".."FIVE").
    Anything else, including out-of-range numbers, maps to 0.
    """
    rating = 0
    if isinstance(value, bool):
        rating = 0
    elif isinstance(value, (int, float)):
        rating = int(value)
    elif isinstance(value, str):
        text = value.strip().upper()
        if text in STAR_RATINGS:
            rating = STAR_RATINGS[text]
        else:
            try:
                rating = int(float(text))
            except ValueError:
                rating = 0
    return rating if 1 <= rating <= 5 else 0


def parse_timestamp(value: Union[str, datetime, None]) -> Optional[datetime]:
    """Parse an RFC 3339 timestamp (with 'Z' and up to nanoseconds) into aware UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip().replace("Z", "+00:00")
        # datetime only understands microseconds
        text = _FRACTION_RE.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), text, count=1)
        parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def extract_reply_evidence(payload: Dict[str, Any]) -> ReplyEvidence:
    """
    Read the owner-reply sub-object from a raw review payload.

    A reply counts as present when the sub-object has any content, even if
    the comment itself is missing.
    """
    for key in REPLY_PAYLOAD_KEYS:
        reply = payload.get(key)
        if isinstance(reply, dict) and reply:
            return PostedReply(
                comment=str(reply.get("comment") or ""),
                updated_at=parse_timestamp(reply.get("updateTime")),
                created_at=parse_timestamp(reply.get("createTime")),
            )
        if isinstance(reply, str) and reply.strip():
            return PostedReply(comment=reply.strip())
    return NoReply()


def reply_time(evidence: ReplyEvidence, now: datetime) -> Optional[datetime]:
    """Most specific reply timestamp; `now` when a reply exists without one."""
    if isinstance(evidence, PostedReply):
        return evidence.updated_at or evidence.created_at or now
    return None


def parse_external_review(payload: Dict[str, Any]) -> ExternalReviewRecord:
    """Build an ExternalReviewRecord from a Google Business Profile review payload."""
    review_id = str(payload.get("reviewId") or "").strip()
    if not review_id:
        raise ValueError("Review payload has no reviewId")

    reviewer = payload.get("reviewer") or {}
    created_at = parse_timestamp(payload.get("createTime"))
    updated_at = parse_timestamp(payload.get("updateTime")) or created_at
    if created_at is None or updated_at is None:
        raise ValueError(f"Review {review_id} has no timestamps")

    return ExternalReviewRecord(
        external_review_id=review_id,
        author_name=str(reviewer.get("displayName") or "Guest"),
        rating=payload.get("starRating", payload.get("rating")),
        comment=payload.get("comment"),
        created_at=created_at,
        updated_at=updated_at,
        reply=extract_reply_evidence(payload),
    )


def is_updated(existing: Optional[Review], record: ExternalReviewRecord) -> bool:
    """New record, or the platform's update time moved strictly forward."""
    if existing is None or existing.updated_at is None:
        return True
    return record.updated_at > existing.updated_at


def needs_analysis(existing: Optional[Review], updated: bool, has_external_reply: bool) -> bool:
    if has_external_reply:
        return False
    if updated or existing is None:
        return True
    return (
        existing.sentiment is None
        or not existing.reply_draft
        or existing.status == ReviewStatus.PENDING_ANALYSIS
    )


def requires_approval(analysis: ReviewAnalysis, rating: int, risk_patterns: Iterable[str]) -> bool:
    """Low rating, negative sentiment, or a risk flag matching a configured pattern."""
    patterns = [p.lower() for p in risk_patterns if p]
    risky = any(
        pattern in str(flag or "").lower()
        for flag in analysis.risk_flags
        for pattern in patterns
    )
    return risky or rating <= 3 or analysis.sentiment == Sentiment.NEGATIVE


def merge_field(new: Optional[T], existing: Optional[T]) -> Optional[T]:
    """New value wins when present; empty strings count as absent."""
    if new is not None and new != "":
        return new
    if existing is not None and existing != "":
        return existing
    return None


def merge_review(
    *,
    business_id: str,
    location_id: str,
    record: ExternalReviewRecord,
    rating: int,
    existing: Optional[Review],
    analysis: Optional[ReviewAnalysis],
    analysis_status: Optional[ReviewStatus],
    replied_at: Optional[datetime],
    now: datetime,
) -> Review:
    """
    Produce the row to upsert for one external record.

    Args:
        analysis: Fresh analysis from this pass, or None when analysis was
            skipped or failed.
        analysis_status: Status derived from `analysis`.
        replied_at: Reply time when the platform shows a reply, else None.
    """
    def pick(attr: str):
        return merge_field(
            getattr(analysis, attr) if analysis else None,
            getattr(existing, attr) if existing else None,
        )

    if replied_at is not None:
        status = ReviewStatus.REPLIED
    elif analysis_status is not None:
        status = analysis_status
    elif existing is not None:
        status = existing.status
    else:
        status = ReviewStatus.PENDING_ANALYSIS

    needs_approval_since = None
    if status == ReviewStatus.NEEDS_APPROVAL:
        needs_approval_since = (existing.needs_approval_since if existing else None) or now

    return Review(
        id=existing.id if existing else None,
        business_id=existing.business_id if existing else business_id,
        location_id=location_id,
        external_review_id=record.external_review_id,
        author_name=record.author_name,
        rating=rating,
        comment=record.comment,
        created_at=record.created_at,
        updated_at=record.updated_at,
        sentiment=pick("sentiment"),
        urgency=pick("urgency"),
        topics=pick("topics"),
        suggested_actions=pick("suggested_actions"),
        risk_flags=pick("risk_flags"),
        reply_draft=pick("reply_draft"),
        reply_language_code=pick("reply_language_code"),
        reply_variants=pick("reply_variants"),
        status=status,
        replied_at=replied_at if replied_at is not None else (existing.replied_at if existing else None),
        last_analyzed_at=now if analysis else (existing.last_analyzed_at if existing else None),
        needs_approval_since=needs_approval_since,
        last_reminder_at=existing.last_reminder_at if existing else None,
        escalation_level=existing.escalation_level if existing else 0,
        approved_at=existing.approved_at if existing else None,
        approved_by=existing.approved_by if existing else None,
    )
