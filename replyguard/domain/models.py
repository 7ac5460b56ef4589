"""
Domain Models - Reviews, Violations and Audit Events
=====================================================

Plain dataclasses and enums shared by every layer. Nothing in here talks to
the network, the database or the LLM.

DESIGN:
- Enum values are the exact strings persisted in the database and returned
  by the API, so `ReviewStatus.NEEDS_APPROVAL.value == "NeedsApproval"`.
- Timestamps are timezone-aware UTC datetimes.
- Reply evidence from the review platform is a tagged union
  (`PostedReply | NoReply`) instead of a loosely shaped dict.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Union


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


class ReviewStatus(str, Enum):
    """Workflow state of a review."""
    PENDING_ANALYSIS = "PendingAnalysis"
    AUTO_APPROVED = "AutoApproved"
    NEEDS_APPROVAL = "NeedsApproval"
    REPLIED = "Replied"


class Sentiment(str, Enum):
    POSITIVE = "positive"
    NEUTRAL = "neutral"
    NEGATIVE = "negative"


class Urgency(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class ViolationCode(str, Enum):
    """Closed set of compliance findings."""
    NEVER_CONFIRM_PATIENT = "NeverConfirmPatient"
    BANNED_PHRASE_MATCH = "BannedPhraseMatch"
    POSSIBLE_PHI = "PossiblePHI"
    HIGH_CONFIDENCE_PHI = "HighConfidencePHI"
    PROCEDURE_MENTION_NOT_IN_REVIEW = "ProcedureMentionNotInReview"


class ComplianceTarget(str, Enum):
    """Where a piece of text is about to be published."""
    REVIEW_REPLY = "review_reply"
    LOCAL_POST = "local_post"


class AuditAction(str, Enum):
    APPROVE_REVIEW_REPLY = "APPROVE_REVIEW_REPLY"
    POST_REVIEW_REPLY = "POST_REVIEW_REPLY"
    AUTO_POST_REVIEW_REPLY = "AUTO_POST_REVIEW_REPLY"
    POST_LOCAL_POST = "POST_LOCAL_POST"


class AuditTargetType(str, Enum):
    REVIEW = "REVIEW"
    POST = "POST"


@dataclass(frozen=True)
class ComplianceViolation:
    """A single compliance finding."""
    code: ViolationCode
    severity: Severity
    message: str
    meta: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "code": self.code.value,
            "severity": self.severity.value,
            "message": self.message,
        }
        if self.meta:
            data["meta"] = dict(self.meta)
        return data


# ── Reply evidence (tagged union) ─────────────────────────────────

@dataclass(frozen=True)
class PostedReply:
    """The review platform reports a reply on this review."""
    comment: str = ""
    updated_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class NoReply:
    """The review platform reports no reply."""


ReplyEvidence = Union[PostedReply, NoReply]


@dataclass
class ExternalReviewRecord:
    """A review as delivered by the review platform, already parsed."""
    external_review_id: str
    author_name: str
    rating: Union[int, str, None]
    comment: Optional[str]
    created_at: datetime
    updated_at: datetime
    reply: ReplyEvidence = field(default_factory=NoReply)


@dataclass
class ReviewAnalysis:
    """Output of the analysis capability for one review."""
    sentiment: Sentiment
    urgency: Urgency
    topics: List[str] = field(default_factory=list)
    suggested_actions: List[str] = field(default_factory=list)
    risk_flags: List[str] = field(default_factory=list)
    reply_draft: str = ""
    reply_language_code: Optional[str] = None
    # Raw {"A", "B"} texts from the analyzer; the reconciler swaps in the checked variants
    reply_variants: Optional[Dict[str, Any]] = None


@dataclass
class Review:
    """Local review record, keyed by (location_id, external_review_id)."""
    business_id: str
    location_id: str
    external_review_id: str
    author_name: str = "Guest"
    rating: int = 0
    comment: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    sentiment: Optional[Sentiment] = None
    urgency: Optional[Urgency] = None
    topics: Optional[List[str]] = None
    suggested_actions: Optional[List[str]] = None
    risk_flags: Optional[List[str]] = None
    reply_draft: Optional[str] = None
    reply_language_code: Optional[str] = None
    reply_variants: Optional[Dict[str, Any]] = None

    status: ReviewStatus = ReviewStatus.PENDING_ANALYSIS
    replied_at: Optional[datetime] = None
    last_analyzed_at: Optional[datetime] = None
    needs_approval_since: Optional[datetime] = None
    last_reminder_at: Optional[datetime] = None
    escalation_level: int = 0
    approved_at: Optional[datetime] = None
    approved_by: Optional[str] = None

    id: Optional[int] = None

    @property
    def is_replied(self) -> bool:
        return self.status == ReviewStatus.REPLIED or self.replied_at is not None

    @property
    def has_analysis(self) -> bool:
        return self.sentiment is not None and bool(self.reply_draft)


@dataclass
class AuditEvent:
    """Persisted audit record. Holds digests only, never raw text."""
    business_id: str
    action: AuditAction
    target_type: AuditTargetType
    original_sha256: str
    sanitized_sha256: str
    target_id: Optional[str] = None
    actor_user_id: Optional[str] = None
    actor_role: Optional[str] = None
    violation_codes: List[str] = field(default_factory=list)
    metadata: Optional[Dict[str, Any]] = None
    created_at: Optional[datetime] = None
    id: Optional[int] = None
