"""
Publication Service - Approval and Compliance-Guarded Publishing
=================================================================

ARCHITECTURAL DECISION:
- Nothing reaches the publisher without passing the compliance guard first,
  and only the guard's sanitized text is ever sent.
- A compliance block is an outcome (PublishStatus.BLOCKED), not an
  exception; transport failures are PublishStatus.FAILED. Callers can tell
  "we refused" from "the platform refused".
- Missing reviews and wrong workflow states raise PublicationError
  subclasses; those are caller mistakes.
- Audit writes go through AuditTrail.record_safely(): a broken ledger never
  turns a successful publish into a failure.

STATE TRANSITIONS:
    NeedsApproval --approve_reply()--> AutoApproved
    AutoApproved  --publish_reply()--> Replied
    AutoApproved  --auto-post blocked--> NeedsApproval ("HIPAA risk")
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from ..domain.compliance_guard import ComplianceResult, run_compliance_guard
from ..domain.models import (
    AuditAction,
    AuditTargetType,
    ComplianceTarget,
    Review,
    ReviewStatus,
    utc_now,
)
from ..domain.reply_quality import VARIANT_KEYS, ReplyPolicy
from ..infrastructure.google import PublishError, PublishedPost, Publisher, ReplyAlreadyExistsError
from ..infrastructure.persistence import Database
from ..infrastructure.rate_limit import TokenBucket
from .audit_trail import AuditEntry, AuditTrail

logger = logging.getLogger(__name__)

HIPAA_RISK_FLAG = "HIPAA risk"


class PublicationError(Exception):
    """Base exception for publication errors."""
    pass


class ReviewNotFoundError(PublicationError):
    pass


class PublicationPreconditionError(PublicationError):
    """The review is not in a state that allows this action."""
    pass


class PublishStatus(str, Enum):
    PUBLISHED = "published"
    ALREADY_REPLIED = "already_replied"
    BLOCKED = "blocked"
    FAILED = "failed"


@dataclass
class PublishOutcome:
    status: PublishStatus
    review_id: Optional[int] = None
    message: str = ""
    violation_codes: List[str] = field(default_factory=list)
    violation_messages: List[str] = field(default_factory=list)
    sanitized_text: Optional[str] = None
    audit_event_id: Optional[int] = None
    post: Optional[PublishedPost] = None

    @property
    def ok(self) -> bool:
        return self.status in (PublishStatus.PUBLISHED, PublishStatus.ALREADY_REPLIED)

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "status": self.status.value,
            "review_id": self.review_id,
            "message": self.message,
            "violation_codes": list(self.violation_codes),
            "violation_messages": list(self.violation_messages),
            "audit_event_id": self.audit_event_id,
        }
        if self.post is not None:
            data["post"] = {
                "id": self.post.id,
                "state": self.post.state,
                "created_at": self.post.created_at.isoformat() if self.post.created_at else None,
            }
        return data


@dataclass
class AutoPostResult:
    posted: int = 0
    skipped: int = 0
    blocked: int = 0
    failed: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "posted": self.posted,
            "skipped": self.skipped,
            "blocked": self.blocked,
            "failed": self.failed,
        }


def _blocked_outcome(compliance: ComplianceResult, review_id: Optional[int], what: str) -> PublishOutcome:
    blocking = compliance.blocking_violations
    return PublishOutcome(
        status=PublishStatus.BLOCKED,
        review_id=review_id,
        message=f"{what} blocked by compliance guardrails",
        violation_codes=sorted({v.code.value for v in blocking}),
        violation_messages=[v.message for v in blocking],
        sanitized_text=compliance.sanitized_text,
    )


class PublicationService:
    """
    Approves drafts and publishes replies and local posts.

    USAGE:
        service = PublicationService(db, GoogleBusinessPublisher(), policy, AuditTrail(db))
        service.approve_reply(42, actor_user_id="u_1")
        outcome = service.publish_reply(42, actor_user_id="u_1")
        if outcome.status == PublishStatus.BLOCKED:
            print(outcome.violation_codes)
    """

    def __init__(
        self,
        store: Database,
        publisher: Publisher,
        policy: ReplyPolicy,
        audit: Optional[AuditTrail] = None,
        rate_limiter: Optional[TokenBucket] = None,
        auto_post_limit: int = 25,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.publisher = publisher
        self.policy = policy
        self.audit = audit or AuditTrail(store)
        self.rate_limiter = rate_limiter
        self.auto_post_limit = auto_post_limit
        self._clock = clock

    # ── Helpers ───────────────────────────────────────────────────

    def _load_review(self, review_id: int) -> Review:
        review = self.store.get_review_by_id(review_id)
        if review is None:
            raise ReviewNotFoundError(f"Review {review_id} not found")
        return review

    def _guard_reply(self, text: str, review: Review) -> ComplianceResult:
        return run_compliance_guard(
            ComplianceTarget.REVIEW_REPLY,
            text,
            config=self.policy.compliance,
            review_comment=review.comment,
        )

    def _wait_for_slot(self) -> None:
        if self.rate_limiter is not None:
            self.rate_limiter.acquire()

    # ── Approval ──────────────────────────────────────────────────

    def approve_reply(
        self,
        review_id: int,
        reply_draft: Optional[str] = None,
        actor_user_id: Optional[str] = None,
        actor_role: Optional[str] = None,
    ) -> Review:
        """
        Human approval of a draft (optionally edited).

        Raises:
            ReviewNotFoundError: no such review.
            PublicationPreconditionError: review is not awaiting approval or
                there is no draft to approve.
        """
        review = self._load_review(review_id)
        if review.status != ReviewStatus.NEEDS_APPROVAL:
            raise PublicationPreconditionError(
                f"Review {review_id} is {review.status.value}, only NeedsApproval reviews can be approved"
            )

        draft = (reply_draft or "").strip() or (review.reply_draft or "").strip()
        if not draft:
            raise PublicationPreconditionError(f"Review {review_id} has no reply draft to approve")

        now = self._clock()
        self.store.update_review(
            review_id,
            status=ReviewStatus.AUTO_APPROVED,
            reply_draft=draft,
            approved_at=now,
            approved_by=actor_user_id,
            needs_approval_since=None,
            last_reminder_at=None,
            escalation_level=0,
        )

        compliance = self._guard_reply(draft, review)
        self.audit.record_safely(AuditEntry(
            business_id=review.business_id,
            action=AuditAction.APPROVE_REVIEW_REPLY,
            target_type=AuditTargetType.REVIEW,
            target_id=review_id,
            actor_user_id=actor_user_id,
            actor_role=actor_role,
            original_text=draft,
            sanitized_text=compliance.sanitized_text,
            violation_codes=compliance.codes,
            metadata={"edited": bool(reply_draft and reply_draft.strip() != (review.reply_draft or "").strip())},
        ))

        logger.info(f"Review {review_id} approved by {actor_user_id or 'unknown'}")
        return self._load_review(review_id)

    def select_reply_variant(self, review_id: int, selected: str) -> Review:
        """
        Switch the draft to reply variant A or B.

        Raises:
            ReviewNotFoundError: no such review.
            PublicationPreconditionError: unknown variant key, review already
                replied, or no variants stored for it.
        """
        key = (selected or "").strip().upper()
        if key not in VARIANT_KEYS:
            raise PublicationPreconditionError('selected must be "A" or "B"')

        review = self._load_review(review_id)
        if review.is_replied:
            raise PublicationPreconditionError(f"Review {review_id} is already replied")

        variants = dict(review.reply_variants or {})
        if not all(isinstance(variants.get(k), dict) for k in VARIANT_KEYS):
            raise PublicationPreconditionError(
                f"Review {review_id} has no reply variants. Re-analyze it first."
            )

        variants["selected"] = key
        draft = str(variants[key].get("text") or "").strip() or (review.reply_draft or "")
        self.store.update_review(review_id, reply_draft=draft, reply_variants=variants)

        logger.info(f"Review {review_id}: selected reply variant {key}")
        return self._load_review(review_id)

    # ── Review replies ────────────────────────────────────────────

    def publish_reply(
        self,
        review_id: int,
        reply_text: Optional[str] = None,
        actor_user_id: Optional[str] = None,
        actor_role: Optional[str] = None,
        automatic: bool = False,
    ) -> PublishOutcome:
        """
        Guard and publish a reply.

        Args:
            reply_text: Text to publish; defaults to the stored draft.
            automatic: True when called by the auto-post batch. A blocked
                automatic post sends the review back to NeedsApproval.

        Raises:
            ReviewNotFoundError: no such review.
            PublicationPreconditionError: there is no text to publish.
        """
        review = self._load_review(review_id)

        if review.is_replied:
            return PublishOutcome(
                status=PublishStatus.ALREADY_REPLIED,
                review_id=review_id,
                message="Review already has a reply",
            )

        text = (reply_text or "").strip() or (review.reply_draft or "").strip()
        if not text:
            raise PublicationPreconditionError(f"Review {review_id} has no reply text to publish")

        compliance = self._guard_reply(text, review)
        now = self._clock()

        if compliance.blocked:
            logger.warning(
                f"Reply for review {review_id} blocked: {', '.join(v.code.value for v in compliance.blocking_violations)}"
            )
            if automatic:
                flags = list(review.risk_flags or [])
                if HIPAA_RISK_FLAG not in flags:
                    flags.append(HIPAA_RISK_FLAG)
                self.store.update_review(
                    review_id,
                    status=ReviewStatus.NEEDS_APPROVAL,
                    needs_approval_since=review.needs_approval_since or now,
                    risk_flags=flags,
                    reply_draft=compliance.sanitized_text,
                )
            return _blocked_outcome(compliance, review_id, "Reply")

        sanitized = compliance.sanitized_text
        self._wait_for_slot()

        try:
            self.publisher.publish_reply(review.location_id, review.external_review_id, sanitized)
        except ReplyAlreadyExistsError as e:
            logger.info(f"Review {review_id} already has a reply on the platform: {e}")
            self.store.update_review(review_id, status=ReviewStatus.REPLIED, replied_at=now)
            return PublishOutcome(
                status=PublishStatus.ALREADY_REPLIED,
                review_id=review_id,
                message=str(e),
            )
        except PublishError as e:
            logger.error(f"Failed to publish reply for review {review_id}: {e}")
            return PublishOutcome(
                status=PublishStatus.FAILED,
                review_id=review_id,
                message=str(e),
                sanitized_text=sanitized,
            )

        updates = dict(
            status=ReviewStatus.REPLIED,
            replied_at=now,
            reply_draft=sanitized,
            needs_approval_since=None,
        )
        if not automatic:
            updates.update(approved_at=now, approved_by=actor_user_id)
        self.store.update_review(review_id, **updates)

        audit_id = self.audit.record_safely(AuditEntry(
            business_id=review.business_id,
            action=AuditAction.AUTO_POST_REVIEW_REPLY if automatic else AuditAction.POST_REVIEW_REPLY,
            target_type=AuditTargetType.REVIEW,
            target_id=review_id,
            actor_user_id=actor_user_id,
            actor_role=actor_role,
            original_text=text,
            sanitized_text=sanitized,
            violation_codes=compliance.codes,
            metadata={
                "external_review_id": review.external_review_id,
                "location_id": review.location_id,
                "rating": review.rating,
            },
        ))

        logger.info(f"Reply published for review {review_id}{' (auto)' if automatic else ''}")
        return PublishOutcome(
            status=PublishStatus.PUBLISHED,
            review_id=review_id,
            message="Reply published",
            violation_codes=compliance.codes,
            sanitized_text=sanitized,
            audit_event_id=audit_id,
        )

    def auto_post_approved(self, business_id: str, limit: Optional[int] = None) -> AutoPostResult:
        """Publish AutoApproved drafts one by one, paced by the rate limiter."""
        result = AutoPostResult()
        reviews = self.store.list_reviews(
            business_id,
            status=ReviewStatus.AUTO_APPROVED,
            limit=limit if limit is not None else self.auto_post_limit,
        )
        logger.info(f"Auto-posting {len(reviews)} approved reply(ies) for {business_id}")

        for review in reviews:
            if not (review.reply_draft or "").strip():
                result.skipped += 1
                continue

            try:
                outcome = self.publish_reply(review.id, automatic=True)
            except PublicationError as e:
                logger.warning(f"Skipping review {review.id}: {e}")
                result.skipped += 1
                continue

            if outcome.status == PublishStatus.PUBLISHED:
                result.posted += 1
            elif outcome.status == PublishStatus.BLOCKED:
                result.blocked += 1
            elif outcome.status == PublishStatus.FAILED:
                result.failed += 1
            else:
                result.skipped += 1

        logger.info(
            f"Auto-post complete: posted={result.posted}, skipped={result.skipped}, "
            f"blocked={result.blocked}, failed={result.failed}"
        )
        return result

    # ── Local posts ───────────────────────────────────────────────

    def publish_post(
        self,
        business_id: str,
        location_id: str,
        content: str,
        actor_user_id: Optional[str] = None,
        actor_role: Optional[str] = None,
    ) -> PublishOutcome:
        """
        Guard and publish a local post.

        Raises:
            PublicationPreconditionError: empty content or no location.
        """
        text = (content or "").strip()
        if not text:
            raise PublicationPreconditionError("Post content is required")
        if not (location_id or "").strip():
            raise PublicationPreconditionError("location_id is required to publish a post")

        compliance = run_compliance_guard(
            ComplianceTarget.LOCAL_POST,
            text,
            config=self.policy.compliance,
        )
        if compliance.blocked:
            logger.warning("Local post blocked by compliance guardrails")
            return _blocked_outcome(compliance, None, "Post")

        sanitized = compliance.sanitized_text
        self._wait_for_slot()

        try:
            post = self.publisher.publish_post(location_id, sanitized)
        except PublishError as e:
            logger.error(f"Failed to publish local post: {e}")
            return PublishOutcome(status=PublishStatus.FAILED, message=str(e), sanitized_text=sanitized)

        audit_id = self.audit.record_safely(AuditEntry(
            business_id=business_id,
            action=AuditAction.POST_LOCAL_POST,
            target_type=AuditTargetType.POST,
            target_id=post.id or None,
            actor_user_id=actor_user_id,
            actor_role=actor_role,
            original_text=text,
            sanitized_text=sanitized,
            violation_codes=compliance.codes,
            metadata={"location_id": location_id, "state": post.state},
        ))

        return PublishOutcome(
            status=PublishStatus.PUBLISHED,
            message="Post published",
            violation_codes=compliance.codes,
            sanitized_text=sanitized,
            audit_event_id=audit_id,
            post=post,
        )
