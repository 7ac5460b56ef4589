"""
Audit Trail - Hash-Only Ledger of Approve/Publish Actions
=========================================================

Every approval and every publish attempt that reaches the platform leaves an
audit event. Events carry SHA-256 digests of the original and sanitized text,
never the text itself, so the ledger can prove what was published without
becoming a second copy of it.
"""

import hashlib
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from ..domain.models import AuditAction, AuditEvent, AuditTargetType, utc_now
from ..infrastructure.persistence import Database

logger = logging.getLogger(__name__)


class AuditTrailError(Exception):
    """Base exception for audit trail errors."""
    pass


def sha256_hex(text: str) -> str:
    return hashlib.sha256(str(text or "").encode("utf-8")).hexdigest()


@dataclass
class AuditEntry:
    """What happened, before hashing."""
    business_id: str
    action: AuditAction
    target_type: AuditTargetType
    original_text: str
    sanitized_text: str
    target_id: Optional[Union[str, int]] = None
    actor_user_id: Optional[str] = None
    actor_role: Optional[str] = None
    violation_codes: List[str] = field(default_factory=list)
    metadata: Optional[Dict[str, Any]] = None


class AuditTrail:
    """
    Append-only audit writer.

    USAGE:
        trail = AuditTrail(db)
        trail.record_safely(AuditEntry(
            business_id="biz_1",
            action=AuditAction.POST_REVIEW_REPLY,
            target_type=AuditTargetType.REVIEW,
            target_id=42,
            original_text=draft,
            sanitized_text=sanitized,
        ))
    """

    def __init__(self, store: Database):
        self.store = store

    def record(self, entry: AuditEntry) -> int:
        """
        Hash and persist an audit entry.

        Returns:
            Audit event ID.

        Raises:
            AuditTrailError: business_id is blank.
        """
        business_id = str(entry.business_id or "").strip()
        if not business_id:
            raise AuditTrailError("business_id is required for audit logging")

        event = AuditEvent(
            business_id=business_id,
            action=entry.action,
            target_type=entry.target_type,
            target_id=None if entry.target_id is None else str(entry.target_id),
            actor_user_id=str(entry.actor_user_id) if entry.actor_user_id else None,
            actor_role=str(entry.actor_role) if entry.actor_role else None,
            original_sha256=sha256_hex(entry.original_text),
            sanitized_sha256=sha256_hex(entry.sanitized_text),
            violation_codes=[str(code) for code in entry.violation_codes or []],
            metadata=entry.metadata,
            created_at=utc_now(),
        )

        event_id = self.store.insert_audit_event(event)
        logger.info(
            f"Audit {event.action.value} {event.target_type.value}:{event.target_id} "
            f"sanitized_sha256={event.sanitized_sha256[:12]}"
        )
        return event_id

    def record_safely(self, entry: AuditEntry) -> Optional[int]:
        """Like record(), but a failure is logged and returns None."""
        try:
            return self.record(entry)
        except Exception as e:
            logger.warning(f"Audit log failed for {entry.action.value}: {e}")
            return None
