"""
Approval Reminders - Nudges for Drafts Stuck in NeedsApproval
=============================================================

Run periodically (hourly is fine). A review waiting at least a day gets at
most one reminder per day; older ones escalate:

    age >= 24h  -> level 0  "[Reminder]"
    age >= 72h  -> level 1
    age >= 7d   -> level 2  "[ESCALATION]"

All due reviews go out as one digest. Reminder state is written only after
the notifier accepted the digest.
"""

import logging
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Tuple

from ..domain.models import Review, ReviewStatus, utc_now
from ..domain.reply_quality import count_words
from ..infrastructure.notifications import Notifier
from ..infrastructure.persistence import Database

logger = logging.getLogger(__name__)

REMINDER_AGE = timedelta(hours=24)
REMINDER_INTERVAL = timedelta(hours=24)
LEVEL_1_AGE = timedelta(hours=72)
LEVEL_2_AGE = timedelta(days=7)
MAX_LISTED = 25


def waiting_since(review: Review) -> Optional[datetime]:
    return review.needs_approval_since or review.last_analyzed_at or review.created_at


def escalation_level(age: timedelta) -> int:
    if age >= LEVEL_2_AGE:
        return 2
    if age >= LEVEL_1_AGE:
        return 1
    return 0


class ApprovalReminderJob:
    """
    USAGE:
        job = ApprovalReminderJob(db, LoggingNotifier())
        sent = job.run("biz_1")
    """

    def __init__(self, store: Database, notifier: Notifier, clock: Callable[[], datetime] = utc_now):
        self.store = store
        self.notifier = notifier
        self._clock = clock

    def due_reviews(self, business_id: str, now: datetime) -> List[Tuple[Review, timedelta, int]]:
        """(review, age, escalation level) for every review owed a reminder."""
        due = []
        for review in self.store.list_reviews(business_id, status=ReviewStatus.NEEDS_APPROVAL):
            if review.replied_at is not None:
                continue
            since = waiting_since(review)
            if since is None:
                continue
            age = now - since
            if age < REMINDER_AGE:
                continue
            if review.last_reminder_at and now - review.last_reminder_at < REMINDER_INTERVAL:
                continue
            due.append((review, age, escalation_level(age)))
        return due

    def run(self, business_id: str, now: Optional[datetime] = None) -> int:
        """
        Send one digest for all due reviews.

        Returns:
            Number of reviews reminded (0 when nothing was due or the
            notifier failed).
        """
        now = now or self._clock()
        due = self.due_reviews(business_id, now)
        if not due:
            logger.debug(f"No approval reminders due for {business_id}")
            return 0

        subject, body = self._build_digest(due)
        try:
            self.notifier.send(subject, body)
        except Exception as e:
            logger.error(f"Approval reminder delivery failed for {business_id}: {e}")
            return 0

        for review, _, level in due:
            self.store.update_review(review.id, last_reminder_at=now, escalation_level=level)

        logger.info(f"Sent approval reminder for {len(due)} review(s) of {business_id}")
        return len(due)

    @staticmethod
    def _build_digest(due: List[Tuple[Review, timedelta, int]]) -> Tuple[str, str]:
        shown = due[:MAX_LISTED]
        severity = max(level for _, _, level in shown)
        prefix = "[ESCALATION]" if severity >= 2 else "[Reminder]"
        subject = f"{prefix} Review approvals needed: {len(due)}"

        lines = [
            "You have review reply drafts waiting for approval.",
            "",
            f"Reviews ({len(due)}{f', showing first {MAX_LISTED}' if len(due) > MAX_LISTED else ''}):",
            "-" * 60,
        ]
        for review, age, _ in shown:
            hours = int(age.total_seconds() // 3600)
            flags = f" | Flags: {', '.join(review.risk_flags)}" if review.risk_flags else ""
            lines.append(f"- #{review.id} {review.author_name} | {review.rating} stars | Age: {hours}h{flags}")
            if review.comment:
                lines.append(f"  Comment: {review.comment[:240]}")
            if review.reply_draft:
                lines.append(f"  Draft: {count_words(review.reply_draft)} words")
            lines.append("")

        if len(due) > MAX_LISTED:
            lines.append("(More pending reviews exist. Open the dashboard for the full list.)")

        return subject, "\n".join(lines).rstrip() + "\n"
