"""
Review Reconciler - Merge External Reviews into Local State
============================================================

ARCHITECTURAL DECISION:
- One batch = fetch once, then process every record sequentially in source
  order. The loop never sleeps and never fans out.
- Per-record isolation: an analysis failure or a store failure is logged,
  counted, and the loop moves on.
- A reply visible on the review platform always wins: the record is stored
  as Replied and no new draft is generated for it.
- Re-running a batch over unchanged records writes nothing.

FLOW (per record):
    normalize rating -> load existing -> changed? -> reply evidence
      -> unchanged shortcut | analysis + quality gate -> merge -> upsert
"""

import logging
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Callable, Dict, Optional

from ..domain.models import ExternalReviewRecord, PostedReply, Review, ReviewAnalysis, ReviewStatus, utc_now
from ..domain.reply_quality import ReplyPolicy, build_reply_variants, check_reply_quality, reviewer_first_name
from ..domain.review_merge import (
    is_updated,
    merge_review,
    needs_analysis,
    normalize_rating,
    reply_time,
    requires_approval,
)
from ..infrastructure.google import ReviewSource
from ..infrastructure.llm import ReviewAnalyzer, ReviewAnalyzerError
from ..infrastructure.persistence import Database

logger = logging.getLogger(__name__)

QC_FAILED_FLAG = "QC failed"


class ReconciliationConfigError(Exception):
    """Batch cannot start: tenant or location is not configured."""
    pass


@dataclass
class SyncResult:
    """Counters for one reconciliation batch."""
    fetched: int = 0
    processed: int = 0
    analyzed: int = 0
    errors: int = 0
    new_or_updated_saved: int = 0

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


class ReviewReconciler:
    """
    Reconciles one location's external reviews with the local store.

    USAGE:
        reconciler = ReviewReconciler(db, GoogleReviewSource(), OpenRouterReviewAnalyzer(), policy)
        result = reconciler.reconcile("biz_1", "1234567890")
        print(result.processed, result.errors)
    """

    def __init__(
        self,
        store: Database,
        source: ReviewSource,
        analyzer: ReviewAnalyzer,
        policy: ReplyPolicy,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.source = source
        self.analyzer = analyzer
        self.policy = policy
        self._clock = clock

    def reconcile(self, business_id: str, location_id: str, fetch_all: bool = False) -> SyncResult:
        """
        Run one batch.

        Args:
            business_id: Tenant owning the reviews.
            location_id: Location whose reviews are fetched and stored.
            fetch_all: Ignore the incremental cursor and fetch everything.

        Raises:
            ReconciliationConfigError: business_id or location_id is empty.
            ReviewSourceError: the fetch itself failed.
        """
        if not (business_id or "").strip():
            raise ReconciliationConfigError("business_id is required to sync reviews")
        if not (location_id or "").strip():
            raise ReconciliationConfigError("location_id is required to sync reviews")

        since = None if fetch_all else self.store.latest_update_time(location_id)
        records = self.source.fetch_reviews(location_id, since=since)

        result = SyncResult(fetched=len(records))
        logger.info(
            f"Reconciling {len(records)} review(s) for {business_id}/{location_id}"
            + (f" (since {since.isoformat()})" if since else "")
        )

        for record in records:
            try:
                self._reconcile_record(business_id, location_id, record, result)
            except Exception as e:
                result.errors += 1
                logger.exception(f"Failed to reconcile review {record.external_review_id}: {e}")

        logger.info(
            f"Sync complete: fetched={result.fetched}, processed={result.processed}, "
            f"analyzed={result.analyzed}, errors={result.errors}, "
            f"saved={result.new_or_updated_saved}"
        )
        return result

    def _reconcile_record(
        self,
        business_id: str,
        location_id: str,
        record: ExternalReviewRecord,
        result: SyncResult,
    ) -> None:
        now = self._clock()
        rating = normalize_rating(record.rating)
        existing = self.store.get_review(location_id, record.external_review_id)
        updated = is_updated(existing, record)

        has_reply = isinstance(record.reply, PostedReply)
        replied_at = reply_time(record.reply, now)

        # ── Unchanged record ──
        if existing is not None and not updated:
            if has_reply:
                if existing.replied_at is None or existing.status != ReviewStatus.REPLIED:
                    self.store.update_review_by_key(
                        location_id,
                        record.external_review_id,
                        status=ReviewStatus.REPLIED,
                        replied_at=replied_at,
                    )
                result.processed += 1
                return

            if not needs_analysis(existing, updated=False, has_external_reply=False):
                result.processed += 1
                return

        # ── Analysis ──
        analysis: Optional[ReviewAnalysis] = None
        analysis_status: Optional[ReviewStatus] = None

        if needs_analysis(existing, updated, has_reply):
            try:
                analysis = self.analyzer.analyze(
                    record.author_name, rating, record.comment, record.created_at
                )
            except ReviewAnalyzerError as e:
                result.errors += 1
                logger.warning(f"Analysis failed for review {record.external_review_id}: {e}")
            else:
                analysis_status = self._apply_quality_gate(analysis, record, rating)
                result.analyzed += 1

        if existing is not None and not updated and analysis is None:
            # Re-analysis of an unchanged record failed; keep it exactly as stored
            result.processed += 1
            return

        merged = merge_review(
            business_id=business_id,
            location_id=location_id,
            record=record,
            rating=rating,
            existing=existing,
            analysis=analysis,
            analysis_status=analysis_status,
            replied_at=replied_at,
            now=now,
        )
        self.store.upsert_review(merged)

        if existing is None or updated:
            result.new_or_updated_saved += 1
        result.processed += 1
        self._log_outcome(merged, existing)

    def _apply_quality_gate(
        self,
        analysis: ReviewAnalysis,
        record: ExternalReviewRecord,
        rating: int,
    ) -> ReviewStatus:
        """Sanitize the draft, flag gate failures and pick the approval status."""
        contract = self.policy.contract_for(reviewer_first_name(record.author_name), record.comment)

        if analysis.reply_variants is not None:
            variants = build_reply_variants(
                analysis.reply_variants, contract, record.external_review_id, analysis.reply_language_code
            )
            if variants is not None:
                # The selected variant becomes the draft
                analysis.reply_draft = variants[variants["selected"]]["text"]
            analysis.reply_variants = variants

        quality = check_reply_quality(analysis.reply_draft, contract)

        analysis.reply_draft = quality.sanitized_text
        if not quality.ok or quality.blocked:
            if QC_FAILED_FLAG not in analysis.risk_flags:
                analysis.risk_flags = list(analysis.risk_flags) + [QC_FAILED_FLAG]
            logger.info(
                f"Draft for review {record.external_review_id} failed quality gate: "
                f"{'; '.join(quality.issues) or 'blocked'}"
            )

        if requires_approval(analysis, rating, self.policy.approval_risk_patterns):
            return ReviewStatus.NEEDS_APPROVAL
        return ReviewStatus.AUTO_APPROVED

    @staticmethod
    def _log_outcome(merged: Review, existing: Optional[Review]) -> None:
        if existing is None:
            logger.debug(f"New review {merged.external_review_id} stored as {merged.status.value}")
        elif existing.status != merged.status:
            logger.debug(
                f"Review {merged.external_review_id}: {existing.status.value} -> {merged.status.value}"
            )
