"""
Sync Runner - Review Reconciliation Batch
==========================================

Fetches reviews for the configured location, analyzes new or changed ones
and stores the result. Optionally auto-posts approved replies and sends
approval reminders afterwards.

USAGE:
    python run_sync.py
    python run_sync.py --fetch-all --auto-post --reminders
    python run_sync.py --business-id biz_1 --location-id 1234567890
"""

import argparse
import logging
import sys

from replyguard.application.review_reconciler import ReconciliationConfigError
from replyguard.bootstrap import (
    build_publication_service,
    build_reconciler,
    build_reminder_job,
    log_settings_issues,
    open_database,
)
from replyguard.infrastructure.config import get_settings
from replyguard.infrastructure.google import ReviewSourceError

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Reconcile reviews with the review platform.")
    parser.add_argument("--business-id", help="Tenant ID (default: DEFAULT_BUSINESS_ID)")
    parser.add_argument("--location-id", help="Location ID (default: DEFAULT_LOCATION_ID)")
    parser.add_argument("--fetch-all", action="store_true", help="Ignore the incremental cursor")
    parser.add_argument("--auto-post", action="store_true", help="Publish AutoApproved replies after syncing")
    parser.add_argument("--reminders", action="store_true", help="Send approval reminders after syncing")
    return parser.parse_args(argv)


def run_sync(argv=None) -> int:
    """Run one batch. Returns the process exit code."""
    args = parse_args(argv)

    print("\n" + "=" * 60)
    print("   ReplyGuard - Review Sync")
    print("=" * 60 + "\n")

    settings = get_settings()
    log_settings_issues(settings)

    business_id = args.business_id or settings.tenant.business_id
    location_id = args.location_id or settings.tenant.location_id

    db = open_database(settings)
    reconciler = build_reconciler(db, settings)

    try:
        result = reconciler.reconcile(business_id, location_id, fetch_all=args.fetch_all)
    except ReconciliationConfigError as e:
        print(f"   Configuration error: {e}")
        return 2
    except ReviewSourceError as e:
        logger.error(f"Review fetch failed: {e}")
        return 1

    print(f"   Fetched: {result.fetched} | Processed: {result.processed} | Analyzed: {result.analyzed}")
    print(f"   Saved (new/updated): {result.new_or_updated_saved} | Errors: {result.errors}")

    if args.auto_post:
        posted = build_publication_service(db, settings).auto_post_approved(business_id)
        print(
            f"   Auto-post: posted {posted.posted} | skipped {posted.skipped} | "
            f"blocked {posted.blocked} | failed {posted.failed}"
        )

    if args.reminders:
        reminded = build_reminder_job(db).run(business_id)
        print(f"   Reminders: {reminded} review(s)")

    stats = db.get_review_stats(business_id)
    print("\n" + "=" * 60)
    print("Sync Complete!")
    print(
        f"   Total: {stats['total']} | Needs approval: {stats['NeedsApproval']} | "
        f"Auto-approved: {stats['AutoApproved']} | Replied: {stats['Replied']}"
    )
    print("=" * 60 + "\n")
    return 0


if __name__ == "__main__":
    sys.exit(run_sync())
