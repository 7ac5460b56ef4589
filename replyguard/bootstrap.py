"""
Service Wiring
==============

Builds the production object graph from Settings. Shared by the web app and
the batch runner so both talk to the same adapters configured the same way.
"""

import logging
from typing import Optional

from .application.approval_reminders import ApprovalReminderJob
from .application.audit_trail import AuditTrail
from .application.publication import PublicationService
from .application.review_reconciler import ReviewReconciler
from .infrastructure.config import Settings, get_settings
from .infrastructure.google import GoogleBusinessClient, GoogleBusinessPublisher, GoogleReviewSource
from .infrastructure.llm import OpenRouterReviewAnalyzer
from .infrastructure.notifications import LoggingNotifier, Notifier
from .infrastructure.persistence import Database, init_database
from .infrastructure.rate_limit import TokenBucket

logger = logging.getLogger(__name__)


def open_database(settings: Optional[Settings] = None) -> Database:
    settings = settings or get_settings()
    return init_database(str(settings.database_file))


def build_reconciler(db: Database, settings: Optional[Settings] = None) -> ReviewReconciler:
    settings = settings or get_settings()
    return ReviewReconciler(
        store=db,
        source=GoogleReviewSource(GoogleBusinessClient(settings.google)),
        analyzer=OpenRouterReviewAnalyzer(settings.llm, settings.reply),
        policy=settings.reply.to_policy(),
    )


def build_publication_service(db: Database, settings: Optional[Settings] = None) -> PublicationService:
    settings = settings or get_settings()
    return PublicationService(
        store=db,
        publisher=GoogleBusinessPublisher(GoogleBusinessClient(settings.google)),
        policy=settings.reply.to_policy(),
        audit=AuditTrail(db),
        rate_limiter=TokenBucket(settings.publish.rate_per_second, settings.publish.burst),
        auto_post_limit=settings.publish.auto_post_limit,
    )


def build_reminder_job(db: Database, notifier: Optional[Notifier] = None) -> ApprovalReminderJob:
    return ApprovalReminderJob(db, notifier or LoggingNotifier())


def log_settings_issues(settings: Optional[Settings] = None) -> None:
    settings = settings or get_settings()
    for issue in settings.validate():
        logger.warning(issue)
