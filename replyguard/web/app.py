"""
FastAPI Web Application - ReplyGuard API
========================================

JSON API for syncing reviews, approving drafts and publishing replies and
local posts.

ERROR MAPPING:
- 400: missing configuration, bad input, wrong workflow state
- 404: unknown review
- 422: blocked by compliance guardrails (body names the violation codes)
- 502: the review platform failed or refused
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, Header, HTTPException
from pydantic import BaseModel

from ..application.approval_reminders import ApprovalReminderJob
from ..application.publication import (
    PublicationPreconditionError,
    PublicationService,
    PublishOutcome,
    PublishStatus,
    ReviewNotFoundError,
)
from ..application.review_reconciler import ReconciliationConfigError, ReviewReconciler
from ..bootstrap import (
    build_publication_service,
    build_reconciler,
    build_reminder_job,
    log_settings_issues,
    open_database,
)
from ..domain.models import AuditEvent, Review, ReviewStatus
from ..infrastructure.config import get_settings
from ..infrastructure.google import ReviewSourceError
from ..infrastructure.persistence import Database

logger = logging.getLogger(__name__)

# ── Globals ────────────────────────────────────────────────────────
db: Optional[Database] = None
reconciler: Optional[ReviewReconciler] = None
publication: Optional[PublicationService] = None
reminders: Optional[ApprovalReminderJob] = None


# ── Lifespan ───────────────────────────────────────────────────────
@asynccontextmanager
async def lifespan(app: FastAPI):
    global db, reconciler, publication, reminders
    settings = get_settings()
    log_settings_issues(settings)
    db = open_database(settings)
    reconciler = build_reconciler(db, settings)
    publication = build_publication_service(db, settings)
    reminders = build_reminder_job(db)
    logger.info("Database ready")
    yield


app = FastAPI(title="ReplyGuard", description="Review reconciliation and compliant replies", lifespan=lifespan)


# ── Dependencies ───────────────────────────────────────────────────

def _require(service: Any, name: str) -> Any:
    if service is None:
        raise HTTPException(status_code=503, detail=f"{name} not initialized")
    return service


def get_db() -> Database:
    return _require(db, "Database")


def get_reconciler() -> ReviewReconciler:
    return _require(reconciler, "Reconciler")


def get_publication_service() -> PublicationService:
    return _require(publication, "Publication service")


def get_reminder_job() -> ApprovalReminderJob:
    return _require(reminders, "Reminder job")


def _business_id(value: Optional[str]) -> str:
    business_id = (value or "").strip() or get_settings().tenant.business_id
    if not business_id:
        raise HTTPException(status_code=400, detail="business_id is required (or set DEFAULT_BUSINESS_ID)")
    return business_id


# ── Request models ─────────────────────────────────────────────────

class SyncRequest(BaseModel):
    business_id: Optional[str] = None
    location_id: Optional[str] = None
    fetch_all: bool = False


class ApproveRequest(BaseModel):
    reply_draft: Optional[str] = None


class SelectVariantRequest(BaseModel):
    selected: str


class PostReplyRequest(BaseModel):
    reply_text: Optional[str] = None


class AutoPostRequest(BaseModel):
    business_id: Optional[str] = None
    limit: Optional[int] = None


class LocalPostRequest(BaseModel):
    content: str
    business_id: Optional[str] = None
    location_id: Optional[str] = None


# ── Serialization ──────────────────────────────────────────────────

def _jsonable(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def review_to_dict(review: Review) -> Dict[str, Any]:
    return {key: _jsonable(value) for key, value in review.__dict__.items()}


def audit_event_to_dict(event: AuditEvent) -> Dict[str, Any]:
    return {key: _jsonable(value) for key, value in event.__dict__.items()}


def _outcome_response(outcome: PublishOutcome) -> Dict[str, Any]:
    if outcome.status == PublishStatus.BLOCKED:
        raise HTTPException(
            status_code=422,
            detail={
                "error": outcome.message,
                "violation_codes": outcome.violation_codes,
                "violations": outcome.violation_messages,
            },
        )
    if outcome.status == PublishStatus.FAILED:
        raise HTTPException(status_code=502, detail=outcome.message)
    return {"success": True, **outcome.to_dict()}


# ── Reviews ────────────────────────────────────────────────────────

@app.get("/api/reviews")
async def api_list_reviews(
    business_id: Optional[str] = None,
    status: Optional[str] = None,
    database: Database = Depends(get_db),
):
    status_filter = None
    if status:
        try:
            status_filter = ReviewStatus(status)
        except ValueError:
            raise HTTPException(status_code=400, detail=f"Unknown status: {status}")

    reviews = database.list_reviews(_business_id(business_id), status=status_filter)
    return {"reviews": [review_to_dict(r) for r in reviews]}


@app.get("/api/stats")
async def api_stats(business_id: Optional[str] = None, database: Database = Depends(get_db)):
    return database.get_review_stats(_business_id(business_id))


@app.post("/api/reviews/sync")
def api_sync_reviews(body: SyncRequest, service: ReviewReconciler = Depends(get_reconciler)):
    tenant = get_settings().tenant
    business_id = (body.business_id or "").strip() or tenant.business_id
    location_id = (body.location_id or "").strip() or tenant.location_id

    try:
        result = service.reconcile(business_id, location_id, fetch_all=body.fetch_all)
    except ReconciliationConfigError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ReviewSourceError as e:
        logger.error(f"Review fetch failed: {e}")
        raise HTTPException(status_code=502, detail=str(e))

    return {"success": True, **result.to_dict()}


@app.patch("/api/reviews/{review_id}/approve")
async def api_approve_review(
    review_id: int,
    body: ApproveRequest,
    service: PublicationService = Depends(get_publication_service),
    x_user_id: Optional[str] = Header(default=None),
    x_user_role: Optional[str] = Header(default=None),
):
    try:
        review = service.approve_reply(
            review_id,
            reply_draft=body.reply_draft,
            actor_user_id=x_user_id,
            actor_role=x_user_role,
        )
    except ReviewNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except PublicationPreconditionError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return {"success": True, "review": review_to_dict(review)}


@app.post("/api/reviews/{review_id}/select-variant")
async def api_select_variant(
    review_id: int,
    body: SelectVariantRequest,
    service: PublicationService = Depends(get_publication_service),
):
    try:
        review = service.select_reply_variant(review_id, body.selected)
    except ReviewNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except PublicationPreconditionError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return {"success": True, "review": review_to_dict(review)}


@app.post("/api/reviews/{review_id}/post")
def api_post_reply(
    review_id: int,
    body: Optional[PostReplyRequest] = None,
    service: PublicationService = Depends(get_publication_service),
    x_user_id: Optional[str] = Header(default=None),
    x_user_role: Optional[str] = Header(default=None),
):
    try:
        outcome = service.publish_reply(
            review_id,
            reply_text=body.reply_text if body else None,
            actor_user_id=x_user_id,
            actor_role=x_user_role,
        )
    except ReviewNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except PublicationPreconditionError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return _outcome_response(outcome)


@app.post("/api/reviews/auto-post")
def api_auto_post(
    body: Optional[AutoPostRequest] = None,
    service: PublicationService = Depends(get_publication_service),
):
    body = body or AutoPostRequest()
    result = service.auto_post_approved(_business_id(body.business_id), limit=body.limit)
    return {"success": True, **result.to_dict()}


@app.post("/api/reviews/reminders")
def api_send_reminders(
    business_id: Optional[str] = None,
    job: ApprovalReminderJob = Depends(get_reminder_job),
):
    reminded = job.run(_business_id(business_id))
    return {"success": True, "reminded": reminded}


# ── Local posts ────────────────────────────────────────────────────

@app.post("/api/posts")
def api_publish_post(
    body: LocalPostRequest,
    service: PublicationService = Depends(get_publication_service),
    x_user_id: Optional[str] = Header(default=None),
    x_user_role: Optional[str] = Header(default=None),
):
    location_id = (body.location_id or "").strip() or get_settings().tenant.location_id
    try:
        outcome = service.publish_post(
            _business_id(body.business_id),
            location_id,
            body.content,
            actor_user_id=x_user_id,
            actor_role=x_user_role,
        )
    except PublicationPreconditionError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return _outcome_response(outcome)


# ── Audit ──────────────────────────────────────────────────────────

@app.get("/api/audit-events")
async def api_audit_events(
    business_id: Optional[str] = None,
    limit: int = 100,
    database: Database = Depends(get_db),
):
    events = database.list_audit_events(_business_id(business_id), limit=max(1, min(limit, 500)))
    return {"events": [audit_event_to_dict(e) for e in events]}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="127.0.0.1", port=8000)
