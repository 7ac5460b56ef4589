"""
Tests for the JSON API with services wired to a temporary database and
in-memory fakes through FastAPI dependency overrides.
"""

from unittest import mock

import pytest
from fastapi.testclient import TestClient

from replyguard.application.audit_trail import AuditTrail
from replyguard.application.publication import PublicationService
from replyguard.application.review_reconciler import ReconciliationConfigError, ReviewReconciler, SyncResult
from replyguard.domain.models import ReviewStatus
from replyguard.infrastructure.google import PublishError, ReviewSourceError
from replyguard.web import app as web_app


@pytest.fixture
def service(db, publisher, policy):
    return PublicationService(db, publisher, policy, AuditTrail(db))


@pytest.fixture
def reconciler():
    return mock.Mock(spec=ReviewReconciler)


@pytest.fixture
def reminder_job():
    job = mock.Mock()
    job.run.return_value = 2
    return job


@pytest.fixture
def client(db, service, reconciler, reminder_job):
    overrides = web_app.app.dependency_overrides
    overrides[web_app.get_db] = lambda: db
    overrides[web_app.get_publication_service] = lambda: service
    overrides[web_app.get_reconciler] = lambda: reconciler
    overrides[web_app.get_reminder_job] = lambda: reminder_job
    yield TestClient(web_app.app)
    overrides.clear()


def test_list_reviews_filters_by_status(client, db, make_review):
    db.upsert_review(make_review(external_review_id="a"))
    db.upsert_review(make_review(external_review_id="b", status=ReviewStatus.NEEDS_APPROVAL))

    response = client.get("/api/reviews", params={"business_id": "biz_1", "status": "NeedsApproval"})

    assert response.status_code == 200
    reviews = response.json()["reviews"]
    assert [r["external_review_id"] for r in reviews] == ["b"]
    assert reviews[0]["status"] == "NeedsApproval"


def test_list_reviews_rejects_unknown_status(client):
    response = client.get("/api/reviews", params={"business_id": "biz_1", "status": "Done"})
    assert response.status_code == 400


def test_stats(client, db, make_review):
    db.upsert_review(make_review())

    response = client.get("/api/stats", params={"business_id": "biz_1"})

    assert response.json()["AutoApproved"] == 1
    assert response.json()["total"] == 1


def test_sync_returns_counts(client, reconciler):
    reconciler.reconcile.return_value = SyncResult(fetched=3, processed=3, analyzed=2, errors=0, new_or_updated_saved=2)

    response = client.post("/api/reviews/sync", json={"business_id": "biz_1", "location_id": "loc_1"})

    assert response.status_code == 200
    assert response.json()["success"] is True
    assert response.json()["analyzed"] == 2
    reconciler.reconcile.assert_called_once_with("biz_1", "loc_1", fetch_all=False)


def test_sync_configuration_error_is_400(client, reconciler):
    reconciler.reconcile.side_effect = ReconciliationConfigError("location_id is required")

    response = client.post("/api/reviews/sync", json={"business_id": "biz_1", "location_id": "loc_1"})

    assert response.status_code == 400


def test_sync_source_failure_is_502(client, reconciler):
    reconciler.reconcile.side_effect = ReviewSourceError("Google down")

    response = client.post("/api/reviews/sync", json={"business_id": "biz_1", "location_id": "loc_1"})

    assert response.status_code == 502


def test_approve_review(client, db, make_review):
    review_id = db.upsert_review(make_review(status=ReviewStatus.NEEDS_APPROVAL))

    response = client.patch(
        f"/api/reviews/{review_id}/approve",
        json={},
        headers={"X-User-Id": "u_1", "X-User-Role": "OWNER"},
    )

    assert response.status_code == 200
    assert response.json()["review"]["status"] == "AutoApproved"
    assert response.json()["review"]["approved_by"] == "u_1"


def test_approve_wrong_state_is_400(client, db, make_review):
    review_id = db.upsert_review(make_review(status=ReviewStatus.REPLIED))

    response = client.patch(f"/api/reviews/{review_id}/approve", json={})

    assert response.status_code == 400


def test_approve_unknown_review_is_404(client):
    response = client.patch("/api/reviews/999/approve", json={})
    assert response.status_code == 404


def test_post_reply_publishes_and_audits(client, db, publisher, make_review):
    review_id = db.upsert_review(make_review())

    response = client.post(f"/api/reviews/{review_id}/post", json={}, headers={"X-User-Id": "u_1"})

    assert response.status_code == 200
    assert response.json()["status"] == "published"
    assert len(publisher.replies) == 1

    events = client.get("/api/audit-events", params={"business_id": "biz_1"}).json()["events"]
    assert events[0]["action"] == "POST_REVIEW_REPLY"
    assert events[0]["actor_user_id"] == "u_1"
    assert "original_text" not in events[0]


def test_blocked_reply_is_422_with_codes(client, db, publisher, make_review, good_draft):
    review_id = db.upsert_review(make_review())
    text = good_draft().replace("seeing you again soon.", "seeing you again soon. We have your DOB on file.")

    response = client.post(f"/api/reviews/{review_id}/post", json={"reply_text": text})

    assert response.status_code == 422
    detail = response.json()["detail"]
    assert detail["violation_codes"] == ["HighConfidencePHI"]
    assert detail["violations"] == ["Mentions DOB/date of birth."]
    assert publisher.replies == []


def test_platform_failure_is_502(client, db, publisher, make_review):
    review_id = db.upsert_review(make_review())
    publisher.error = PublishError("backend error")

    response = client.post(f"/api/reviews/{review_id}/post")

    assert response.status_code == 502


def test_post_unknown_review_is_404(client):
    response = client.post("/api/reviews/999/post")
    assert response.status_code == 404


def test_auto_post(client, db, publisher, make_review):
    db.upsert_review(make_review(external_review_id="a"))
    db.upsert_review(make_review(external_review_id="b"))

    response = client.post("/api/reviews/auto-post", json={"business_id": "biz_1"})

    assert response.json() == {"success": True, "posted": 2, "skipped": 0, "blocked": 0, "failed": 0}
    assert len(publisher.replies) == 2


def test_reminders(client, reminder_job):
    response = client.post("/api/reviews/reminders", params={"business_id": "biz_1"})

    assert response.json() == {"success": True, "reminded": 2}
    reminder_job.run.assert_called_once_with("biz_1")


def test_publish_local_post(client, publisher):
    response = client.post(
        "/api/posts",
        json={"business_id": "biz_1", "location_id": "loc_1", "content": "Open house this Saturday!"},
    )

    assert response.status_code == 200
    assert response.json()["post"]["id"] == "posts/1"
    assert publisher.posts == [("loc_1", "Open house this Saturday!")]


def test_empty_local_post_is_400(client):
    response = client.post("/api/posts", json={"business_id": "biz_1", "location_id": "loc_1", "content": "  "})
    assert response.status_code == 400


def test_select_variant(client, db, make_review):
    variants = {
        "A": {"text": "Reply A", "qc": {"ok": True}},
        "B": {"text": "Reply B", "qc": {"ok": True}},
        "selected": "A",
        "language_code": "en",
    }
    review_id = db.upsert_review(make_review(status=ReviewStatus.NEEDS_APPROVAL, reply_variants=variants))

    response = client.post(f"/api/reviews/{review_id}/select-variant", json={"selected": "B"})

    assert response.status_code == 200
    assert response.json()["review"]["reply_draft"] == "Reply B"


def test_select_variant_without_variants_is_400(client, db, make_review):
    review_id = db.upsert_review(make_review())

    response = client.post(f"/api/reviews/{review_id}/select-variant", json={"selected": "A"})

    assert response.status_code == 400


def test_select_variant_unknown_review_is_404(client):
    response = client.post("/api/reviews/999/select-variant", json={"selected": "A"})
    assert response.status_code == 404
