"""
Tests for the pure merge rules used by the reconciler.
"""

from datetime import datetime, timedelta, timezone

import pytest

from replyguard.domain.models import (
    NoReply,
    PostedReply,
    ReviewAnalysis,
    ReviewStatus,
    Sentiment,
    Urgency,
)
from replyguard.domain.review_merge import (
    extract_reply_evidence,
    is_updated,
    merge_field,
    merge_review,
    needs_analysis,
    normalize_rating,
    parse_external_review,
    parse_timestamp,
    reply_time,
    requires_approval,
)

NOW = datetime(2024, 6, 2, 9, 0, tzinfo=timezone.utc)


@pytest.mark.parametrize("value,expected", [
    ("FIVE", 5), ("two", 2), (4, 4), ("3", 3), (4.0, 4),
    (None, 0), ("STAR_RATING_UNSPECIFIED", 0), (7, 0), (True, 0),
])
def test_normalize_rating(value, expected):
    assert normalize_rating(value) == expected


def test_parse_timestamp_handles_z_and_nanoseconds():
    parsed = parse_timestamp("2024-06-01T12:00:00.123456789Z")
    assert parsed == datetime(2024, 6, 1, 12, 0, 0, 123456, tzinfo=timezone.utc)
    assert parse_timestamp("") is None


def test_reply_evidence_variants():
    assert isinstance(extract_reply_evidence({}), NoReply)
    assert isinstance(extract_reply_evidence({"reviewReply": {}}), NoReply)

    evidence = extract_reply_evidence({"reviewReply": {"comment": "Thanks", "updateTime": "2024-06-01T13:00:00Z"}})
    assert isinstance(evidence, PostedReply)
    assert evidence.updated_at == datetime(2024, 6, 1, 13, 0, tzinfo=timezone.utc)

    # A reply object with no comment still counts
    assert isinstance(extract_reply_evidence({"reply": {"createTime": "2024-06-01T13:00:00Z"}}), PostedReply)


def test_reply_time_prefers_update_then_create_then_now():
    updated = datetime(2024, 6, 1, 13, tzinfo=timezone.utc)
    created = datetime(2024, 6, 1, 12, tzinfo=timezone.utc)

    assert reply_time(PostedReply(updated_at=updated, created_at=created), NOW) == updated
    assert reply_time(PostedReply(created_at=created), NOW) == created
    assert reply_time(PostedReply(), NOW) == NOW
    assert reply_time(NoReply(), NOW) is None


def test_parse_external_review():
    record = parse_external_review({
        "reviewId": "abc",
        "reviewer": {"displayName": "Jane Doe"},
        "starRating": "FOUR",
        "comment": "Nice",
        "createTime": "2024-06-01T10:00:00Z",
    })

    assert record.external_review_id == "abc"
    assert record.author_name == "Jane Doe"
    assert record.updated_at == record.created_at
    assert isinstance(record.reply, NoReply)


def test_parse_external_review_requires_id():
    with pytest.raises(ValueError):
        parse_external_review({"createTime": "2024-06-01T10:00:00Z"})


def test_parse_external_review_defaults_author_to_guest():
    record = parse_external_review({"reviewId": "x", "createTime": "2024-06-01T10:00:00Z"})
    assert record.author_name == "Guest"


def test_is_updated_requires_strictly_newer_time(make_record, make_review):
    existing = make_review()
    assert is_updated(None, make_record()) is True
    assert is_updated(existing, make_record(updated_at=existing.updated_at)) is False
    assert is_updated(existing, make_record(updated_at=existing.updated_at + timedelta(seconds=1))) is True


def test_needs_analysis(make_review):
    analyzed = make_review()
    assert needs_analysis(None, updated=True, has_external_reply=False) is True
    assert needs_analysis(None, updated=True, has_external_reply=True) is False
    assert needs_analysis(analyzed, updated=False, has_external_reply=False) is False
    assert needs_analysis(analyzed, updated=True, has_external_reply=False) is True
    assert needs_analysis(make_review(status=ReviewStatus.PENDING_ANALYSIS), False, False) is True
    assert needs_analysis(make_review(reply_draft=None), False, False) is True


def _analysis(sentiment=Sentiment.POSITIVE, risk_flags=None):
    return ReviewAnalysis(
        sentiment=sentiment,
        urgency=Urgency.LOW,
        risk_flags=risk_flags or [],
        reply_draft="Dear Jane, thanks.",
    )


def test_requires_approval():
    patterns = ("hipaa", "qc failed")
    assert requires_approval(_analysis(), 5, patterns) is False
    assert requires_approval(_analysis(), 3, patterns) is True
    assert requires_approval(_analysis(Sentiment.NEGATIVE), 5, patterns) is True
    assert requires_approval(_analysis(risk_flags=["HIPAA risk"]), 5, patterns) is True
    assert requires_approval(_analysis(risk_flags=["QC failed"]), 5, patterns) is True
    assert requires_approval(_analysis(risk_flags=["angry language"]), 5, patterns) is False


def test_merge_field_precedence():
    assert merge_field("new", "old") == "new"
    assert merge_field(None, "old") == "old"
    assert merge_field("", "old") == "old"
    assert merge_field(None, "") is None
    assert merge_field([], ["old"]) == []


def test_merge_keeps_existing_analysis_when_none_is_new(make_record, make_review):
    existing = make_review(id=7, status=ReviewStatus.NEEDS_APPROVAL, needs_approval_since=NOW - timedelta(days=2))
    merged = merge_review(
        business_id="biz_1",
        location_id="loc_1",
        record=make_record(updated_at=existing.updated_at + timedelta(hours=1)),
        rating=5,
        existing=existing,
        analysis=None,
        analysis_status=None,
        replied_at=None,
        now=NOW,
    )

    assert merged.id == 7
    assert merged.sentiment == existing.sentiment
    assert merged.reply_draft == existing.reply_draft
    assert merged.status == ReviewStatus.NEEDS_APPROVAL
    assert merged.needs_approval_since == existing.needs_approval_since
    assert merged.last_analyzed_at == existing.last_analyzed_at


def test_merge_forces_replied_when_platform_shows_reply(make_record, make_review):
    replied_at = NOW - timedelta(hours=1)
    merged = merge_review(
        business_id="biz_1",
        location_id="loc_1",
        record=make_record(),
        rating=5,
        existing=make_review(status=ReviewStatus.NEEDS_APPROVAL),
        analysis=_analysis(),
        analysis_status=ReviewStatus.AUTO_APPROVED,
        replied_at=replied_at,
        now=NOW,
    )

    assert merged.status == ReviewStatus.REPLIED
    assert merged.replied_at == replied_at
    assert merged.needs_approval_since is None


def test_merge_new_record_without_analysis_is_pending(make_record):
    merged = merge_review(
        business_id="biz_1",
        location_id="loc_1",
        record=make_record(),
        rating=5,
        existing=None,
        analysis=None,
        analysis_status=None,
        replied_at=None,
        now=NOW,
    )

    assert merged.status == ReviewStatus.PENDING_ANALYSIS
    assert merged.sentiment is None
    assert merged.last_analyzed_at is None


def test_merge_starts_approval_clock(make_record):
    merged = merge_review(
        business_id="biz_1",
        location_id="loc_1",
        record=make_record(),
        rating=2,
        existing=None,
        analysis=_analysis(),
        analysis_status=ReviewStatus.NEEDS_APPROVAL,
        replied_at=None,
        now=NOW,
    )

    assert merged.needs_approval_since == NOW
    assert merged.last_analyzed_at == NOW
    assert merged.rating == 2
