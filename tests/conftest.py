"""
Shared fixtures: a temporary SQLite database, a reply policy and in-memory
fakes for the review source, analyzer, publisher and notifier.
"""

from datetime import datetime, timedelta, timezone

import pytest

from replyguard.domain.compliance_guard import ComplianceConfig
from replyguard.domain.models import (
    ExternalReviewRecord,
    NoReply,
    PostedReply,
    Review,
    ReviewAnalysis,
    ReviewStatus,
    Sentiment,
    Urgency,
)
from replyguard.domain.reply_quality import ReplyPolicy
from replyguard.infrastructure.google import PublishedPost, Publisher, ReviewSource
from replyguard.infrastructure.llm import ReviewAnalyzer, ReviewAnalyzerError
from replyguard.infrastructure.notifications import Notifier
from replyguard.infrastructure.persistence import Database

BUSINESS_ID = "biz_1"
LOCATION_ID = "loc_1"
SIGNATURE = "Warm regards,\nMalama Dental Team"
T0 = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


def good_draft(first_name: str = "Jane") -> str:
    return (
        f"Dear {first_name},\n\n"
        "Thank you so much for your wonderful review of Malama Dental. "
        "We are delighted to hear that our team made you feel welcome and comfortable. "
        "Your kind words mean a great deal to everyone here, and we look forward to "
        "seeing you again soon.\n\n"
        f"{SIGNATURE}"
    )


class FakeReviewSource(ReviewSource):
    def __init__(self, records=None):
        self.records = list(records or [])
        self.calls = []

    def fetch_reviews(self, location_id, since=None):
        self.calls.append((location_id, since))
        return list(self.records)


class FakeReviewAnalyzer(ReviewAnalyzer):
    """Positive analysis with a valid draft unless told otherwise."""

    def __init__(self):
        self.calls = []
        self.failing = False
        self.sentiment = Sentiment.POSITIVE
        self.risk_flags = []
        self.draft = None
        self.variants = None

    def analyze(self, author_name, rating, comment, created_at):
        self.calls.append((author_name, rating, comment))
        if self.failing:
            raise ReviewAnalyzerError("model unavailable")
        first_name = (author_name or "Valued Patient").split()[0]
        return ReviewAnalysis(
            sentiment=self.sentiment,
            urgency=Urgency.LOW,
            topics=["staff"],
            suggested_actions=[],
            risk_flags=list(self.risk_flags),
            reply_draft=self.draft or good_draft(first_name),
            reply_language_code="en",
            reply_variants=dict(self.variants) if self.variants else None,
        )


class FakePublisher(Publisher):
    def __init__(self):
        self.replies = []
        self.posts = []
        self.error = None

    def publish_reply(self, location_id, external_review_id, text):
        if self.error is not None:
            raise self.error
        self.replies.append((location_id, external_review_id, text))

    def publish_post(self, location_id, content):
        if self.error is not None:
            raise self.error
        self.posts.append((location_id, content))
        return PublishedPost(id=f"posts/{len(self.posts)}", state="LIVE", created_at=T0)


class FakeNotifier(Notifier):
    def __init__(self):
        self.sent = []
        self.error = None

    def send(self, subject, body):
        if self.error is not None:
            raise self.error
        self.sent.append((subject, body))


def make_record(
    review_id="r1",
    rating="FIVE",
    comment="Lovely staff and a calm office.",
    updated_at=T0,
    reply=None,
    author_name="Jane Doe",
):
    return ExternalReviewRecord(
        external_review_id=review_id,
        author_name=author_name,
        rating=rating,
        comment=comment,
        created_at=T0 - timedelta(days=1),
        updated_at=updated_at,
        reply=reply or NoReply(),
    )


def make_review(**overrides):
    values = dict(
        business_id=BUSINESS_ID,
        location_id=LOCATION_ID,
        external_review_id="r1",
        author_name="Jane Doe",
        rating=5,
        comment="Lovely staff and a calm office.",
        created_at=T0 - timedelta(days=1),
        updated_at=T0,
        sentiment=Sentiment.POSITIVE,
        urgency=Urgency.LOW,
        topics=["staff"],
        suggested_actions=[],
        risk_flags=[],
        reply_draft=good_draft(),
        status=ReviewStatus.AUTO_APPROVED,
        last_analyzed_at=T0,
    )
    values.update(overrides)
    return Review(**values)


@pytest.fixture
def db(tmp_path):
    database = Database(str(tmp_path / "test.db"))
    database.init()
    return database


@pytest.fixture
def policy():
    return ReplyPolicy(
        business_name="Malama Dental",
        signature=SIGNATURE,
        min_words=25,
        max_words=150,
        compliance=ComplianceConfig(
            banned_phrases=("guaranteed results",),
            allowed_business_email="hello@malamadental.com",
            allowed_business_phone="(555) 010-2000",
        ),
    )


@pytest.fixture
def source():
    return FakeReviewSource()


@pytest.fixture
def analyzer():
    return FakeReviewAnalyzer()


@pytest.fixture
def publisher():
    return FakePublisher()


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def posted_reply():
    return PostedReply(comment="Thanks!", updated_at=T0 + timedelta(hours=2))


@pytest.fixture(name="make_record")
def make_record_fixture():
    return make_record


@pytest.fixture(name="make_review")
def make_review_fixture():
    return make_review


@pytest.fixture(name="good_draft")
def good_draft_fixture():
    return good_draft
