"""
Tests for the Google Business Profile review source and publisher with a
mocked requests session.
"""

from datetime import datetime, timezone
from unittest import mock

import pytest
import requests

from replyguard.domain.models import PostedReply
from replyguard.infrastructure.config import GoogleSettings
from replyguard.infrastructure.google import (
    GoogleBusinessClient,
    GoogleBusinessPublisher,
    GoogleReviewSource,
    PublishError,
    ReplyAlreadyExistsError,
    ReviewSourceError,
)


def _settings():
    return GoogleSettings(access_token="token", account_id="accounts/123", location_id="456")


def _response(status=200, body=None):
    response = mock.Mock()
    response.ok = 200 <= status < 300
    response.status_code = status
    response.reason = "Conflict" if status == 409 else "Error"
    response.content = b"{}" if body is not None else b""
    response.json.return_value = body if body is not None else {}
    return response


def _review(review_id, update_time, reply=None):
    payload = {
        "reviewId": review_id,
        "reviewer": {"displayName": "Jane Doe"},
        "starRating": "FIVE",
        "comment": "Great",
        "createTime": "2024-05-01T10:00:00Z",
        "updateTime": update_time,
    }
    if reply:
        payload["reviewReply"] = reply
    return payload


@pytest.fixture
def session():
    return mock.Mock()


@pytest.fixture
def client(session):
    return GoogleBusinessClient(settings=_settings(), session=session)


def test_location_path_strips_prefixes(client):
    assert client.location_path("locations/456") == "accounts/123/locations/456"


def test_fetch_follows_page_tokens(client, session):
    session.request.side_effect = [
        _response(body={"reviews": [_review("a", "2024-06-02T10:00:00Z")], "nextPageToken": "p2"}),
        _response(body={"reviews": [_review("b", "2024-06-01T10:00:00Z", reply={"comment": "Thanks"})]}),
    ]

    records = GoogleReviewSource(client).fetch_reviews("456")

    assert [r.external_review_id for r in records] == ["a", "b"]
    assert isinstance(records[1].reply, PostedReply)
    second_call = session.request.call_args_list[1]
    assert second_call.kwargs["params"]["pageToken"] == "p2"
    assert second_call.kwargs["headers"]["Authorization"] == "Bearer token"
    assert second_call.args[1] == "https://mybusiness.googleapis.com/v4/accounts/123/locations/456/reviews"


def test_fetch_filters_by_since_and_stops_paging(client, session):
    session.request.side_effect = [
        _response(body={
            "reviews": [
                _review("new", "2024-06-03T10:00:00Z"),
                _review("old", "2024-05-20T10:00:00Z"),
            ],
            "nextPageToken": "p2",
        }),
    ]
    since = datetime(2024, 6, 1, tzinfo=timezone.utc)

    records = GoogleReviewSource(client).fetch_reviews("456", since=since)

    assert [r.external_review_id for r in records] == ["new"]
    assert session.request.call_count == 1


def test_fetch_skips_malformed_payloads(client, session):
    session.request.return_value = _response(body={"reviews": [{"comment": "no id"}, _review("a", "2024-06-02T10:00:00Z")]})

    records = GoogleReviewSource(client).fetch_reviews("456")

    assert [r.external_review_id for r in records] == ["a"]


def test_fetch_failure_raises_source_error(client, session):
    session.request.return_value = _response(status=403, body={"error": {"message": "denied"}})

    with pytest.raises(ReviewSourceError) as exc:
        GoogleReviewSource(client).fetch_reviews("456")
    assert "denied" in str(exc.value)


def test_fetch_transport_error_raises_source_error(client, session):
    session.request.side_effect = requests.ConnectionError("offline")

    with pytest.raises(ReviewSourceError):
        GoogleReviewSource(client).fetch_reviews("456")


def test_publish_reply_puts_comment(client, session):
    session.request.return_value = _response(body={"comment": "Thanks"})

    GoogleBusinessPublisher(client).publish_reply("456", "rev-1", "Thanks")

    call = session.request.call_args
    assert call.args[0] == "PUT"
    assert call.args[1].endswith("/accounts/123/locations/456/reviews/rev-1/reply")
    assert call.kwargs["json"] == {"comment": "Thanks"}


def test_publish_reply_conflict_is_already_exists(client, session):
    session.request.return_value = _response(status=409, body={"error": {"message": "exists"}})

    with pytest.raises(ReplyAlreadyExistsError):
        GoogleBusinessPublisher(client).publish_reply("456", "rev-1", "Thanks")


def test_publish_reply_other_errors_are_publish_errors(client, session):
    session.request.return_value = _response(status=500, body={"error": {"message": "backend"}})

    with pytest.raises(PublishError) as exc:
        GoogleBusinessPublisher(client).publish_reply("456", "rev-1", "Thanks")
    assert not isinstance(exc.value, ReplyAlreadyExistsError)


def test_publish_post_returns_post_info(client, session):
    session.request.return_value = _response(body={
        "name": "accounts/123/locations/456/localPosts/789",
        "state": "LIVE",
        "createTime": "2024-06-01T12:00:00Z",
    })

    post = GoogleBusinessPublisher(client).publish_post("456", "Open house Saturday!")

    assert post.id.endswith("/localPosts/789")
    assert post.state == "LIVE"
    assert post.created_at == datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)
    assert session.request.call_args.kwargs["json"]["summary"] == "Open house Saturday!"


def test_missing_token_fails_before_request(session):
    client = GoogleBusinessClient(settings=GoogleSettings(access_token="", account_id="1"), session=session)

    with pytest.raises(ReviewSourceError):
        GoogleReviewSource(client).fetch_reviews("456")
    session.request.assert_not_called()
