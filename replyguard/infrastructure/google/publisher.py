"""
Publisher - Abstraction Layer for Publishing to the Business Profile
=====================================================================

Posts review replies and local (marketing) posts. Callers must hand in text
that already passed the compliance guard; the publisher does not inspect it.

USAGE:
    publisher = GoogleBusinessPublisher()
    publisher.publish_reply("1234567890", "AbFvOq...", sanitized_text)
    post = publisher.publish_post("1234567890", sanitized_post)
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from ...domain.review_merge import parse_timestamp
from .client import GoogleApiError, GoogleBusinessClient

logger = logging.getLogger(__name__)


class PublishError(Exception):
    """Base exception for publishing errors."""
    pass


class ReplyAlreadyExistsError(PublishError):
    """The platform already holds a reply for this review."""
    pass


@dataclass(frozen=True)
class PublishedPost:
    id: str
    state: Optional[str] = None
    created_at: Optional[datetime] = None


class Publisher(ABC):
    """
    Abstract base class for publishing backends.
    Implement this interface to add new platforms.
    """

    @abstractmethod
    def publish_reply(self, location_id: str, external_review_id: str, text: str) -> None:
        """Publish a reply to a review."""
        ...

    @abstractmethod
    def publish_post(self, location_id: str, content: str) -> PublishedPost:
        """Publish a standard local post."""
        ...


class GoogleBusinessPublisher(Publisher):
    """Google Business Profile v4 publisher."""

    def __init__(self, client: Optional[GoogleBusinessClient] = None):
        self._client = client or GoogleBusinessClient()

    def publish_reply(self, location_id: str, external_review_id: str, text: str) -> None:
        path = f"{self._client.location_path(location_id)}/reviews/{external_review_id}/reply"
        logger.info(f"Posting reply to review: {external_review_id}")

        try:
            self._client.request("PUT", path, json={"comment": text})
        except GoogleApiError as e:
            if e.status_code == 409:
                raise ReplyAlreadyExistsError(
                    f"Reply already exists for this review. Review ID: {external_review_id}"
                ) from e
            raise PublishError(f"Failed to post reply: {e}") from e

    def publish_post(self, location_id: str, content: str) -> PublishedPost:
        path = f"{self._client.location_path(location_id)}/localPosts"
        payload = {
            "languageCode": "en",
            "summary": content,
            "topicType": "STANDARD",
        }

        try:
            data = self._client.request("POST", path, json=payload)
        except GoogleApiError as e:
            raise PublishError(f"Failed to create local post: {e}") from e

        post = PublishedPost(
            id=str(data.get("name") or ""),
            state=data.get("state"),
            created_at=parse_timestamp(data.get("createTime")),
        )
        logger.info(f"Local post created: {post.id or '(no id)'}")
        return post
