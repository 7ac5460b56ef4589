"""
Review Source - Abstraction Layer for Fetching External Reviews
================================================================

Provides a unified interface for reading reviews from a review platform.
Currently supports the Google Business Profile v4 API.

USAGE:
    source = GoogleReviewSource()
    records = source.fetch_reviews("1234567890", since=last_sync)
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional

from ...domain.models import ExternalReviewRecord
from ...domain.review_merge import parse_external_review
from .client import GoogleApiError, GoogleBusinessClient

logger = logging.getLogger(__name__)


class ReviewSourceError(Exception):
    """Base exception for review source errors."""
    pass


class ReviewSource(ABC):
    """
    Abstract base class for review platforms.
    Implement this interface to add new review sources.
    """

    @abstractmethod
    def fetch_reviews(self, location_id: str, since: Optional[datetime] = None) -> List[ExternalReviewRecord]:
        """
        Fetch reviews for a location, optionally only those updated at or
        after `since`. Raises ReviewSourceError when the fetch fails.
        """
        ...


class GoogleReviewSource(ReviewSource):
    """
    Google Business Profile review source.

    Pages through `reviews` ordered by update time, newest first. The v4 API
    has no server-side update-time filter, so `since` is applied here and
    paging stops once a page reaches records older than `since`.
    """

    def __init__(self, client: Optional[GoogleBusinessClient] = None):
        self._client = client or GoogleBusinessClient()

    def fetch_reviews(self, location_id: str, since: Optional[datetime] = None) -> List[ExternalReviewRecord]:
        path = f"{self._client.location_path(location_id)}/reviews"
        records: List[ExternalReviewRecord] = []
        page_token: Optional[str] = None
        pages = 0

        while True:
            params = {"pageSize": self._client.settings.page_size, "orderBy": "updateTime desc"}
            if page_token:
                params["pageToken"] = page_token

            try:
                data = self._client.request("GET", path, params=params)
            except GoogleApiError as e:
                raise ReviewSourceError(f"Failed to fetch reviews for {location_id}: {e}") from e

            pages += 1
            reached_older = False

            for payload in data.get("reviews") or []:
                try:
                    record = parse_external_review(payload)
                except ValueError as e:
                    logger.warning(f"Skipping malformed review payload: {e}")
                    continue

                if since is not None and record.updated_at < since:
                    reached_older = True
                    continue
                records.append(record)

            page_token = data.get("nextPageToken")
            if not page_token or reached_older:
                break

        logger.info(f"Fetched {len(records)} review(s) for {location_id} in {pages} page(s)")
        return records
