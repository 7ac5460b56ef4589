"""
Google Business Profile HTTP Client
===================================

Thin wrapper around `requests.Session` shared by the review source and the
publisher: bearer auth, account/location path building, timeouts and error
translation.
"""

import logging
from typing import Any, Dict, Optional

import requests

from ..config import GoogleSettings, get_settings

logger = logging.getLogger(__name__)


class GoogleApiError(Exception):
    """Base exception for Google Business Profile API errors."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class GoogleBusinessClient:
    """
    Authenticated client for the Business Profile v4 API.

    USAGE:
        client = GoogleBusinessClient()
        data = client.request("GET", client.location_path("123") + "/reviews")
    """

    def __init__(self, settings: Optional[GoogleSettings] = None, session: Optional[requests.Session] = None):
        self._settings = settings or get_settings().google
        self._session = session or requests.Session()

        if not self._settings.access_token:
            logger.warning("No GOOGLE_ACCESS_TOKEN set. Google API calls will fail.")

    @property
    def settings(self) -> GoogleSettings:
        return self._settings

    def location_path(self, location_id: str) -> str:
        """accounts/{account}/locations/{location}, tolerating prefixed IDs."""
        account = self._settings.account_id.replace("accounts/", "", 1)
        location = location_id.split("/")[-1]
        return f"accounts/{account}/locations/{location}"

    def request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Send a request and return the decoded JSON body.

        Raises:
            GoogleApiError: on transport errors and non-2xx answers.
        """
        if not self._settings.access_token:
            raise GoogleApiError("GOOGLE_ACCESS_TOKEN is not configured")

        url = f"{self._settings.api_base_url}/{path}"
        headers = {
            "Authorization": f"Bearer {self._settings.access_token}",
            "Content-Type": "application/json",
        }

        try:
            response = self._session.request(
                method,
                url,
                headers=headers,
                params=params,
                json=json,
                timeout=self._settings.timeout_seconds,
            )
        except requests.Timeout as e:
            raise GoogleApiError(f"Google API timeout: {method} {path}") from e
        except requests.RequestException as e:
            raise GoogleApiError(f"Google API error: {e}") from e

        if not response.ok:
            raise GoogleApiError(
                f"Google API {method} {path} failed: {response.status_code} - {self._error_message(response)}",
                status_code=response.status_code,
            )

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise GoogleApiError(f"Google API returned a non-JSON body for {path}") from e

    @staticmethod
    def _error_message(response: requests.Response) -> str:
        try:
            return response.json().get("error", {}).get("message") or response.reason
        except (ValueError, AttributeError):
            return response.reason or "unknown error"
