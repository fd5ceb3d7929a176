"""One-per-session page-view tracking."""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

import requests

from .http_client import HttpClient
from .membership_api import DEFAULT_API_BASE

if TYPE_CHECKING:
    from .config import Settings

logger = logging.getLogger(__name__)


class PageViewTracker:
    """Posts a single page-view event for the lifetime of the tracker."""

    def __init__(self, client: HttpClient, path: str = "/pageviews", page: str = "landing"):
        self.client = client
        self.path = path
        self.page = page
        self._tracked = False
        self._recorded = False
        self._lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings: "Settings", page: str = "landing") -> "PageViewTracker":
        """Tracker posting to ``settings.pageview_path`` on the indexing API."""
        client = HttpClient(
            base_url=settings.api_base_url or DEFAULT_API_BASE,
            timeout=settings.http_timeout_seconds,
            max_retries=0,
        )
        return cls(client, path=settings.pageview_path, page=page)

    @property
    def tracked(self) -> bool:
        return self._tracked

    def track_once(self) -> bool:
        """Return whether the session's page view was recorded. Only the first call posts."""
        with self._lock:
            if self._tracked:
                return self._recorded
            # Claimed before the request; a failed post is not retried.
            self._tracked = True

        try:
            payload = self.client.post_json(self.path, json_body={"page": self.page})
        except (requests.RequestException, ValueError) as e:
            logger.warning(f"Page view not tracked: {e}")
            return False
        if isinstance(payload, dict) and payload.get("success") is False:
            logger.warning(f"Page view rejected: {payload.get('error')}")
            return False
        self._recorded = True
        return True
