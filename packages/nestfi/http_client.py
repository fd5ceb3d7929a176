"""HTTP client for the indexing API and page-view endpoint.

Transient failures (429, 5xx, timeouts, refused connections) are retried
with exponential backoff plus jitter; a 429 honors ``Retry-After``. No single
sleep exceeds the client timeout.
JSON-RPC traffic goes through ``VaultRpcClient`` instead.
"""

import math
import time
import random
import logging
from dataclasses import dataclass
from typing import Any, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

logger = logging.getLogger(__name__)

DEFAULT_RETRY_AFTER = 5.0
_TRANSIENT_ERRORS = (requests.exceptions.Timeout, requests.exceptions.ConnectionError)


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 3
    backoff_factor: float = 0.5
    retry_statuses: tuple = (429, 500, 502, 503, 504)
    # Upper bound on any single sleep; None leaves delays uncapped.
    max_delay: Optional[float] = None

    @property
    def attempts(self) -> int:
        return self.max_retries + 1

    def backoff(self, attempt: int) -> float:
        return self._capped(_with_jitter(self.backoff_factor * (2**attempt)))

    def retry_after(self, response: requests.Response) -> float:
        """Seconds to wait after a 429; unparseable headers use the default."""
        try:
            seconds = float(response.headers.get("Retry-After", DEFAULT_RETRY_AFTER))
        except (TypeError, ValueError):
            seconds = DEFAULT_RETRY_AFTER
        if not math.isfinite(seconds):
            seconds = DEFAULT_RETRY_AFTER
        if self.max_delay is not None and seconds > self.max_delay:
            logger.warning(f"Retry-After of {seconds:.0f}s exceeds the {self.max_delay:.2f}s cap")
            seconds = self.max_delay
        return self._capped(_with_jitter(max(seconds, 0.0)))

    def _capped(self, delay: float) -> float:
        if self.max_delay is None:
            return delay
        return min(delay, self.max_delay)


def _with_jitter(delay: float) -> float:
    # Up to 50% extra.
    return delay + random.uniform(0, delay * 0.5)


class HttpClient:
    """requests.Session bound to one base URL, with retrying verbs."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 20.0,
        max_retries: int = 3,
        backoff_factor: float = 0.5,
        retry_statuses: tuple = (429, 500, 502, 503, 504),
    ):
        """
        Args:
            base_url: Prefix for every request path
            timeout: Per-attempt timeout in seconds
            max_retries: Retries after the first attempt
            backoff_factor: Base delay, doubled on each retry
            retry_statuses: HTTP statuses treated as transient
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.policy = RetryPolicy(
            max_retries=max_retries,
            backoff_factor=backoff_factor,
            retry_statuses=tuple(retry_statuses),
            max_delay=timeout,
        )
        self.session = self._create_session()

    def _create_session(self) -> requests.Session:
        session = requests.Session()
        # Connect-level retries only; status retries happen in _request.
        adapter = HTTPAdapter(max_retries=Retry(connect=self.policy.max_retries, read=0, status=0))
        session.mount("http://", adapter)
        session.mount("https://", adapter)
        session.headers.update({"Accept": "application/json"})
        return session

    def _url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    def _request(
        self,
        method: str,
        path: str,
        params: Optional[dict] = None,
        json_body: Any = None,
        headers: Optional[dict] = None,
    ) -> requests.Response:
        url = self._url(path)
        attempts = self.policy.attempts

        for attempt in range(attempts):
            last_try = attempt == attempts - 1
            try:
                response = self.session.request(
                    method,
                    url,
                    params=params,
                    json=json_body,
                    headers=headers,
                    timeout=self.timeout,
                )
            except _TRANSIENT_ERRORS as e:
                reason, delay = type(e).__name__, self.policy.backoff(attempt)
            else:
                if response.status_code not in self.policy.retry_statuses:
                    return response
                reason = f"HTTP {response.status_code}"
                if response.status_code == 429:
                    delay = self.policy.retry_after(response)
                else:
                    delay = self.policy.backoff(attempt)

            if last_try:
                logger.warning(f"{method} {url} failed ({reason}) on final attempt {attempts}/{attempts}")
                break
            logger.warning(
                f"{method} {url} failed ({reason}); retrying in {delay:.2f}s "
                f"[{attempt + 1}/{attempts}]"
            )
            time.sleep(delay)

        raise requests.exceptions.RetryError(
            f"{method} {url} still failing after {attempts} attempts"
        )

    def get(
        self,
        path: str,
        params: Optional[dict] = None,
        headers: Optional[dict] = None,
    ) -> requests.Response:
        """
        Raises:
            requests.RequestException: non-transient error, or retries exhausted
        """
        return self._request("GET", path, params=params, headers=headers)

    def post(
        self,
        path: str,
        json_body: Any = None,
        headers: Optional[dict] = None,
    ) -> requests.Response:
        return self._request("POST", path, json_body=json_body, headers=headers)

    def get_json(
        self,
        path: str,
        params: Optional[dict] = None,
        headers: Optional[dict] = None,
    ) -> Any:
        """
        Raises:
            requests.RequestException: request failed or returned 4xx/5xx
            ValueError: body is not JSON
        """
        response = self.get(path, params=params, headers=headers)
        response.raise_for_status()
        return response.json()

    def post_json(
        self,
        path: str,
        json_body: Any = None,
        headers: Optional[dict] = None,
    ) -> Any:
        response = self.post(path, json_body=json_body, headers=headers)
        response.raise_for_status()
        return response.json()
