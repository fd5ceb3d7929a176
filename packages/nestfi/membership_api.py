"""Client for the batched membership indexing API."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Optional, Sequence

import requests

from .errors import MalformedRecord, SourceUnavailable
from .http_client import HttpClient
from .models import PartialMembership, SourceId

logger = logging.getLogger(__name__)

DEFAULT_API_BASE = "http://localhost:8000"
DEFAULT_MEMBERSHIP_PATHS = ("/memberships", "/simple-memberships")


@dataclass
class MembershipsFetchResult:
    """Parsed response of one memberships call."""

    user_address: str
    records: list[PartialMembership] = field(default_factory=list)
    summary: dict[str, Any] = field(default_factory=dict)
    endpoint: str = ""
    dropped_records: int = 0


class MembershipApiClient:
    """Client for ``GET /memberships`` and ``GET /check-membership``."""

    def __init__(
        self,
        base_url: str = DEFAULT_API_BASE,
        timeout: float = 20.0,
        membership_paths: Sequence[str] = DEFAULT_MEMBERSHIP_PATHS,
        http_client: Optional[HttpClient] = None,
    ):
        """
        Args:
            base_url: Indexing API base URL
            timeout: Request timeout in seconds
            membership_paths: Endpoint chain, tried in order until one answers
        """
        self.client = http_client or HttpClient(base_url=base_url, timeout=timeout, max_retries=1)
        self.membership_paths = tuple(membership_paths)

    @staticmethod
    def parse_memberships(payload: Any, user_address: str) -> tuple[list[PartialMembership], int]:
        """Parse a memberships payload, dropping malformed entries."""
        if not isinstance(payload, dict):
            raise ValueError(f"memberships payload is not an object: {type(payload).__name__}")
        if payload.get("error"):
            raise ValueError(f"memberships payload reports error: {payload['error']}")
        entries = payload.get("memberships")
        if entries is None:
            entries = []
        if not isinstance(entries, list):
            raise ValueError("memberships field is not a list")

        records: list[PartialMembership] = []
        dropped = 0
        for entry in entries:
            try:
                records.append(PartialMembership.from_api_response(entry, user_address))
            except MalformedRecord as e:
                dropped += 1
                logger.debug(f"Dropping malformed membership entry: {e}")
        return records, dropped

    def fetch_memberships(self, user_address: str) -> MembershipsFetchResult:
        """
        Fetch memberships for a user, walking the endpoint chain.

        Raises:
            SourceUnavailable: every endpoint in the chain failed
        """
        failures: list[str] = []
        for path in self.membership_paths:
            try:
                payload = self.client.get_json(path, params={"user": user_address})
                records, dropped = self.parse_memberships(payload, user_address)
            except (requests.RequestException, ValueError) as e:
                failures.append(f"{path}: {e}")
                logger.warning(f"Membership endpoint {path} failed, trying next: {e}")
                continue

            summary = payload.get("summary") if isinstance(payload.get("summary"), dict) else {}
            logger.debug(
                f"{path} returned {len(records)} memberships for {user_address[:10]}... "
                f"(dropped {dropped})"
            )
            return MembershipsFetchResult(
                user_address=user_address,
                records=records,
                summary=summary,
                endpoint=path,
                dropped_records=dropped,
            )

        raise SourceUnavailable(SourceId.INDEXED_API.value, "; ".join(failures) or "no endpoints configured")

    def check_membership(self, vault_address: str, user_address: str) -> dict[str, Any]:
        """
        Ad hoc membership lookup for one vault.

        Raises:
            SourceUnavailable: the endpoint failed or answered with an error
        """
        try:
            payload = self.client.get_json(
                "/check-membership",
                params={"vaultAddress": vault_address, "userAddress": user_address},
            )
        except (requests.RequestException, ValueError) as e:
            raise SourceUnavailable(SourceId.INDEXED_API.value, f"/check-membership: {e}") from e
        if not isinstance(payload, dict) or payload.get("error"):
            detail = payload.get("error") if isinstance(payload, dict) else "non-object payload"
            raise SourceUnavailable(SourceId.INDEXED_API.value, f"/check-membership: {detail}")
        payload.setdefault("vaultAddress", vault_address)
        return payload
