"""Reconciliation controller: parallel adapters, merge, summary, refresh lifecycle.

Lifecycle per pass: idle -> fetching -> {success, partial, failed} -> idle.
The terminal status lives on the immutable ``MembershipSnapshot`` the pass
produces; the controller itself only tracks idle/fetching.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Iterable, Optional

from .config import Settings
from .errors import AllSourcesUnavailable, MalformedRecord, SourceUnavailable
from .membership_api import MembershipApiClient
from .merger import merge_memberships, merge_vault
from .models import (
    MembershipFact,
    MembershipSnapshot,
    PartialMembership,
    SourceId,
    SourceOutcome,
)
from .normalization import validate_address
from .portfolio import DEFAULT_BASE_UNIT_DIVISOR, summarize_portfolio
from .rpc import VaultRpcClient
from .sources import SourceAdapter, VaultSnapshotReader, build_default_adapters

logger = logging.getLogger(__name__)

DEFAULT_ADAPTER_TIMEOUT = 30.0

SnapshotListener = Callable[[MembershipSnapshot], None]


class ControllerState(str, Enum):
    IDLE = "idle"
    FETCHING = "fetching"


class ReconciliationController:
    """Discovers and reconciles one user's vault memberships.

    Concurrent ``refresh()`` calls while a pass is in flight join that pass
    instead of starting another one.
    """

    def __init__(
        self,
        user_address: str,
        adapters: Iterable[SourceAdapter],
        adapter_timeout: float = DEFAULT_ADAPTER_TIMEOUT,
        divisor: int = DEFAULT_BASE_UNIT_DIVISOR,
        api_client: Optional[MembershipApiClient] = None,
        reader: Optional[VaultSnapshotReader] = None,
    ):
        """
        Args:
            user_address: Wallet to reconcile (validated here, before any I/O)
            adapters: Source adapters run on every pass
            adapter_timeout: Per-adapter bound in seconds; slower adapters count as failed
            divisor: Base-unit divisor for display values in the summary
            api_client: Used by ``check_vault`` for the single-vault endpoint
            reader: Used by ``check_vault`` when the endpoint is unavailable

        Raises:
            InvalidAddressInput: user_address is malformed
        """
        self.user_address = validate_address(user_address, "user address")
        self.adapters = list(adapters)
        self.adapter_timeout = adapter_timeout
        self.divisor = divisor
        self.api_client = api_client
        self.reader = reader

        self.state = ControllerState.IDLE
        self.snapshot: Optional[MembershipSnapshot] = None
        self.pass_count = 0
        self._inflight: Optional[asyncio.Task] = None
        self._poll_task: Optional[asyncio.Task] = None
        self._listeners: list[SnapshotListener] = []

    @classmethod
    def from_settings(
        cls,
        user_address: str,
        settings: Settings,
        include_indexed: bool = True,
        include_event_log: bool = True,
    ) -> "ReconciliationController":
        user = validate_address(user_address, "user address")
        rpc = VaultRpcClient(rpc_url=settings.rpc_url, timeout=settings.rpc_timeout_seconds)
        api_client = None
        if include_indexed and settings.api_base_url:
            api_client = MembershipApiClient(
                base_url=settings.api_base_url,
                timeout=settings.http_timeout_seconds,
                membership_paths=settings.membership_paths,
            )
        adapters, warnings = build_default_adapters(
            settings,
            rpc=rpc,
            api_client=api_client,
            include_indexed=include_indexed,
            include_event_log=include_event_log,
        )
        for warning in warnings:
            logger.warning(warning)
        return cls(
            user,
            adapters,
            adapter_timeout=settings.adapter_timeout_seconds,
            divisor=settings.base_unit_divisor,
            api_client=api_client,
            reader=VaultSnapshotReader(rpc),
        )

    def add_listener(self, listener: SnapshotListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: SnapshotListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    @property
    def is_fetching(self) -> bool:
        return self.state == ControllerState.FETCHING

    async def _run_adapter(self, adapter: SourceAdapter) -> SourceOutcome:
        source = adapter.source
        try:
            records = await asyncio.wait_for(
                adapter.fetch(self.user_address), timeout=self.adapter_timeout
            )
        except asyncio.TimeoutError:
            logger.warning(f"{source.value} timed out after {self.adapter_timeout}s")
            return SourceOutcome(source=source, error=f"timed out after {self.adapter_timeout}s")
        except Exception as e:
            logger.warning(f"{source.value} failed: {e}")
            return SourceOutcome(source=source, error=str(e) or type(e).__name__)
        return SourceOutcome(source=source, records=tuple(records))

    async def _run_pass(self) -> MembershipSnapshot:
        self.state = ControllerState.FETCHING
        try:
            outcomes = await asyncio.gather(*(self._run_adapter(a) for a in self.adapters))
            result = merge_memberships(self.user_address, outcomes)
            snapshot = MembershipSnapshot(
                user_address=self.user_address,
                memberships=result.memberships,
                summary=summarize_portfolio(result.memberships, self.divisor),
                status=result.status,
                succeeded_sources=result.succeeded_sources,
                failed_sources=result.failed_sources,
                error=result.error,
                completed_at=datetime.now(timezone.utc),
            )
        finally:
            self.state = ControllerState.IDLE

        self.pass_count += 1
        self.snapshot = snapshot
        logger.info(
            f"Reconciled {self.user_address[:10]}...: {len(snapshot.memberships)} vaults, "
            f"status={snapshot.status.value}"
            + (f", failed={','.join(s.value for s in snapshot.failed_sources)}" if snapshot.failed_sources else "")
        )
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("Snapshot listener raised")
        return snapshot

    def _clear_inflight(self, task: asyncio.Task) -> None:
        if self._inflight is task:
            self._inflight = None
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Reconciliation pass crashed: {task.exception()}")

    async def refresh(self) -> MembershipSnapshot:
        """Run a pass, or join the one already in flight."""
        if self._inflight is None:
            self._inflight = asyncio.ensure_future(self._run_pass())
            self._inflight.add_done_callback(self._clear_inflight)
        else:
            logger.debug("Refresh coalesced into in-flight pass")
        # A cancelled caller must not cancel the shared pass.
        return await asyncio.shield(self._inflight)

    async def poll(
        self,
        interval: float,
        max_ticks: Optional[int] = None,
    ) -> Optional[MembershipSnapshot]:
        """Refresh every ``interval`` seconds; returns the last snapshot."""
        if interval <= 0:
            raise ValueError("interval must be positive")
        ticks = 0
        snapshot = None
        while True:
            snapshot = await self.refresh()
            ticks += 1
            if max_ticks is not None and ticks >= max_ticks:
                return snapshot
            await asyncio.sleep(interval)

    def start_polling(self, interval: float) -> asyncio.Task:
        if self._poll_task is not None and not self._poll_task.done():
            return self._poll_task
        self._poll_task = asyncio.ensure_future(self.poll(interval))
        return self._poll_task

    async def stop_polling(self) -> None:
        task, self._poll_task = self._poll_task, None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def check_vault(self, vault_address: str) -> Optional[MembershipFact]:
        """
        Membership of the user in one vault, outside the discovery pass.

        Returns None when the user qualifies neither as admin nor as member.

        Raises:
            InvalidAddressInput: vault_address is malformed
            AllSourcesUnavailable: neither the endpoint nor contract reads answered
        """
        vault = validate_address(vault_address, "vault address")
        failures: dict[str, str] = {}
        records: list[PartialMembership] = []

        if self.api_client is not None:
            try:
                payload = await asyncio.wait_for(
                    asyncio.to_thread(self.api_client.check_membership, vault, self.user_address),
                    timeout=self.adapter_timeout,
                )
                records.append(PartialMembership.from_api_response(payload, self.user_address))
            except (SourceUnavailable, MalformedRecord, asyncio.TimeoutError) as e:
                failures[SourceId.INDEXED_API.value] = str(e) or type(e).__name__
                logger.warning(f"check-membership endpoint unavailable, reading contract: {e}")

        if not records and self.reader is not None:
            try:
                records.append(
                    await asyncio.wait_for(
                        self.reader.read(vault, self.user_address, SourceId.CONTRACT_READ),
                        timeout=self.adapter_timeout,
                    )
                )
            except Exception as e:
                failures[SourceId.CONTRACT_READ.value] = str(e) or type(e).__name__
                logger.warning(f"Contract reads for {vault[:10]}... failed: {e}")

        if not records:
            raise AllSourcesUnavailable(failures)
        return merge_vault(records, self.user_address)
