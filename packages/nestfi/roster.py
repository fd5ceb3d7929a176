"""Member roster of one vault, for the admin view.

Combines three readings:

- the vault owner, always listed and active;
- the latest ``AllowlistUpdated`` state per user, revoked users included
  as inactive;
- ``Deposit`` receivers whose live ``balanceOf`` is above zero.

Logs are scanned over a bounded recent window with the same chunking and
block-range fallback as ``EventLogAdapter``. Each reading fails on its own;
the roster is partial when some failed and unavailable when all did.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Optional

from .errors import AllSourcesUnavailable, RpcError
from .log_range import (
    DEFAULT_MAX_BLOCKS_PER_QUERY,
    AllowlistEvent,
    BlockRange,
    BoundedRecentWindow,
    latest_allowlist_state,
)
from .normalization import is_valid_address, normalize_address, validate_address
from .rpc import ALLOWLIST_UPDATED_SIGNATURE, DEPOSIT_SIGNATURE, VaultRpcClient, event_topic, topic_to_address
from .sources import DEFAULT_MAX_CONCURRENCY, MIN_BLOCKS_PER_QUERY, decode_allowlist_log, scan_logs

if TYPE_CHECKING:
    from .config import Settings

logger = logging.getLogger(__name__)

OWNER = "owner"
ALLOWLIST = "allowlist"
DEPOSITOR = "depositor"


@dataclass(frozen=True)
class VaultMember:
    address: str
    is_active: bool
    source: str
    balance: Optional[int] = None


@dataclass(frozen=True)
class VaultRoster:
    vault_address: str
    members: tuple[VaultMember, ...]
    scan_range: Optional[BlockRange] = None
    failed_parts: tuple[str, ...] = ()

    @property
    def partial(self) -> bool:
        return bool(self.failed_parts)

    @property
    def active_members(self) -> tuple[VaultMember, ...]:
        return tuple(m for m in self.members if m.is_active)


def decode_deposit_receiver(log: dict, topic0: str) -> Optional[str]:
    """Share receiver (the indexed ``owner``) of a Deposit log, or None."""
    if not isinstance(log, dict) or log.get("removed"):
        return None
    topics = log.get("topics") or []
    if len(topics) < 3 or str(topics[0]).lower() != topic0:
        return None
    receiver = topic_to_address(topics[2])
    return receiver if is_valid_address(receiver) else None


class VaultMemberRoster:
    """Lists who belongs to a vault, rather than which vaults a user is in."""

    def __init__(
        self,
        rpc: VaultRpcClient,
        window: Optional[BoundedRecentWindow] = None,
        max_blocks_per_query: int = DEFAULT_MAX_BLOCKS_PER_QUERY,
        min_blocks_per_query: int = MIN_BLOCKS_PER_QUERY,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
    ):
        self.rpc = rpc
        self.window = window or BoundedRecentWindow()
        self.max_blocks_per_query = max_blocks_per_query
        self.min_blocks_per_query = max(min_blocks_per_query, 1)
        self.max_concurrency = max_concurrency
        self._allowlist_topic = event_topic(ALLOWLIST_UPDATED_SIGNATURE)
        self._deposit_topic = event_topic(DEPOSIT_SIGNATURE)

    @classmethod
    def from_settings(cls, settings: "Settings", rpc: Optional[VaultRpcClient] = None) -> "VaultMemberRoster":
        rpc = rpc or VaultRpcClient(rpc_url=settings.rpc_url, timeout=settings.rpc_timeout_seconds)
        return cls(
            rpc,
            window=BoundedRecentWindow(settings.log_window_blocks),
            max_blocks_per_query=settings.log_max_blocks_per_query,
        )

    async def _scan(self, vault: str, topic0: str, block_range: BlockRange) -> list[dict]:
        return await scan_logs(
            self.rpc,
            vault,
            [topic0],
            block_range,
            self.max_blocks_per_query,
            self.min_blocks_per_query,
        )

    async def _owner(self, vault: str) -> Optional[str]:
        owner = await self.rpc.aread_vault_field(vault, "owner")
        return normalize_address(owner) if is_valid_address(owner) else None

    async def _allowlist(self, vault: str, block_range: BlockRange) -> dict[str, AllowlistEvent]:
        events = []
        for log in await self._scan(vault, self._allowlist_topic, block_range):
            event = decode_allowlist_log(log, self._allowlist_topic)
            if event is not None and event.vault_address == vault:
                events.append(event)
        return latest_allowlist_state(events, by="user_address")

    async def _depositors(self, vault: str, block_range: BlockRange) -> dict[str, int]:
        """Funded depositors and their live share balance."""
        receivers: dict[str, None] = {}
        for log in await self._scan(vault, self._deposit_topic, block_range):
            receiver = decode_deposit_receiver(log, self._deposit_topic)
            if receiver:
                receivers.setdefault(receiver, None)

        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def balance(receiver: str) -> int:
            async with semaphore:
                return await self.rpc.aread_vault_field(vault, "balanceOf", (receiver,))

        results = await asyncio.gather(*(balance(r) for r in receivers), return_exceptions=True)
        funded: dict[str, int] = {}
        for receiver, result in zip(receivers, results):
            if isinstance(result, RpcError):
                logger.debug(f"balanceOf {receiver[:10]}... on {vault[:10]}... unavailable: {result}")
                continue
            if isinstance(result, BaseException):
                raise result
            if isinstance(result, int) and result > 0:
                funded[receiver] = result
        return funded

    async def members(self, vault_address: str) -> VaultRoster:
        """
        Raises:
            InvalidAddressInput: vault_address is malformed
            RpcError: the latest block could not be read
            AllSourcesUnavailable: owner, allowlist and deposit readings all failed
        """
        vault = validate_address(vault_address, "vault address")
        latest_block = await asyncio.to_thread(self.rpc.block_number)
        block_range = self.window.plan(vault, latest_block)

        owner, allowlist, depositors = await asyncio.gather(
            self._owner(vault),
            self._allowlist(vault, block_range),
            self._depositors(vault, block_range),
            return_exceptions=True,
        )

        failures: dict[str, str] = {}
        for part, result in ((OWNER, owner), (ALLOWLIST, allowlist), (DEPOSITOR, depositors)):
            if isinstance(result, RpcError):
                logger.warning(f"Roster {part} reading for {vault[:10]}... failed: {result}")
                failures[part] = str(result)
            elif isinstance(result, BaseException):
                raise result
        if len(failures) == 3:
            raise AllSourcesUnavailable(failures)

        members: dict[str, VaultMember] = {}
        if OWNER not in failures and owner:
            members[owner] = VaultMember(owner, True, OWNER)
        if ALLOWLIST not in failures:
            for user, event in allowlist.items():
                if user not in members:
                    members[user] = VaultMember(user, event.allowed, ALLOWLIST)
        if DEPOSITOR not in failures:
            for user, shares in depositors.items():
                if user in members and members[user].source == OWNER:
                    members[user] = replace(members[user], balance=shares)
                else:
                    members[user] = VaultMember(user, True, DEPOSITOR, shares)

        ordered = sorted(
            members.values(),
            key=lambda m: (m.source != OWNER, not m.is_active, m.address),
        )
        logger.debug(
            f"Roster for {vault[:10]}...: {len(ordered)} members over blocks "
            f"{block_range.from_block}-{block_range.to_block}"
        )
        return VaultRoster(
            vault_address=vault,
            members=tuple(ordered),
            scan_range=block_range,
            failed_parts=tuple(p for p in (OWNER, ALLOWLIST, DEPOSITOR) if p in failures),
        )
