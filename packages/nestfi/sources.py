"""Source adapters answering "which vaults, with what role/balance, for user X?"

Three independent sources:

- ``FactoryAdminAdapter``: vaults the user created, from the factory contract.
- ``EventLogAdapter``: vaults whose allowlist was changed for the user,
  from ``AllowlistUpdated`` logs over a policy-controlled block range.
- ``IndexedApiAdapter``: one batched call to the indexing API.

Adapters raise on failure; isolation and timeouts are the controller's job.
Within an adapter, per-vault metadata reads are isolated from each other.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from typing import TYPE_CHECKING, Any, Optional, Protocol, Sequence

from .errors import ContractReadError, RpcError
from .log_range import (
    DEFAULT_MAX_BLOCKS_PER_QUERY,
    AllowlistEvent,
    BlockRange,
    BoundedRecentWindow,
    CheckpointedIncremental,
    LogRangeStrategy,
    latest_allowlist_state,
    split_range,
)
from .membership_api import MembershipApiClient
from .models import PartialMembership, SourceId
from .normalization import is_valid_address, normalize_address
from .rpc import (
    ALLOWLIST_UPDATED_SIGNATURE,
    VaultRpcClient,
    address_topic,
    event_topic,
    topic_to_address,
)

if TYPE_CHECKING:
    from .config import Settings

logger = logging.getLogger(__name__)

DEFAULT_MAX_CONCURRENCY = 8
MIN_BLOCKS_PER_QUERY = 16

_SNAPSHOT_FIELDS = (
    "owner",
    "asset",
    "name",
    "symbol",
    "totalAssets",
    "totalSupply",
    "depositCap",
    "minDeposit",
    "allowlistEnabled",
    "paused",
)


class SourceAdapter(Protocol):
    """Protocol for membership sources."""

    source: SourceId

    async def fetch(self, user_address: str) -> list[PartialMembership]:
        """Return partial memberships for the user, or raise."""
        ...


def _as_int(value: Any) -> Optional[int]:
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    return None


def _as_bool(value: Any) -> Optional[bool]:
    return value if isinstance(value, bool) else None


def _as_str(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value
    return None


def _unique_addresses(values: Sequence[Any]) -> list[str]:
    seen: dict[str, None] = {}
    for value in values or []:
        if is_valid_address(value):
            seen.setdefault(normalize_address(value), None)
    return list(seen)


class VaultSnapshotReader:
    """Best-effort read of one vault's fields for one user.

    Each field is fetched independently; a failed field is simply absent
    from the resulting partial record.
    """

    def __init__(self, rpc: VaultRpcClient):
        self.rpc = rpc

    async def _read_field(
        self,
        semaphore: asyncio.Semaphore,
        vault_address: str,
        field_name: str,
        args: tuple = (),
    ) -> Any:
        async with semaphore:
            return await self.rpc.aread_vault_field(vault_address, field_name, args)

    async def read(
        self,
        vault_address: str,
        user_address: str,
        source: SourceId,
        semaphore: Optional[asyncio.Semaphore] = None,
        include_allowlist: bool = True,
    ) -> PartialMembership:
        """
        Raises:
            ContractReadError: not a single field could be read
        """
        semaphore = semaphore or asyncio.Semaphore(DEFAULT_MAX_CONCURRENCY)
        reads: dict[str, tuple] = {name: () for name in _SNAPSHOT_FIELDS}
        reads["balanceOf"] = (user_address,)
        if include_allowlist:
            reads["isAllowed"] = (user_address,)

        results = await asyncio.gather(
            *(self._read_field(semaphore, vault_address, name, args) for name, args in reads.items()),
            return_exceptions=True,
        )

        values: dict[str, Any] = {}
        failed: list[str] = []
        for name, result in zip(reads, results):
            if isinstance(result, BaseException):
                failed.append(name)
                continue
            values[name] = result

        if not values:
            raise ContractReadError(vault_address, "snapshot", "no readable fields")
        if failed:
            logger.debug(f"Vault {vault_address[:10]}... unreadable fields: {', '.join(failed)}")

        allowlist_enabled = _as_bool(values.get("allowlistEnabled"))
        is_on_allowlist = None
        if include_allowlist and allowlist_enabled:
            is_on_allowlist = _as_bool(values.get("isAllowed"))

        owner = values.get("owner")
        asset = values.get("asset")
        return PartialMembership(
            vault_address=normalize_address(vault_address),
            source=source,
            owner_address=normalize_address(owner) if is_valid_address(owner) else None,
            asset_address=normalize_address(asset) if is_valid_address(asset) else None,
            name=_as_str(values.get("name")),
            symbol=_as_str(values.get("symbol")),
            total_assets=_as_int(values.get("totalAssets")),
            total_supply=_as_int(values.get("totalSupply")),
            deposit_cap=_as_int(values.get("depositCap")),
            min_deposit=_as_int(values.get("minDeposit")),
            allowlist_enabled=allowlist_enabled,
            is_paused=_as_bool(values.get("paused")),
            user_balance=_as_int(values.get("balanceOf")),
            is_on_allowlist=is_on_allowlist,
        )


class FactoryAdminAdapter:
    """Vaults the user administers, enumerated from the vault factory."""

    source = SourceId.FACTORY_ADMIN

    def __init__(
        self,
        rpc: VaultRpcClient,
        factory_address: str,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
    ):
        self.rpc = rpc
        self.factory_address = normalize_address(factory_address)
        self.reader = VaultSnapshotReader(rpc)
        self.max_concurrency = max_concurrency

    async def fetch(self, user_address: str) -> list[PartialMembership]:
        vaults = await self.rpc.aread_vault_field(
            self.factory_address, "getVaultsByUser", (user_address,)
        )
        vault_addresses = _unique_addresses(vaults)
        logger.debug(f"Factory lists {len(vault_addresses)} vaults for {user_address[:10]}...")

        semaphore = asyncio.Semaphore(self.max_concurrency)
        results = await asyncio.gather(
            *(
                self.reader.read(vault, user_address, self.source, semaphore)
                for vault in vault_addresses
            ),
            return_exceptions=True,
        )

        records: list[PartialMembership] = []
        for vault, result in zip(vault_addresses, results):
            if isinstance(result, BaseException):
                logger.warning(f"Metadata for vault {vault[:10]}... unavailable: {result}")
                record = PartialMembership(vault_address=vault, source=self.source)
            else:
                record = result
            # The factory's creator list is authoritative when the owner read failed.
            if record.owner_address is None:
                record.owner_address = normalize_address(user_address)
            records.append(record)
        return records


def decode_allowlist_log(log: dict, topic0: str) -> Optional[AllowlistEvent]:
    """Decode an AllowlistUpdated log; None for anything unexpected."""
    if not isinstance(log, dict) or log.get("removed"):
        return None
    topics = log.get("topics") or []
    if len(topics) < 2 or str(topics[0]).lower() != topic0:
        return None
    vault = log.get("address")
    if not is_valid_address(vault):
        return None
    try:
        allowed = int(str(log.get("data") or "0x0"), 16) != 0
        block_number = int(str(log.get("blockNumber")), 16)
        log_index = int(str(log.get("logIndex")), 16)
    except (TypeError, ValueError):
        logger.debug(f"Skipping undecodable log: {log}")
        return None
    return AllowlistEvent(
        vault_address=normalize_address(vault),
        user_address=topic_to_address(topics[1]),
        allowed=allowed,
        block_number=block_number,
        log_index=log_index,
    )


async def scan_logs(
    rpc: VaultRpcClient,
    address: Any,
    topics: list,
    block_range: BlockRange,
    max_blocks_per_query: int = DEFAULT_MAX_BLOCKS_PER_QUERY,
    min_blocks_per_query: int = MIN_BLOCKS_PER_QUERY,
) -> list[dict]:
    """eth_getLogs over a range in chunks, halving any chunk the node
    rejects for size until ``min_blocks_per_query``.

    Raises:
        RpcError: any other failure, or a rejected chunk already at the minimum
    """
    pending = deque(split_range(block_range, max_blocks_per_query))
    logs: list[dict] = []
    while pending:
        chunk = pending.popleft()
        try:
            chunk_logs = await asyncio.to_thread(
                rpc.get_logs,
                address,
                topics,
                chunk.from_block,
                chunk.to_block,
            )
        except RpcError as e:
            if not e.is_block_range_error or chunk.size <= min_blocks_per_query:
                raise
            half = chunk.size // 2
            logger.info(
                f"Block range {chunk.from_block}-{chunk.to_block} rejected, "
                f"retrying with {half}-block chunks"
            )
            for sub in reversed(split_range(chunk, half)):
                pending.appendleft(sub)
            continue
        logs.extend(chunk_logs)
    return logs


class EventLogAdapter:
    """Vaults where the user's allowlist flag was ever changed."""

    source = SourceId.EVENT_LOG

    def __init__(
        self,
        rpc: VaultRpcClient,
        range_strategy: Optional[LogRangeStrategy] = None,
        vault_addresses: Optional[Sequence[str]] = None,
        max_blocks_per_query: int = DEFAULT_MAX_BLOCKS_PER_QUERY,
        min_blocks_per_query: int = MIN_BLOCKS_PER_QUERY,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
        enrich_metadata: bool = True,
    ):
        """
        Args:
            range_strategy: Block-range policy (defaults to a bounded recent window)
            vault_addresses: Restrict the scan to these emitters (None scans any contract)
            max_blocks_per_query: Chunk size for eth_getLogs
            min_blocks_per_query: Smallest chunk tried after block-range rejections
            enrich_metadata: Read vault fields for every discovered vault
        """
        self.rpc = rpc
        self.range_strategy = range_strategy or BoundedRecentWindow()
        self.vault_addresses = _unique_addresses(vault_addresses) if vault_addresses else None
        self.max_blocks_per_query = max_blocks_per_query
        self.min_blocks_per_query = max(min_blocks_per_query, 1)
        self.max_concurrency = max_concurrency
        self.enrich_metadata = enrich_metadata
        self.reader = VaultSnapshotReader(rpc)
        self._topic0 = event_topic(ALLOWLIST_UPDATED_SIGNATURE)

    def decode_log(self, log: dict, user_address: str) -> Optional[AllowlistEvent]:
        """Decode an AllowlistUpdated log for this user; None for anything else."""
        event = decode_allowlist_log(log, self._topic0)
        if event is None or event.user_address != normalize_address(user_address):
            return None
        return event

    async def _scan(self, user_address: str, block_range: BlockRange) -> list[dict]:
        return await scan_logs(
            self.rpc,
            self.vault_addresses,
            [self._topic0, address_topic(user_address)],
            block_range,
            self.max_blocks_per_query,
            self.min_blocks_per_query,
        )

    async def fetch(self, user_address: str) -> list[PartialMembership]:
        key = normalize_address(user_address)
        latest_block = await asyncio.to_thread(self.rpc.block_number)
        block_range = self.range_strategy.plan(key, latest_block)

        new_events: list[AllowlistEvent] = []
        if block_range is not None:
            raw_logs = await self._scan(key, block_range)
            for log in raw_logs:
                event = self.decode_log(log, key)
                if event is not None:
                    new_events.append(event)
            logger.debug(
                f"Scanned blocks {block_range.from_block}-{block_range.to_block}: "
                f"{len(new_events)} allowlist events for {key[:10]}..."
            )

        state = latest_allowlist_state(self.range_strategy.record(key, block_range, new_events))
        if not state:
            return []

        vaults = sorted(state)
        if not self.enrich_metadata:
            return [
                PartialMembership(vault_address=v, source=self.source, is_on_allowlist=state[v].allowed)
                for v in vaults
            ]

        semaphore = asyncio.Semaphore(self.max_concurrency)
        results = await asyncio.gather(
            *(
                self.reader.read(v, key, self.source, semaphore, include_allowlist=False)
                for v in vaults
            ),
            return_exceptions=True,
        )
        records: list[PartialMembership] = []
        for vault, result in zip(vaults, results):
            if isinstance(result, BaseException):
                logger.warning(f"Metadata for vault {vault[:10]}... unavailable: {result}")
                record = PartialMembership(vault_address=vault, source=self.source)
            else:
                record = result
            record.is_on_allowlist = state[vault].allowed
            records.append(record)
        return records


class IndexedApiAdapter:
    """Pre-joined memberships from the indexing API in one batched call."""

    source = SourceId.INDEXED_API

    def __init__(self, client: MembershipApiClient):
        self.client = client

    async def fetch(self, user_address: str) -> list[PartialMembership]:
        result = await asyncio.to_thread(self.client.fetch_memberships, user_address)
        return result.records


def build_log_range_strategy(settings: "Settings") -> LogRangeStrategy:
    if settings.log_range_policy == "checkpointed":
        return CheckpointedIncremental(start_block=settings.log_start_block)
    return BoundedRecentWindow(window_blocks=settings.log_window_blocks)


def build_default_adapters(
    settings: "Settings",
    rpc: Optional[VaultRpcClient] = None,
    api_client: Optional[MembershipApiClient] = None,
    include_indexed: bool = True,
    include_factory: bool = True,
    include_event_log: bool = True,
) -> tuple[list[SourceAdapter], list[str]]:
    """Build the configured adapter set (indexed API first)."""
    warnings: list[str] = []
    adapters: list[SourceAdapter] = []
    rpc = rpc or VaultRpcClient(rpc_url=settings.rpc_url, timeout=settings.rpc_timeout_seconds)

    if include_indexed:
        if settings.api_base_url:
            adapters.append(
                IndexedApiAdapter(
                    api_client
                    or MembershipApiClient(
                        base_url=settings.api_base_url,
                        timeout=settings.http_timeout_seconds,
                        membership_paths=settings.membership_paths,
                    )
                )
            )
        else:
            warnings.append("NESTFI_API_BASE is not set; skipping IndexedApiAdapter.")

    if include_factory:
        if settings.factory_address:
            adapters.append(FactoryAdminAdapter(rpc, settings.factory_address))
        else:
            warnings.append("NESTFI_FACTORY_ADDRESS is not set; skipping FactoryAdminAdapter.")

    if include_event_log:
        adapters.append(
            EventLogAdapter(
                rpc,
                range_strategy=build_log_range_strategy(settings),
                max_blocks_per_query=settings.log_max_blocks_per_query,
            )
        )

    return adapters, warnings
