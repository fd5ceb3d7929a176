"""In-memory stand-ins for the RPC client and source adapters."""

from __future__ import annotations

import asyncio
from typing import Any, Optional, Sequence

from packages.nestfi.errors import ContractReadError, RpcError
from packages.nestfi.models import PartialMembership, SourceId
from packages.nestfi.normalization import normalize_address
from packages.nestfi.rpc import ALLOWLIST_UPDATED_SIGNATURE, DEPOSIT_SIGNATURE, address_topic, event_topic


class FakeVaultRpc:
    """Answers contract reads from a dict keyed by (contract, field, args)."""

    def __init__(self, block: int = 1_000, max_log_range: Optional[int] = None):
        self.values: dict[tuple, Any] = {}
        self.calls: list[tuple] = []
        self.block = block
        self.logs: list[dict] = []
        self.log_calls: list[tuple[int, int]] = []
        self.max_log_range = max_log_range
        self.log_error: Optional[Exception] = None

    def set(self, contract: str, field_name: str, value: Any, args: Sequence[Any] = ()) -> None:
        self.values[(normalize_address(contract), field_name, tuple(args))] = value

    def set_vault(self, vault: str, user: str, **fields: Any) -> None:
        """Set vault fields by name; ``balanceOf``/``isAllowed`` are keyed by user."""
        for name, value in fields.items():
            args = (user,) if name in ("balanceOf", "isAllowed") else ()
            self.set(vault, name, value, args)

    def read_vault_field(self, contract: str, field_name: str, args: Sequence[Any] = ()) -> Any:
        key = (normalize_address(contract), field_name, tuple(args))
        self.calls.append(key)
        if key not in self.values:
            raise ContractReadError(contract, field_name, "execution reverted")
        value = self.values[key]
        if isinstance(value, Exception):
            raise value
        return value

    async def aread_vault_field(self, contract: str, field_name: str, args: Sequence[Any] = ()) -> Any:
        return self.read_vault_field(contract, field_name, args)

    def block_number(self) -> int:
        return self.block

    def get_logs(self, address, topics, from_block: int, to_block: int) -> list[dict]:
        self.log_calls.append((from_block, to_block))
        if self.log_error is not None:
            raise self.log_error
        if self.max_log_range and to_block - from_block + 1 > self.max_log_range:
            raise RpcError("eth_getLogs error: block range too large", method="eth_getLogs")
        return [
            log
            for log in self.logs
            if from_block <= int(log["blockNumber"], 16) <= to_block and _matches(log, address, topics)
        ]


def _matches(log: dict, address, topics) -> bool:
    """Node-side eth_getLogs filtering: emitter address and positional topics."""
    if address:
        wanted = [address] if isinstance(address, str) else list(address)
        if normalize_address(log.get("address")) not in {normalize_address(a) for a in wanted}:
            return False
    log_topics = [str(t).lower() for t in log.get("topics") or []]
    for position, topic in enumerate(topics or []):
        if topic is None:
            continue
        if position >= len(log_topics) or log_topics[position] != str(topic).lower():
            return False
    return True


def make_allowlist_log(vault: str, user: str, allowed: bool, block: int, index: int = 0) -> dict:
    return {
        "address": vault,
        "topics": [event_topic(ALLOWLIST_UPDATED_SIGNATURE), address_topic(user)],
        "data": "0x" + ("1" if allowed else "0").rjust(64, "0"),
        "blockNumber": hex(block),
        "logIndex": hex(index),
        "removed": False,
    }


def make_deposit_log(vault: str, caller: str, receiver: str, assets: int, block: int, index: int = 0) -> dict:
    return {
        "address": vault,
        "topics": [event_topic(DEPOSIT_SIGNATURE), address_topic(caller), address_topic(receiver)],
        "data": "0x" + hex(assets)[2:].rjust(64, "0") + hex(assets)[2:].rjust(64, "0"),
        "blockNumber": hex(block),
        "logIndex": hex(index),
        "removed": False,
    }


class FakeAdapter:
    """Adapter returning canned records, optionally slow or failing."""

    def __init__(
        self,
        source: SourceId,
        records: Sequence[PartialMembership] = (),
        error: Optional[Exception] = None,
        delay: float = 0.0,
    ):
        self.source = source
        self.records = list(records)
        self.error = error
        self.delay = delay
        self.calls = 0

    async def fetch(self, user_address: str) -> list[PartialMembership]:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return list(self.records)
