"""Block-range policies for event-log scans.

A full-history scan from the earliest block does not scale on large
chains, so the scanned range is a pluggable policy:

- ``BoundedRecentWindow`` scans only the most recent N blocks each pass.
  Grants older than the window are invisible to the event-log source; the
  factory and indexed sources are expected to cover them.
- ``CheckpointedIncremental`` scans from a start block once, then only the
  blocks added since the previous successful scan, keeping the latest
  allowlist event per vault between passes.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Optional, Protocol

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_BLOCKS = 50_000
DEFAULT_MAX_BLOCKS_PER_QUERY = 10_000


@dataclass(frozen=True)
class BlockRange:
    from_block: int
    to_block: int

    @property
    def size(self) -> int:
        return self.to_block - self.from_block + 1


@dataclass(frozen=True)
class AllowlistEvent:
    """Decoded AllowlistUpdated log."""

    vault_address: str
    user_address: str
    allowed: bool
    block_number: int
    log_index: int

    @property
    def order_key(self) -> tuple[int, int]:
        return (self.block_number, self.log_index)


class LogRangeStrategy(Protocol):
    """Decides which blocks an event-log pass scans."""

    def plan(self, key: str, latest_block: int) -> Optional[BlockRange]:
        """Return the range to scan, or None when there is nothing new."""
        ...

    def record(
        self,
        key: str,
        block_range: Optional[BlockRange],
        events: Iterable[AllowlistEvent],
    ) -> list[AllowlistEvent]:
        """Commit a successful scan; return every event to resolve state from."""
        ...


def latest_allowlist_state(
    events: Iterable[AllowlistEvent],
    by: str = "vault_address",
) -> dict[str, AllowlistEvent]:
    """Latest event per vault (or per ``by`` attribute); last event wins by
    (block number, log index)."""
    latest: dict[str, AllowlistEvent] = {}
    for event in sorted(events, key=lambda e: e.order_key):
        latest[getattr(event, by)] = event
    return latest


def split_range(block_range: BlockRange, max_blocks: int) -> list[BlockRange]:
    """Split a range into consecutive chunks of at most max_blocks."""
    if max_blocks <= 0:
        raise ValueError("max_blocks must be positive")
    chunks: list[BlockRange] = []
    start = block_range.from_block
    while start <= block_range.to_block:
        end = min(start + max_blocks - 1, block_range.to_block)
        chunks.append(BlockRange(start, end))
        start = end + 1
    return chunks


class BoundedRecentWindow:
    """Stateless policy: scan the last ``window_blocks`` blocks every pass."""

    def __init__(self, window_blocks: int = DEFAULT_WINDOW_BLOCKS):
        if window_blocks <= 0:
            raise ValueError("window_blocks must be positive")
        self.window_blocks = window_blocks

    def plan(self, key: str, latest_block: int) -> Optional[BlockRange]:
        from_block = max(latest_block - self.window_blocks + 1, 0)
        return BlockRange(from_block, latest_block)

    def record(
        self,
        key: str,
        block_range: Optional[BlockRange],
        events: Iterable[AllowlistEvent],
    ) -> list[AllowlistEvent]:
        return list(events)


class CheckpointedIncremental:
    """Scan from ``start_block`` once, then only new blocks.

    State is keyed (normally by user address) and lives as long as the
    strategy instance.
    """

    def __init__(self, start_block: int = 0):
        self.start_block = max(start_block, 0)
        self._checkpoints: dict[str, int] = {}
        self._latest: dict[str, dict[str, AllowlistEvent]] = {}

    def checkpoint(self, key: str) -> Optional[int]:
        return self._checkpoints.get(key)

    def plan(self, key: str, latest_block: int) -> Optional[BlockRange]:
        last = self._checkpoints.get(key)
        from_block = self.start_block if last is None else last + 1
        if from_block > latest_block:
            return None
        return BlockRange(from_block, latest_block)

    def record(
        self,
        key: str,
        block_range: Optional[BlockRange],
        events: Iterable[AllowlistEvent],
    ) -> list[AllowlistEvent]:
        known = dict(self._latest.get(key, {}))
        merged = latest_allowlist_state(list(known.values()) + list(events))
        self._latest[key] = merged
        if block_range is not None:
            self._checkpoints[key] = block_range.to_block
            logger.debug(f"Checkpoint for {key[:10]}... advanced to block {block_range.to_block}")
        return list(merged.values())

    def reset(self, key: Optional[str] = None) -> None:
        if key is None:
            self._checkpoints.clear()
            self._latest.clear()
            return
        self._checkpoints.pop(key, None)
        self._latest.pop(key, None)
