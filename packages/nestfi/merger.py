"""Merge per-source partial memberships into one de-duplicated view.

Merge order is fixed by ``SOURCE_PRECEDENCE`` rather than arrival order, so
the result is identical for any permutation of the adapter outcomes.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Optional, Sequence

from .errors import AllSourcesUnavailable
from .models import (
    DEFAULT_VAULT_NAME,
    DEFAULT_VAULT_SYMBOL,
    SOURCE_PRECEDENCE,
    MembershipFact,
    PartialMembership,
    ReconciliationStatus,
    Role,
    SourceId,
    SourceOutcome,
    VaultRecord,
)
from .normalization import addresses_equal, is_valid_address, normalize_address

logger = logging.getLogger(__name__)

_RANK = {source: rank for rank, source in enumerate(SOURCE_PRECEDENCE)}

_VAULT_FIELDS = (
    "owner_address",
    "asset_address",
    "name",
    "symbol",
    "total_assets",
    "total_supply",
    "deposit_cap",
    "min_deposit",
    "allowlist_enabled",
    "is_paused",
)


@dataclass(frozen=True)
class MergeResult:
    memberships: tuple[MembershipFact, ...]
    status: ReconciliationStatus
    succeeded_sources: tuple[SourceId, ...] = ()
    failed_sources: tuple[SourceId, ...] = ()
    error: Optional[AllSourcesUnavailable] = None
    record_count: int = 0


def _first_present(records: Sequence[PartialMembership], attr: str):
    for record in records:
        value = getattr(record, attr)
        if value is not None:
            return value
    return None


def classify_role(
    owner_address: Optional[str],
    user_address: str,
    user_balance: int,
    is_on_allowlist: bool,
) -> Role:
    """admin if the user owns the vault, member if funded or allowlisted."""
    if addresses_equal(owner_address, user_address):
        return Role.ADMIN
    if user_balance > 0 or is_on_allowlist:
        return Role.MEMBER
    return Role.NONE


def merge_vault(records: Iterable[PartialMembership], user_address: str) -> Optional[MembershipFact]:
    """Merge every partial record of one vault.

    Returns None when the user qualifies neither as admin nor as member.
    When the merged ``allowlist_enabled`` is definitely False, allowlist
    answers from every source are ignored, so the role does not depend on
    which sources answered. An unknown gate with a definite allowlist grant is reported as enabled.
    """
    ordered = sorted(records, key=lambda r: _RANK.get(r.source, len(_RANK)))
    if not ordered:
        return None

    values = {attr: _first_present(ordered, attr) for attr in _VAULT_FIELDS}
    gate = values["allowlist_enabled"]
    if gate is False:
        # Gate off: allowlist answers from any source are ignored.
        is_on_allowlist = False
    else:
        # OR over definite answers; unknown never votes.
        is_on_allowlist = any(r.is_on_allowlist is True for r in ordered)
        if gate is None and is_on_allowlist:
            gate = True

    vault = VaultRecord(
        address=normalize_address(ordered[0].vault_address),
        owner_address=normalize_address(values["owner_address"]) or None,
        asset_address=normalize_address(values["asset_address"]) or None,
        name=values["name"] or DEFAULT_VAULT_NAME,
        symbol=values["symbol"] or DEFAULT_VAULT_SYMBOL,
        total_assets=values["total_assets"] or 0,
        total_supply=values["total_supply"] or 0,
        deposit_cap=values["deposit_cap"] or 0,
        min_deposit=values["min_deposit"] or 0,
        allowlist_enabled=bool(gate),
        is_paused=bool(values["is_paused"]),
    )

    user_balance = _first_present(ordered, "user_balance") or 0

    role = classify_role(vault.owner_address, user_address, user_balance, is_on_allowlist)
    if role == Role.NONE:
        return None

    return MembershipFact(
        vault=vault,
        role=role,
        user_balance=user_balance,
        is_on_allowlist=is_on_allowlist,
        source_origins=frozenset(r.source for r in ordered),
    )


def merge_records(
    records: Iterable[PartialMembership],
    user_address: str,
) -> tuple[MembershipFact, ...]:
    """Group records by normalized vault address and merge each group."""
    grouped: dict[str, list[PartialMembership]] = {}
    for record in records:
        if not is_valid_address(record.vault_address):
            logger.debug(f"Dropping record without a usable vault address: {record.vault_address!r}")
            continue
        grouped.setdefault(normalize_address(record.vault_address), []).append(record)

    facts = []
    for vault_address in sorted(grouped):
        fact = merge_vault(grouped[vault_address], user_address)
        if fact is not None:
            facts.append(fact)
    return tuple(facts)


def merge_memberships(user_address: str, outcomes: Iterable[SourceOutcome]) -> MergeResult:
    """Merge adapter outcomes and derive the pass status.

    - failed: no adapter answered, or some failed and the rest returned nothing
    - partial: some adapters failed but records were produced
    - success: every adapter answered (an empty result means nothing qualifies)
    """
    outcomes = sorted(outcomes, key=lambda o: _RANK.get(o.source, len(_RANK)))
    succeeded = tuple(o.source for o in outcomes if o.ok)
    failed = tuple(o.source for o in outcomes if not o.ok)
    records = [record for o in outcomes if o.ok for record in o.records]

    if not succeeded or (failed and not records):
        error = AllSourcesUnavailable({o.source.value: o.error or "" for o in outcomes if not o.ok})
        return MergeResult(
            memberships=(),
            status=ReconciliationStatus.FAILED,
            succeeded_sources=succeeded,
            failed_sources=failed,
            error=error,
            record_count=len(records),
        )

    facts = merge_records(records, user_address)
    status = ReconciliationStatus.PARTIAL if failed else ReconciliationStatus.SUCCESS
    return MergeResult(
        memberships=facts,
        status=status,
        succeeded_sources=succeeded,
        failed_sources=failed,
        record_count=len(records),
    )
