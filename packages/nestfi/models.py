"""Data model for vault membership snapshots.

Every entity is an ephemeral, address-keyed snapshot rebuilt on each
reconciliation pass. Merged entities are frozen; partial per-source records
are plain dataclasses with optional fields.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from .errors import MalformedRecord
from .normalization import (
    normalize_address,
    is_valid_address,
    parse_base_units,
    parse_optional_bool,
)

DEFAULT_VAULT_NAME = "Unknown Vault"
DEFAULT_VAULT_SYMBOL = "UNK"


class SourceId(str, Enum):
    """Identifiers of the membership sources."""
    INDEXED_API = "indexed_api"
    FACTORY_ADMIN = "factory_admin"
    EVENT_LOG = "event_log"
    CONTRACT_READ = "contract_read"


# Highest precedence first.
SOURCE_PRECEDENCE: tuple[SourceId, ...] = (
    SourceId.INDEXED_API,
    SourceId.FACTORY_ADMIN,
    SourceId.EVENT_LOG,
    SourceId.CONTRACT_READ,
)


class Role(str, Enum):
    ADMIN = "admin"
    MEMBER = "member"
    NONE = "none"


class ReconciliationStatus(str, Enum):
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"


@dataclass
class PartialMembership:
    """One source's view of a (vault, user) pair.

    Any field left as None means the source did not report it. For
    ``is_on_allowlist`` None is the "unknown" state of the tri-state flag.
    """

    vault_address: str
    source: SourceId
    owner_address: Optional[str] = None
    asset_address: Optional[str] = None
    name: Optional[str] = None
    symbol: Optional[str] = None
    total_assets: Optional[int] = None
    total_supply: Optional[int] = None
    deposit_cap: Optional[int] = None
    min_deposit: Optional[int] = None
    allowlist_enabled: Optional[bool] = None
    is_paused: Optional[bool] = None
    user_balance: Optional[int] = None
    is_on_allowlist: Optional[bool] = None

    @classmethod
    def from_api_response(cls, data: dict, user_address: str) -> "PartialMembership":
        """Build a partial record from an indexed-API membership entry.

        The wire shape carries ``role`` but no owner address; an entry with
        role ``admin`` (or ``isOwner``) asserts the user owns the vault.

        Raises:
            MalformedRecord: the entry has no usable vault address
        """
        if not isinstance(data, dict):
            raise MalformedRecord(f"membership entry is not an object: {type(data).__name__}")
        raw_vault = data.get("vaultAddress") or data.get("vault_address") or data.get("address")
        if not is_valid_address(raw_vault):
            raise MalformedRecord(f"membership entry has no valid vault address: {raw_vault!r}")

        owner = data.get("ownerAddress") or data.get("owner_address") or data.get("owner")
        role = str(data.get("role") or "").strip().lower()
        is_owner = parse_optional_bool(data.get("isOwner"))
        if not owner and (role == Role.ADMIN.value or is_owner):
            owner = user_address

        allowlist_enabled = parse_optional_bool(
            data.get("allowlistEnabled", data.get("allowlist_enabled"))
        )
        is_on_allowlist = parse_optional_bool(data.get("isOnAllowlist", data.get("is_on_allowlist")))
        # An allowlist flag is meaningless while the gate is off.
        if allowlist_enabled is False:
            is_on_allowlist = None

        return cls(
            vault_address=normalize_address(raw_vault),
            source=SourceId.INDEXED_API,
            owner_address=normalize_address(owner) or None,
            asset_address=normalize_address(data.get("assetAddress") or data.get("asset")) or None,
            name=data.get("vaultName") or data.get("name") or None,
            symbol=data.get("vaultSymbol") or data.get("symbol") or None,
            total_assets=parse_base_units(data.get("totalAssets", data.get("total_assets"))),
            total_supply=parse_base_units(data.get("totalSupply", data.get("total_supply"))),
            deposit_cap=parse_base_units(data.get("depositCap")),
            min_deposit=parse_base_units(data.get("minDeposit")),
            allowlist_enabled=allowlist_enabled,
            is_paused=parse_optional_bool(data.get("isPaused", data.get("is_paused"))),
            user_balance=parse_base_units(data.get("userBalance", data.get("user_balance"))),
            is_on_allowlist=is_on_allowlist,
        )


@dataclass(frozen=True)
class VaultRecord:
    """Merged vault-level facts."""

    address: str
    owner_address: Optional[str] = None
    asset_address: Optional[str] = None
    name: str = DEFAULT_VAULT_NAME
    symbol: str = DEFAULT_VAULT_SYMBOL
    total_assets: int = 0
    total_supply: int = 0
    deposit_cap: int = 0
    min_deposit: int = 0
    allowlist_enabled: bool = False
    is_paused: bool = False


@dataclass(frozen=True)
class MembershipFact:
    """Merged membership of the user in one vault."""

    vault: VaultRecord
    role: Role
    user_balance: int
    is_on_allowlist: bool
    source_origins: frozenset = field(default_factory=frozenset)

    @property
    def vault_address(self) -> str:
        return self.vault.address

    def to_dict(self) -> dict[str, Any]:
        """Indexed-API wire shape (balances as base-unit integer strings)."""
        return {
            "vaultAddress": self.vault.address,
            "vaultName": self.vault.name,
            "vaultSymbol": self.vault.symbol,
            "role": self.role.value,
            "userBalance": str(self.user_balance),
            "totalAssets": str(self.vault.total_assets),
            "totalSupply": str(self.vault.total_supply),
            "isPaused": self.vault.is_paused,
            "allowlistEnabled": self.vault.allowlist_enabled,
            "isOnAllowlist": self.is_on_allowlist,
            "ownerAddress": self.vault.owner_address,
            "assetAddress": self.vault.asset_address,
            "depositCap": str(self.vault.deposit_cap),
            "minDeposit": str(self.vault.min_deposit),
            "sources": sorted(source.value for source in self.source_origins),
        }


@dataclass(frozen=True)
class PortfolioSummary:
    total_vaults: int = 0
    admin_vault_count: int = 0
    member_vault_count: int = 0
    total_value_locked: Decimal = Decimal(0)
    total_assets_raw: int = 0
    total_user_balance_raw: int = 0
    user_value_locked: Decimal = Decimal(0)

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalVaults": self.total_vaults,
            "adminVaults": self.admin_vault_count,
            "memberVaults": self.member_vault_count,
            "totalValueLocked": f"{self.total_value_locked:.2f}",
            "totalAssetsRaw": str(self.total_assets_raw),
            "totalUserBalanceRaw": str(self.total_user_balance_raw),
            "userValueLocked": f"{self.user_value_locked:.2f}",
        }


@dataclass(frozen=True)
class TokenBalance:
    """One token held by a vault or its strategies."""

    token_address: str
    symbol: str
    decimals: int
    balance_raw: int
    source: str  # "vault" | "strategy"
    strategy_name: Optional[str] = None

    @property
    def balance(self) -> Decimal:
        return Decimal(self.balance_raw) / (Decimal(10) ** self.decimals)


@dataclass(frozen=True)
class StrategyInfo:
    name: str
    address: str
    assets_raw: int


@dataclass(frozen=True)
class VaultTokenSnapshot:
    vault_address: str
    tokens: tuple[TokenBalance, ...] = ()
    strategies: tuple[StrategyInfo, ...] = ()


@dataclass(frozen=True)
class SourceOutcome:
    """What one adapter produced in a pass: records or an error, never both."""

    source: SourceId
    records: tuple[PartialMembership, ...] = ()
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class MembershipSnapshot:
    """Immutable result of one reconciliation pass."""

    user_address: str
    memberships: tuple[MembershipFact, ...]
    summary: PortfolioSummary
    status: ReconciliationStatus
    succeeded_sources: tuple[SourceId, ...] = ()
    failed_sources: tuple[SourceId, ...] = ()
    error: Optional[Exception] = None
    completed_at: Optional[datetime] = None

    @property
    def partial(self) -> bool:
        return self.status == ReconciliationStatus.PARTIAL

    @property
    def admin_vaults(self) -> tuple[MembershipFact, ...]:
        return tuple(m for m in self.memberships if m.role == Role.ADMIN)

    @property
    def member_vaults(self) -> tuple[MembershipFact, ...]:
        return tuple(m for m in self.memberships if m.role == Role.MEMBER)

    def raise_for_status(self) -> None:
        if self.status == ReconciliationStatus.FAILED and self.error is not None:
            raise self.error

    def to_dict(self) -> dict[str, Any]:
        return {
            "userAddress": self.user_address,
            "memberships": [m.to_dict() for m in self.memberships],
            "summary": self.summary.to_dict(),
            "status": self.status.value,
            "partial": self.partial,
            "succeededSources": [s.value for s in self.succeeded_sources],
            "failedSources": [s.value for s in self.failed_sources],
            "error": str(self.error) if self.error else None,
            "completedAt": self.completed_at.isoformat() if self.completed_at else None,
        }
