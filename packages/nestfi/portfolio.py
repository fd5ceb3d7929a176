"""Portfolio summary over merged memberships. Pure, no I/O."""

from __future__ import annotations

from decimal import Decimal
from typing import Iterable, Union

from .models import MembershipFact, PortfolioSummary, Role

# Vault assets are 6-decimal stablecoins by default.
DEFAULT_BASE_UNIT_DIVISOR = 10**6


def to_display_units(raw: int, divisor: Union[int, Decimal] = DEFAULT_BASE_UNIT_DIVISOR) -> Decimal:
    """Fixed-point conversion for presentation only."""
    if not divisor:
        raise ValueError("divisor must be non-zero")
    return Decimal(raw) / Decimal(divisor)


def summarize_portfolio(
    memberships: Iterable[MembershipFact],
    divisor: Union[int, Decimal] = DEFAULT_BASE_UNIT_DIVISOR,
) -> PortfolioSummary:
    """Counts by role and value locked across the user's vaults.

    ``total_value_locked`` sums each vault's ``total_assets``;
    ``user_value_locked`` sums the user's own balances. Raw integer sums are
    kept alongside so nothing downstream compares rounded values.
    """
    memberships = list(memberships)
    total_assets_raw = sum(m.vault.total_assets for m in memberships)
    total_user_balance_raw = sum(m.user_balance for m in memberships)
    return PortfolioSummary(
        total_vaults=len(memberships),
        admin_vault_count=sum(1 for m in memberships if m.role == Role.ADMIN),
        member_vault_count=sum(1 for m in memberships if m.role == Role.MEMBER),
        total_value_locked=to_display_units(total_assets_raw, divisor),
        total_assets_raw=total_assets_raw,
        total_user_balance_raw=total_user_balance_raw,
        user_value_locked=to_display_units(total_user_balance_raw, divisor),
    )
