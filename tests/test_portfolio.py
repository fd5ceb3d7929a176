"""Tests for portfolio summary aggregation."""

import os
import sys
from decimal import Decimal

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from packages.nestfi.models import MembershipFact, Role, VaultRecord
from packages.nestfi.portfolio import summarize_portfolio, to_display_units


def _fact(address, role, total_assets, user_balance=0):
    return MembershipFact(
        vault=VaultRecord(address=address, total_assets=total_assets),
        role=role,
        user_balance=user_balance,
        is_on_allowlist=False,
    )


FACTS = [
    _fact("0x" + "a" * 40, Role.ADMIN, 1_000_000_000, user_balance=0),
    _fact("0x" + "b" * 40, Role.MEMBER, 2_000_000_000, user_balance=250_000),
    _fact("0x" + "c" * 40, Role.MEMBER, 500_000_000, user_balance=1_500_000),
]


class TestSummarizePortfolio:
    def test_counts_and_total_value_locked(self):
        summary = summarize_portfolio(FACTS, divisor=10**6)
        assert summary.total_vaults == 3
        assert summary.admin_vault_count == 1
        assert summary.member_vault_count == 2
        assert summary.total_value_locked == Decimal(3500)

    def test_raw_sums_stay_integers(self):
        summary = summarize_portfolio(FACTS)
        assert summary.total_assets_raw == 3_500_000_000
        assert summary.total_user_balance_raw == 1_750_000
        assert summary.user_value_locked == Decimal("1.75")

    def test_does_not_mutate_inputs(self):
        before = list(FACTS)
        summarize_portfolio(FACTS)
        assert FACTS == before
        assert FACTS[0].vault.total_assets == 1_000_000_000

    def test_empty(self):
        summary = summarize_portfolio([])
        assert summary.total_vaults == 0
        assert summary.total_value_locked == Decimal(0)

    def test_deterministic(self):
        assert summarize_portfolio(FACTS) == summarize_portfolio(list(reversed(FACTS)))

    def test_wire_shape(self):
        payload = summarize_portfolio(FACTS).to_dict()
        assert payload["totalValueLocked"] == "3500.00"
        assert payload["totalAssetsRaw"] == "3500000000"
        assert payload["adminVaults"] == 1

    def test_large_balances_keep_precision(self):
        big = 10**30 + 1
        summary = summarize_portfolio([_fact("0x" + "d" * 40, Role.MEMBER, big)], divisor=1)
        assert summary.total_assets_raw == big


def test_to_display_units_rejects_zero_divisor():
    with pytest.raises(ValueError):
        to_display_units(1, 0)
