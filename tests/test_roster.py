"""Tests for the per-vault member roster."""

import asyncio
import os
import sys
import unittest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from packages.nestfi.errors import AllSourcesUnavailable, InvalidAddressInput, RpcError
from packages.nestfi.log_range import BlockRange, BoundedRecentWindow
from packages.nestfi.roster import VaultMemberRoster
from tests._fakes import FakeVaultRpc, make_allowlist_log, make_deposit_log

OWNER = "0x1111111111111111111111111111111111111111"
ALICE = "0x2222222222222222222222222222222222222222"
BOB = "0x3333333333333333333333333333333333333333"
CAROL = "0x4444444444444444444444444444444444444444"
ROUTER = "0x7777777777777777777777777777777777777777"
VAULT = "0xaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaa"
OTHER_VAULT = "0xbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbb"


def _roster(rpc, **kwargs):
    return VaultMemberRoster(rpc, BoundedRecentWindow(500), **kwargs)


class TestVaultMemberRoster(unittest.TestCase):
    def test_combines_owner_allowlist_and_funded_depositors(self):
        rpc = FakeVaultRpc(block=1_000)
        rpc.set(VAULT, "owner", OWNER)
        rpc.set(VAULT, "balanceOf", 40, (BOB,))
        rpc.set(VAULT, "balanceOf", 0, (CAROL,))
        rpc.logs = [
            make_allowlist_log(VAULT, ALICE, True, 900),
            make_deposit_log(VAULT, ROUTER, BOB, 40, 910),
            make_deposit_log(VAULT, CAROL, CAROL, 5, 920),
        ]

        roster = asyncio.run(_roster(rpc).members(VAULT))

        self.assertEqual([m.address for m in roster.members], [OWNER, ALICE, BOB])
        self.assertEqual([m.source for m in roster.members], ["owner", "allowlist", "depositor"])
        self.assertEqual(roster.members[2].balance, 40)
        self.assertEqual(roster.scan_range, BlockRange(501, 1_000))
        self.assertFalse(roster.partial)

    def test_latest_allowlist_event_per_user_wins(self):
        rpc = FakeVaultRpc(block=1_000)
        rpc.set(VAULT, "owner", OWNER)
        rpc.logs = [
            make_allowlist_log(VAULT, ALICE, True, 800, 0),
            make_allowlist_log(VAULT, ALICE, False, 850, 3),
            make_allowlist_log(VAULT, BOB, True, 860, 1),
        ]

        roster = asyncio.run(_roster(rpc).members(VAULT))
        by_address = {m.address: m for m in roster.members}

        self.assertFalse(by_address[ALICE].is_active)
        self.assertTrue(by_address[BOB].is_active)
        self.assertEqual([m.address for m in roster.active_members], [OWNER, BOB])

    def test_ignores_other_vaults_and_removed_logs(self):
        rpc = FakeVaultRpc(block=1_000)
        rpc.set(VAULT, "owner", OWNER)
        removed = make_allowlist_log(VAULT, BOB, True, 900)
        removed["removed"] = True
        rpc.logs = [make_allowlist_log(OTHER_VAULT, ALICE, True, 900), removed]

        roster = asyncio.run(_roster(rpc).members(VAULT))
        self.assertEqual([m.address for m in roster.members], [OWNER])

    def test_owner_deposit_keeps_owner_entry(self):
        rpc = FakeVaultRpc(block=1_000)
        rpc.set(VAULT, "owner", OWNER)
        rpc.set(VAULT, "balanceOf", 12, (OWNER,))
        rpc.logs = [make_deposit_log(VAULT, OWNER, OWNER, 12, 990)]

        roster = asyncio.run(_roster(rpc).members(VAULT))

        self.assertEqual(len(roster.members), 1)
        self.assertEqual(roster.members[0].source, "owner")
        self.assertEqual(roster.members[0].balance, 12)

    def test_unreadable_owner_is_partial(self):
        rpc = FakeVaultRpc(block=1_000)
        rpc.logs = [make_allowlist_log(VAULT, ALICE, True, 900)]

        roster = asyncio.run(_roster(rpc).members(VAULT))

        self.assertEqual(roster.failed_parts, ("owner",))
        self.assertTrue(roster.partial)
        self.assertEqual([m.address for m in roster.members], [ALICE])

    def test_every_reading_failing_raises(self):
        rpc = FakeVaultRpc(block=1_000)
        rpc.log_error = RpcError("eth_getLogs error: internal error", method="eth_getLogs")
        with self.assertRaises(AllSourcesUnavailable) as ctx:
            asyncio.run(_roster(rpc).members(VAULT))
        self.assertEqual(set(ctx.exception.failures), {"owner", "allowlist", "depositor"})

    def test_halves_chunks_on_block_range_error(self):
        rpc = FakeVaultRpc(block=399, max_log_range=100)
        rpc.set(VAULT, "owner", OWNER)
        rpc.logs = [make_allowlist_log(VAULT, ALICE, True, 350)]
        roster = VaultMemberRoster(
            rpc, BoundedRecentWindow(400), max_blocks_per_query=400, min_blocks_per_query=10
        )

        result = asyncio.run(roster.members(VAULT))

        self.assertIn(ALICE, [m.address for m in result.members])
        self.assertIn((300, 399), rpc.log_calls)

    def test_invalid_vault_rejected(self):
        with self.assertRaises(InvalidAddressInput):
            asyncio.run(_roster(FakeVaultRpc()).members("0x123"))


if __name__ == "__main__":
    unittest.main()
