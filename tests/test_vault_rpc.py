"""Unit tests for VaultRpcClient (JSON-RPC is mocked at requests.post)."""

import os
import sys
import unittest
from unittest.mock import MagicMock, patch

import requests
from eth_abi import encode

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from packages.nestfi.errors import ContractReadError, RpcError
from packages.nestfi.rpc import (
    VAULT_FUNCTIONS,
    VaultRpcClient,
    address_topic,
    event_topic,
    topic_to_address,
)

VAULT = "0x1111111111111111111111111111111111111111"
USER = "0x2222222222222222222222222222222222222222"
OWNER_CHECKSUMMED = "0x68194a729C2450ad26072b3D33ADaCbcef39D574"


def mock_rpc_response(result):
    """Helper to build a mock JSON-RPC response."""
    resp = MagicMock()
    resp.json.return_value = {"jsonrpc": "2.0", "id": 1, "result": result}
    resp.raise_for_status = MagicMock()
    return resp


def mock_rpc_error(message: str):
    resp = MagicMock()
    resp.json.return_value = {"jsonrpc": "2.0", "id": 1, "error": {"code": -32000, "message": message}}
    resp.raise_for_status = MagicMock()
    return resp


def abi_result(types, values) -> str:
    return "0x" + encode(types, values).hex()


class TestContractReads(unittest.TestCase):
    def setUp(self):
        self.client = VaultRpcClient(rpc_url="http://rpc.test")

    def test_reads_uint(self):
        with patch("requests.post") as mock_post:
            mock_post.return_value = mock_rpc_response(abi_result(["uint256"], [1_000_000_000]))
            value = self.client.read_vault_field(VAULT, "totalAssets")
        self.assertEqual(value, 1_000_000_000)

    def test_reads_address_normalized(self):
        with patch("requests.post") as mock_post:
            mock_post.return_value = mock_rpc_response(abi_result(["address"], [OWNER_CHECKSUMMED]))
            value = self.client.read_vault_field(VAULT, "owner")
        self.assertEqual(value, OWNER_CHECKSUMMED.lower())

    def test_reads_string(self):
        with patch("requests.post") as mock_post:
            mock_post.return_value = mock_rpc_response(abi_result(["string"], ["Alpha Vault"]))
            self.assertEqual(self.client.read_vault_field(VAULT, "name"), "Alpha Vault")

    def test_balance_of_encodes_selector_and_user(self):
        with patch("requests.post") as mock_post:
            mock_post.return_value = mock_rpc_response(abi_result(["uint256"], [42]))
            self.assertEqual(self.client.read_vault_field(VAULT, "balanceOf", (USER,)), 42)

            payload = mock_post.call_args.kwargs["json"]
            self.assertEqual(payload["method"], "eth_call")
            call = payload["params"][0]
            self.assertEqual(call["to"], VAULT)
            self.assertTrue(call["data"].startswith("0x70a08231"))
            self.assertTrue(call["data"].endswith(USER[2:]))
            self.assertEqual(payload["params"][1], "latest")

    def test_paused_falls_back_to_alternate_signature(self):
        with patch("requests.post") as mock_post:
            mock_post.side_effect = [
                mock_rpc_error("execution reverted"),
                mock_rpc_response(abi_result(["bool"], [True])),
            ]
            self.assertTrue(self.client.read_vault_field(VAULT, "paused"))
            self.assertEqual(mock_post.call_count, 2)

    def test_all_signatures_failing_raises_contract_read_error(self):
        with patch("requests.post") as mock_post:
            mock_post.side_effect = [
                mock_rpc_error("execution reverted"),
                mock_rpc_error("invalid opcode"),
            ]
            with self.assertRaises(ContractReadError) as ctx:
                self.client.read_vault_field(VAULT, "paused")
            self.assertEqual(mock_post.call_count, 2)
        self.assertIn("isPaused()", ctx.exception.function)
        self.assertIn("paused()", ctx.exception.function)
        self.assertIn("invalid opcode", ctx.exception.reason)

    def test_revert_raises_contract_read_error(self):
        with patch("requests.post") as mock_post:
            mock_post.return_value = mock_rpc_error("execution reverted")
            with self.assertRaises(ContractReadError) as ctx:
                self.client.read_vault_field(VAULT, "depositCap")
        self.assertEqual(ctx.exception.contract, VAULT)
        self.assertIn("depositCap()", ctx.exception.function)

    def test_empty_return_data_raises(self):
        with patch("requests.post") as mock_post:
            mock_post.return_value = mock_rpc_response("0x")
            with self.assertRaises(ContractReadError):
                self.client.read_vault_field(VAULT, "totalSupply")

    def test_timeout_raises(self):
        with patch("requests.post") as mock_post:
            mock_post.side_effect = requests.exceptions.Timeout()
            with self.assertRaises(ContractReadError):
                self.client.read_vault_field(VAULT, "minDeposit")

    def test_multi_output_returns_tuple(self):
        token = "0x3333333333333333333333333333333333333333"
        with patch("requests.post") as mock_post:
            mock_post.return_value = mock_rpc_response(
                abi_result(["address[]", "uint256[]"], [[token], [50]])
            )
            tokens, balances = self.client.read_vault_field(VAULT, "getVaultTokenBalances")
        self.assertEqual(tokens, [token])
        self.assertEqual(balances, [50])

    def test_unknown_field_is_key_error(self):
        with self.assertRaises(KeyError):
            self.client.read_vault_field(VAULT, "nope")

    def test_function_table_covers_membership_fields(self):
        for field_name in (
            "owner", "asset", "totalAssets", "totalSupply", "depositCap", "minDeposit",
            "allowlistEnabled", "isAllowed", "balanceOf", "paused", "getVaultsByUser",
            "getStrategyNames", "getStrategy", "getStrategyAssets",
        ):
            self.assertIn(field_name, VAULT_FUNCTIONS)


class TestBlocksAndLogs(unittest.TestCase):
    def setUp(self):
        self.client = VaultRpcClient(rpc_url="http://rpc.test")

    def test_block_number(self):
        with patch("requests.post") as mock_post:
            mock_post.return_value = mock_rpc_response(hex(123456))
            self.assertEqual(self.client.block_number(), 123456)

    def test_get_logs_builds_filter(self):
        topics = [event_topic("AllowlistUpdated(address,bool)"), address_topic(USER)]
        with patch("requests.post") as mock_post:
            mock_post.return_value = mock_rpc_response([])
            self.assertEqual(self.client.get_logs([VAULT.upper().replace("0X", "0x")], topics, 10, 20), [])
            log_filter = mock_post.call_args.kwargs["json"]["params"][0]
        self.assertEqual(log_filter["fromBlock"], "0xa")
        self.assertEqual(log_filter["toBlock"], "0x14")
        self.assertEqual(log_filter["address"], [VAULT])
        self.assertEqual(log_filter["topics"], topics)

    def test_get_logs_without_address_scans_any_contract(self):
        with patch("requests.post") as mock_post:
            mock_post.return_value = mock_rpc_response([])
            self.client.get_logs(None, [], 0, 1)
            log_filter = mock_post.call_args.kwargs["json"]["params"][0]
        self.assertNotIn("address", log_filter)

    def test_range_error_is_recognized(self):
        with patch("requests.post") as mock_post:
            mock_post.return_value = mock_rpc_error("query returned more than 10000 results")
            with self.assertRaises(RpcError) as ctx:
                self.client.get_logs(None, [], 0, 100_000)
        self.assertTrue(ctx.exception.is_block_range_error)
        self.assertFalse(RpcError("execution reverted").is_block_range_error)
        self.assertTrue(RpcError("block range is too wide").is_block_range_error)


class TestTopics(unittest.TestCase):
    def test_event_topic_is_keccak(self):
        self.assertEqual(
            event_topic("Transfer(address,address,uint256)"),
            "0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef",
        )

    def test_address_topic_round_trip(self):
        topic = address_topic(OWNER_CHECKSUMMED)
        self.assertEqual(len(topic), 66)
        self.assertEqual(topic_to_address(topic), OWNER_CHECKSUMMED.lower())


if __name__ == "__main__":
    unittest.main()
