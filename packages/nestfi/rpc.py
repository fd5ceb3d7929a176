"""Contract reads over raw JSON-RPC.

Uses ``eth_call``, ``eth_blockNumber`` and ``eth_getLogs`` via plain HTTP
POST. ABI encoding and decoding go through eth-abi; selectors and event
topics come from eth-utils. No web3.py dependency.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import os
from dataclasses import dataclass
from typing import Any, Optional, Sequence, Union

import requests
from eth_abi import decode, encode
from eth_utils import function_signature_to_4byte_selector, keccak

from .errors import ContractReadError, RpcError
from .normalization import normalize_address

logger = logging.getLogger(__name__)

DEFAULT_RPC_URL = "https://ethereum-sepolia-rpc.publicnode.com"


@dataclass(frozen=True)
class ContractFunction:
    """A view function the core knows how to call."""

    signature: str
    input_types: tuple[str, ...] = ()
    output_types: tuple[str, ...] = ("uint256",)

    @property
    def selector(self) -> bytes:
        return function_signature_to_4byte_selector(self.signature)

    def encode_call(self, args: Sequence[Any]) -> str:
        if len(args) != len(self.input_types):
            raise ValueError(
                f"{self.signature} expects {len(self.input_types)} args, got {len(args)}"
            )
        encoded_args = encode(list(self.input_types), list(args)) if self.input_types else b""
        return "0x" + (self.selector + encoded_args).hex()


# Field name -> candidate functions, tried in order.
VAULT_FUNCTIONS: dict[str, tuple[ContractFunction, ...]] = {
    "owner": (ContractFunction("owner()", (), ("address",)),),
    "asset": (ContractFunction("asset()", (), ("address",)),),
    "name": (ContractFunction("name()", (), ("string",)),),
    "symbol": (ContractFunction("symbol()", (), ("string",)),),
    "decimals": (ContractFunction("decimals()", (), ("uint8",)),),
    "totalAssets": (ContractFunction("totalAssets()"),),
    "totalSupply": (ContractFunction("totalSupply()"),),
    "depositCap": (ContractFunction("depositCap()"),),
    "minDeposit": (ContractFunction("minDeposit()"),),
    "allowlistEnabled": (ContractFunction("allowlistEnabled()", (), ("bool",)),),
    "isAllowed": (ContractFunction("allowlist(address)", ("address",), ("bool",)),),
    "balanceOf": (ContractFunction("balanceOf(address)", ("address",)),),
    "paused": (
        ContractFunction("isPaused()", (), ("bool",)),
        ContractFunction("paused()", (), ("bool",)),
    ),
    "getVaultsByUser": (ContractFunction("getVaultsByUser(address)", ("address",), ("address[]",)),),
    "getStrategyNames": (ContractFunction("getStrategyNames()", (), ("string[]",)),),
    "getStrategy": (ContractFunction("getStrategy(string)", ("string",), ("address",)),),
    "getStrategyAssets": (ContractFunction("getStrategyAssets(string)", ("string",)),),
    "getVaultTokenBalances": (
        ContractFunction("getVaultTokenBalances()", (), ("address[]", "uint256[]")),
    ),
}

ALLOWLIST_UPDATED_SIGNATURE = "AllowlistUpdated(address,bool)"
# ERC-4626: Deposit(caller indexed, owner indexed, assets, shares)
DEPOSIT_SIGNATURE = "Deposit(address,address,uint256,uint256)"


def event_topic(signature: str) -> str:
    """keccak256 topic0 for an event signature."""
    return "0x" + keccak(text=signature).hex()


def address_topic(address: str) -> str:
    """Left-pad an address into a 32-byte indexed topic."""
    return "0x" + normalize_address(address)[2:].rjust(64, "0")


def topic_to_address(topic: str) -> str:
    text = str(topic or "").lower()
    if text.startswith("0x"):
        text = text[2:]
    return "0x" + text[-40:]


def _normalize_decoded(value: Any) -> Any:
    if isinstance(value, str) and value.startswith("0x") and len(value) == 42:
        return normalize_address(value)
    if isinstance(value, (list, tuple)):
        return [_normalize_decoded(item) for item in value]
    return value


class VaultRpcClient:
    """Reads vault, factory, strategy and ERC-20 view functions."""

    def __init__(self, rpc_url: Optional[str] = None, timeout: float = 10.0):
        """
        Args:
            rpc_url: JSON-RPC URL (defaults to NESTFI_RPC_URL env var or a public endpoint)
            timeout: Request timeout in seconds
        """
        self.rpc_url = rpc_url or os.environ.get("NESTFI_RPC_URL", DEFAULT_RPC_URL)
        self.timeout = timeout
        self._ids = itertools.count(1)

    def _rpc(self, method: str, params: list) -> Any:
        """Execute one JSON-RPC request.

        Raises:
            RpcError: transport failure or node-side error
        """
        payload = {
            "jsonrpc": "2.0",
            "method": method,
            "params": params,
            "id": next(self._ids),
        }
        try:
            response = requests.post(
                self.rpc_url,
                json=payload,
                timeout=self.timeout,
                headers={"Content-Type": "application/json"},
            )
            response.raise_for_status()
            result = response.json()
        except requests.exceptions.Timeout as e:
            raise RpcError(f"Timeout calling {method}", method=method) from e
        except requests.exceptions.RequestException as e:
            raise RpcError(f"Error calling {method}: {e}", method=method) from e
        except ValueError as e:
            raise RpcError(f"Invalid JSON from {method}: {e}", method=method) from e

        if "error" in result:
            error = result["error"]
            message = error.get("message") if isinstance(error, dict) else str(error)
            raise RpcError(f"{method} error: {message}", method=method)
        return result.get("result")

    def eth_call(self, contract: str, data: str) -> str:
        result = self._rpc("eth_call", [{"to": normalize_address(contract), "data": data}, "latest"])
        return result or "0x"

    def call_function(self, contract: str, function: ContractFunction, args: Sequence[Any] = ()) -> Any:
        """Call and decode one view function.

        Returns a single value for one output, a tuple for several.
        """
        try:
            calldata = function.encode_call(list(args))
        except (ValueError, TypeError) as e:
            raise ContractReadError(contract, function.signature, f"cannot encode args: {e}") from e
        try:
            raw = self.eth_call(contract, calldata)
        except RpcError as e:
            raise ContractReadError(contract, function.signature, e.message) from e

        data = bytes.fromhex(raw[2:] if raw.startswith("0x") else raw)
        if not data:
            raise ContractReadError(contract, function.signature, "empty return data")
        try:
            decoded = decode(list(function.output_types), data)
        except Exception as e:
            raise ContractReadError(contract, function.signature, f"cannot decode: {e}") from e

        values = [_normalize_decoded(value) for value in decoded]
        if len(values) == 1:
            return values[0]
        return tuple(values)

    def read_vault_field(self, contract: str, field_name: str, args: Sequence[Any] = ()) -> Any:
        """Read a named field, trying each known signature in order.

        Raises:
            ContractReadError: every candidate signature failed
            KeyError: unknown field name
        """
        candidates = VAULT_FUNCTIONS[field_name]
        reasons = []
        for function in candidates:
            try:
                return self.call_function(contract, function, args)
            except ContractReadError as e:
                reasons.append(f"{function.signature}: {e.reason}")
                logger.debug(f"{function.signature} failed on {contract[:10]}...: {e.reason}")
        raise ContractReadError(
            contract,
            ", ".join(function.signature for function in candidates),
            "; ".join(reasons),
        )

    async def aread_vault_field(self, contract: str, field_name: str, args: Sequence[Any] = ()) -> Any:
        return await asyncio.to_thread(self.read_vault_field, contract, field_name, args)

    def block_number(self) -> int:
        result = self._rpc("eth_blockNumber", [])
        try:
            return int(result, 16)
        except (TypeError, ValueError) as e:
            raise RpcError(f"Bad eth_blockNumber result {result!r}", method="eth_blockNumber") from e

    def get_logs(
        self,
        address: Union[str, Sequence[str], None],
        topics: Sequence[Optional[str]],
        from_block: int,
        to_block: int,
    ) -> list[dict]:
        """Fetch raw log entries.

        Args:
            address: emitting contract(s), or None for any contract
            topics: topic filter (None entries are wildcards)
        """
        log_filter: dict[str, Any] = {
            "fromBlock": hex(from_block),
            "toBlock": hex(to_block),
            "topics": list(topics),
        }
        if isinstance(address, str):
            log_filter["address"] = normalize_address(address)
        elif address:
            log_filter["address"] = [normalize_address(a) for a in address]
        result = self._rpc("eth_getLogs", [log_filter])
        if not isinstance(result, list):
            raise RpcError(f"Bad eth_getLogs result type {type(result).__name__}", method="eth_getLogs")
        return result
