"""Token balances of one vault, combining vault holdings and strategy positions."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Mapping, Optional

from .errors import ContractReadError
from .models import StrategyInfo, TokenBalance, VaultTokenSnapshot
from .normalization import is_valid_address, normalize_address, validate_address
from .rpc import VaultRpcClient

logger = logging.getLogger(__name__)

UNKNOWN_SYMBOL = "???"
DEFAULT_DECIMALS = 18


@dataclass
class _TokenEntry:
    address: str
    symbol: str
    decimals: int
    source: str
    strategy_name: Optional[str] = None
    balance_raw: int = 0


class TokenStrategyResolver:
    """Resolves ``TokenBalance``/``StrategyInfo`` for the vault admin view.

    Origins, in order: the vault's asset, the always-shown known base
    tokens, ``getVaultTokenBalances`` and the asset of every attached
    strategy. Entries are keyed by normalized token address and every
    origin adds its amount to the entry, so a token reported by both
    balanceOf and getVaultTokenBalances carries the sum of the two.
    """

    def __init__(
        self,
        rpc: VaultRpcClient,
        known_base_tokens: Optional[Mapping[str, Mapping[str, Any]]] = None,
    ):
        self.rpc = rpc
        self.known_base_tokens = {
            normalize_address(address): dict(meta) for address, meta in (known_base_tokens or {}).items()
        }
        self._metadata: dict[str, tuple[str, int]] = {}

    async def _try_read(self, contract: str, field_name: str, args: tuple = (), default: Any = None) -> Any:
        try:
            return await self.rpc.aread_vault_field(contract, field_name, args)
        except ContractReadError as e:
            logger.debug(f"{field_name} on {contract[:10]}... unavailable: {e.reason}")
            return default

    async def token_metadata(self, token_address: str) -> tuple[str, int]:
        """(symbol, decimals), defaulting to ("???", 18) when unreadable."""
        token = normalize_address(token_address)
        if token in self._metadata:
            return self._metadata[token]
        known = self.known_base_tokens.get(token)
        if known:
            metadata = (str(known.get("symbol") or UNKNOWN_SYMBOL), int(known.get("decimals", DEFAULT_DECIMALS)))
        else:
            symbol, decimals = await asyncio.gather(
                self._try_read(token, "symbol"),
                self._try_read(token, "decimals"),
            )
            metadata = (
                symbol if isinstance(symbol, str) and symbol else UNKNOWN_SYMBOL,
                decimals if isinstance(decimals, int) else DEFAULT_DECIMALS,
            )
        self._metadata[token] = metadata
        return metadata

    async def _vault_holdings(self, vault: str) -> tuple[Optional[str], dict[str, int]]:
        """Vault-held balance per token, summed over balanceOf and getVaultTokenBalances."""
        asset = await self._try_read(vault, "asset")
        asset = normalize_address(asset) if is_valid_address(asset) else None

        direct_tokens = list(self.known_base_tokens)
        if asset and asset not in direct_tokens:
            direct_tokens.insert(0, asset)
        balances = await asyncio.gather(
            *(self._try_read(token, "balanceOf", (vault,), 0) for token in direct_tokens)
        )
        holdings = {token: (raw if isinstance(raw, int) else 0) for token, raw in zip(direct_tokens, balances)}

        reported = await self._try_read(vault, "getVaultTokenBalances")
        if isinstance(reported, tuple) and len(reported) == 2:
            tokens, amounts = reported
            for token, amount in zip(tokens, amounts):
                if is_valid_address(token):
                    key = normalize_address(token)
                    holdings[key] = holdings.get(key, 0) + int(amount)
        return asset, holdings

    async def _strategy(self, vault: str, name: str) -> Optional[tuple[StrategyInfo, Optional[str]]]:
        address = await self._try_read(vault, "getStrategy", (name,))
        if not is_valid_address(address):
            return None
        assets_raw, strategy_asset = await asyncio.gather(
            self._try_read(vault, "getStrategyAssets", (name,), 0),
            self._try_read(address, "asset"),
        )
        info = StrategyInfo(
            name=name,
            address=normalize_address(address),
            assets_raw=assets_raw if isinstance(assets_raw, int) else 0,
        )
        token = normalize_address(strategy_asset) if is_valid_address(strategy_asset) else None
        return info, token

    async def resolve(self, vault_address: str) -> VaultTokenSnapshot:
        """
        Raises:
            InvalidAddressInput: vault_address is malformed
        """
        vault = validate_address(vault_address, "vault address")
        (asset, holdings), names = await asyncio.gather(
            self._vault_holdings(vault),
            self._try_read(vault, "getStrategyNames", (), []),
        )
        results = await asyncio.gather(
            *(self._strategy(vault, name) for name in names or []),
            return_exceptions=True,
        )

        entries: dict[str, _TokenEntry] = {}

        async def add(token: str, amount: int, source: str, strategy_name: Optional[str] = None) -> None:
            entry = entries.get(token)
            if entry is None:
                symbol, decimals = await self.token_metadata(token)
                entry = _TokenEntry(token, symbol, decimals, source, strategy_name)
                entries[token] = entry
            entry.balance_raw += amount

        for token, amount in holdings.items():
            await add(token, amount, "vault")

        strategies: list[StrategyInfo] = []
        for name, result in zip(names or [], results):
            if isinstance(result, BaseException):
                logger.warning(f"Strategy {name!r} on {vault[:10]}... unreadable: {result}")
                continue
            if result is None:
                continue
            info, token = result
            strategies.append(info)
            if token:
                await add(token, info.assets_raw, "strategy", name)

        tokens = sorted(
            entries.values(),
            key=lambda e: (e.source != "vault", e.symbol.lower(), e.address),
        )
        logger.debug(f"Vault {vault[:10]}...: {len(tokens)} tokens, {len(strategies)} strategies (asset={asset})")
        return VaultTokenSnapshot(
            vault_address=vault,
            tokens=tuple(
                TokenBalance(
                    token_address=e.address,
                    symbol=e.symbol,
                    decimals=e.decimals,
                    balance_raw=e.balance_raw,
                    source=e.source,
                    strategy_name=e.strategy_name,
                )
                for e in tokens
            ),
            strategies=tuple(strategies),
        )
