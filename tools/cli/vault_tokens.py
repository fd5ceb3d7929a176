#!/usr/bin/env python3
"""Show a vault's token balances across the vault and its strategies."""

from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys
from typing import Optional

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", ".."))

from packages.nestfi.errors import InvalidAddressInput
from packages.nestfi.rpc import VaultRpcClient
from packages.nestfi.token_strategy import TokenStrategyResolver
from tools.cli.common import add_common_arguments, configure_logging, settings_from_args


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="List vault-held and strategy-held tokens.")
    parser.add_argument("--vault", required=True, help="Vault address (0x...)")
    parser.add_argument("--json", action="store_true", help="Print the result as JSON")
    add_common_arguments(parser)
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.verbose)

    settings = settings_from_args(args)
    if settings is None:
        return 1

    resolver = TokenStrategyResolver(
        VaultRpcClient(rpc_url=settings.rpc_url, timeout=settings.rpc_timeout_seconds),
        known_base_tokens=settings.known_base_tokens,
    )
    try:
        snapshot = asyncio.run(resolver.resolve(args.vault))
    except InvalidAddressInput as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if args.json:
        print(
            json.dumps(
                {
                    "vaultAddress": snapshot.vault_address,
                    "tokens": [
                        {
                            "tokenAddress": t.token_address,
                            "symbol": t.symbol,
                            "decimals": t.decimals,
                            "balanceRaw": str(t.balance_raw),
                            "source": t.source,
                            "strategyName": t.strategy_name,
                        }
                        for t in snapshot.tokens
                    ],
                    "strategies": [
                        {"name": s.name, "address": s.address, "assetsRaw": str(s.assets_raw)}
                        for s in snapshot.strategies
                    ],
                },
                indent=2,
            )
        )
        return 0

    print(f"Tokens for vault {snapshot.vault_address}")
    for token in snapshot.tokens:
        origin = token.source if not token.strategy_name else f"strategy:{token.strategy_name}"
        print(f"  {token.symbol:<8} {token.balance:>24}  {token.token_address}  [{origin}]")
    if snapshot.strategies:
        print("Strategies")
        for strategy in snapshot.strategies:
            print(f"  {strategy.name:<16} {strategy.address}  assets={strategy.assets_raw}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
