#!/usr/bin/env python3
"""Check a wallet's membership in one vault."""

from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys
from typing import Optional

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", ".."))

from packages.nestfi.errors import AllSourcesUnavailable, InvalidAddressInput
from packages.nestfi.normalization import validate_address
from packages.nestfi.reconciliation import ReconciliationController
from tools.cli.common import add_common_arguments, configure_logging, settings_from_args


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Check whether a wallet is admin or member of a vault.")
    parser.add_argument("--vault", required=True, help="Vault address (0x...)")
    parser.add_argument("--user", required=True, help="Wallet address (0x...)")
    parser.add_argument("--json", action="store_true", help="Print the result as JSON")
    parser.add_argument(
        "--no-indexed",
        action="store_true",
        help="Read the vault contract directly instead of asking the indexing API first.",
    )
    add_common_arguments(parser)
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.verbose)

    settings = settings_from_args(args)
    if settings is None:
        return 1

    try:
        vault = validate_address(args.vault, "vault address")
        controller = ReconciliationController.from_settings(
            args.user,
            settings,
            include_indexed=not args.no_indexed,
            include_event_log=False,
        )
        fact = asyncio.run(controller.check_vault(vault))
    except InvalidAddressInput as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except AllSourcesUnavailable as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if args.json:
        payload = {"vaultAddress": vault, "isMember": fact is not None}
        if fact is not None:
            payload.update(fact.to_dict())
        print(json.dumps(payload, indent=2))
        return 0

    if fact is None:
        print(f"{controller.user_address} is not a member of {vault}")
        return 0
    print(f"{controller.user_address} is {fact.role.value} of {fact.vault.name} ({vault})")
    print(f"  balance (base units): {fact.user_balance}")
    print(f"  allowlisted: {'yes' if fact.is_on_allowlist else 'no'}")
    print(f"  sources: {', '.join(sorted(s.value for s in fact.source_origins))}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
