#!/usr/bin/env python3
"""List a vault's members: owner, allowlisted users and funded depositors."""

from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys
from typing import Optional

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", ".."))

from packages.nestfi.errors import AllSourcesUnavailable, InvalidAddressInput, RpcError
from packages.nestfi.roster import VaultMemberRoster
from tools.cli.common import add_common_arguments, configure_logging, settings_from_args


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="List the members of one vault.")
    parser.add_argument("--vault", required=True, help="Vault address (0x...)")
    parser.add_argument("--active-only", action="store_true", help="Hide revoked allowlist entries")
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

    roster_reader = VaultMemberRoster.from_settings(settings)
    try:
        roster = asyncio.run(roster_reader.members(args.vault))
    except InvalidAddressInput as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except (AllSourcesUnavailable, RpcError) as e:
        print(f"Error: vault members unavailable: {e}", file=sys.stderr)
        return 1

    members = roster.active_members if args.active_only else roster.members
    if args.json:
        scan = roster.scan_range
        print(
            json.dumps(
                {
                    "vaultAddress": roster.vault_address,
                    "members": [
                        {
                            "address": m.address,
                            "isActive": m.is_active,
                            "source": m.source,
                            "balance": None if m.balance is None else str(m.balance),
                        }
                        for m in members
                    ],
                    "totalMembers": len(members),
                    "scanRange": (
                        {"fromBlock": str(scan.from_block), "toBlock": str(scan.to_block)} if scan else None
                    ),
                    "failedParts": list(roster.failed_parts),
                },
                indent=2,
            )
        )
        return 0

    print(f"Members of vault {roster.vault_address} ({len(members)})")
    for member in members:
        state = "active" if member.is_active else "revoked"
        balance = "" if member.balance is None else f"  shares={member.balance}"
        print(f"  {member.address}  {member.source:<10} {state}{balance}")
    if roster.partial:
        print(f"Partial roster; unavailable: {', '.join(roster.failed_parts)}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
