#!/usr/bin/env python3
"""Discover and reconcile a wallet's vault memberships."""

from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys
from typing import Optional

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", ".."))

from packages.nestfi.errors import InvalidAddressInput
from packages.nestfi.models import MembershipSnapshot, ReconciliationStatus
from packages.nestfi.portfolio import to_display_units
from packages.nestfi.reconciliation import ReconciliationController
from tools.cli.common import add_common_arguments, configure_logging, settings_from_args


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="List the vaults a wallet administers or belongs to.")
    parser.add_argument("--user", required=True, help="Wallet address (0x...)")
    parser.add_argument("--json", action="store_true", help="Print the snapshot as JSON")
    parser.add_argument(
        "--no-indexed",
        action="store_true",
        help="Skip the indexing API and reconcile from on-chain sources only.",
    )
    parser.add_argument(
        "--no-events",
        action="store_true",
        help="Skip the allowlist event-log scan.",
    )
    parser.add_argument("--watch", action="store_true", help="Keep polling and print every pass")
    parser.add_argument(
        "--interval",
        type=float,
        help="Polling interval in seconds (default: poll_interval_seconds setting).",
    )
    parser.add_argument("--ticks", type=int, help="Stop watching after N passes.")
    add_common_arguments(parser)
    return parser


def format_snapshot(snapshot: MembershipSnapshot, divisor: int) -> str:
    lines = [f"Memberships for {snapshot.user_address} [{snapshot.status.value}]"]
    if snapshot.failed_sources:
        lines.append(f"  unavailable sources: {', '.join(s.value for s in snapshot.failed_sources)}")
    if not snapshot.memberships:
        lines.append("  (no vaults)")
    for fact in snapshot.memberships:
        lines.append(
            f"  {fact.role.value:<6} {fact.vault.address}  {fact.vault.name} ({fact.vault.symbol})  "
            f"balance={to_display_units(fact.user_balance, divisor):.2f}  "
            f"tvl={to_display_units(fact.vault.total_assets, divisor):.2f}"
            + ("  allowlisted" if fact.is_on_allowlist else "")
            + ("  paused" if fact.vault.is_paused else "")
        )
    summary = snapshot.summary
    lines.append(
        f"  total={summary.total_vaults} admin={summary.admin_vault_count} "
        f"member={summary.member_vault_count} tvl={summary.total_value_locked:.2f}"
    )
    return "\n".join(lines)


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.verbose)

    if args.ticks is not None and args.ticks <= 0:
        print("Error: --ticks must be positive.", file=sys.stderr)
        return 1

    settings = settings_from_args(args)
    if settings is None:
        return 1

    try:
        controller = ReconciliationController.from_settings(
            args.user,
            settings,
            include_indexed=not args.no_indexed,
            include_event_log=not args.no_events,
        )
    except InvalidAddressInput as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    def _emit(snapshot: MembershipSnapshot) -> None:
        if args.json:
            print(json.dumps(snapshot.to_dict(), indent=2))
        else:
            print(format_snapshot(snapshot, settings.base_unit_divisor))

    if args.watch:
        interval = args.interval or settings.poll_interval_seconds
        controller.add_listener(_emit)
        try:
            snapshot = asyncio.run(controller.poll(interval, max_ticks=args.ticks))
        except KeyboardInterrupt:
            return 0
    else:
        snapshot = asyncio.run(controller.refresh())
        _emit(snapshot)

    if snapshot is not None and snapshot.status == ReconciliationStatus.FAILED:
        print(f"Error: {snapshot.error}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
