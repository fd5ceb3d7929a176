"""Module entrypoint for running NestFi CLI commands.

Usage: python -m nesttool <command> [options]
"""

from __future__ import annotations

import sys
from typing import Callable, Optional

from tools.cli.check_membership import main as check_membership_main
from tools.cli.members import main as members_main
from tools.cli.memberships import main as memberships_main
from tools.cli.vault_tokens import main as vault_tokens_main

CommandHandler = Callable[[list[str]], int]

COMMANDS: dict[str, tuple[CommandHandler, str]] = {
    "memberships": (memberships_main, "Reconcile the vaults a wallet administers or belongs to"),
    "check-membership": (check_membership_main, "Check a wallet's membership in one vault"),
    "vault-tokens": (vault_tokens_main, "Show vault-held and strategy-held token balances"),
    "members": (members_main, "List a vault's owner, allowlisted users and depositors"),
}

EXAMPLES = (
    "nesttool memberships --user 0xabc... --json",
    "nesttool memberships --user 0xabc... --watch --interval 15",
    "nesttool check-membership --vault 0xdef... --user 0xabc...",
    "nesttool vault-tokens --vault 0xdef...",
    "nesttool members --vault 0xdef... --active-only",
)


def print_usage() -> None:
    print("nesttool - NestFi vault membership toolchain")
    print("")
    print("Usage: nesttool <command> [options]")
    print("       python -m nesttool <command> [options]")
    print("")
    print("Commands:")
    for name, (_, summary) in COMMANDS.items():
        print(f"  {name:<18}{summary}")
    print("")
    print("Global options:")
    print(f"  {'-h, --help':<18}Show this help message")
    print(f"  {'--version':<18}Show version information")
    print("")
    print("Every command also accepts --config, --env-file, --rpc-url and -v.")
    print("")
    print("Examples:")
    for example in EXAMPLES:
        print(f"  {example}")


def print_version() -> None:
    from nesttool import __version__
    print(f"nesttool {__version__}")


def main(argv: Optional[list[str]] = None) -> int:
    args = sys.argv[1:] if argv is None else list(argv)
    if not args:
        print_usage()
        return 1

    command, rest = args[0], args[1:]
    if command in ("-h", "--help", "help"):
        print_usage()
        return 0
    if command in ("-v", "--version"):
        print_version()
        return 0

    entry = COMMANDS.get(command)
    if entry is None:
        print(f"Unknown command: {command}", file=sys.stderr)
        print("Run 'nesttool --help' for usage.", file=sys.stderr)
        return 1
    handler, _ = entry
    return handler(rest)


if __name__ == "__main__":
    sys.exit(main())
