"""Shared CLI plumbing: env files, settings, logging."""

from __future__ import annotations

import argparse
import logging
import os
import sys
from dataclasses import replace
from typing import Optional

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", ".."))

from packages.nestfi.config import Settings, apply_env_defaults, load_env_file, load_settings
from packages.nestfi.errors import ConfigLoadError


def add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--config", help="Path to nestfi.yaml (default: ./nestfi.yaml if present)")
    parser.add_argument("--env-file", default=".env", help="Env file applied without overriding (default: .env)")
    parser.add_argument("--rpc-url", help="Override NESTFI_RPC_URL")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")


def configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def settings_from_args(args: argparse.Namespace) -> Optional[Settings]:
    """Load settings, printing the error and returning None on bad config."""
    apply_env_defaults(load_env_file(args.env_file))
    try:
        settings = load_settings(args.config)
    except ConfigLoadError as e:
        print(f"Error: {e}", file=sys.stderr)
        return None
    if args.rpc_url:
        settings = replace(settings, rpc_url=args.rpc_url)
    return settings
