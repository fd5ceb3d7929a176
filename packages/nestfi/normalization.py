"""Normalization helpers for on-chain identifiers and base-unit amounts."""

from __future__ import annotations

import re
from typing import Any, Optional

from .errors import InvalidAddressInput

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

_ADDRESS_RE = re.compile(r"^0x[0-9a-f]{40}$")


def normalize_address(value: Optional[str]) -> str:
    """Normalize an address to lowercase with 0x prefix.

    Returns empty string when value is falsy or only whitespace.
    """
    if value is None:
        return ""
    cleaned = str(value).strip()
    if not cleaned:
        return ""
    lowered = cleaned.lower()
    if lowered.startswith("0x"):
        lowered = lowered[2:]
    if not lowered:
        return ""
    return f"0x{lowered}"


def is_zero_address(value: Optional[str]) -> bool:
    return normalize_address(value) == ZERO_ADDRESS


def is_valid_address(value: Optional[str]) -> bool:
    """True for a 0x-prefixed, 40-hex-char, non-zero address."""
    if value is None:
        return False
    cleaned = str(value).strip()
    if not cleaned[:2].lower() == "0x":
        return False
    normalized = cleaned.lower()
    return bool(_ADDRESS_RE.match(normalized)) and normalized != ZERO_ADDRESS


def validate_address(value: Optional[str], label: str = "address") -> str:
    """Return the normalized address or raise InvalidAddressInput."""
    if value is None or not str(value).strip():
        raise InvalidAddressInput(value, label, "missing")
    cleaned = str(value).strip()
    if not cleaned[:2].lower() == "0x":
        raise InvalidAddressInput(value, label, "must be 0x-prefixed")
    if not _ADDRESS_RE.match(cleaned.lower()):
        raise InvalidAddressInput(value, label, "must be 40 hex characters")
    normalized = cleaned.lower()
    if normalized == ZERO_ADDRESS:
        raise InvalidAddressInput(value, label, "zero address")
    return normalized


def addresses_equal(left: Optional[str], right: Optional[str]) -> bool:
    left_norm = normalize_address(left)
    return bool(left_norm) and left_norm == normalize_address(right)


def parse_base_units(value: Any) -> Optional[int]:
    """Parse an integer amount in base units.

    Accepts ints, decimal strings and 0x-hex strings. Floats and booleans are
    rejected so precision never silently degrades.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            if text.lower().startswith("0x"):
                return int(text, 16)
            return int(text, 10)
        except ValueError:
            return None
    return None


def parse_optional_bool(value: Any) -> Optional[bool]:
    """Parse a tri-state boolean (None means unknown)."""
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ("true", "1", "yes"):
            return True
        if lowered in ("false", "0", "no"):
            return False
    return None
