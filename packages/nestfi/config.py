"""Settings for membership discovery.

Precedence: built-in defaults <- local config file (``nestfi.yaml``) <-
``NESTFI_*`` environment variables. CLI flags are applied by the caller.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

from .errors import ConfigLoadError
from .log_range import DEFAULT_MAX_BLOCKS_PER_QUERY, DEFAULT_WINDOW_BLOCKS
from .membership_api import DEFAULT_API_BASE, DEFAULT_MEMBERSHIP_PATHS
from .normalization import is_valid_address, normalize_address
from .portfolio import DEFAULT_BASE_UNIT_DIVISOR
from .rpc import DEFAULT_RPC_URL

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILES = ("nestfi.yaml", "nestfi.yml")
LOG_RANGE_POLICIES = ("bounded", "checkpointed")

# Sepolia DAI used as the vaults' base asset.
DEFAULT_KNOWN_BASE_TOKENS: Dict[str, Dict[str, Any]] = {
    "0x68194a729c2450ad26072b3d33adacbcef39d574": {"symbol": "DAI", "decimals": 18},
}


@dataclass(frozen=True)
class Settings:
    rpc_url: str = DEFAULT_RPC_URL
    factory_address: Optional[str] = None
    api_base_url: Optional[str] = DEFAULT_API_BASE
    chain_id: int = 11155111
    rpc_timeout_seconds: float = 10.0
    http_timeout_seconds: float = 20.0
    adapter_timeout_seconds: float = 30.0
    poll_interval_seconds: float = 30.0
    log_range_policy: str = "bounded"
    log_window_blocks: int = DEFAULT_WINDOW_BLOCKS
    log_start_block: int = 0
    log_max_blocks_per_query: int = DEFAULT_MAX_BLOCKS_PER_QUERY
    base_unit_divisor: int = DEFAULT_BASE_UNIT_DIVISOR
    known_base_tokens: Dict[str, Dict[str, Any]] = field(
        default_factory=lambda: dict(DEFAULT_KNOWN_BASE_TOKENS)
    )
    membership_paths: tuple[str, ...] = DEFAULT_MEMBERSHIP_PATHS
    pageview_path: str = "/pageviews"


# env var -> (settings field, parser)
_ENV_FIELDS = {
    "NESTFI_RPC_URL": ("rpc_url", str),
    "NESTFI_FACTORY_ADDRESS": ("factory_address", str),
    "NESTFI_API_BASE": ("api_base_url", str),
    "NESTFI_CHAIN_ID": ("chain_id", int),
    "NESTFI_RPC_TIMEOUT_SECONDS": ("rpc_timeout_seconds", float),
    "NESTFI_HTTP_TIMEOUT_SECONDS": ("http_timeout_seconds", float),
    "NESTFI_ADAPTER_TIMEOUT_SECONDS": ("adapter_timeout_seconds", float),
    "NESTFI_POLL_INTERVAL_SECONDS": ("poll_interval_seconds", float),
    "NESTFI_LOG_RANGE_POLICY": ("log_range_policy", str),
    "NESTFI_LOG_WINDOW_BLOCKS": ("log_window_blocks", int),
    "NESTFI_LOG_START_BLOCK": ("log_start_block", int),
    "NESTFI_LOG_MAX_BLOCKS_PER_QUERY": ("log_max_blocks_per_query", int),
    "NESTFI_BASE_UNIT_DIVISOR": ("base_unit_divisor", int),
}

_FIELD_TYPES = {name: parser for name, parser in _ENV_FIELDS.values()}


def load_env_file(path: str) -> Dict[str, str]:
    if not os.path.exists(path):
        return {}
    env: Dict[str, str] = {}
    with open(path, "r", encoding="utf-8") as handle:
        for raw_line in handle:
            line = raw_line.strip()
            if not line or line.startswith("#") or "=" not in line:
                continue
            key, value = line.split("=", 1)
            key = key.strip()
            value = value.strip().strip("'").strip('"')
            if key:
                env[key] = value
    return env


def apply_env_defaults(env: Dict[str, str]) -> None:
    for key, value in env.items():
        os.environ.setdefault(key, value)


def _load_local_config(config_path: Optional[str]) -> Dict[str, Any]:
    """Load the local YAML config; an explicit path must exist and parse."""
    if config_path:
        path = Path(config_path)
        if not path.exists():
            raise ConfigLoadError(f"Config file not found: {config_path}")
        paths_to_try = [path]
    else:
        paths_to_try = [Path(name) for name in DEFAULT_CONFIG_FILES]

    for path in paths_to_try:
        if not path.exists():
            continue
        try:
            payload = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigLoadError(f"Cannot read config {path}: {e}") from e
        if not isinstance(payload, dict):
            raise ConfigLoadError(f"Config {path} must be a mapping")
        logger.debug(f"Loaded config from {path}")
        return payload
    return {}


def _coerce(name: str, value: Any, origin: str) -> Any:
    parser = _FIELD_TYPES.get(name)
    if parser is None or value is None:
        return value
    try:
        return parser(value)
    except (TypeError, ValueError) as e:
        raise ConfigLoadError(f"Invalid value for {origin}: {value!r}") from e


def _parse_known_tokens(raw: Any) -> Dict[str, Dict[str, Any]]:
    if not isinstance(raw, dict):
        raise ConfigLoadError("known_base_tokens must be a mapping of address -> {symbol, decimals}")
    tokens: Dict[str, Dict[str, Any]] = {}
    for address, meta in raw.items():
        if not is_valid_address(address) or not isinstance(meta, dict):
            raise ConfigLoadError(f"Invalid known base token entry: {address!r}")
        try:
            decimals = int(meta.get("decimals", 18))
        except (TypeError, ValueError) as e:
            raise ConfigLoadError(f"Invalid decimals for token {address}") from e
        tokens[normalize_address(address)] = {
            "symbol": str(meta.get("symbol") or "???"),
            "decimals": decimals,
        }
    return tokens


def _validate(settings: Settings) -> Settings:
    if settings.log_range_policy not in LOG_RANGE_POLICIES:
        raise ConfigLoadError(
            f"log_range_policy must be one of {', '.join(LOG_RANGE_POLICIES)}, "
            f"got {settings.log_range_policy!r}"
        )
    if settings.log_window_blocks <= 0 or settings.log_max_blocks_per_query <= 0:
        raise ConfigLoadError("Block window and chunk size must be positive")
    if settings.base_unit_divisor <= 0:
        raise ConfigLoadError("base_unit_divisor must be positive")
    if settings.factory_address and not is_valid_address(settings.factory_address):
        raise ConfigLoadError(f"Invalid factory_address: {settings.factory_address!r}")
    return settings


def load_settings(
    config_path: Optional[str] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> Settings:
    """
    Build settings from defaults, the local config file and the environment.

    Raises:
        ConfigLoadError: unreadable config or invalid values
    """
    environ = os.environ if environ is None else environ
    known = {f.name for f in fields(Settings)}
    overrides: Dict[str, Any] = {}

    local_config = _load_local_config(config_path)
    for key, value in local_config.items():
        if key not in known:
            logger.warning(f"Ignoring unknown config key: {key}")
            continue
        if key == "known_base_tokens":
            overrides[key] = _parse_known_tokens(value)
        elif key == "membership_paths":
            if not isinstance(value, list) or not value:
                raise ConfigLoadError("membership_paths must be a non-empty list")
            overrides[key] = tuple(str(path) for path in value)
        else:
            overrides[key] = _coerce(key, value, key)

    for env_name, (field_name, _parser) in _ENV_FIELDS.items():
        raw = environ.get(env_name)
        if raw is None or not raw.strip():
            continue
        overrides[field_name] = _coerce(field_name, raw.strip(), env_name)

    if overrides.get("factory_address"):
        overrides["factory_address"] = normalize_address(overrides["factory_address"])

    return _validate(replace(Settings(), **overrides))
