"""Tests for settings loading (file + environment)."""

import os
import sys
from pathlib import Path

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from packages.nestfi.config import (
    DEFAULT_KNOWN_BASE_TOKENS,
    Settings,
    apply_env_defaults,
    load_env_file,
    load_settings,
)
from packages.nestfi.errors import ConfigLoadError

FACTORY = "0xFAfaFAfaFAfaFAfaFAfaFAfaFAfaFAfaFAfaFAfa"


def test_defaults_without_file_or_env(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    settings = load_settings(environ={})
    assert settings == Settings()
    assert settings.log_range_policy == "bounded"
    assert settings.known_base_tokens == DEFAULT_KNOWN_BASE_TOKENS


def test_yaml_file_then_env_override(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    Path("nestfi.yaml").write_text(
        "\n".join(
            [
                f"factory_address: '{FACTORY}'",
                "log_window_blocks: 2000",
                "adapter_timeout_seconds: 5",
                "membership_paths: ['/memberships']",
                "known_base_tokens:",
                "  '0x1c7D4B196Cb0C7B01d743Fbc6116a902379C7238': {symbol: USDC, decimals: 6}",
            ]
        ),
        encoding="utf-8",
    )
    settings = load_settings(environ={"NESTFI_LOG_WINDOW_BLOCKS": "300", "NESTFI_CHAIN_ID": "1"})

    assert settings.factory_address == FACTORY.lower()
    assert settings.log_window_blocks == 300
    assert settings.chain_id == 1
    assert settings.adapter_timeout_seconds == 5.0
    assert settings.membership_paths == ("/memberships",)
    assert settings.known_base_tokens == {
        "0x1c7d4b196cb0c7b01d743fbc6116a902379c7238": {"symbol": "USDC", "decimals": 6}
    }


def test_explicit_missing_config_raises(tmp_path):
    with pytest.raises(ConfigLoadError):
        load_settings(str(tmp_path / "nope.yaml"), environ={})


def test_invalid_numeric_env_raises(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    with pytest.raises(ConfigLoadError) as excinfo:
        load_settings(environ={"NESTFI_LOG_WINDOW_BLOCKS": "lots"})
    assert "NESTFI_LOG_WINDOW_BLOCKS" in str(excinfo.value)


def test_invalid_policy_raises(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    with pytest.raises(ConfigLoadError):
        load_settings(environ={"NESTFI_LOG_RANGE_POLICY": "earliest"})


def test_invalid_factory_raises(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    with pytest.raises(ConfigLoadError):
        load_settings(environ={"NESTFI_FACTORY_ADDRESS": "0x1234"})


def test_non_mapping_yaml_raises(tmp_path):
    path = tmp_path / "nestfi.yaml"
    path.write_text("- a\n- b\n", encoding="utf-8")
    with pytest.raises(ConfigLoadError):
        load_settings(str(path), environ={})


def test_env_file_does_not_override(tmp_path, monkeypatch):
    env_path = tmp_path / ".env"
    env_path.write_text("# comment\nNESTFI_API_BASE='http://from-file'\nNESTFI_CHAIN_ID=5\n", encoding="utf-8")
    monkeypatch.setenv("NESTFI_CHAIN_ID", "1")
    monkeypatch.setenv("NESTFI_API_BASE", "placeholder")
    monkeypatch.delenv("NESTFI_API_BASE")

    env = load_env_file(str(env_path))
    assert env == {"NESTFI_API_BASE": "http://from-file", "NESTFI_CHAIN_ID": "5"}
    apply_env_defaults(env)

    assert os.environ["NESTFI_API_BASE"] == "http://from-file"
    assert os.environ["NESTFI_CHAIN_ID"] == "1"


def test_missing_env_file_is_empty(tmp_path):
    assert load_env_file(str(tmp_path / "missing.env")) == {}
