from __future__ import annotations

import os
import shutil
import uuid
from pathlib import Path

import pytest


_PREVIOUS_CWD: Path | None = None
_PREVIOUS_ENV: dict[str, str] = {}
_WORKSPACE_ROOT: Path | None = None


def pytest_configure(config: pytest.Config) -> None:
    """Run every test from an empty workspace with no NESTFI_* settings."""
    global _PREVIOUS_CWD, _PREVIOUS_ENV, _WORKSPACE_ROOT
    config.addinivalue_line("markers", "optional_dep: needs an optional dependency (fastapi)")

    repo_root = Path(__file__).resolve().parent.parent
    workspace_root = repo_root / ".tmp" / "test-workspaces" / uuid.uuid4().hex
    workspace_root.mkdir(parents=True, exist_ok=True)

    # A developer's nestfi.yaml/.env or exported NESTFI_* vars must not leak into tests.
    _PREVIOUS_ENV = {key: value for key, value in os.environ.items() if key.startswith("NESTFI_")}
    for key in _PREVIOUS_ENV:
        os.environ.pop(key, None)

    _PREVIOUS_CWD = Path.cwd()
    _WORKSPACE_ROOT = workspace_root
    os.chdir(workspace_root)


def pytest_unconfigure(config: pytest.Config) -> None:
    if _PREVIOUS_CWD is not None:
        os.chdir(_PREVIOUS_CWD)
    for key in [key for key in os.environ if key.startswith("NESTFI_")]:
        os.environ.pop(key, None)
    os.environ.update(_PREVIOUS_ENV)
    if _WORKSPACE_ROOT is not None:
        shutil.rmtree(_WORKSPACE_ROOT, ignore_errors=True)
