"""Shared fixtures for CLI tests.

Every test runs in its own temporary directory (so no ``.env`` file is
picked up) against a fresh SQLite state store.
"""

from __future__ import annotations

import os
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest
from typer.testing import CliRunner


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    for key in list(os.environ):
        if key.startswith("BILLING_"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.chdir(tmp_path)


@pytest.fixture()
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture()
def db_url(tmp_path: Path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'cli.db'}"


@pytest.fixture()
def invoke(runner: CliRunner, db_url: str) -> Callable[..., Any]:
    """Invoke the CLI against the temporary store; ``--json`` when ``json=True``."""
    from billing_cli.app import app

    def _invoke(*args: str, json: bool = False):
        prefix = ["--database-url", db_url]
        if json:
            prefix.append("--json")
        return runner.invoke(app, [*prefix, *args])

    return _invoke


@pytest.fixture()
def initialised(invoke) -> None:
    result = invoke("init-db")
    assert result.exit_code == 0, result.output
