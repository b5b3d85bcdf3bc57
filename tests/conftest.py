"""Shared fixtures: isolated paths, config, and the fake semantic server."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

import memstore.endpoint as endpoint_mod
import memstore.errors as errors_mod
from memstore.config import Config

FAKE_SERVER = Path(__file__).parent / "fake_semantic_server.py"


@pytest.fixture(autouse=True)
def _isolate(tmp_path, monkeypatch):
    """Keep error logs, CLAUDE.md lookups and env overrides inside the test."""
    monkeypatch.setattr(errors_mod, "LOG_DIR", tmp_path)
    monkeypatch.setattr(errors_mod, "ERROR_LOG", tmp_path / "errors.log")
    monkeypatch.setattr(endpoint_mod, "GLOBAL_NOTES", tmp_path / "home" / "CLAUDE.md")
    for key in (
        "MEMSTORE_ENABLE_MEMORY",
        "MEMSTORE_STORAGE_BACKEND",
        "MEMSTORE_MAX_MEMORIES",
        "MEMSTORE_RETENTION_DAYS",
        "MEMSTORE_DB_PATH",
        "MEMSTORE_AUTOMATION",
        "MEMSTORE_SEMANTIC_COMMAND",
        "MEMSTORE_SEMANTIC_ENDPOINT",
        "MEMSTORE_OWNER",
    ):
        monkeypatch.delenv(key, raising=False)


def server_command(mode: str = "normal") -> list[str]:
    """argv that launches the fake semantic server in ``mode``."""
    return [sys.executable, str(FAKE_SERVER), mode]


def make_config(tmp_path: Path, **overrides) -> Config:
    """Config with no file on disk, a temp database, and dotted overrides."""
    values = {"db_path": str(tmp_path / "memory.db"), "semantic.cwd": str(tmp_path)}
    values.update({k.replace("__", "."): v for k, v in overrides.items()})
    return Config(tmp_path / "absent.yaml", overrides=values)


@pytest.fixture
def config(tmp_path) -> Config:
    return make_config(tmp_path)
