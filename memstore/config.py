"""Configuration loading: YAML file + environment variable overrides."""

from __future__ import annotations

import copy
import os
import shlex
from pathlib import Path
from typing import Any

import yaml

from memstore.errors import ConfigError
from memstore.utils import (
    DEFAULT_DB,
    DEFAULT_RPC_TIMEOUT,
    DEFAULT_SEMANTIC_COMMAND,
    STARTUP_GRACE,
)

DEFAULT_CONFIG_DIR = Path.home() / ".config" / "memstore"
DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "config.yaml"

BACKENDS = ("database", "semantic")

DEFAULTS: dict[str, Any] = {
    "enable_memory": True,
    "storage_backend": "database",
    "max_memories_per_owner": 50,
    "retention_days": 30,
    "db_path": str(DEFAULT_DB),
    "automation": False,
    "semantic": {
        "command": DEFAULT_SEMANTIC_COMMAND,
        "cwd": "",
        "endpoint": "",
        "timeout": DEFAULT_RPC_TIMEOUT,
        "startup_grace": STARTUP_GRACE,
    },
}

_ENV_MAP = {
    "MEMSTORE_ENABLE_MEMORY": ("enable_memory",),
    "MEMSTORE_STORAGE_BACKEND": ("storage_backend",),
    "MEMSTORE_MAX_MEMORIES": ("max_memories_per_owner",),
    "MEMSTORE_RETENTION_DAYS": ("retention_days",),
    "MEMSTORE_DB_PATH": ("db_path",),
    "MEMSTORE_AUTOMATION": ("automation",),
    "MEMSTORE_SEMANTIC_COMMAND": ("semantic", "command"),
    "MEMSTORE_SEMANTIC_ENDPOINT": ("semantic", "endpoint"),
}

_MISSING = object()

_FALSE_STRINGS = frozenset({"", "0", "false", "no", "off"})


class Config:
    """Merged configuration from YAML + env vars.

    Exposes ``get_option(key, default)`` so it can be handed straight to
    ``MemoryStore``; dotted keys reach into nested sections
    (``get_option("semantic.timeout")``).
    """

    def __init__(self, path: str | Path | None = None, overrides: dict[str, Any] | None = None):
        self._path = Path(path) if path else DEFAULT_CONFIG_FILE
        self._data: dict[str, Any] = {}
        self._load(overrides or {})

    def _load(self, overrides: dict[str, Any]):
        merged = _deep_copy(DEFAULTS)

        if self._path.exists():
            try:
                with open(self._path) as f:
                    file_data = yaml.safe_load(f) or {}
            except (yaml.YAMLError, OSError) as exc:
                raise ConfigError(
                    f"cannot read config {self._path}", component="config", detail=str(exc)
                ) from exc
            if not isinstance(file_data, dict):
                raise ConfigError(f"config {self._path} must be a mapping", component="config")
            _deep_merge(merged, file_data)

        for env_key, path in _ENV_MAP.items():
            val = os.environ.get(env_key)
            if val is not None:
                _set_nested(merged, path, _coerce(val))

        for key, value in overrides.items():
            _set_nested(merged, tuple(key.split(".")), value)

        self._data = merged

    def get_option(self, key: str, default: Any = None) -> Any:
        """Return the value at a dotted ``key``, or ``default`` when unset."""
        node: Any = self._data
        for part in key.split("."):
            if not isinstance(node, dict):
                return default
            node = node.get(part, _MISSING)
            if node is _MISSING:
                return default
        return node

    # -- Accessors --

    @property
    def enable_memory(self) -> bool:
        return as_bool(self._data["enable_memory"])

    @property
    def storage_backend(self) -> str:
        return str(self._data["storage_backend"])

    @property
    def max_memories_per_owner(self) -> int:
        return int(self._data["max_memories_per_owner"])

    @property
    def retention_days(self) -> int:
        return int(self._data["retention_days"])

    @property
    def db_path(self) -> Path:
        return Path(self._data["db_path"]).expanduser()

    @property
    def automation(self) -> bool:
        return as_bool(self._data["automation"])

    @property
    def semantic_command(self) -> list[str]:
        return split_command(self._data["semantic"]["command"])

    @property
    def semantic_endpoint(self) -> str:
        return str(self._data["semantic"]["endpoint"] or "")

    @property
    def semantic_timeout(self) -> float:
        return float(self._data["semantic"]["timeout"])

    def validate(self) -> list[str]:
        """Return list of validation errors, empty if config is valid."""
        errors = []
        if self.storage_backend not in BACKENDS:
            errors.append(
                f"storage_backend must be one of {', '.join(BACKENDS)} "
                f"(got {self.storage_backend!r})"
            )
        if self.max_memories_per_owner < 0:
            errors.append("max_memories_per_owner must be >= 0")
        if self.retention_days < 0:
            errors.append("retention_days must be >= 0")
        if self.storage_backend == "semantic" and not (
            self.semantic_command or self.semantic_endpoint
        ):
            errors.append("semantic.command or semantic.endpoint is required")
        if self.semantic_timeout <= 0:
            errors.append("semantic.timeout must be positive")
        return errors

    def raw(self) -> dict[str, Any]:
        return _deep_copy(self._data)


def as_bool(value: Any) -> bool:
    """Read an option as a flag. Strings such as "0", "false", "no" and "off" are false."""
    if isinstance(value, str):
        return value.strip().lower() not in _FALSE_STRINGS
    return bool(value)


def split_command(command: str | list[str] | None) -> list[str]:
    """Accept a command as a shell-style string or an argv list."""
    if not command:
        return []
    if isinstance(command, str):
        return shlex.split(command)
    return [str(part) for part in command]


def _deep_copy(d: dict) -> dict:
    """Deep copy a config dict."""
    return copy.deepcopy(d)


def _deep_merge(base: dict, override: dict):
    for k, v in override.items():
        if k in base and isinstance(base[k], dict) and isinstance(v, dict):
            _deep_merge(base[k], v)
        else:
            base[k] = v


def _set_nested(d: dict, keys: tuple, value):
    for key in keys[:-1]:
        d = d.setdefault(key, {})
    d[keys[-1]] = value


def _coerce(val: str):
    """Try to coerce string env var to int/bool."""
    if val.isdigit():
        return int(val)
    if val.lower() in ("true", "false"):
        return val.lower() == "true"
    return val
