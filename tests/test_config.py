"""Tests for configuration loading."""

import pytest
import yaml

from memstore.config import Config, as_bool, split_command
from memstore.errors import ConfigError


def test_defaults(tmp_path):
    """Config with no file uses sensible defaults."""
    cfg = Config(tmp_path / "missing.yaml")
    assert cfg.enable_memory is True
    assert cfg.storage_backend == "database"
    assert cfg.max_memories_per_owner == 50
    assert cfg.retention_days == 30
    assert cfg.automation is False
    assert cfg.semantic_command[:2] == ["npx", "-y"]
    assert cfg.semantic_timeout == 2.0
    assert cfg.validate() == []


def test_file_values(tmp_path):
    """YAML values merge over the defaults, nested sections included."""
    path = tmp_path / "config.yaml"
    path.write_text(yaml.dump({
        "storage_backend": "semantic",
        "retention_days": 7,
        "semantic": {"timeout": 5, "command": ["node", "server.js"]},
    }))
    cfg = Config(path)
    assert cfg.storage_backend == "semantic"
    assert cfg.retention_days == 7
    assert cfg.semantic_timeout == 5.0
    assert cfg.semantic_command == ["node", "server.js"]
    # untouched nested default survives the merge
    assert cfg.get_option("semantic.startup_grace") == 0.5


def test_env_override(tmp_path, monkeypatch):
    """Env vars override file values."""
    path = tmp_path / "config.yaml"
    path.write_text("storage_backend: semantic\nmax_memories_per_owner: 10\n")
    monkeypatch.setenv("MEMSTORE_STORAGE_BACKEND", "database")
    monkeypatch.setenv("MEMSTORE_MAX_MEMORIES", "99")
    monkeypatch.setenv("MEMSTORE_ENABLE_MEMORY", "false")
    monkeypatch.setenv("MEMSTORE_SEMANTIC_COMMAND", "python server.py --flag")
    cfg = Config(path)
    assert cfg.storage_backend == "database"
    assert cfg.max_memories_per_owner == 99
    assert cfg.enable_memory is False
    assert cfg.semantic_command == ["python", "server.py", "--flag"]


def test_overrides_win(tmp_path, monkeypatch):
    """Explicit dotted overrides beat env vars."""
    monkeypatch.setenv("MEMSTORE_DB_PATH", "/env/path.db")
    cfg = Config(tmp_path / "missing.yaml", overrides={
        "db_path": str(tmp_path / "x.db"),
        "semantic.endpoint": "/srv/server.js",
    })
    assert cfg.db_path == tmp_path / "x.db"
    assert cfg.semantic_endpoint == "/srv/server.js"


def test_get_option(tmp_path):
    cfg = Config(tmp_path / "missing.yaml")
    assert cfg.get_option("retention_days") == 30
    assert cfg.get_option("semantic.timeout") == 2.0
    assert cfg.get_option("nope", "fallback") == "fallback"
    assert cfg.get_option("retention_days.deeper", "x") == "x"


def test_db_path_expands_user(tmp_path):
    cfg = Config(tmp_path / "missing.yaml", overrides={"db_path": "~/mem.db"})
    assert "~" not in str(cfg.db_path)


def test_validate_bad_values(tmp_path):
    """Validation catches bad backends, counts and timeouts."""
    cfg = Config(tmp_path / "missing.yaml", overrides={
        "storage_backend": "redis",
        "retention_days": -1,
        "semantic.timeout": 0,
    })
    errors = cfg.validate()
    assert any("storage_backend" in e for e in errors)
    assert any("retention_days" in e for e in errors)
    assert any("timeout" in e for e in errors)


def test_validate_semantic_needs_command(tmp_path):
    cfg = Config(tmp_path / "missing.yaml", overrides={
        "storage_backend": "semantic",
        "semantic.command": "",
    })
    assert any("semantic.command" in e for e in cfg.validate())


def test_invalid_yaml(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("storage_backend: [unclosed\n")
    with pytest.raises(ConfigError):
        Config(path)


def test_non_mapping_yaml(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("- a\n- b\n")
    with pytest.raises(ConfigError):
        Config(path)


def test_empty_file_uses_defaults(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("")
    assert Config(path).storage_backend == "database"


def test_raw_is_a_copy(tmp_path):
    cfg = Config(tmp_path / "missing.yaml")
    cfg.raw()["semantic"]["timeout"] = 99
    assert cfg.semantic_timeout == 2.0


@pytest.mark.parametrize("command,expected", [
    ("npx -y pkg", ["npx", "-y", "pkg"]),
    ("node 'my server.js'", ["node", "my server.js"]),
    (["python", 3], ["python", "3"]),
    ("", []),
    (None, []),
])
def test_split_command(command, expected):
    assert split_command(command) == expected


@pytest.mark.parametrize("value,expected", [
    ("false", False),
    ("FALSE", False),
    ("0", False),
    ("no", False),
    ("off", False),
    ("", False),
    ("true", True),
    ("1", True),
    (True, True),
    (0, False),
    (None, False),
])
def test_as_bool(value, expected):
    assert as_bool(value) is expected


def test_string_flags_from_overrides(tmp_path):
    """Flags given as strings are coerced, so "false" turns them off."""
    cfg = Config(tmp_path / "missing.yaml", overrides={"enable_memory": "false", "automation": "0"})
    assert cfg.enable_memory is False
    assert cfg.automation is False
