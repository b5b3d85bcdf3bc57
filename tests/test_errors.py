"""Tests for memstore.errors — error types, logging, reading, and clearing."""

import json
import logging
from unittest.mock import MagicMock

import memstore.errors as errors_mod
from memstore.errors import (
    BackendUnavailable,
    ConfigError,
    MemstoreError,
    PersistenceError,
    ProtocolError,
    RpcTimeout,
    Severity,
    ValidationError,
    clear_error_log,
    get_recent_errors,
    log_error,
)


# -- Error classes ---------------------------------------------------------


class TestErrorClasses:
    """Tests for MemstoreError and its subclasses."""

    def test_base(self):
        """MemstoreError stores message, component, detail, and timestamp."""
        err = MemstoreError("something broke", component="rpc", detail="stack trace")
        assert str(err) == "something broke"
        assert err.component == "rpc"
        assert err.detail == "stack trace"
        assert err.severity == Severity.ERROR
        assert err.timestamp

    def test_default_component_and_detail(self):
        err = MemstoreError("msg")
        assert err.component == "memstore"
        assert err.detail == ""

    def test_severities(self):
        assert ValidationError("x").severity == Severity.WARNING
        assert BackendUnavailable("x").severity == Severity.WARNING
        assert PersistenceError("x").severity == Severity.ERROR
        assert ConfigError("x").severity == Severity.WARNING

    def test_hierarchy(self):
        """Timeouts and protocol errors are both 'unavailable' to callers."""
        assert issubclass(RpcTimeout, ProtocolError)
        assert issubclass(ProtocolError, BackendUnavailable)
        assert issubclass(BackendUnavailable, MemstoreError)
        assert not issubclass(ValidationError, BackendUnavailable)


# -- log_error -------------------------------------------------------------


class TestLogError:
    """Tests for log_error()."""

    def test_writes_json_line(self):
        log_error(PersistenceError("insert failed", component="relational", detail="locked"))
        entry = json.loads(errors_mod.ERROR_LOG.read_text().strip())
        assert entry["component"] == "relational"
        assert entry["severity"] == "error"
        assert entry["type"] == "PersistenceError"
        assert entry["message"] == "insert failed"
        assert entry["detail"] == "locked"
        assert entry["traceback"] == ""

    def test_plain_exception(self):
        """Non-memstore exceptions use the given component and ERROR severity."""
        log_error(RuntimeError("boom"), component="cli")
        entry = json.loads(errors_mod.ERROR_LOG.read_text().strip())
        assert entry["component"] == "cli"
        assert entry["severity"] == "error"
        assert entry["detail"] == ""

    def test_traceback_captured_inside_except(self):
        try:
            raise ValueError("inner")
        except ValueError as exc:
            log_error(exc)
        entry = json.loads(errors_mod.ERROR_LOG.read_text().strip())
        assert "ValueError: inner" in entry["traceback"]

    def test_appends(self):
        log_error(MemstoreError("one"))
        log_error(MemstoreError("two"))
        assert len(errors_mod.ERROR_LOG.read_text().strip().splitlines()) == 2

    def test_sink_receives_message(self):
        sink = MagicMock(spec=logging.Logger)
        log_error(ValidationError("no owner", component="store"), sink=sink)
        sink.log.assert_called_once_with(logging.WARNING, "[%s] %s", "store", "no owner")

    def test_unwritable_log_dir(self, tmp_path, monkeypatch):
        """A log directory that cannot be created does not raise."""
        blocker = tmp_path / "file"
        blocker.write_text("")
        monkeypatch.setattr(errors_mod, "LOG_DIR", blocker / "sub")
        monkeypatch.setattr(errors_mod, "ERROR_LOG", blocker / "sub" / "errors.log")
        log_error(MemstoreError("still fine"))


# -- get_recent_errors / clear_error_log -----------------------------------


class TestReadAndClear:
    def test_no_log(self):
        assert get_recent_errors() == []

    def test_limit(self):
        for i in range(5):
            log_error(MemstoreError(f"e{i}"))
        recent = get_recent_errors(limit=2)
        assert [e["message"] for e in recent] == ["e3", "e4"]

    def test_skips_corrupt_lines(self):
        log_error(MemstoreError("good"))
        with open(errors_mod.ERROR_LOG, "a") as f:
            f.write("not json\n")
        assert [e["message"] for e in get_recent_errors()] == ["good"]

    def test_clear(self):
        log_error(MemstoreError("x"))
        clear_error_log()
        assert get_recent_errors() == []

    def test_clear_without_log(self):
        clear_error_log()
        assert not errors_mod.ERROR_LOG.exists()
