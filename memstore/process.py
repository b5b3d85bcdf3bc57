"""Subprocess lifecycle for the semantic search server.

A ProcessChannel owns exactly one child process with all three standard
streams piped. Its lifecycle is an explicit state machine:

    NOT_STARTED → STARTING → RUNNING → STOPPED
                          ↘ FAILED ↗

Every failure surfaces as BackendUnavailable so callers can fall back to
the relational store instead of treating it as fatal.
"""

from __future__ import annotations

import logging
import os
import subprocess
import time
from enum import Enum
from pathlib import Path

from memstore.errors import BackendUnavailable, ProtocolError, RpcTimeout
from memstore.utils import (
    DEFAULT_RPC_TIMEOUT,
    MAX_FRAME_BYTES,
    POLL_INTERVAL,
    STARTUP_GRACE,
    STOP_TIMEOUT,
)

log = logging.getLogger("memstore.process")

_READ_CHUNK = 65536


class ChannelState(str, Enum):
    """Lifecycle states of a ProcessChannel."""

    NOT_STARTED = "not_started"
    STARTING = "starting"
    RUNNING = "running"
    FAILED = "failed"
    STOPPED = "stopped"


_TRANSITIONS: dict[ChannelState, frozenset[ChannelState]] = {
    ChannelState.NOT_STARTED: frozenset({ChannelState.STARTING, ChannelState.STOPPED}),
    ChannelState.STARTING: frozenset({ChannelState.RUNNING, ChannelState.FAILED}),
    ChannelState.RUNNING: frozenset({ChannelState.FAILED, ChannelState.STOPPED}),
    ChannelState.FAILED: frozenset({ChannelState.STARTING, ChannelState.STOPPED}),
    ChannelState.STOPPED: frozenset({ChannelState.STARTING}),
}


class ChannelStateError(RuntimeError):
    """Raised on a transition the lifecycle does not allow."""


class ProcessChannel:
    """One external subprocess, spoken to one line at a time."""

    def __init__(
        self,
        command: list[str],
        cwd: str | Path | None = None,
        startup_grace: float = STARTUP_GRACE,
        env: dict | None = None,
        max_frame: int = MAX_FRAME_BYTES,
    ):
        if not command:
            raise ValueError("command must not be empty")
        self.command = list(command)
        self.cwd = str(cwd) if cwd else None
        self.startup_grace = startup_grace
        self.env = env
        self.max_frame = max_frame
        self.state = ChannelState.NOT_STARTED
        self.last_error = ""
        self._proc: subprocess.Popen | None = None
        self._buffer = bytearray()

    def __repr__(self) -> str:
        return f"ProcessChannel({self.command[0]!r}, state={self.state.value})"

    @property
    def pid(self) -> int | None:
        return self._proc.pid if self._proc else None

    def _transition(self, new: ChannelState):
        if new not in _TRANSITIONS[self.state]:
            raise ChannelStateError(f"cannot move from {self.state.value} to {new.value}")
        log.debug("channel %s: %s -> %s", self.command[0], self.state.value, new.value)
        self.state = new

    # -- Lifecycle --

    def start(self):
        """Spawn the process and confirm it survived the startup grace period.

        Raises BackendUnavailable (after moving to FAILED) if the process
        cannot be spawned or has already exited. Never retries.
        """
        if self.state == ChannelState.RUNNING:
            return
        if self.state == ChannelState.FAILED:
            self.stop()
        self._transition(ChannelState.STARTING)
        self._buffer = bytearray()

        try:
            self._proc = subprocess.Popen(
                self.command,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                cwd=self.cwd,
                env=self.env,
            )
        except OSError as exc:
            self._fail(f"cannot spawn {self.command[0]}: {exc}")
            raise BackendUnavailable(
                "semantic server failed to start", component="process", detail=str(exc)
            ) from exc

        os.set_blocking(self._proc.stdout.fileno(), False)
        os.set_blocking(self._proc.stderr.fileno(), False)
        os.set_blocking(self._proc.stdin.fileno(), False)

        time.sleep(self.startup_grace)

        if self._proc.poll() is not None:
            stderr = self._drain_stderr()
            code = self._proc.returncode
            self._close_streams()
            self._fail(f"exited with code {code} during startup: {stderr}")
            raise BackendUnavailable(
                "semantic server failed to start", component="process", detail=stderr
            )

        self._transition(ChannelState.RUNNING)
        log.info("semantic server started (pid %d): %s", self._proc.pid, " ".join(self.command))

    def is_running(self) -> bool:
        """Point-in-time liveness check."""
        if self.state != ChannelState.RUNNING or self._proc is None:
            return False
        if self._proc.poll() is not None:
            self._fail(f"exited with code {self._proc.returncode}")
            return False
        return True

    def stop(self, timeout: float = STOP_TIMEOUT):
        """Terminate the process and close its pipes. Safe to call repeatedly."""
        if self.state == ChannelState.STOPPED:
            return
        proc, self._proc = self._proc, None
        if proc is not None:
            try:
                if proc.poll() is None:
                    proc.terminate()
                    try:
                        proc.wait(timeout=timeout)
                    except subprocess.TimeoutExpired:
                        proc.kill()
                        proc.wait(timeout=timeout)
            except (OSError, subprocess.TimeoutExpired) as exc:
                log.warning("error stopping semantic server: %s", exc)
            for stream in (proc.stdin, proc.stdout, proc.stderr):
                try:
                    if stream:
                        stream.close()
                except OSError:
                    pass
            log.info("semantic server stopped (pid %d)", proc.pid)
        self._buffer = bytearray()
        self.state = ChannelState.STOPPED

    # -- I/O --

    def write_line(self, data: bytes, timeout: float = DEFAULT_RPC_TIMEOUT):
        """Send one newline-terminated message to the process's stdin.

        stdin is non-blocking, so a process that stopped reading cannot
        stall the caller: the write is retried every POLL_INTERVAL seconds
        and raises RpcTimeout once ``timeout`` has elapsed. A timed-out
        write leaves a partial frame in the pipe, so the channel is failed.
        """
        if not self.is_running():
            raise BackendUnavailable("semantic server not running", component="process")
        if not data.endswith(b"\n"):
            data += b"\n"

        deadline = time.monotonic() + timeout
        pending = memoryview(data)
        fd = self._proc.stdin.fileno()
        while pending:
            try:
                written = os.write(fd, pending)
            except BlockingIOError:
                written = 0
            except (OSError, ValueError) as exc:
                self._fail(f"stdin closed: {exc}")
                raise BackendUnavailable(
                    "semantic server stdin closed", component="process", detail=str(exc)
                ) from exc
            pending = pending[written:]
            if not pending:
                return
            if time.monotonic() >= deadline:
                self._fail(f"stdin not drained within {timeout:.1f}s")
                raise RpcTimeout(
                    f"request not accepted within {timeout:.1f}s",
                    component="process",
                    detail=f"{len(pending)} of {len(data)} bytes unsent",
                )
            if not written:
                time.sleep(POLL_INTERVAL)

    def read_line(self, timeout: float = DEFAULT_RPC_TIMEOUT) -> bytes:
        """Return the next complete stdout line (without the newline).

        Polls the non-blocking pipe every POLL_INTERVAL seconds and raises
        RpcTimeout once ``timeout`` has elapsed, even while data keeps
        arriving. A line longer than ``max_frame`` bytes is a ProtocolError.
        Anything read past the first newline stays buffered for the next call.
        """
        deadline = time.monotonic() + timeout
        while True:
            line = self._pop_line()
            if line is not None:
                return line

            if len(self._buffer) > self.max_frame:
                size = len(self._buffer)
                self._buffer = bytearray()
                self._fail(f"response line exceeded {self.max_frame} bytes")
                raise ProtocolError(
                    "semantic server response too large",
                    component="process",
                    detail=f"{size} bytes without a newline",
                )

            proc = self._proc
            if proc is None or self.state != ChannelState.RUNNING:
                raise BackendUnavailable("semantic server not running", component="process")

            if time.monotonic() >= deadline:
                raise RpcTimeout(
                    f"no response within {timeout:.1f}s", component="process"
                )

            try:
                chunk = os.read(proc.stdout.fileno(), _READ_CHUNK)
            except BlockingIOError:
                chunk = None
            except (OSError, ValueError) as exc:
                self._fail(f"stdout unreadable: {exc}")
                raise BackendUnavailable(
                    "semantic server stdout closed", component="process", detail=str(exc)
                ) from exc

            if chunk == b"":
                stderr = self._drain_stderr()
                self._fail(f"stdout closed: {stderr}")
                raise BackendUnavailable(
                    "semantic server closed its output", component="process", detail=stderr
                )
            if chunk:
                self._buffer += chunk
            else:
                time.sleep(POLL_INTERVAL)

    # -- Internals --

    def _pop_line(self) -> bytes | None:
        end = self._buffer.find(b"\n")
        if end < 0:
            return None
        line = bytes(self._buffer[:end])
        self._buffer = bytearray(self._buffer[end + 1:])
        return line.rstrip(b"\r")

    def _drain_stderr(self) -> str:
        """Read whatever stderr holds right now, without blocking."""
        if self._proc is None or self._proc.stderr is None:
            return ""
        chunks = []
        try:
            while True:
                chunk = os.read(self._proc.stderr.fileno(), _READ_CHUNK)
                if not chunk:
                    break
                chunks.append(chunk)
        except (BlockingIOError, OSError, ValueError):
            pass
        return b"".join(chunks).decode(errors="replace").strip()

    def _close_streams(self):
        if self._proc is None:
            return
        for stream in (self._proc.stdin, self._proc.stdout, self._proc.stderr):
            try:
                if stream:
                    stream.close()
            except OSError:
                pass
        self._proc = None

    def _fail(self, reason: str):
        self.last_error = reason
        log.warning("semantic server %s", reason)
        if self.state in (ChannelState.STARTING, ChannelState.RUNNING):
            self._transition(ChannelState.FAILED)
