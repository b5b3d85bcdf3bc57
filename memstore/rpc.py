"""JSON-RPC 2.0 client over a ProcessChannel's stdin/stdout."""

from __future__ import annotations

import json
import logging
import time
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from memstore.errors import ProtocolError, RpcTimeout
from memstore.models import RpcRequest, RpcResponse
from memstore.process import ProcessChannel
from memstore.utils import DEFAULT_RPC_TIMEOUT

log = logging.getLogger("memstore.rpc")


class RpcClient:
    """Send one request, wait for its response line, return the result.

    There is no pipelining: each call writes a request and then reads until
    the matching response arrives or the deadline passes. Callers must not
    share one client between threads without their own lock.
    """

    def __init__(self, channel: ProcessChannel, timeout: float = DEFAULT_RPC_TIMEOUT):
        self.channel = channel
        self.timeout = timeout

    def call(self, method: str, params: dict[str, Any], timeout: float | None = None) -> Any:
        """Perform one request/response exchange and return ``result``.

        Raises BackendUnavailable if the process is gone, RpcTimeout if the
        request is not sent and answered within ``timeout``, and
        ProtocolError for unencodable requests or malformed or error-shaped
        responses.
        """
        timeout = self.timeout if timeout is None else timeout
        deadline = time.monotonic() + timeout
        request = RpcRequest(method=method, params=params)
        try:
            line = request.to_line()
        except (TypeError, ValueError) as exc:
            raise ProtocolError(
                f"{method}: cannot encode request", component="rpc", detail=str(exc)
            ) from exc
        log.debug("rpc -> %s id=%s", method, request.id)
        self.channel.write_line(line, timeout=timeout)

        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise RpcTimeout(
                    f"{method}: no response within {timeout:.1f}s", component="rpc"
                )
            line = self.channel.read_line(timeout=remaining)
            if not line.strip():
                continue

            response = self._parse(method, line)
            if response.is_notification:
                log.debug("rpc <- notification %s (ignored)", response.method)
                continue
            if response.id is not None and str(response.id) != request.id:
                log.debug("rpc <- stale response id=%s (ignored)", response.id)
                continue

            if response.error is not None:
                raise ProtocolError(
                    f"{method}: server returned an error",
                    component="rpc",
                    detail=json.dumps(response.error, default=str),
                )
            if not response.has_result:
                raise ProtocolError(
                    f"{method}: response has no result",
                    component="rpc",
                    detail=line.decode(errors="replace")[:500],
                )
            log.debug("rpc <- %s id=%s", method, request.id)
            return response.result

    @staticmethod
    def _parse(method: str, line: bytes) -> RpcResponse:
        try:
            return RpcResponse.from_line(line)
        except PydanticValidationError as exc:
            raise ProtocolError(
                f"{method}: unparseable response",
                component="rpc",
                detail=line.decode(errors="replace")[:500],
            ) from exc
