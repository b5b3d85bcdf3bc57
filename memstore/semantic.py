"""SemanticBackend — store/search against the external semantic server."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from memstore.categories import is_full_selection
from memstore.errors import BackendUnavailable, ProtocolError
from memstore.models import MemoryRecord
from memstore.rpc import RpcClient

log = logging.getLogger("memstore.semantic")

OWNER_KEY = "ownerId"


def build_filter(owner_id: str, categories: Sequence[str] | None) -> dict[str, Any]:
    """Filter for a ``search`` call.

    Always pins the owner; adds an ``$or`` group only when ``categories``
    is a non-empty strict subset of the whitelist.
    """
    flt: dict[str, Any] = {f"metadata.{OWNER_KEY}": owner_id}
    if categories and not is_full_selection(categories):
        flt["$or"] = [{"metadata.category": c} for c in categories]
    return flt


class SemanticBackend:
    """Maps store/search onto JSON-RPC calls.

    Capabilities are ``store`` and ``search`` only; the server protocol
    has no delete.
    """

    capabilities = frozenset({"store", "search"})

    def __init__(self, client: RpcClient):
        self.client = client

    @property
    def available(self) -> bool:
        return self.client.channel.is_running()

    def store(self, record: MemoryRecord) -> bool:
        """Send a ``store`` request. True iff the server's result is truthy."""
        metadata = record.metadata.to_dict()
        metadata[OWNER_KEY] = record.owner_id
        try:
            result = self.client.call(
                "store", {"content": record.content, "metadata": metadata}
            )
        except BackendUnavailable as exc:
            log.warning("semantic store failed: %s %s", exc, exc.detail)
            return False
        if not result:
            log.warning("semantic store rejected: result=%r", result)
            return False
        return True

    def search(
        self,
        owner_id: str,
        query: str,
        limit: int,
        categories: Sequence[str] | None = None,
    ) -> list[MemoryRecord]:
        """Run a ``search`` request and return the matching records.

        An empty list means "no matches". Raises BackendUnavailable (or
        ProtocolError) when the server could not answer.
        """
        params = {
            "query": query,
            "filter": build_filter(owner_id, categories),
            "limit": limit,
        }
        log.debug("semantic search params=%s", params)
        result = self.client.call("search", params)
        if not isinstance(result, list):
            raise ProtocolError(
                "search: result is not a list", component="semantic", detail=repr(result)[:500]
            )
        try:
            records = [MemoryRecord.from_wire(item, owner_id) for item in result]
        except (KeyError, TypeError, AttributeError, PydanticValidationError) as exc:
            raise ProtocolError(
                "search: malformed result entry", component="semantic", detail=str(exc)
            ) from exc
        log.debug("semantic search returned %d results", len(records))
        return records
