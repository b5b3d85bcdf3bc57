"""Pydantic models for memory records and the semantic server's JSON-RPC frames."""

from __future__ import annotations

import json
import time
import uuid
from typing import Any, Literal

from pydantic import BaseModel, Field


class MemoryMetadata(BaseModel):
    """Metadata attached to a memory.

    ``type``, ``timestamp`` and ``category`` are the fields the store
    inspects; any other key is kept as-is and travels with the record.
    """

    type: str = Field(default="user_message", description="Free-form label")
    timestamp: int | float | str = Field(
        default_factory=lambda: int(time.time()),
        description="Creation time, unix seconds unless the caller supplied otherwise",
    )
    category: str | None = Field(default=None, description="One of the whitelisted categories")

    model_config = {"extra": "allow"}

    @property
    def extras(self) -> dict[str, Any]:
        """Keys beyond the named fields."""
        return dict(self.model_extra or {})

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)


class MemoryRecord(BaseModel):
    """A stored memory as returned by either backend."""

    id: int | str | None = Field(default=None, description="Backend-assigned identifier")
    owner_id: str = Field(..., description="Owner of the record")
    content: str = Field(..., description="Free text")
    metadata: MemoryMetadata = Field(default_factory=MemoryMetadata)
    created_at: float | None = Field(default=None, description="Persistence time (unix seconds)")
    score: float | None = Field(default=None, description="Relevance score, semantic results only")

    model_config = {"populate_by_name": True}

    @classmethod
    def from_wire(cls, item: dict[str, Any], owner_id: str) -> "MemoryRecord":
        """Build a record from one entry of a semantic ``search`` result."""
        metadata = dict(item.get("metadata") or {})
        owner = item.get("ownerId") or metadata.get("ownerId") or owner_id
        created = item.get("createdAt", item.get("created_at"))
        return cls(
            id=item.get("id"),
            owner_id=str(owner),
            content=item["content"],
            metadata=MemoryMetadata.model_validate(metadata),
            created_at=created if isinstance(created, (int, float)) else None,
            score=item.get("score"),
        )


class RpcRequest(BaseModel):
    """One JSON-RPC 2.0 request line sent to the semantic server."""

    jsonrpc: Literal["2.0"] = "2.0"
    method: str
    params: dict[str, Any] = Field(default_factory=dict)
    id: str = Field(default_factory=lambda: f"mem_{uuid.uuid4().hex}")

    def to_line(self) -> bytes:
        """Serialize to a single newline-terminated frame.

        Values JSON cannot represent are sent as their ``str()``, the same
        encoding the relational backend uses for metadata.
        """
        return (json.dumps(self.model_dump(), default=str) + "\n").encode()


class RpcResponse(BaseModel):
    """A response (or notification) line read back from the semantic server."""

    jsonrpc: str | None = None
    id: int | str | None = None
    method: str | None = None
    result: Any = None
    error: Any = None

    model_config = {"extra": "allow"}

    @property
    def has_result(self) -> bool:
        return "result" in self.model_fields_set

    @property
    def is_notification(self) -> bool:
        return self.id is None and self.method is not None

    @classmethod
    def from_line(cls, line: bytes | str) -> "RpcResponse":
        """Deserialize one response frame."""
        return cls.model_validate_json(line)
