"""MemoryStore — validation, backend policy and fallback over two backends.

The relational backend is always present and is the backstop for every
write. When ``storage_backend`` is ``"semantic"`` the store also spawns the
semantic server and tries it first; any failure there degrades to the
relational backend instead of reaching the caller. Callers only ever see
``True``/``False`` or a (possibly empty) list; details go to the logger
and the error log.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Iterable
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from memstore.categories import derive_category, is_full_selection, normalize_categories
from memstore.config import Config, as_bool, split_command
from memstore.endpoint import endpoint_command, resolve_endpoint
from memstore.errors import (
    BackendUnavailable,
    MemstoreError,
    PersistenceError,
    ValidationError,
    log_error,
)
from memstore.models import MemoryMetadata, MemoryRecord
from memstore.process import ProcessChannel
from memstore.relational import RelationalBackend
from memstore.rpc import RpcClient
from memstore.semantic import SemanticBackend
from memstore.utils import (
    DEFAULT_DB,
    DEFAULT_RPC_TIMEOUT,
    DEFAULT_SEMANTIC_COMMAND,
    STARTUP_GRACE,
)

SEMANTIC = "semantic"
DATABASE = "database"


def _blank(value: Any) -> bool:
    return value is None or str(value) == ""


def prepare_record(
    owner_id: Any,
    content: Any,
    metadata: dict[str, Any] | MemoryMetadata | None = None,
) -> MemoryRecord:
    """Validate inputs and apply the metadata defaults.

    ``type`` defaults to ``user_message`` and ``timestamp`` to now; the
    category is derived or forced into the whitelist. Raises
    ValidationError for a missing owner or content: None or the empty
    string. Whitespace-only values are accepted as given.
    """
    if _blank(owner_id):
        raise ValidationError("no owner id provided for memory storage", component="store")
    if _blank(content):
        raise ValidationError("no content provided for memory storage", component="store")

    if isinstance(metadata, MemoryMetadata):
        data = metadata.model_dump(exclude_none=True)
    else:
        data = {k: v for k, v in dict(metadata or {}).items() if v is not None}
    try:
        meta = MemoryMetadata.model_validate(data)
    except PydanticValidationError as exc:
        raise ValidationError(
            "invalid memory metadata", component="store", detail=str(exc)
        ) from exc
    meta = meta.model_copy(update={"category": derive_category(meta.type, meta.category)})
    return MemoryRecord(owner_id=str(owner_id), content=str(content), metadata=meta)


class MemoryStore:
    """Stores and recalls memories, preferring the configured backend.

    ``options`` is any object with ``get_option(key, default)``; a
    ``Config`` is loaded when none is given. ``logger`` receives every log
    line the store emits. ``relational`` and ``semantic`` may be supplied
    to bypass construction from options.

    Construct one per process and hand it to collaborators; call
    ``close()`` (or use it as a context manager) on shutdown.
    """

    def __init__(
        self,
        options: Any = None,
        logger: logging.Logger | None = None,
        *,
        relational: RelationalBackend | None = None,
        semantic: SemanticBackend | None = None,
    ):
        self.options = options if options is not None else Config()
        self.log = logger or logging.getLogger("memstore")
        self.relational = relational or RelationalBackend(
            self._option("db_path", str(DEFAULT_DB))
        )
        self.semantic = semantic
        self.relational_available = False
        self.semantic_available = False
        self._channel: ProcessChannel | None = None
        self._semantic_lock = threading.Lock()
        self._initialized = False
        self._closed = False
        self.initialize()

    def __enter__(self) -> "MemoryStore":
        return self

    def __exit__(self, *exc_info):
        self.close()

    def __repr__(self) -> str:
        return (
            f"MemoryStore(backend={self.backend!r}, "
            f"relational={self.relational_available}, semantic={self.semantic_available})"
        )

    def _option(self, key: str, default: Any = None) -> Any:
        return self.options.get_option(key, default)

    # -- Settings --

    @property
    def backend(self) -> str:
        return str(self._option("storage_backend", DATABASE))

    @property
    def enabled(self) -> bool:
        return as_bool(self._option("enable_memory", True))

    @property
    def automation(self) -> bool:
        return as_bool(self._option("automation", False))

    def _use_semantic(self) -> bool:
        return self.backend == SEMANTIC and self.semantic_available and self.semantic is not None

    def _report(self, error: MemstoreError | Exception):
        log_error(error, component=getattr(error, "component", "store"), sink=self.log)

    # -- Lifecycle --

    def initialize(self):
        """Open the relational table and, if preferred, the semantic server.

        Runs once per instance. Never raises: a backend that cannot come up
        is just marked unavailable.
        """
        if self._initialized:
            return
        self._initialized = True

        try:
            self.relational.open()
        except PersistenceError as exc:
            self._report(exc)
        self.relational_available = self.relational.table_exists()
        if not self.relational_available:
            self.log.warning("memory table unavailable at %s", self.relational.db_path)

        if self.backend == SEMANTIC:
            self._init_semantic()
        else:
            self.log.debug("semantic backend disabled in settings, using database storage")

    def _init_semantic(self):
        if self.automation:
            self.log.info("semantic backend skipped in automation context")
            return
        if self.semantic is not None:
            self.semantic_available = True
            return

        cwd = self._option("semantic.cwd", "") or None
        endpoint = resolve_endpoint(self._option("semantic.endpoint", ""), local_dir=cwd)
        if endpoint is not None:
            self.log.info("using semantic server endpoint %s", endpoint)
            command = endpoint_command(endpoint)
        else:
            command = split_command(self._option("semantic.command", DEFAULT_SEMANTIC_COMMAND))

        try:
            channel = ProcessChannel(
                command,
                cwd=cwd,
                startup_grace=float(self._option("semantic.startup_grace", STARTUP_GRACE)),
            )
            channel.start()
        except BackendUnavailable as exc:
            self._report(exc)
            return
        except ValueError as exc:
            self._report(BackendUnavailable(
                "no semantic server command configured", component="store", detail=str(exc)
            ))
            return

        self._channel = channel
        timeout = float(self._option("semantic.timeout", DEFAULT_RPC_TIMEOUT))
        self.semantic = SemanticBackend(RpcClient(channel, timeout=timeout))
        self.semantic_available = True

    def close(self):
        """Stop the semantic server and close the database. Idempotent."""
        if self._closed:
            return
        self._closed = True
        if self._channel is not None:
            self._channel.stop()
            self._channel = None
        self.relational.close()
        self.relational_available = False
        self.semantic_available = False

    # -- Public operations --

    def store_memory(
        self,
        owner_id: Any,
        content: Any,
        metadata: dict[str, Any] | MemoryMetadata | None = None,
    ) -> bool:
        """Persist one memory. Returns True if any backend stored it."""
        if not self.enabled:
            self.log.debug("memory disabled; not storing")
            return False
        try:
            record = prepare_record(owner_id, content, metadata)
        except ValidationError as exc:
            self._report(exc)
            return False

        if self._use_semantic():
            with self._semantic_lock:
                stored = self.semantic.store(record)
            if stored:
                return True
            self.log.warning("semantic storage failed, falling back to database")

        if not self.relational_available:
            self._report(BackendUnavailable("memory table unavailable", component="relational"))
            return False
        if self.relational.store(record) is None:
            self._report(PersistenceError(
                f"could not store memory for owner {record.owner_id}", component="relational"
            ))
            return False
        return True

    def recall_memories(
        self,
        owner_id: Any,
        query: str,
        limit: int = 5,
        categories: str | Iterable[str] | None = None,
    ) -> list[MemoryRecord]:
        """Return memories relevant to ``query``, newest or best first.

        ``categories`` may be one name or several; unknown names are
        dropped and an empty selection means all categories.
        """
        if not self.enabled:
            return []
        if _blank(owner_id):
            self.log.warning("no owner id provided for memory recall")
            return []
        if _blank(query):
            self.log.warning("no query provided for memory recall")
            return []

        owner = str(owner_id)
        selected = normalize_categories(categories)
        self.log.debug(
            "recalling memories for owner %s with query %r, limit %d, categories: %s",
            owner, query, limit, ", ".join(selected),
        )

        if self._use_semantic():
            try:
                with self._semantic_lock:
                    return self.semantic.search(owner, query, limit, selected)
            except BackendUnavailable as exc:
                self._report(exc)
                self.log.warning("semantic recall failed, falling back to database")

        if not self.relational_available:
            return []
        try:
            return self.relational.search(owner, query, limit, selected)
        except PersistenceError as exc:
            self._report(exc)
            return []

    def clear_memories(
        self,
        owner_id: Any,
        categories: str | Iterable[str] | None = None,
    ) -> bool:
        """Delete an owner's memories, all of them or only some categories.

        Only relational rows are deleted: the semantic server has no delete
        operation, so copies stored there survive a clear.
        """
        if _blank(owner_id):
            self._report(ValidationError(
                "no owner id provided for memory clearing", component="store"
            ))
            return False

        owner = str(owner_id)
        selected: tuple[str, ...] | None = None
        if categories is not None:
            selected = normalize_categories(categories)
            if is_full_selection(selected):
                selected = None

        if self._use_semantic():
            self.log.info(
                "semantic backend cannot delete; clearing database memories only for owner %s",
                owner,
            )

        if not self.relational_available:
            self._report(BackendUnavailable("memory table unavailable", component="relational"))
            return False

        report = self.relational.delete(owner, selected)
        if not report.ok:
            self._report(PersistenceError(
                f"could not clear categories {', '.join(report.failed)} for owner {owner}",
                component="relational",
            ))
        else:
            self.log.info("cleared %d memories for owner %s", report.deleted, owner)
        return report.ok

    # -- Maintenance & diagnostics --

    def enforce_retention(self, owner_id: Any = None) -> int:
        """Apply ``retention_days`` and ``max_memories_per_owner``.

        Returns the number of memories removed (0 on failure).
        """
        if not self.relational_available:
            return 0
        try:
            return self.relational.prune(
                max_per_owner=int(self._option("max_memories_per_owner", 50)),
                retention_days=int(self._option("retention_days", 30)),
                owner_id=None if _blank(owner_id) else str(owner_id),
            )
        except PersistenceError as exc:
            self._report(exc)
            return 0

    def stats(self) -> dict[str, Any]:
        """Database statistics plus the five newest memories."""
        if not self.relational_available:
            return {}
        try:
            data = self.relational.stats()
            data["latest"] = [r.model_dump() for r in self.relational.recent(5)]
        except PersistenceError as exc:
            self._report(exc)
            return {}
        return data

    def status(self) -> dict[str, Any]:
        """Which backends are configured and reachable right now."""
        return {
            "enabled": self.enabled,
            "backend": self.backend,
            "relational_available": self.relational_available,
            "semantic_available": self.semantic_available,
            "semantic_running": self.semantic.available if self.semantic is not None else False,
            "channel_state": self._channel.state.value if self._channel else None,
            "channel_error": self._channel.last_error if self._channel else "",
            "db_path": str(self.relational.db_path),
        }

    def self_test(self, owner_id: Any) -> dict[str, Any]:
        """Store a test memory and try to recall it."""
        content = f"This is a test memory created at {time.strftime('%Y-%m-%d %H:%M:%S')}"
        stored = self.store_memory(owner_id, content, {"type": "test"})
        memories = self.recall_memories(owner_id, "test memory", 1) if stored else []
        return {
            "stored": stored,
            "retrieved": bool(memories),
            "memory": memories[0].model_dump() if memories else None,
        }
