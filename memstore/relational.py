"""RelationalBackend — SQLite table of memories with substring search.

Storage: ~/.memstore/memory.db (configurable)
Search: ``content LIKE %query%`` scoped to one owner, newest first
Categories: matched through ``json_extract(metadata, '$.category')``
"""

from __future__ import annotations

import json
import logging
import sqlite3
import time
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from memstore.categories import Category, is_full_selection
from memstore.errors import PersistenceError
from memstore.models import MemoryMetadata, MemoryRecord

log = logging.getLogger("memstore.relational")

TABLE = "memories"

_SCHEMA = f"""
CREATE TABLE IF NOT EXISTS {TABLE} (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    owner_id    TEXT    NOT NULL,
    content     TEXT    NOT NULL,
    metadata    TEXT,
    created_at  REAL    NOT NULL DEFAULT (CAST(strftime('%s', 'now') AS REAL))
);

CREATE INDEX IF NOT EXISTS idx_{TABLE}_owner ON {TABLE}(owner_id);
CREATE INDEX IF NOT EXISTS idx_{TABLE}_created ON {TABLE}(created_at);
"""

_CATEGORY_EXPR = "json_extract(metadata, '$.category')"

ALL = "*"


@dataclass
class DeleteReport:
    """Per-category outcome of a delete; ``None`` marks a failed category."""

    outcomes: dict[str, int | None] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return all(count is not None for count in self.outcomes.values())

    @property
    def failed(self) -> list[str]:
        return [name for name, count in self.outcomes.items() if count is None]

    @property
    def deleted(self) -> int:
        return sum(count for count in self.outcomes.values() if count is not None)


def _escape_like(text: str) -> str:
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _decode_metadata(raw: str | None) -> dict[str, Any]:
    if not raw:
        return {}
    try:
        data = json.loads(raw)
    except (TypeError, ValueError):
        return {}
    return data if isinstance(data, dict) else {}


class RelationalBackend:
    """SQLite-backed memory table."""

    def __init__(self, db_path: str | Path):
        self.db_path = Path(db_path).expanduser()
        self._conn: sqlite3.Connection | None = None

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise PersistenceError("database not open", component="relational")
        return self._conn

    def open(self):
        """Connect and create the table and indexes if they are missing."""
        if self._conn is not None:
            return
        try:
            if str(self.db_path) != ":memory:":
                self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
        except (sqlite3.Error, OSError) as exc:
            self._conn = None
            raise PersistenceError(
                f"cannot open {self.db_path}", component="relational", detail=str(exc)
            ) from exc
        self.ensure_schema()
        log.debug("RelationalBackend initialized at %s", self.db_path)

    def ensure_schema(self):
        try:
            self.conn.executescript(_SCHEMA)
            self.conn.commit()
        except sqlite3.Error as exc:
            raise PersistenceError(
                "cannot create memory table", component="relational", detail=str(exc)
            ) from exc

    def table_exists(self) -> bool:
        """Whether the memory table is present."""
        if self._conn is None:
            return False
        try:
            row = self._conn.execute(
                "SELECT name FROM sqlite_master WHERE type = 'table' AND name = ?",
                (TABLE,),
            ).fetchone()
        except sqlite3.Error as exc:
            log.warning("table check failed: %s", exc)
            return False
        return row is not None

    def close(self):
        """Close the database connection."""
        conn, self._conn = self._conn, None
        if conn is None:
            return
        try:
            conn.close()
        except sqlite3.Error as exc:
            log.debug("error closing database: %s", exc)

    # -- Operations --

    def store(self, record: MemoryRecord) -> int | None:
        """Insert one row. Returns the new row id, or None on failure."""
        created = record.created_at if record.created_at is not None else time.time()
        try:
            cur = self.conn.execute(
                f"INSERT INTO {TABLE} (owner_id, content, metadata, created_at) "
                "VALUES (?, ?, ?, ?)",
                (
                    record.owner_id,
                    record.content,
                    json.dumps(record.metadata.to_dict(), default=str),
                    created,
                ),
            )
            self.conn.commit()
        except (sqlite3.Error, PersistenceError) as exc:
            log.error("database insert error: %s", exc)
            return None
        log.debug("stored memory id=%d owner=%s", cur.lastrowid, record.owner_id)
        return cur.lastrowid

    def search(
        self,
        owner_id: str,
        query: str,
        limit: int,
        categories: Sequence[str] | None = None,
    ) -> list[MemoryRecord]:
        """Substring search over one owner's memories, newest first."""
        clauses = ["owner_id = ?", "content LIKE ? ESCAPE '\\'"]
        values: list[Any] = [owner_id, f"%{_escape_like(query)}%"]

        if categories and not is_full_selection(categories):
            clauses.append("(" + " OR ".join(f"{_CATEGORY_EXPR} = ?" for _ in categories) + ")")
            values.extend(categories)

        values.append(limit)
        sql = (
            f"SELECT id, owner_id, content, metadata, created_at FROM {TABLE} "
            f"WHERE {' AND '.join(clauses)} "
            "ORDER BY created_at DESC, id DESC LIMIT ?"
        )
        try:
            rows = self.conn.execute(sql, values).fetchall()
        except sqlite3.Error as exc:
            raise PersistenceError(
                "memory search failed", component="relational", detail=str(exc)
            ) from exc
        results = [self._row_to_record(r) for r in rows]
        log.debug("database search returned %d results", len(results))
        return results

    def delete(self, owner_id: str, categories: Sequence[str] | None = None) -> DeleteReport:
        """Delete an owner's memories, all of them or per category.

        A failing category is recorded and the remaining ones still run.
        """
        report = DeleteReport()
        if categories is None:
            report.outcomes[ALL] = self._delete_where("owner_id = ?", (owner_id,))
            return report
        for category in categories:
            report.outcomes[category] = self._delete_where(
                f"owner_id = ? AND {_CATEGORY_EXPR} = ?", (owner_id, category)
            )
        return report

    def _delete_where(self, where: str, values: tuple) -> int | None:
        try:
            cur = self.conn.execute(f"DELETE FROM {TABLE} WHERE {where}", values)
            self.conn.commit()
        except (sqlite3.Error, PersistenceError) as exc:
            log.error("database delete error (%s %s): %s", where, values, exc)
            return None
        log.info("deleted %d memories where %s %s", cur.rowcount, where, values)
        return cur.rowcount

    def prune(
        self,
        max_per_owner: int = 0,
        retention_days: int = 0,
        owner_id: str | None = None,
        now: float | None = None,
    ) -> int:
        """Evict memories by age and by per-owner count. 0 disables a rule.

        Returns the number of rows removed.
        """
        now = time.time() if now is None else now
        removed = 0
        owner_clause = " AND owner_id = ?" if owner_id is not None else ""
        owner_args: tuple = (owner_id,) if owner_id is not None else ()
        try:
            if retention_days > 0:
                cutoff = now - retention_days * 86400
                cur = self.conn.execute(
                    f"DELETE FROM {TABLE} WHERE created_at < ?{owner_clause}",
                    (cutoff, *owner_args),
                )
                removed += cur.rowcount

            if max_per_owner > 0:
                if owner_id is not None:
                    owners = [owner_id]
                else:
                    owners = [
                        r["owner_id"]
                        for r in self.conn.execute(f"SELECT DISTINCT owner_id FROM {TABLE}")
                    ]
                for owner in owners:
                    cur = self.conn.execute(
                        f"DELETE FROM {TABLE} WHERE owner_id = ? AND id NOT IN ("
                        f"SELECT id FROM {TABLE} WHERE owner_id = ? "
                        "ORDER BY created_at DESC, id DESC LIMIT ?)",
                        (owner, owner, max_per_owner),
                    )
                    removed += cur.rowcount
            self.conn.commit()
        except sqlite3.Error as exc:
            self.conn.rollback()
            raise PersistenceError(
                "retention sweep failed", component="relational", detail=str(exc)
            ) from exc
        if removed:
            log.info("retention sweep removed %d memories", removed)
        return removed

    def recent(self, n: int = 20, owner_id: str | None = None) -> list[MemoryRecord]:
        """List the newest memories, optionally for one owner."""
        try:
            if owner_id is not None:
                rows = self.conn.execute(
                    f"SELECT id, owner_id, content, metadata, created_at FROM {TABLE} "
                    "WHERE owner_id = ? ORDER BY created_at DESC, id DESC LIMIT ?",
                    (owner_id, n),
                ).fetchall()
            else:
                rows = self.conn.execute(
                    f"SELECT id, owner_id, content, metadata, created_at FROM {TABLE} "
                    "ORDER BY created_at DESC, id DESC LIMIT ?",
                    (n,),
                ).fetchall()
        except sqlite3.Error as exc:
            raise PersistenceError(
                "cannot list memories", component="relational", detail=str(exc)
            ) from exc
        return [self._row_to_record(r) for r in rows]

    def stats(self, top: int = 10) -> dict[str, Any]:
        """Counts for diagnostics: total, per owner, per type and per category."""
        try:
            total = self.conn.execute(f"SELECT COUNT(*) FROM {TABLE}").fetchone()[0]
            owners = self.conn.execute(
                f"SELECT owner_id, COUNT(*) AS count FROM {TABLE} "
                "GROUP BY owner_id ORDER BY count DESC LIMIT ?",
                (top,),
            ).fetchall()
            types = self.conn.execute(
                f"SELECT json_extract(metadata, '$.type') AS type, COUNT(*) AS count "
                f"FROM {TABLE} GROUP BY type ORDER BY count DESC"
            ).fetchall()
            categories = self.conn.execute(
                f"SELECT {_CATEGORY_EXPR} AS category, COUNT(*) AS count "
                f"FROM {TABLE} GROUP BY category ORDER BY count DESC"
            ).fetchall()
        except sqlite3.Error as exc:
            raise PersistenceError(
                "cannot collect statistics", component="relational", detail=str(exc)
            ) from exc
        category_counts: dict[str, int] = {}
        for r in categories:
            name = r["category"] or Category.CHAT.value
            category_counts[name] = category_counts.get(name, 0) + r["count"]
        return {
            "total_count": total,
            "owner_counts": {r["owner_id"]: r["count"] for r in owners},
            "type_counts": {r["type"] or "unknown": r["count"] for r in types},
            "category_counts": category_counts,
        }

    @staticmethod
    def _row_to_record(row) -> MemoryRecord:
        metadata = _decode_metadata(row["metadata"])
        # legacy rows predate categories
        metadata.setdefault("category", Category.CHAT.value)
        return MemoryRecord(
            id=row["id"],
            owner_id=row["owner_id"],
            content=row["content"],
            metadata=MemoryMetadata.model_validate(metadata),
            created_at=row["created_at"],
        )
