# src/tasksync/tasks/task_store.py

from __future__ import annotations

import contextlib
import json
import logging
import sqlite3
import time
from collections.abc import Iterable, Iterator
from pathlib import Path
from typing import Any

from ..core.errors import StorageFailure
from .task_models import DeadLetter, OutboxEntry, OutboxOp, Task, TaskStatus

logger = logging.getLogger(__name__)


class TaskStore:
    """
    SQLite durable local store.

    Three independently enumerable collections:
    - tasks: the local task cache
    - id_map: provisional id -> authoritative id (write-once)
    - outbox: pending mutation intents
    plus bookkeeping for the rejection policy (outbox_rejections, dead_letters).

    The schema is intentionally simple and migration-safe:
    - create table if missing
    - use PRAGMA table_info to detect missing columns
    - add columns with ALTER TABLE only when needed

    Thread-safety:
    - each method opens its own SQLite connection

    Any sqlite3.Error is re-raised as StorageFailure.
    """

    def __init__(self, db_path: str | Path = "tasksync.sqlite3") -> None:
        self._db_path = Path(db_path)
        try:
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageFailure(f"cannot create data dir for {self._db_path}: {e}") from e
        self._ensure_schema()
        logger.info(
            "TaskStore ready db=%s tasks=%s outbox=%s",
            self._db_path,
            self.count_tasks(),
            len(self.list_outbox_entries()),
        )

    def close(self) -> None:
        """Compatibility hook for shutdown (no persistent connections to close)."""
        return

    # ---- low-level helpers ----

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), timeout=30.0)
        conn.row_factory = sqlite3.Row
        self._configure_conn(conn)
        return conn

    @staticmethod
    def _configure_conn(conn: sqlite3.Connection) -> None:
        with contextlib.suppress(sqlite3.Error):
            conn.execute("PRAGMA journal_mode=WAL")

    @contextlib.contextmanager
    def _session(self, what: str) -> Iterator[sqlite3.Connection]:
        """Short-lived connection; commits on success, maps sqlite errors to StorageFailure."""
        try:
            conn = self._get_conn()
        except sqlite3.Error as e:
            raise StorageFailure(f"{what}: cannot open {self._db_path}: {e}") from e
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            with contextlib.suppress(sqlite3.Error):
                conn.rollback()
            raise StorageFailure(f"{what}: {e}") from e
        finally:
            conn.close()

    def _ensure_schema(self) -> None:
        with self._session("ensure_schema") as conn:
            cur = conn.cursor()

            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS tasks (
                    id TEXT PRIMARY KEY,
                    title TEXT NOT NULL,
                    description TEXT,
                    status TEXT NOT NULL DEFAULT 'pending',
                    provisional_id TEXT,
                    created_at REAL NOT NULL,
                    updated_at REAL NOT NULL,
                    deleted INTEGER NOT NULL DEFAULT 0
                )
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS id_map (
                    provisional_id TEXT PRIMARY KEY,
                    authoritative_id TEXT NOT NULL,
                    mapped_at REAL NOT NULL
                )
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS outbox (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    entry_id TEXT NOT NULL UNIQUE,
                    operation TEXT NOT NULL,
                    provisional_id TEXT NOT NULL,
                    authoritative_id TEXT,
                    payload TEXT NOT NULL DEFAULT '{}',
                    enqueued_at REAL NOT NULL
                )
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS outbox_rejections (
                    entry_id TEXT PRIMARY KEY,
                    count INTEGER NOT NULL DEFAULT 0,
                    last_error TEXT,
                    updated_at REAL NOT NULL
                )
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS dead_letters (
                    entry_id TEXT PRIMARY KEY,
                    operation TEXT NOT NULL,
                    provisional_id TEXT NOT NULL,
                    authoritative_id TEXT,
                    payload TEXT NOT NULL DEFAULT '{}',
                    enqueued_at REAL NOT NULL,
                    reason TEXT NOT NULL,
                    dead_at REAL NOT NULL
                )
                """
            )

            # Migrations (safe): add missing columns.
            cur.execute("PRAGMA table_info(tasks)")
            cols = {row["name"] for row in cur.fetchall()}

            def add_col(name: str, decl: str) -> None:
                if name in cols:
                    return
                cur.execute(f"ALTER TABLE tasks ADD COLUMN {name} {decl}")
                logger.info("TaskStore migration: added column %s", name)

            add_col("description", "TEXT")
            add_col("status", "TEXT NOT NULL DEFAULT 'pending'")
            add_col("provisional_id", "TEXT")
            add_col("updated_at", "REAL NOT NULL DEFAULT 0")
            add_col("deleted", "INTEGER NOT NULL DEFAULT 0")

            cur.execute("CREATE INDEX IF NOT EXISTS idx_tasks_provisional ON tasks(provisional_id)")
            cur.execute("CREATE INDEX IF NOT EXISTS idx_outbox_order ON outbox(enqueued_at, seq)")

    @staticmethod
    def _payload_to_str(payload: dict[str, Any] | None) -> str:
        if not payload:
            return "{}"
        return json.dumps(payload, ensure_ascii=False, sort_keys=True)

    @staticmethod
    def _str_to_payload(s: str | None) -> dict[str, Any]:
        if not s:
            return {}
        try:
            val = json.loads(s)
        except ValueError:
            logger.warning("Corrupt outbox payload; using {}")
            return {}
        return val if isinstance(val, dict) else {}

    @staticmethod
    def _row_to_task(row: sqlite3.Row) -> Task:
        return Task(
            id=str(row["id"]),
            title=str(row["title"] or ""),
            status=TaskStatus.from_wire(row["status"]),
            description=row["description"],
            provisional_id=row["provisional_id"],
            created_at=float(row["created_at"] or 0.0),
            deleted=bool(row["deleted"]),
        )

    def _row_to_entry(self, row: sqlite3.Row) -> OutboxEntry:
        return OutboxEntry(
            entry_id=str(row["entry_id"]),
            operation=OutboxOp(row["operation"]),
            provisional_id=str(row["provisional_id"]),
            authoritative_id=row["authoritative_id"],
            payload=self._str_to_payload(row["payload"]),
            enqueued_at=float(row["enqueued_at"]),
            seq=int(row["seq"]) if "seq" in row.keys() else 0,
        )

    # ---- task cache ----

    def count_tasks(self) -> int:
        with self._session("count_tasks") as conn:
            (n,) = conn.execute("SELECT COUNT(*) FROM tasks").fetchone()
            return int(n)

    def get_task(self, task_id: str) -> Task | None:
        with self._session("get_task") as conn:
            row = conn.execute("SELECT * FROM tasks WHERE id = ?", (task_id,)).fetchone()
            return self._row_to_task(row) if row else None

    def put_task(self, task: Task) -> None:
        now = time.time()
        with self._session("put_task") as conn:
            conn.execute(
                """
                INSERT INTO tasks(id, title, description, status, provisional_id,
                                  created_at, updated_at, deleted)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    title = excluded.title,
                    description = excluded.description,
                    status = excluded.status,
                    provisional_id = excluded.provisional_id,
                    created_at = excluded.created_at,
                    updated_at = excluded.updated_at,
                    deleted = excluded.deleted
                """,
                (
                    task.id,
                    task.title,
                    task.description,
                    task.status.value,
                    task.provisional_id,
                    float(task.created_at),
                    now,
                    1 if task.deleted else 0,
                ),
            )
        logger.debug("Task stored id=%s deleted=%s", task.id, task.deleted)

    def remove_task(self, task_id: str) -> None:
        with self._session("remove_task") as conn:
            conn.execute("DELETE FROM tasks WHERE id = ?", (task_id,))
        logger.debug("Task removed id=%s", task_id)

    def list_tasks(self) -> list[Task]:
        with self._session("list_tasks") as conn:
            rows = conn.execute("SELECT * FROM tasks ORDER BY created_at DESC, id ASC").fetchall()
            return [self._row_to_task(r) for r in rows]

    # ---- outbox ----

    def append_outbox_entry(self, entry: OutboxEntry) -> OutboxEntry:
        """Append an entry and return it with its store-assigned `seq`."""
        with self._session("append_outbox_entry") as conn:
            cur = conn.execute(
                """
                INSERT INTO outbox(entry_id, operation, provisional_id, authoritative_id,
                                   payload, enqueued_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    entry.entry_id,
                    entry.operation.value,
                    entry.provisional_id,
                    entry.authoritative_id,
                    self._payload_to_str(entry.payload),
                    float(entry.enqueued_at),
                ),
            )
            rowid = cur.lastrowid
        if rowid is None:
            raise StorageFailure("SQLite did not return lastrowid for outbox insert")
        return OutboxEntry(
            entry_id=entry.entry_id,
            operation=entry.operation,
            provisional_id=entry.provisional_id,
            payload=dict(entry.payload),
            enqueued_at=entry.enqueued_at,
            authoritative_id=entry.authoritative_id,
            seq=int(rowid),
        )

    def list_outbox_entries(self) -> list[OutboxEntry]:
        with self._session("list_outbox_entries") as conn:
            rows = conn.execute("SELECT * FROM outbox ORDER BY seq ASC").fetchall()
            return [self._row_to_entry(r) for r in rows]

    def remove_outbox_entry(self, entry_id: str) -> None:
        with self._session("remove_outbox_entry") as conn:
            conn.execute("DELETE FROM outbox WHERE entry_id = ?", (entry_id,))
            conn.execute("DELETE FROM outbox_rejections WHERE entry_id = ?", (entry_id,))

    def clear_outbox(self, entry_ids: Iterable[str] | None = None) -> None:
        """
        Clear the outbox in one transaction.

        entry_ids=None clears everything; otherwise only the given entries are removed
        (entries appended after the caller's snapshot survive).
        """
        with self._session("clear_outbox") as conn:
            if entry_ids is None:
                conn.execute("DELETE FROM outbox")
                conn.execute("DELETE FROM outbox_rejections")
                return
            ids = [(eid,) for eid in entry_ids]
            conn.executemany("DELETE FROM outbox WHERE entry_id = ?", ids)
            conn.executemany("DELETE FROM outbox_rejections WHERE entry_id = ?", ids)

    def record_rejection(self, entry_id: str, error: str) -> int:
        now = time.time()
        with self._session("record_rejection") as conn:
            conn.execute(
                """
                INSERT INTO outbox_rejections(entry_id, count, last_error, updated_at)
                VALUES (?, 1, ?, ?)
                ON CONFLICT(entry_id) DO UPDATE SET
                    count = count + 1,
                    last_error = excluded.last_error,
                    updated_at = excluded.updated_at
                """,
                (entry_id, error, now),
            )
            (n,) = conn.execute(
                "SELECT count FROM outbox_rejections WHERE entry_id = ?", (entry_id,)
            ).fetchone()
            return int(n)

    def dead_letter_entry(self, entry: OutboxEntry, reason: str) -> None:
        """Atomically move an entry from the outbox into dead_letters."""
        now = time.time()
        with self._session("dead_letter_entry") as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO dead_letters(entry_id, operation, provisional_id,
                    authoritative_id, payload, enqueued_at, reason, dead_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    entry.entry_id,
                    entry.operation.value,
                    entry.provisional_id,
                    entry.authoritative_id,
                    self._payload_to_str(entry.payload),
                    float(entry.enqueued_at),
                    reason,
                    now,
                ),
            )
            conn.execute("DELETE FROM outbox WHERE entry_id = ?", (entry.entry_id,))
            conn.execute("DELETE FROM outbox_rejections WHERE entry_id = ?", (entry.entry_id,))
        logger.warning(
            "Outbox entry dead-lettered entry_id=%s op=%s key=%s reason=%s",
            entry.entry_id,
            entry.operation.value,
            entry.provisional_id,
            reason,
        )

    def list_dead_letters(self) -> list[DeadLetter]:
        with self._session("list_dead_letters") as conn:
            rows = conn.execute("SELECT * FROM dead_letters ORDER BY dead_at ASC").fetchall()
            return [
                DeadLetter(entry=self._row_to_entry(r), reason=str(r["reason"]), dead_at=float(r["dead_at"]))
                for r in rows
            ]

    # ---- identity mapping ----

    def set_mapping(self, provisional_id: str, authoritative_id: str) -> None:
        """Write-once: an existing mapping is never overwritten."""
        with self._session("set_mapping") as conn:
            conn.execute(
                """
                INSERT INTO id_map(provisional_id, authoritative_id, mapped_at)
                VALUES (?, ?, ?)
                ON CONFLICT(provisional_id) DO NOTHING
                """,
                (provisional_id, authoritative_id, time.time()),
            )

    def get_mapping(self, provisional_id: str) -> str | None:
        with self._session("get_mapping") as conn:
            row = conn.execute(
                "SELECT authoritative_id FROM id_map WHERE provisional_id = ?", (provisional_id,)
            ).fetchone()
            return str(row["authoritative_id"]) if row else None
