# src/tasksync/sync/outbox.py

from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Iterable
from typing import Any

from ..core.ports import Clock, LocalStore
from ..tasks.task_models import DeadLetter, OutboxEntry, OutboxOp

logger = logging.getLogger(__name__)


class Outbox:
    """
    Ordered, durable log of not-yet-confirmed mutation intents.

    enqueued_at never goes backwards, even if the wall clock does (also across restarts:
    the floor is seeded from the stored entries); equal timestamps are ordered by the
    store-assigned seq.
    """

    def __init__(self, store: LocalStore, *, clock: Clock = time.time) -> None:
        self._store = store
        self._clock = clock
        self._last_ts: float | None = None

    def _next_ts(self) -> float:
        if self._last_ts is None:
            stored = self._store.list_outbox_entries()
            self._last_ts = max((e.enqueued_at for e in stored), default=0.0)
        ts = max(float(self._clock()), self._last_ts)
        self._last_ts = ts
        return ts

    def append(
        self,
        operation: OutboxOp,
        provisional_id: str,
        payload: dict[str, Any] | None = None,
        *,
        authoritative_id: str | None = None,
    ) -> OutboxEntry:
        entry = OutboxEntry(
            entry_id=uuid.uuid4().hex,
            operation=operation,
            provisional_id=provisional_id,
            payload=dict(payload or {}),
            enqueued_at=self._next_ts(),
            authoritative_id=authoritative_id,
        )
        stored = self._store.append_outbox_entry(entry)
        logger.info(
            "Queued %s key=%s entry_id=%s",
            operation.value,
            provisional_id,
            stored.entry_id,
        )
        return stored

    def snapshot(self) -> list[OutboxEntry]:
        """All entries in replay order (stable by enqueued_at, seq, entry_id)."""
        entries = self._store.list_outbox_entries()
        entries.sort(key=OutboxEntry.sort_key)
        if entries:
            self._last_ts = max(self._last_ts or 0.0, entries[-1].enqueued_at)
        return entries

    def pending_for(self, key: str) -> list[OutboxEntry]:
        return [e for e in self.snapshot() if e.provisional_id == key]

    def has_pending(self, key: str) -> bool:
        return any(e.provisional_id == key for e in self._store.list_outbox_entries())

    def has_pending_create(self, key: str) -> bool:
        return any(
            e.provisional_id == key and e.operation == OutboxOp.CREATE
            for e in self._store.list_outbox_entries()
        )

    def pending_delete_keys(self) -> set[str]:
        return {
            e.provisional_id
            for e in self._store.list_outbox_entries()
            if e.operation == OutboxOp.DELETE
        }

    def confirm(self, entry: OutboxEntry) -> None:
        self._store.remove_outbox_entry(entry.entry_id)

    def clear(self, entries: Iterable[OutboxEntry] | None = None) -> None:
        if entries is None:
            self._store.clear_outbox()
        else:
            self._store.clear_outbox([e.entry_id for e in entries])

    def reject(self, entry: OutboxEntry, error: str) -> int:
        return self._store.record_rejection(entry.entry_id, error)

    def dead_letter(self, entry: OutboxEntry, reason: str) -> None:
        self._store.dead_letter_entry(entry, reason)

    def dead_letters(self) -> list[DeadLetter]:
        return self._store.list_dead_letters()

    def __len__(self) -> int:
        return len(self._store.list_outbox_entries())
