# tests/fakes.py

from __future__ import annotations

import asyncio
import time
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from tasksync.core.errors import RemoteRejected, RemoteUnreachable
from tasksync.tasks.task_models import DeadLetter, OutboxEntry, Task, normalize_task_list


class FakeClock:
    """Deterministic clock: every call advances by `step` seconds."""

    def __init__(self, start: float = 1_700_000_000.0, step: float = 1.0) -> None:
        self.now = start
        self.step = step

    def __call__(self) -> float:
        self.now += self.step
        return self.now


class InMemoryLocalStore:
    """
    LocalStore fake with the same semantics as TaskStore, minus SQLite.
    """

    def __init__(self) -> None:
        self.tasks: dict[str, Task] = {}
        self.mappings: dict[str, str] = {}
        self.outbox: dict[str, OutboxEntry] = {}
        self.rejections: dict[str, int] = {}
        self.dead: list[DeadLetter] = []
        self._seq = 0

    def get_task(self, task_id: str) -> Task | None:
        return self.tasks.get(task_id)

    def put_task(self, task: Task) -> None:
        self.tasks[task.id] = task

    def remove_task(self, task_id: str) -> None:
        self.tasks.pop(task_id, None)

    def list_tasks(self) -> list[Task]:
        return sorted(self.tasks.values(), key=lambda t: t.created_at, reverse=True)

    def append_outbox_entry(self, entry: OutboxEntry) -> OutboxEntry:
        self._seq += 1
        stored = OutboxEntry(
            entry_id=entry.entry_id,
            operation=entry.operation,
            provisional_id=entry.provisional_id,
            payload=dict(entry.payload),
            enqueued_at=entry.enqueued_at,
            authoritative_id=entry.authoritative_id,
            seq=self._seq,
        )
        self.outbox[entry.entry_id] = stored
        return stored

    def list_outbox_entries(self) -> list[OutboxEntry]:
        return sorted(self.outbox.values(), key=lambda e: e.seq)

    def remove_outbox_entry(self, entry_id: str) -> None:
        self.outbox.pop(entry_id, None)
        self.rejections.pop(entry_id, None)

    def clear_outbox(self, entry_ids: Iterable[str] | None = None) -> None:
        if entry_ids is None:
            self.outbox.clear()
            self.rejections.clear()
            return
        for eid in entry_ids:
            self.remove_outbox_entry(eid)

    def record_rejection(self, entry_id: str, error: str) -> int:
        self.rejections[entry_id] = self.rejections.get(entry_id, 0) + 1
        return self.rejections[entry_id]

    def dead_letter_entry(self, entry: OutboxEntry, reason: str) -> None:
        self.dead.append(DeadLetter(entry=entry, reason=reason, dead_at=time.time()))
        self.remove_outbox_entry(entry.entry_id)

    def list_dead_letters(self) -> list[DeadLetter]:
        return list(self.dead)

    def set_mapping(self, provisional_id: str, authoritative_id: str) -> None:
        self.mappings.setdefault(provisional_id, authoritative_id)

    def get_mapping(self, provisional_id: str) -> str | None:
        return self.mappings.get(provisional_id)


@dataclass(slots=True)
class RemoteCall:
    method: str
    task_id: str | None
    payload: dict[str, Any] | None


@dataclass
class FakeRemoteAuthority:
    """
    Scripted in-memory task server.

    - assigns ids srv-1, srv-2, ...
    - records every call for assertions
    - `fail_next(method, exc)` queues a one-shot failure for the next call of `method`
    - `fail_always(task_id, exc)` fails every update/delete targeting `task_id`
    - `gate`, when set, makes create_task wait until the event is released
    - delete of an unknown id succeeds (same as the HTTP client's 404 handling)
    """

    tasks: dict[str, dict[str, Any]] = field(default_factory=dict)
    calls: list[RemoteCall] = field(default_factory=list)
    reachable: bool = True
    gate: asyncio.Event | None = None
    _failures: dict[str, list[Exception]] = field(default_factory=dict)
    _per_id: dict[str, Exception] = field(default_factory=dict)
    _next_id: int = 0

    def fail_next(self, method: str, exc: Exception, times: int = 1) -> None:
        self._failures.setdefault(method, []).extend([exc] * times)

    def fail_always(self, task_id: str, exc: Exception) -> None:
        self._per_id[task_id] = exc

    def heal(self, task_id: str) -> None:
        self._per_id.pop(task_id, None)

    def _maybe_fail(self, method: str, task_id: str | None = None) -> None:
        if not self.reachable:
            raise RemoteUnreachable(f"{method}: server down")
        queued = self._failures.get(method)
        if queued:
            raise queued.pop(0)
        if task_id is not None and task_id in self._per_id:
            raise self._per_id[task_id]

    def calls_of(self, method: str) -> list[RemoteCall]:
        return [c for c in self.calls if c.method == method]

    async def create_task(self, payload: dict[str, Any]) -> dict[str, Any]:
        self.calls.append(RemoteCall("create", None, dict(payload)))
        if self.gate is not None:
            await self.gate.wait()
        self._maybe_fail("create")
        self._next_id += 1
        task_id = f"srv-{self._next_id}"
        self.tasks[task_id] = {**payload, "_id": task_id}
        return dict(self.tasks[task_id])

    async def update_task(self, task_id: str, payload: dict[str, Any]) -> dict[str, Any]:
        self.calls.append(RemoteCall("update", task_id, dict(payload)))
        self._maybe_fail("update", task_id)
        if task_id not in self.tasks:
            raise RemoteRejected(404, "task not found")
        self.tasks[task_id].update(payload)
        return dict(self.tasks[task_id])

    async def delete_task(self, task_id: str) -> None:
        self.calls.append(RemoteCall("delete", task_id, None))
        self._maybe_fail("delete", task_id)
        self.tasks.pop(task_id, None)

    async def list_tasks(self) -> list[Task]:
        self.calls.append(RemoteCall("list", None, None))
        self._maybe_fail("list")
        return normalize_task_list(list(self.tasks.values()))

    async def ping(self) -> bool:
        return self.reachable

    async def aclose(self) -> None:
        return
