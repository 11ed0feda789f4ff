# src/tasksync/tasks/projector.py

from __future__ import annotations

"""
Task cache projector.

Holds the locally visible task collection. Optimistic mutations are applied
synchronously; confirmed state replaces it after a remote round-trip or a
reconciliation pass.

A row is keyed by the task's provisional id while it has one. When the authority
assigns an id the row is re-keyed through an alias, so the same logical task never
shows up twice.
"""

import logging
from dataclasses import dataclass
from enum import StrEnum

from .task_models import Task, TaskStatus

logger = logging.getLogger(__name__)


class MutationKind(StrEnum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


@dataclass(slots=True, frozen=True)
class Mutation:
    kind: MutationKind
    task: Task


@dataclass(slots=True, frozen=True)
class ProjectionStats:
    total: int
    done: int
    pending: int


class TaskCacheProjector:
    def __init__(self) -> None:
        self._rows: dict[str, Task] = {}
        # any known id (provisional or authoritative) -> row key
        self._aliases: dict[str, str] = {}

    def _key_for(self, task: Task) -> str:
        for candidate in (task.provisional_id, task.id):
            if candidate and candidate in self._aliases:
                return self._aliases[candidate]
        return task.entity_key

    def _index(self, key: str, task: Task) -> None:
        self._aliases[key] = key
        self._aliases[task.id] = key
        if task.provisional_id:
            self._aliases[task.provisional_id] = key

    def apply(self, mutation: Mutation) -> None:
        task = mutation.task
        key = self._key_for(task)

        if mutation.kind == MutationKind.DELETE or task.deleted:
            self._rows.pop(key, None)
            logger.debug("Projector: removed row key=%s", key)
            return

        self._rows[key] = task
        self._index(key, task)
        logger.debug("Projector: %s row key=%s id=%s", mutation.kind.value, key, task.id)

    def reconcile_from(self, confirmed: list[Task]) -> None:
        """Replace the visible collection with confirmed/local state."""
        rows: dict[str, Task] = {}
        for task in confirmed:
            if task.deleted:
                continue
            key = self._key_for(task)
            rows[key] = task
            self._index(key, task)

        self._rows = rows
        live = set(rows)
        self._aliases = {k: v for k, v in self._aliases.items() if v in live}

    def rekey(self, provisional_id: str, authoritative_id: str) -> None:
        """The row known as provisional_id is now authoritative_id; keep it as one row."""
        key = self._aliases.get(provisional_id, provisional_id)
        self._aliases[provisional_id] = key
        self._aliases[authoritative_id] = key

        row = self._rows.get(key)
        if row is not None and row.id != authoritative_id:
            self._rows[key] = Task(
                id=authoritative_id,
                title=row.title,
                status=row.status,
                description=row.description,
                provisional_id=row.provisional_id or provisional_id,
                created_at=row.created_at,
                deleted=row.deleted,
            )

    def remove(self, task_id: str) -> Task | None:
        key = self._aliases.get(task_id, task_id)
        return self._rows.pop(key, None)

    def get(self, task_id: str) -> Task | None:
        key = self._aliases.get(task_id, task_id)
        return self._rows.get(key)

    def tasks(self) -> list[Task]:
        """Visible tasks, newest first."""
        return sorted(self._rows.values(), key=lambda t: t.created_at, reverse=True)

    def stats(self) -> ProjectionStats:
        total = len(self._rows)
        done = sum(1 for t in self._rows.values() if t.status == TaskStatus.DONE)
        return ProjectionStats(total=total, done=done, pending=total - done)

    def __len__(self) -> int:
        return len(self._rows)
