# src/tasksync/tasks/task_models.py

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from ..core.errors import RemoteRejected

logger = logging.getLogger(__name__)

UNTITLED = "(untitled)"

# Fields a client may change on an existing task.
MUTABLE_FIELDS = ("title", "description", "status")


class TaskStatus(StrEnum):
    """
    Task lifecycle status.

    Notes:
    - legacy labels ("Pendiente", "En Progreso", "Completada") are still accepted on ingest
      because older servers store them verbatim.
    """

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    DONE = "done"

    @classmethod
    def from_wire(cls, raw: Any) -> TaskStatus:
        if not raw:
            return cls.PENDING
        s = str(raw).strip()
        legacy = _LEGACY_STATUS.get(s)
        if legacy is not None:
            return legacy
        try:
            return cls(s.lower())
        except ValueError:
            return cls.PENDING


_LEGACY_STATUS = {
    "Pendiente": TaskStatus.PENDING,
    "En Progreso": TaskStatus.IN_PROGRESS,
    "Completada": TaskStatus.DONE,
}


class OutboxOp(StrEnum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


@dataclass(slots=True)
class Task:
    """
    Locally visible task.

    `id` is the current display id: the provisional id until the authority assigns one,
    the authoritative id afterwards. `provisional_id` is kept after the rewrite so the
    projector can treat both ids as the same row.
    """

    id: str
    title: str
    status: TaskStatus = TaskStatus.PENDING
    description: str | None = None
    provisional_id: str | None = None
    created_at: float = 0.0
    deleted: bool = False

    @property
    def is_provisional(self) -> bool:
        return self.provisional_id is not None and self.id == self.provisional_id

    @property
    def entity_key(self) -> str:
        """Stable key of the logical task across the provisional -> authoritative rewrite."""
        return self.provisional_id or self.id

    def to_payload(self) -> dict[str, Any]:
        """Wire payload for POST /tasks."""
        payload: dict[str, Any] = {
            "title": self.title,
            "description": self.description or "",
            "status": self.status.value,
            "createdAt": self.created_at,
        }
        if self.provisional_id:
            payload["clientId"] = self.provisional_id
        return payload


@dataclass(slots=True, frozen=True)
class OutboxEntry:
    """
    One not-yet-confirmed mutation intent.

    Entries are immutable once written. `seq` is assigned by the store on append and is
    only used to break ties between equal `enqueued_at` values.
    """

    entry_id: str
    operation: OutboxOp
    provisional_id: str
    payload: dict[str, Any] = field(default_factory=dict)
    enqueued_at: float = 0.0
    authoritative_id: str | None = None
    seq: int = 0

    def sort_key(self) -> tuple[float, int, str]:
        return (self.enqueued_at, self.seq, self.entry_id)


@dataclass(slots=True, frozen=True)
class DeadLetter:
    entry: OutboxEntry
    reason: str
    dead_at: float


def apply_fields(task: Task, fields: dict[str, Any]) -> Task:
    """Return a copy of `task` with the mutable wire fields in `fields` applied."""
    title = task.title
    description = task.description
    status = task.status

    if "title" in fields and fields["title"] is not None:
        title = str(fields["title"])
    if "description" in fields:
        raw = fields["description"]
        description = None if raw is None else str(raw)
    if "status" in fields and fields["status"] is not None:
        status = TaskStatus.from_wire(fields["status"])

    return Task(
        id=task.id,
        title=title,
        status=status,
        description=description,
        provisional_id=task.provisional_id,
        created_at=task.created_at,
        deleted=task.deleted,
    )


def _as_float(raw: Any) -> float:
    if isinstance(raw, bool):
        return 0.0
    if isinstance(raw, int | float):
        return float(raw)
    return 0.0


def normalize_task(raw: Any) -> Task:
    """
    Convert one server object into a Task.

    Accepts a bare task object or a `{"task": {...}}` wrapper.
    Raises ValueError if the object carries no id at all.
    """
    if isinstance(raw, dict) and isinstance(raw.get("task"), dict):
        raw = raw["task"]
    if not isinstance(raw, dict):
        raise ValueError(f"task object expected, got {type(raw).__name__}")

    raw_id = raw.get("_id", raw.get("id"))
    if raw_id is None or str(raw_id).strip() == "":
        raise ValueError("task object has no id")

    title = raw.get("title")
    description = raw.get("description", raw.get("descrption"))
    client_id = raw.get("clientId", raw.get("clienteId", raw.get("provisionalId")))

    return Task(
        id=str(raw_id),
        title=str(title) if title else UNTITLED,
        status=TaskStatus.from_wire(raw.get("status")),
        description=None if description is None else str(description),
        provisional_id=str(client_id) if client_id else None,
        created_at=_as_float(raw.get("createdAt")),
        deleted=bool(raw.get("deleted", False)),
    )


def normalize_created(raw: Any) -> Task:
    """normalize_task for a 2xx create response; one without a usable id counts as a rejection."""
    try:
        return normalize_task(raw)
    except ValueError as e:
        raise RemoteRejected(0, f"unusable create response: {e}") from e


TaskListResponse = list[Any] | dict[str, Any]


def normalize_task_list(raw: TaskListResponse | None) -> list[Task]:
    """
    Single ingestion boundary for GET /tasks.

    Accepted shapes:
    - a bare list of task objects
    - {"items": [...]} (also "tasks" / "data" for older deployments)

    Items that cannot be parsed are skipped with a warning.
    """
    items: list[Any]
    if isinstance(raw, list):
        items = raw
    elif isinstance(raw, dict):
        for key in ("items", "tasks", "data"):
            val = raw.get(key)
            if isinstance(val, list):
                items = val
                break
        else:
            logger.warning("Unrecognized task list shape keys=%s", sorted(raw.keys()))
            items = []
    else:
        items = []

    out: list[Task] = []
    for item in items:
        try:
            out.append(normalize_task(item))
        except ValueError as e:
            logger.warning("Skipping malformed task from server: %s", e)
    return out
