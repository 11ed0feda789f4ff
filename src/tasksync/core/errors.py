# src/tasksync/core/errors.py

"""
Error taxonomy.

- StorageFailure: local persistence unavailable; fatal to the operation in progress.
- RemoteUnreachable / RemoteRejected: remote call failed; both keep the outbox entry queued.
- UnresolvedReference: an Update/Delete cannot find its authoritative id yet (a deferral).
"""

from __future__ import annotations


class TaskSyncError(Exception):
    """Base class for all tasksync errors."""


class StorageFailure(TaskSyncError):
    """The durable local store could not complete an operation."""


class RemoteError(TaskSyncError):
    """Base class for failures talking to the remote authority."""


class RemoteUnreachable(RemoteError):
    """Transport failure, timeout or a transient HTTP status (5xx, 408, 429)."""


class RemoteRejected(RemoteError):
    """The authority answered and refused the request (4xx)."""

    def __init__(self, status_code: int, detail: str = "") -> None:
        self.status_code = status_code
        self.detail = detail
        msg = f"remote rejected request: HTTP {status_code}"
        if detail:
            msg = f"{msg}: {detail}"
        super().__init__(msg)


class UnresolvedReference(TaskSyncError):
    """An outbox entry references a provisional id that has no authoritative id yet."""

    def __init__(self, provisional_id: str) -> None:
        self.provisional_id = provisional_id
        super().__init__(f"no authoritative id for {provisional_id}")


class TaskNotFound(TaskSyncError, KeyError):
    """No local task with the given id (provisional or authoritative)."""

    def __init__(self, task_id: str) -> None:
        self.task_id = task_id
        super().__init__(f"unknown task {task_id}")

    def __str__(self) -> str:
        return f"unknown task {self.task_id}"
