# src/tasksync/core/ports.py

from __future__ import annotations

"""
Ports (interfaces) used by the core.

The core depends on Protocols instead of concrete implementations.
This keeps the persistence layer and the transport swappable and lets the
reconciler run against in-memory fakes in tests.
"""

from collections.abc import Callable, Iterable
from typing import Any, Protocol

from ..tasks.task_models import DeadLetter, OutboxEntry, Task

Clock = Callable[[], float]
# Returns seconds since the epoch (time.time compatible).


class LocalStore(Protocol):
    """
    Durable local state: task cache, id mapping table, outbox.

    Implementations raise StorageFailure on storage-layer faults and never touch the network.
    """

    # Task cache
    def get_task(self, task_id: str) -> Task | None: ...
    def put_task(self, task: Task) -> None: ...
    def remove_task(self, task_id: str) -> None: ...
    def list_tasks(self) -> list[Task]: ...

    # Outbox
    def append_outbox_entry(self, entry: OutboxEntry) -> OutboxEntry: ...
    def list_outbox_entries(self) -> list[OutboxEntry]: ...
    def remove_outbox_entry(self, entry_id: str) -> None: ...
    def clear_outbox(self, entry_ids: Iterable[str] | None = None) -> None: ...
    def record_rejection(self, entry_id: str, error: str) -> int: ...
    def dead_letter_entry(self, entry: OutboxEntry, reason: str) -> None: ...
    def list_dead_letters(self) -> list[DeadLetter]: ...

    # Identity mapping
    def set_mapping(self, provisional_id: str, authoritative_id: str) -> None: ...
    def get_mapping(self, provisional_id: str) -> str | None: ...


class RemoteAuthority(Protocol):
    """
    REST-like task authority.

    Implementations raise RemoteUnreachable / RemoteRejected; they never touch local state.
    """

    async def create_task(self, payload: dict[str, Any]) -> dict[str, Any]: ...
    async def update_task(self, task_id: str, payload: dict[str, Any]) -> dict[str, Any]: ...
    async def delete_task(self, task_id: str) -> None: ...
    async def list_tasks(self) -> list[Task]: ...
    async def ping(self) -> bool: ...


class Session(Protocol):
    """Opaque credential source; the core never manages token lifecycle."""

    def credential(self) -> str | None: ...


class Connectivity(Protocol):
    def is_online(self) -> bool: ...
