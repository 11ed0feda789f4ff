# src/tasksync/sync/identity.py

from __future__ import annotations

import logging

from ..core.ports import LocalStore
from ..tasks.task_models import OutboxEntry, Task

logger = logging.getLogger(__name__)


class IdentityMapper:
    """
    Translates client-minted provisional ids into authority-assigned ids.

    Nothing is cached here: a Create replayed earlier in the same pass must be
    visible to the very next resolve() call, so every lookup goes to the store.
    """

    def __init__(self, store: LocalStore) -> None:
        self._store = store

    def lookup(self, provisional_id: str) -> str | None:
        return self._store.get_mapping(provisional_id)

    def resolve(self, entry: OutboxEntry) -> str | None:
        if entry.authoritative_id:
            return entry.authoritative_id
        return self._store.get_mapping(entry.provisional_id)

    def resolve_id(self, task_id: str) -> str | None:
        """Resolve an id that may be provisional or already authoritative."""
        mapped = self._store.get_mapping(task_id)
        if mapped is not None:
            return mapped
        task = self._store.get_task(task_id)
        if task is not None and not task.is_provisional:
            return task.id
        return None

    def record(self, provisional_id: str, authoritative_id: str) -> str:
        """
        Store provisional_id -> authoritative_id and return the effective mapping.

        A mapping is immutable: if one already exists with a different id, the
        original wins and the conflict is logged.
        """
        existing = self._store.get_mapping(provisional_id)
        if existing is not None:
            if existing != authoritative_id:
                logger.warning(
                    "Ignoring remap %s -> %s (already mapped to %s)",
                    provisional_id,
                    authoritative_id,
                    existing,
                )
            return existing
        self._store.set_mapping(provisional_id, authoritative_id)
        logger.info("Mapped %s -> %s", provisional_id, authoritative_id)
        return authoritative_id


def rewrite_local_task(
        store: LocalStore,
        provisional_id: str,
        authoritative_id: str,
        confirmed: Task | None = None,
) -> Task | None:
    """
    Move the local task stored under provisional_id to authoritative_id.

    Local content wins over `confirmed` (newer edits may still be queued); `confirmed`
    only fills in when there is no local copy at all. The new row is written before
    the old one is removed.
    """
    local = store.get_task(provisional_id)
    if local is None:
        existing = store.get_task(authoritative_id)
        if existing is not None or confirmed is None:
            return existing
        local = confirmed

    task = Task(
        id=authoritative_id,
        title=local.title,
        status=local.status,
        description=local.description,
        provisional_id=provisional_id,
        created_at=local.created_at,
        deleted=local.deleted,
    )
    store.put_task(task)
    if provisional_id != authoritative_id:
        store.remove_task(provisional_id)
    return task
