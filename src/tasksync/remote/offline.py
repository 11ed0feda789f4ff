# src/tasksync/remote/offline.py

from __future__ import annotations

from typing import Any

from ..core.errors import RemoteUnreachable
from ..tasks.task_models import Task


class OfflineRemoteAuthority:
    """
    Remote authority used when no backend URL is configured.

    Behavior:
    - every call raises RemoteUnreachable, so mutations stay queued in the outbox
    - ping() is always False, so the connectivity probe keeps the app offline
    """

    async def create_task(self, payload: dict[str, Any]) -> dict[str, Any]:
        raise RemoteUnreachable("no remote authority configured (set TASKSYNC_API_BASE_URL)")

    async def update_task(self, task_id: str, payload: dict[str, Any]) -> dict[str, Any]:
        raise RemoteUnreachable("no remote authority configured (set TASKSYNC_API_BASE_URL)")

    async def delete_task(self, task_id: str) -> None:
        raise RemoteUnreachable("no remote authority configured (set TASKSYNC_API_BASE_URL)")

    async def list_tasks(self) -> list[Task]:
        raise RemoteUnreachable("no remote authority configured (set TASKSYNC_API_BASE_URL)")

    async def ping(self) -> bool:
        return False

    async def aclose(self) -> None:
        return
