# src/tasksync/tasks/task_api.py

from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Callable
from typing import Any

from ..core.errors import RemoteError, RemoteRejected, RemoteUnreachable, TaskNotFound
from ..core.ports import Clock, Connectivity, LocalStore, RemoteAuthority
from ..sync.identity import IdentityMapper, rewrite_local_task
from ..sync.outbox import Outbox
from ..sync.reconciler import Reconciler, ReconcileReport
from .projector import Mutation, MutationKind, TaskCacheProjector
from .task_models import OutboxOp, Task, TaskStatus, apply_fields, normalize_created

logger = logging.getLogger(__name__)


def new_provisional_id() -> str:
    return f"local-{uuid.uuid4().hex[:16]}"


class TaskService:
    """
    User-facing task mutations.

    Every mutation is applied to the local store and the projector first. Then:
    - online, and nothing queued for this task: call the authority directly;
      a RemoteRejected rolls the optimistic change back and is re-raised
    - offline, unreachable, or earlier entries still queued: append to the outbox
    """

    def __init__(
            self,
            store: LocalStore,
            remote: RemoteAuthority,
            *,
            connectivity: Connectivity,
            projector: TaskCacheProjector | None = None,
            outbox: Outbox | None = None,
            identity: IdentityMapper | None = None,
            reconciler: Reconciler | None = None,
            clock: Clock = time.time,
            id_factory: Callable[[], str] = new_provisional_id,
    ) -> None:
        self.store = store
        self.remote = remote
        self.connectivity = connectivity
        self.projector = projector if projector is not None else TaskCacheProjector()
        self.outbox = outbox if outbox is not None else Outbox(store, clock=clock)
        self.identity = identity if identity is not None else IdentityMapper(store)
        self.reconciler = reconciler
        self._clock = clock
        self._id_factory = id_factory

    # ---- helpers ----

    def _require(self, task_id: str) -> Task:
        task = self.store.get_task(task_id)
        if task is None:
            mapped = self.identity.lookup(task_id)
            if mapped is not None:
                task = self.store.get_task(mapped)
        if task is None or task.deleted:
            raise TaskNotFound(task_id)
        return task

    def _fast_path_target(self, task: Task) -> str | None:
        """Authoritative id to call directly, or None when the change must be queued."""
        if not self.connectivity.is_online():
            return None
        if task.is_provisional:
            return None
        if self.outbox.has_pending(task.entity_key):
            # Going around queued entries would reorder writes for this task.
            return None
        return task.id

    def _enqueue(self, op: OutboxOp, task: Task, payload: dict[str, Any]) -> None:
        self.outbox.append(
            op,
            task.entity_key,
            payload,
            authoritative_id=None if task.is_provisional else task.id,
        )

    # ---- queries ----

    def visible_tasks(self) -> list[Task]:
        return self.projector.tasks()

    async def load_tasks(self) -> list[Task]:
        """
        Refresh the visible collection.

        Online: fetch GET /tasks and merge it into the local store; tasks with queued
        local changes keep their optimistic state. Offline or unreachable: local store only.
        """
        if self.connectivity.is_online():
            try:
                remote_tasks = await self.remote.list_tasks()
            except RemoteError as e:
                logger.warning("load_tasks: remote unavailable, using local cache: %s", e)
            else:
                self._merge_remote(remote_tasks)

        self.projector.reconcile_from(self.store.list_tasks())
        return self.projector.tasks()

    def _merge_remote(self, remote_tasks: list[Task]) -> None:
        pending = self.outbox.snapshot()
        pending_keys = {e.provisional_id for e in pending}
        pending_ids = {e.authoritative_id for e in pending if e.authoritative_id}

        seen: set[str] = set()
        for rt in remote_tasks:
            seen.add(rt.id)

            # The server echoes our client id: adopt it if the mapping was lost.
            if rt.provisional_id and self.identity.lookup(rt.provisional_id) is None:
                local_prov = self.store.get_task(rt.provisional_id)
                if local_prov is not None and local_prov.is_provisional:
                    self.identity.record(rt.provisional_id, rt.id)
                    rewrite_local_task(self.store, rt.provisional_id, rt.id, rt)
                    self.projector.rekey(rt.provisional_id, rt.id)

            local = self.store.get_task(rt.id)
            key = local.entity_key if local is not None else rt.entity_key
            if key in pending_keys or rt.id in pending_ids:
                continue

            provisional_id = local.provisional_id if local is not None and local.provisional_id else rt.provisional_id
            self.store.put_task(
                Task(
                    id=rt.id,
                    title=rt.title,
                    status=rt.status,
                    description=rt.description,
                    provisional_id=provisional_id,
                    created_at=rt.created_at or (local.created_at if local is not None else self._clock()),
                    deleted=False,
                )
            )

        # Confirmed tasks that vanished remotely go away locally, unless changes are queued.
        for local in self.store.list_tasks():
            if local.is_provisional or local.id in seen:
                continue
            if local.entity_key in pending_keys or local.id in pending_ids:
                continue
            self.store.remove_task(local.id)
            logger.info("Task %s no longer exists remotely; removed from cache", local.id)

    # ---- mutations ----

    async def create_task(self, title: str, description: str | None = None) -> Task:
        title = (title or "").strip()
        if not title:
            raise ValueError("title is required")

        provisional_id = self._id_factory()
        task = Task(
            id=provisional_id,
            title=title,
            status=TaskStatus.PENDING,
            description=(description or "").strip() or None,
            provisional_id=provisional_id,
            created_at=float(self._clock()),
        )
        self.store.put_task(task)
        self.projector.apply(Mutation(MutationKind.CREATE, task))

        if self.connectivity.is_online():
            try:
                response = await self.remote.create_task(task.to_payload())
                confirmed = normalize_created(response)
            except RemoteRejected:
                self.store.remove_task(provisional_id)
                self.projector.remove(provisional_id)
                raise
            except RemoteUnreachable as e:
                logger.info("create_task: remote failed (%s); queued %s", e, provisional_id)
            else:
                authoritative_id = self.identity.record(provisional_id, confirmed.id)
                final = rewrite_local_task(self.store, provisional_id, authoritative_id, confirmed)
                self.projector.rekey(provisional_id, authoritative_id)
                logger.info("Task created %s -> %s", provisional_id, authoritative_id)
                return final if final is not None else task

        self._enqueue(OutboxOp.CREATE, task, task.to_payload())
        return task

    async def update_task(
            self,
            task_id: str,
            *,
            title: str | None = None,
            description: str | None = None,
            status: TaskStatus | str | None = None,
    ) -> Task:
        task = self._require(task_id)

        fields: dict[str, Any] = {}
        if title is not None:
            t = title.strip()
            if not t:
                raise ValueError("title must not be empty")
            fields["title"] = t
        if description is not None:
            fields["description"] = description.strip()
        if status is not None:
            fields["status"] = TaskStatus(status).value

        if not fields:
            return task

        updated = apply_fields(task, fields)
        self.store.put_task(updated)
        self.projector.apply(Mutation(MutationKind.UPDATE, updated))

        target = self._fast_path_target(task)
        if target is not None:
            try:
                await self.remote.update_task(target, fields)
            except RemoteRejected:
                self.store.put_task(task)
                self.projector.apply(Mutation(MutationKind.UPDATE, task))
                raise
            except RemoteUnreachable as e:
                logger.info("update_task: remote unreachable (%s); queued %s", e, task.id)
            else:
                return updated

        self._enqueue(OutboxOp.UPDATE, updated, fields)
        return updated

    async def toggle_task(self, task_id: str) -> Task:
        task = self._require(task_id)
        new_status = TaskStatus.PENDING if task.status == TaskStatus.DONE else TaskStatus.DONE
        return await self.update_task(task.id, status=new_status)

    async def delete_task(self, task_id: str) -> None:
        task = self._require(task_id)

        tombstone = Task(
            id=task.id,
            title=task.title,
            status=task.status,
            description=task.description,
            provisional_id=task.provisional_id,
            created_at=task.created_at,
            deleted=True,
        )
        self.store.put_task(tombstone)
        self.projector.apply(Mutation(MutationKind.DELETE, task))

        target = self._fast_path_target(task)
        if target is not None:
            try:
                await self.remote.delete_task(target)
            except RemoteRejected:
                self.store.put_task(task)
                self.projector.apply(Mutation(MutationKind.CREATE, task))
                raise
            except RemoteUnreachable as e:
                logger.info("delete_task: remote unreachable (%s); queued %s", e, task.id)
            else:
                self.store.remove_task(task.id)
                return

        self._enqueue(OutboxOp.DELETE, task, {})

    # ---- sync ----

    async def sync_now(self) -> ReconcileReport:
        if self.reconciler is None:
            raise RuntimeError("no reconciler configured")
        return await self.reconciler.reconcile()

    async def handle_online(self) -> None:
        """Connectivity came back: drain the outbox, then pull confirmed state."""
        report = await self.sync_now()
        if not report.skipped:
            await self.load_tasks()
