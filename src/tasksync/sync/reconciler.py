# src/tasksync/sync/reconciler.py

from __future__ import annotations

"""
Reconciler.

Replays the outbox against the remote authority in enqueue order:
- Create: remote create, record the id mapping, rewrite the local task under the new id
- Update: resolve the target id at replay time, remote update, refresh local fields
- Delete: resolve, remote delete, drop the local tombstone

One failing entry never stops the pass; it only holds back later entries for the
same task so that enqueue order is preserved. The outbox is cleared only after a
pass in which every entry reached a terminal outcome.

Only one pass runs at a time. A trigger arriving mid-pass is coalesced into one
extra pass after the current one.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from ..core.errors import RemoteRejected, RemoteUnreachable, StorageFailure, UnresolvedReference
from ..core.ports import Connectivity, LocalStore, RemoteAuthority
from ..tasks.projector import TaskCacheProjector
from ..tasks.task_models import MUTABLE_FIELDS, OutboxEntry, OutboxOp, Task, apply_fields, normalize_created
from .identity import IdentityMapper, rewrite_local_task
from .outbox import Outbox

logger = logging.getLogger(__name__)


class Outcome(StrEnum):
    APPLIED = "applied"
    DROPPED = "dropped"
    DEAD_LETTERED = "dead_lettered"


@dataclass(slots=True)
class ReconcileReport:
    applied: list[str] = field(default_factory=list)
    deferred: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    dropped: list[str] = field(default_factory=list)
    cleared: bool = False
    skipped: bool = False
    passes: int = 0

    @property
    def complete(self) -> bool:
        return not self.skipped and not self.deferred and not self.failed


class Reconciler:
    def __init__(
            self,
            store: LocalStore,
            remote: RemoteAuthority,
            *,
            outbox: Outbox | None = None,
            identity: IdentityMapper | None = None,
            projector: TaskCacheProjector | None = None,
            connectivity: Connectivity | None = None,
            max_rejections: int = 5,
    ) -> None:
        self._store = store
        self._remote = remote
        self._outbox = outbox if outbox is not None else Outbox(store)
        self._identity = identity if identity is not None else IdentityMapper(store)
        self._projector = projector
        self._connectivity = connectivity
        self._max_rejections = max(1, int(max_rejections))

        self._running: asyncio.Task[ReconcileReport] | None = None
        self._rerun = False

    @property
    def in_flight(self) -> bool:
        return self._running is not None and not self._running.done()

    async def reconcile(self) -> ReconcileReport:
        """
        Run a reconciliation pass (single-flight).

        If a pass is already running, request one more pass and wait for the
        in-flight drain instead of starting a concurrent one. Cancelling the caller
        does not cancel the pass.
        """
        if self._running is not None and not self._running.done():
            self._rerun = True
            logger.debug("Reconcile already in flight; coalescing trigger")
            return await asyncio.shield(self._running)

        self._running = asyncio.create_task(self._drain())
        self._running.add_done_callback(self._on_drain_done)
        return await asyncio.shield(self._running)

    @staticmethod
    def _on_drain_done(task: asyncio.Task[ReconcileReport]) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Reconcile pass aborted: %s", exc)

    async def _drain(self) -> ReconcileReport:
        passes = 0
        while True:
            self._rerun = False
            report = await self._run_pass()
            passes += 1
            if not self._rerun:
                break
            logger.debug("Running coalesced reconcile pass")
        report.passes = passes
        return report

    async def _run_pass(self) -> ReconcileReport:
        if self._connectivity is not None and not self._connectivity.is_online():
            logger.info("Reconcile skipped: offline")
            return ReconcileReport(skipped=True)

        # Pass-level failure (cannot read the outbox) propagates.
        entries = self._outbox.snapshot()
        report = ReconcileReport()
        if not entries:
            report.cleared = True
            self._refresh_projector()
            return report

        logger.info("Reconcile pass started entries=%d", len(entries))

        blocked: set[str] = set()
        abandoned: set[str] = set()

        for entry in entries:
            key = entry.provisional_id

            if key in abandoned:
                self._outbox.dead_letter(entry, "create abandoned")
                if entry.operation == OutboxOp.DELETE:
                    self._drop_tombstones(key, None)
                report.dropped.append(entry.entry_id)
                continue

            if key in blocked:
                report.deferred.append(entry.entry_id)
                continue

            try:
                outcome = await self._replay(entry)
            except UnresolvedReference:
                logger.info("Deferred %s key=%s (unresolved)", entry.operation.value, key)
                report.deferred.append(entry.entry_id)
                blocked.add(key)
                continue
            except RemoteRejected as e:
                count = self._outbox.reject(entry, str(e))
                if count >= self._max_rejections:
                    self._outbox.dead_letter(entry, f"rejected {count}x: {e}")
                    report.dropped.append(entry.entry_id)
                    if entry.operation == OutboxOp.CREATE:
                        abandoned.add(key)
                else:
                    logger.warning(
                        "Remote rejected %s key=%s (%d/%d): %s",
                        entry.operation.value,
                        key,
                        count,
                        self._max_rejections,
                        e,
                    )
                    report.failed.append(entry.entry_id)
                    blocked.add(key)
                continue
            except RemoteUnreachable as e:
                logger.warning("Remote unreachable for %s key=%s: %s", entry.operation.value, key, e)
                report.failed.append(entry.entry_id)
                blocked.add(key)
                continue
            except StorageFailure:
                raise
            except Exception:
                logger.exception("Replay failed entry_id=%s op=%s", entry.entry_id, entry.operation.value)
                report.failed.append(entry.entry_id)
                blocked.add(key)
                continue

            if outcome in (Outcome.APPLIED, Outcome.DROPPED):
                self._outbox.confirm(entry)
            if outcome == Outcome.APPLIED:
                report.applied.append(entry.entry_id)
            else:
                report.dropped.append(entry.entry_id)

        if not report.failed and not report.deferred:
            self._outbox.clear(entries)
            report.cleared = True
            logger.info(
                "Reconcile pass complete applied=%d dropped=%d",
                len(report.applied),
                len(report.dropped),
            )
        else:
            logger.warning(
                "Reconcile pass partial applied=%d failed=%d deferred=%d; outbox kept",
                len(report.applied),
                len(report.failed),
                len(report.deferred),
            )

        self._refresh_projector()
        return report

    # ---- per-entry replay ----

    async def _replay(self, entry: OutboxEntry) -> Outcome:
        if entry.operation == OutboxOp.CREATE:
            return await self._replay_create(entry)
        if entry.operation == OutboxOp.UPDATE:
            return await self._replay_update(entry)
        return await self._replay_delete(entry)

    def _resolve_or_defer(self, entry: OutboxEntry) -> str | None:
        """Authoritative target id, UnresolvedReference while its Create is queued, None for orphans."""
        target = self._identity.resolve(entry)
        if target is not None:
            return target
        if self._outbox.has_pending_create(entry.provisional_id):
            raise UnresolvedReference(entry.provisional_id)
        return None

    async def _replay_create(self, entry: OutboxEntry) -> Outcome:
        key = entry.provisional_id
        existing = self._identity.lookup(key)
        if existing is not None:
            # Applied before a crash/partial pass; never send it twice.
            logger.info("Create for %s already applied as %s", key, existing)
            self._rewrite_local(key, existing, None)
            return Outcome.APPLIED

        response = await self._remote.create_task(entry.payload)
        confirmed = normalize_created(response)
        authoritative_id = self._identity.record(key, confirmed.id)
        self._rewrite_local(key, authoritative_id, confirmed)
        logger.info("Created %s -> %s", key, authoritative_id)
        return Outcome.APPLIED

    async def _replay_update(self, entry: OutboxEntry) -> Outcome:
        target = self._resolve_or_defer(entry)
        if target is None:
            self._outbox.dead_letter(entry, "orphaned: no authoritative id and no pending create")
            return Outcome.DEAD_LETTERED

        response = await self._remote.update_task(target, entry.payload)
        self._refresh_local(entry, target, response)
        logger.info("Updated %s fields=%s", target, sorted(entry.payload))
        return Outcome.APPLIED

    async def _replay_delete(self, entry: OutboxEntry) -> Outcome:
        key = entry.provisional_id
        target = self._resolve_or_defer(entry)
        if target is None:
            # Never reached the authority: only the local record has to go.
            self._drop_tombstones(key, None)
            logger.info("Dropped delete for never-synced task %s", key)
            return Outcome.DROPPED

        try:
            await self._remote.delete_task(target)
        finally:
            # Local deletion is user-visible already; a failed remote delete is retried, not undone.
            self._drop_tombstones(key, target)
        logger.info("Deleted %s", target)
        return Outcome.APPLIED

    # ---- local effects ----

    def _rewrite_local(self, provisional_id: str, authoritative_id: str, confirmed: Task | None) -> None:
        rewrite_local_task(self._store, provisional_id, authoritative_id, confirmed)
        if self._projector is not None:
            self._projector.rekey(provisional_id, authoritative_id)

    def _refresh_local(self, entry: OutboxEntry, target: str, response: Any) -> None:
        local = self._store.get_task(target)
        if local is None:
            return

        confirmed: dict[str, Any] = dict(entry.payload)
        if isinstance(response, dict):
            body = response.get("task") if isinstance(response.get("task"), dict) else response
            confirmed.update({k: v for k, v in body.items() if k in MUTABLE_FIELDS})

        # Fields with a later queued update keep their optimistic local value.
        pending = {
            k
            for e in self._outbox.pending_for(entry.provisional_id)
            if e.entry_id != entry.entry_id and e.operation == OutboxOp.UPDATE
            for k in e.payload
        }
        fields = {k: v for k, v in confirmed.items() if k in MUTABLE_FIELDS and k not in pending}
        if fields:
            self._store.put_task(apply_fields(local, fields))

    def _drop_tombstones(self, key: str, target: str | None) -> None:
        for task_id in {key, target}:
            if not task_id:
                continue
            task = self._store.get_task(task_id)
            if task is not None and task.deleted:
                self._store.remove_task(task_id)

    def _refresh_projector(self) -> None:
        if self._projector is not None:
            self._projector.reconcile_from(self._store.list_tasks())


async def run_reconcile_loop(reconciler: Reconciler, *, interval_seconds: float = 60.0) -> None:
    """
    Periodic trigger.

    Every interval_seconds run reconciler.reconcile(); errors are logged and the loop
    keeps going. To stop it, cancel the coroutine/task.
    """
    sleep_s = max(0.01, float(interval_seconds))
    while True:
        await asyncio.sleep(sleep_s)
        try:
            report = await reconciler.reconcile()
        except StorageFailure:
            logger.exception("Periodic reconcile aborted (storage)")
            continue
        if not report.skipped and (report.applied or report.failed or report.deferred):
            logger.info(
                "Periodic reconcile applied=%d failed=%d deferred=%d",
                len(report.applied),
                len(report.failed),
                len(report.deferred),
            )
