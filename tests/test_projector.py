# tests/test_projector.py

from __future__ import annotations

from tasksync.tasks.projector import Mutation, MutationKind, TaskCacheProjector
from tasksync.tasks.task_models import Task, TaskStatus


def _prov(pid: str, title: str, ts: float) -> Task:
    return Task(id=pid, title=title, provisional_id=pid, created_at=ts)


def test_apply_create_update_delete() -> None:
    p = TaskCacheProjector()
    t = _prov("local-a", "Buy milk", 1.0)

    p.apply(Mutation(MutationKind.CREATE, t))
    assert [x.title for x in p.tasks()] == ["Buy milk"]

    p.apply(Mutation(MutationKind.UPDATE, Task(id="local-a", title="Buy oat milk", provisional_id="local-a", created_at=1.0)))
    assert [x.title for x in p.tasks()] == ["Buy oat milk"]

    p.apply(Mutation(MutationKind.DELETE, t))
    assert p.tasks() == []


def test_rekey_never_duplicates_the_row() -> None:
    p = TaskCacheProjector()
    p.apply(Mutation(MutationKind.CREATE, _prov("local-a", "Buy milk", 1.0)))

    p.rekey("local-a", "srv-1")
    assert len(p) == 1
    assert p.get("srv-1").id == "srv-1"
    assert p.get("local-a").id == "srv-1"

    # Confirmed state arrives under the new id: still one row.
    p.reconcile_from([Task(id="srv-1", title="Buy milk", provisional_id="local-a", created_at=1.0)])
    assert len(p) == 1

    # Update addressed by the authoritative id lands on the same row.
    p.apply(Mutation(MutationKind.UPDATE, Task(id="srv-1", title="Buy oat milk", provisional_id="local-a", created_at=1.0)))
    assert [t.title for t in p.tasks()] == ["Buy oat milk"]


def test_reconcile_from_replaces_and_hides_deleted() -> None:
    p = TaskCacheProjector()
    p.apply(Mutation(MutationKind.CREATE, _prov("local-a", "stale", 1.0)))

    p.reconcile_from(
        [
            Task(id="srv-1", title="one", created_at=1.0),
            Task(id="srv-2", title="two", created_at=2.0, status=TaskStatus.DONE),
            Task(id="srv-3", title="gone", created_at=3.0, deleted=True),
        ]
    )
    assert [t.title for t in p.tasks()] == ["two", "one"]
    assert p.get("local-a") is None

    stats = p.stats()
    assert (stats.total, stats.done, stats.pending) == (2, 1, 1)
