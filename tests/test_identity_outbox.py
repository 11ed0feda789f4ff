# tests/test_identity_outbox.py

from __future__ import annotations

from tasksync.sync.identity import IdentityMapper, rewrite_local_task
from tasksync.sync.outbox import Outbox
from tasksync.tasks.task_models import OutboxEntry, OutboxOp, Task

from .fakes import InMemoryLocalStore


def test_identity_record_is_write_once() -> None:
    store = InMemoryLocalStore()
    ids = IdentityMapper(store)

    assert ids.lookup("local-a") is None
    assert ids.record("local-a", "srv-1") == "srv-1"
    assert ids.record("local-a", "srv-2") == "srv-1"
    assert ids.lookup("local-a") == "srv-1"


def test_identity_resolve_prefers_entry_authoritative_id() -> None:
    store = InMemoryLocalStore()
    ids = IdentityMapper(store)
    store.set_mapping("local-a", "srv-1")

    with_id = OutboxEntry("e1", OutboxOp.UPDATE, "local-a", {}, 1.0, authoritative_id="srv-9")
    without_id = OutboxEntry("e2", OutboxOp.UPDATE, "local-a", {}, 2.0)
    orphan = OutboxEntry("e3", OutboxOp.UPDATE, "local-b", {}, 3.0)

    assert ids.resolve(with_id) == "srv-9"
    assert ids.resolve(without_id) == "srv-1"
    assert ids.resolve(orphan) is None


def test_resolve_id_accepts_authoritative_ids() -> None:
    store = InMemoryLocalStore()
    ids = IdentityMapper(store)
    store.put_task(Task(id="srv-5", title="x"))
    store.put_task(Task(id="local-z", title="y", provisional_id="local-z"))

    assert ids.resolve_id("srv-5") == "srv-5"
    assert ids.resolve_id("local-z") is None


def test_rewrite_keeps_local_content_over_confirmed() -> None:
    store = InMemoryLocalStore()
    store.put_task(Task(id="local-a", title="Buy oat milk", provisional_id="local-a", created_at=3.0))

    confirmed = Task(id="srv-1", title="Buy milk")
    out = rewrite_local_task(store, "local-a", "srv-1", confirmed)

    assert out is not None
    assert out.id == "srv-1"
    assert out.title == "Buy oat milk"
    assert out.provisional_id == "local-a"
    assert store.get_task("local-a") is None
    assert [t.id for t in store.list_tasks()] == ["srv-1"]


def test_rewrite_without_local_copy_uses_confirmed() -> None:
    store = InMemoryLocalStore()
    out = rewrite_local_task(store, "local-a", "srv-1", Task(id="srv-1", title="From server"))
    assert out is not None
    assert store.get_task("srv-1").title == "From server"


def test_outbox_orders_by_enqueue_time_then_seq() -> None:
    store = InMemoryLocalStore()
    ticks = iter([5.0, 5.0, 3.0, 7.0])
    outbox = Outbox(store, clock=lambda: next(ticks))

    e1 = outbox.append(OutboxOp.CREATE, "k1", {"title": "a"})
    e2 = outbox.append(OutboxOp.UPDATE, "k1", {"title": "b"})
    # Clock went backwards: the entry must still sort after e2.
    e3 = outbox.append(OutboxOp.UPDATE, "k1", {"title": "c"})
    e4 = outbox.append(OutboxOp.DELETE, "k1")

    assert e3.enqueued_at >= e2.enqueued_at
    assert [e.entry_id for e in outbox.snapshot()] == [e1.entry_id, e2.entry_id, e3.entry_id, e4.entry_id]
    assert len(outbox) == 4


def test_outbox_order_survives_clock_stepping_back_across_restart() -> None:
    store = InMemoryLocalStore()
    ticks = iter([100.0, 200.0])
    first = Outbox(store, clock=lambda: next(ticks))
    a = first.append(OutboxOp.CREATE, "k1", {"title": "a"})
    b = first.append(OutboxOp.UPDATE, "k1", {"title": "b"})

    restarted = Outbox(store, clock=lambda: 50.0)
    c = restarted.append(OutboxOp.UPDATE, "k1", {"title": "c"})

    assert c.enqueued_at >= b.enqueued_at
    assert [e.entry_id for e in restarted.snapshot()] == [a.entry_id, b.entry_id, c.entry_id]


def test_outbox_pending_queries() -> None:
    store = InMemoryLocalStore()
    outbox = Outbox(store)
    outbox.append(OutboxOp.CREATE, "k1", {"title": "a"})
    outbox.append(OutboxOp.UPDATE, "k2", {"title": "b"}, authoritative_id="srv-2")
    outbox.append(OutboxOp.DELETE, "k3", authoritative_id="srv-3")

    assert outbox.has_pending("k1")
    assert not outbox.has_pending("nope")
    assert outbox.has_pending_create("k1")
    assert not outbox.has_pending_create("k2")
    assert outbox.pending_delete_keys() == {"k3"}
    assert [e.provisional_id for e in outbox.pending_for("k2")] == ["k2"]


def test_outbox_reject_then_dead_letter() -> None:
    store = InMemoryLocalStore()
    outbox = Outbox(store)
    entry = outbox.append(OutboxOp.UPDATE, "k1", {"title": "a"})

    assert outbox.reject(entry, "422") == 1
    assert outbox.reject(entry, "422") == 2
    outbox.dead_letter(entry, "gave up")

    assert len(outbox) == 0
    assert [d.reason for d in outbox.dead_letters()] == ["gave up"]
