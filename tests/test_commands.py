# tests/test_commands.py

from __future__ import annotations

import pytest

from tasksync.cli.bootstrap import create_initial_state, shutdown_state
from tasksync.cli.commands import CommandRegistry, registry
from tasksync.core.state import AppState

from .fakes import FakeRemoteAuthority


@pytest.fixture()
def remote() -> FakeRemoteAuthority:
    return FakeRemoteAuthority()


@pytest.fixture()
def state(settings, remote) -> AppState:
    """AppState wired by the real bootstrap over SQLite + the fake server (starts offline)."""
    return create_initial_state(settings=settings, remote=remote)


@pytest.mark.asyncio
async def test_command_registry_routes_2_and_3_params_and_awaits(state) -> None:
    reg = CommandRegistry()
    called = {"h2": 0, "h3": 0}
    notes: list[str] = []

    def h2(state, args):
        called["h2"] += 1
        return f"h2 {' '.join(args)}"

    async def h3(state, args, emit):
        called["h3"] += 1
        if emit is not None:
            emit("note")
        return "h3"

    reg.register("a", h2, "a")
    reg.register("b", h3, "b", aliases=["bee"])

    assert await reg.handle(state, "/a x y") == "h2 x y"
    assert await reg.handle(state, "/BEE", emit=notes.append) == "h3"
    assert called == {"h2": 1, "h3": 1}
    assert notes == ["note"]


@pytest.mark.asyncio
async def test_command_registry_unknown_and_non_command(state) -> None:
    reg = CommandRegistry()
    assert await reg.handle(state, "hello") is None
    assert "Unknown command" in (await reg.handle(state, "/nope") or "")
    assert "Empty command" in (await reg.handle(state, "/") or "")


@pytest.mark.asyncio
async def test_offline_session_then_sync(state, remote) -> None:
    assert not state.connectivity.is_online()

    reply = await registry.handle(state, "/add Buy milk")
    assert reply is not None and "(queued)" in reply
    await registry.handle(state, "/add Walk the dog")

    listing = await registry.handle(state, "/list")
    assert "Buy milk" in listing
    assert "not synced" in listing
    # Newest first: "Walk the dog" is #1.
    assert "Walk the dog" in await registry.handle(state, "/toggle 1")
    assert "done" in await registry.handle(state, "/status 2 done")
    assert "Unknown status" in await registry.handle(state, "/status 2 bogus")

    outbox = await registry.handle(state, "/outbox")
    assert "Outbox (4 pending)" in outbox

    assert "Offline" in await registry.handle(state, "/sync")
    assert remote.calls == []

    assert "Online" in await registry.handle(state, "/online")
    await state.connectivity.drain_listeners()

    assert len(state.outbox) == 0
    assert sorted(t["title"] for t in remote.tasks.values()) == ["Buy milk", "Walk the dog"]
    assert all(t["status"] == "done" for t in remote.tasks.values())
    assert "Outbox is empty" in await registry.handle(state, "/outbox")

    listing = await registry.handle(state, "/list")
    assert "not synced" not in listing
    assert "2 done" in listing

    await shutdown_state(state)


@pytest.mark.asyncio
async def test_remove_and_info(state, remote) -> None:
    await registry.handle(state, "/online")
    await state.connectivity.drain_listeners()

    await registry.handle(state, "/add Temp")
    await registry.handle(state, "/list")
    assert "Deleted" in await registry.handle(state, "/rm 1")
    assert remote.tasks == {}
    assert "No tasks yet" in await registry.handle(state, "/list")
    assert "Delete failed" in await registry.handle(state, "/rm 5")

    info = await registry.handle(state, "/info")
    assert "ONLINE" in info
    assert "Outbox: 0 pending, 0 dead" in info
    assert "No dead-lettered changes" in await registry.handle(state, "/dead")

    await shutdown_state(state)


@pytest.mark.asyncio
async def test_state_survives_restart(settings, remote) -> None:
    s1 = create_initial_state(settings=settings, remote=remote)
    await s1.service.create_task("persisted")
    await shutdown_state(s1)

    s2 = create_initial_state(settings=settings, remote=remote)
    tasks = await s2.service.load_tasks()
    assert [t.title for t in tasks] == ["persisted"]
    assert len(s2.outbox) == 1
    await shutdown_state(s2)
