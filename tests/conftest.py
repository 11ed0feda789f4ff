# tests/conftest.py

from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace

import pytest

from tasksync.sync.connectivity import ConnectivityMonitor
from tasksync.sync.identity import IdentityMapper
from tasksync.sync.outbox import Outbox
from tasksync.sync.reconciler import Reconciler
from tasksync.tasks.projector import TaskCacheProjector
from tasksync.tasks.task_api import TaskService
from tasksync.tasks.task_store import TaskStore

from .fakes import FakeClock, FakeRemoteAuthority, InMemoryLocalStore


@pytest.fixture()
def settings(tmp_path: Path) -> SimpleNamespace:
    """
    Minimal settings object compatible with bootstrap and commands.

    We intentionally use a SimpleNamespace rather than importing real config,
    to keep unit tests isolated and deterministic.
    """
    return SimpleNamespace(
        app_name="tasksync-test",
        log_level="DEBUG",
        data_dir=tmp_path,
        db_path=tmp_path / "tasksync.sqlite3",
        api_base_url="",
        api_token=None,
        request_timeout_seconds=1.0,
        sync_interval_seconds=0,
        probe_interval_seconds=0,
        max_rejections=3,
        start_online=False,
    )


@pytest.fixture()
def sqlite_store(settings: SimpleNamespace) -> TaskStore:
    """Real SQLite store; its durability is part of what we test."""
    return TaskStore(settings.db_path)


@pytest.fixture()
def store() -> InMemoryLocalStore:
    return InMemoryLocalStore()


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def remote() -> FakeRemoteAuthority:
    return FakeRemoteAuthority()


@pytest.fixture()
def connectivity() -> ConnectivityMonitor:
    return ConnectivityMonitor(initial=True)


@pytest.fixture()
def sync_env(store, remote, connectivity, clock) -> SimpleNamespace:
    """
    Fully wired sync stack over the in-memory store and the fake server.
    """
    outbox = Outbox(store, clock=clock)
    identity = IdentityMapper(store)
    projector = TaskCacheProjector()
    reconciler = Reconciler(
        store,
        remote,
        outbox=outbox,
        identity=identity,
        projector=projector,
        connectivity=connectivity,
        max_rejections=3,
    )
    service = TaskService(
        store,
        remote,
        connectivity=connectivity,
        projector=projector,
        outbox=outbox,
        identity=identity,
        reconciler=reconciler,
        clock=clock,
    )
    return SimpleNamespace(
        store=store,
        remote=remote,
        connectivity=connectivity,
        outbox=outbox,
        identity=identity,
        projector=projector,
        reconciler=reconciler,
        service=service,
        clock=clock,
    )
