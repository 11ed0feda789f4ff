# src/tasksync/core/state.py

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from ..sync.connectivity import ConnectivityMonitor
from ..sync.identity import IdentityMapper
from ..sync.outbox import Outbox
from ..sync.reconciler import Reconciler
from ..tasks.projector import TaskCacheProjector
from ..tasks.task_api import TaskService
from ..tasks.task_models import Task
from .ports import LocalStore, RemoteAuthority


@dataclass
class AppState:
    # Settings are injected (real Settings or a test SimpleNamespace).
    settings: Any

    store: LocalStore
    remote: RemoteAuthority
    connectivity: ConnectivityMonitor
    outbox: Outbox
    identity: IdentityMapper
    projector: TaskCacheProjector
    reconciler: Reconciler
    service: TaskService

    # Rows as last shown by /list; `<ref>` indexes resolve against this.
    last_listing: list[Task] = field(default_factory=list)
