# src/tasksync/cli/bootstrap.py

"""
CLI bootstrap helpers.

This module is the "composition root":
- loads settings once,
- ensures local (gitignored) directories exist,
- wires concrete implementations into AppState (store/remote/outbox/reconciler/service).
"""

from __future__ import annotations

import logging

from ..config import get_settings
from ..core.ports import RemoteAuthority
from ..core.state import AppState
from ..remote.client import HttpRemoteAuthority, StaticSession
from ..remote.offline import OfflineRemoteAuthority
from ..sync.connectivity import ConnectivityMonitor
from ..sync.identity import IdentityMapper
from ..sync.outbox import Outbox
from ..sync.reconciler import Reconciler
from ..tasks.projector import TaskCacheProjector
from ..tasks.task_api import TaskService
from ..tasks.task_store import TaskStore

logger = logging.getLogger(__name__)


def _ensure_local_dirs(settings) -> None:
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.db_path.parent.mkdir(parents=True, exist_ok=True)


def build_remote(settings) -> RemoteAuthority:
    base_url = str(getattr(settings, "api_base_url", "") or "").strip()
    if not base_url:
        logger.info("No API base URL configured; running offline-only.")
        return OfflineRemoteAuthority()
    return HttpRemoteAuthority(
        base_url,
        StaticSession(getattr(settings, "api_token", None)),
        timeout_seconds=float(getattr(settings, "request_timeout_seconds", 10.0)),
    )


def create_initial_state(*, settings=None, remote: RemoteAuthority | None = None) -> AppState:
    """
    Create AppState from the provided settings.

    If settings is None, falls back to get_settings(). `remote` overrides the
    authority built from settings (tests, demos).
    """
    if settings is None:
        settings = get_settings()

    _ensure_local_dirs(settings)

    store = TaskStore(settings.db_path)
    if remote is None:
        remote = build_remote(settings)

    # Without a backend there is nothing to be online against.
    start_online = bool(getattr(settings, "start_online", False)) and not isinstance(remote, OfflineRemoteAuthority)
    connectivity = ConnectivityMonitor(initial=start_online)

    outbox = Outbox(store)
    identity = IdentityMapper(store)
    projector = TaskCacheProjector()
    reconciler = Reconciler(
        store,
        remote,
        outbox=outbox,
        identity=identity,
        projector=projector,
        connectivity=connectivity,
        max_rejections=int(getattr(settings, "max_rejections", 5)),
    )
    service = TaskService(
        store,
        remote,
        connectivity=connectivity,
        projector=projector,
        outbox=outbox,
        identity=identity,
        reconciler=reconciler,
    )
    connectivity.on_online(service.handle_online)

    logger.info(
        "State ready: db=%s remote=%s online=%s pending=%d",
        settings.db_path,
        type(remote).__name__,
        start_online,
        len(outbox),
    )

    return AppState(
        settings=settings,
        store=store,
        remote=remote,
        connectivity=connectivity,
        outbox=outbox,
        identity=identity,
        projector=projector,
        reconciler=reconciler,
        service=service,
    )


async def shutdown_state(state: AppState) -> None:
    """Best-effort shutdown (no exceptions should escape)."""
    try:
        await state.connectivity.drain_listeners()
    except Exception:
        logger.exception("Connectivity listeners failed during shutdown.")

    aclose = getattr(state.remote, "aclose", None)
    if aclose is not None:
        try:
            await aclose()
        except Exception:
            logger.debug("Remote client close failed.", exc_info=True)

    try:
        close = getattr(state.store, "close", None)
        if close is not None:
            close()
    except Exception:
        logger.debug("Store close failed.", exc_info=True)
