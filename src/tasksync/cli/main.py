# src/tasksync/cli/main.py

"""
CLI entrypoint.

Initializes logging, builds AppState, then runs on one asyncio loop:
- connectivity probe (background task, optional),
- periodic reconcile timer (background task, optional),
- console REPL in the foreground.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging

from ..cli.bootstrap import create_initial_state, shutdown_state
from ..config import get_settings
from ..connectors.console_connector import run_console_loop
from ..core.state import AppState
from ..logging_setup import setup_logging
from ..sync.connectivity import run_connectivity_probe
from ..sync.reconciler import run_reconcile_loop

logger = logging.getLogger(__name__)


def _start_background(state: AppState) -> list[asyncio.Task[None]]:
    settings = state.settings
    tasks: list[asyncio.Task[None]] = []

    probe_s = float(getattr(settings, "probe_interval_seconds", 0) or 0)
    if probe_s > 0 and getattr(settings, "api_base_url", ""):
        tasks.append(
            asyncio.create_task(
                run_connectivity_probe(state.connectivity, state.remote, interval_seconds=probe_s),
                name="tasksync-probe",
            )
        )

    sync_s = float(getattr(settings, "sync_interval_seconds", 0) or 0)
    if sync_s > 0:
        tasks.append(
            asyncio.create_task(
                run_reconcile_loop(state.reconciler, interval_seconds=sync_s),
                name="tasksync-reconcile",
            )
        )
    return tasks


async def _run(state: AppState) -> None:
    background = _start_background(state)
    try:
        try:
            await state.service.load_tasks()
        except Exception:
            logger.exception("Initial task load failed; continuing with an empty view.")

        if state.connectivity.is_online() and len(state.outbox):
            # Left over from the last session.
            await state.service.sync_now()

        await run_console_loop(state)
    finally:
        for t in background:
            t.cancel()
        for t in background:
            with contextlib.suppress(asyncio.CancelledError):
                await t
        await shutdown_state(state)


def main() -> None:
    settings = get_settings()

    level_name = str(getattr(settings, "log_level", "INFO")).upper()
    console_level = getattr(logging, level_name, logging.INFO)

    log_dir = getattr(settings, "data_dir", ".local/tasksync")
    setup_logging(log_dir=log_dir, console_level=console_level)

    logger.info("Starting %s...", getattr(settings, "app_name", "tasksync"))

    # IMPORTANT: reuse same settings object
    state = create_initial_state(settings=settings)

    try:
        asyncio.run(_run(state))
    except KeyboardInterrupt:
        logger.info("Interrupted.")
    finally:
        logger.info("Bye.")


if __name__ == "__main__":
    main()
