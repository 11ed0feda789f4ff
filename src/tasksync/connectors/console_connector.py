# src/tasksync/connectors/console_connector.py

from __future__ import annotations

import asyncio
import logging
from datetime import datetime

from ..cli.commands import registry as command_registry
from ..core.state import AppState

logger = logging.getLogger(__name__)


def _ts_local() -> str:
    return datetime.now().astimezone().strftime("%Y-%m-%d %H:%M:%S")


def _print_ts(text: str) -> None:
    print(f"[{_ts_local()}] {text}", flush=True)


def _prompt(state: AppState) -> str:
    mode = "online" if state.connectivity.is_online() else "offline"
    pending = len(state.outbox)
    queued = f" +{pending}" if pending else ""
    return f"[{mode}{queued}] > "


async def run_console_loop(state: AppState) -> None:
    """
    Interactive REPL.

    input() blocks, so it runs in a worker thread; everything else (commands, sync
    passes, connectivity listeners) stays on the event loop.
    """
    logger.info("Console connector started (online=%s).", state.connectivity.is_online())
    _print_ts("[CONSOLE] Use /help for commands, /add <title> to create a task, /exit to quit.\n")

    while True:
        try:
            user_input = (await asyncio.to_thread(input, _prompt(state))).strip()
        except EOFError:
            logger.info("Console EOF received, exiting.")
            break
        except KeyboardInterrupt:
            logger.info("Console KeyboardInterrupt, exiting.")
            print()
            break

        if not user_input:
            continue

        if user_input.lower() in ("/exit", "/quit"):
            logger.info("Console exit command received.")
            break

        if not user_input.startswith("/"):
            # Bare text is a shortcut for /add.
            user_input = f"/add {user_input}"

        try:
            reply = await command_registry.handle(state, user_input, emit=_print_ts)
        except Exception:
            logger.exception("Command handler crashed.")
            reply = "Internal error while handling a command."

        if reply is not None:
            _print_ts(reply)

    logger.info("Console connector finished.")
