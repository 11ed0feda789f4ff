# src/tasksync/cli/commands.py

from __future__ import annotations

import inspect
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import cast

from ..core.errors import RemoteRejected, TaskNotFound
from ..core.state import AppState
from ..tasks.task_models import Task, TaskStatus

CommandEmitter = Callable[[str], None]
CommandResult = str | Awaitable[str]
CommandHandler2 = Callable[[AppState, list[str]], CommandResult]
CommandHandler3 = Callable[[AppState, list[str], CommandEmitter | None], CommandResult]
CommandHandler = CommandHandler2 | CommandHandler3

logger = logging.getLogger(__name__)


class CommandRegistry:
    """Simple slash-command registry used by the console (/help, /list, /sync, ...)."""

    def __init__(self) -> None:
        self._handlers: dict[str, CommandHandler] = {}
        self._help: dict[str, str] = {}

    def register(
        self,
        name: str,
        handler: CommandHandler,
        help_text: str,
        aliases: list[str] | None = None,
    ) -> None:
        aliases = aliases or []
        key = name.lower()
        self._handlers[key] = handler
        self._help[key] = help_text
        for alias in aliases:
            self._handlers[alias.lower()] = handler

    async def handle(
        self,
        state: AppState,
        line: str,
        emit: CommandEmitter | None = None,
    ) -> str | None:
        """
        Handle a string like "/command args".
        Returns a reply string or None if not a command. Handlers may be coroutines.
        """
        if not line.startswith("/"):
            return None

        parts = line[1:].split()
        if not parts:
            return "Empty command. Use /help to list available commands."

        name = parts[0].lower()
        args = parts[1:]

        handler = self._handlers.get(name)
        if not handler:
            return f"Unknown command: /{name}. Use /help to list available commands."

        try:
            nparams = len(inspect.signature(handler).parameters)
        except (TypeError, ValueError):
            nparams = 3

        if nparams >= 3:
            result = cast(CommandHandler3, handler)(state, args, emit)
        else:
            result = cast(CommandHandler2, handler)(state, args)

        if inspect.isawaitable(result):
            result = await result
        return cast(str, result)

    def build_help(self) -> str:
        lines = ["Available commands:"]
        for name, help_text in self._help.items():
            lines.append(f"  /{name} - {help_text}")
        return "\n".join(lines)


registry = CommandRegistry()


def _ts_local(ts: float) -> str:
    return datetime.fromtimestamp(ts).astimezone().strftime("%Y-%m-%d %H:%M")


_STATUS_MARK = {
    TaskStatus.PENDING: "[ ]",
    TaskStatus.IN_PROGRESS: "[~]",
    TaskStatus.DONE: "[x]",
}


def _format_task(i: int, task: Task) -> str:
    mark = _STATUS_MARK.get(task.status, "[?]")
    line = f"{i}. {mark} {task.title}  ({task.id}"
    if task.is_provisional:
        line += ", not synced"
    line += ")"
    if task.description:
        line += f"\n     {task.description}"
    return line


def _resolve_ref(state: AppState, ref: str) -> str:
    """`ref` is a 1-based index into the last listing or a task id."""
    if ref.isdigit():
        idx = int(ref)
        if 1 <= idx <= len(state.last_listing):
            return state.last_listing[idx - 1].id
        raise TaskNotFound(ref)
    task = state.projector.get(ref)
    return task.id if task is not None else ref


def _render_listing(state: AppState, tasks: list[Task]) -> str:
    state.last_listing = list(tasks)
    if not tasks:
        return "No tasks yet. Use /add <title> to create one."
    stats = state.projector.stats()
    lines = [f"Tasks ({stats.total} total, {stats.done} done, {stats.pending} open):"]
    for i, t in enumerate(tasks, start=1):
        lines.append(_format_task(i, t))
    return "\n".join(lines)


def cmd_help(state: AppState, args: list[str]) -> str:
    return registry.build_help()


async def cmd_list(state: AppState, args: list[str]) -> str:
    tasks = await state.service.load_tasks()
    return _render_listing(state, tasks)


async def cmd_add(state: AppState, args: list[str]) -> str:
    title = " ".join(args).strip()
    if not title:
        return "Usage: /add <title>"
    try:
        task = await state.service.create_task(title)
    except RemoteRejected as e:
        return f"Server rejected the task: {e}"
    suffix = " (queued)" if task.is_provisional else ""
    return f"Added: {task.title} [{task.id}]{suffix}"


async def cmd_edit(state: AppState, args: list[str]) -> str:
    if len(args) < 2:
        return "Usage: /edit <ref> <new title>"
    try:
        task = await state.service.update_task(_resolve_ref(state, args[0]), title=" ".join(args[1:]))
    except (TaskNotFound, RemoteRejected, ValueError) as e:
        return f"Edit failed: {e}"
    return f"Renamed: {task.title}"


async def cmd_desc(state: AppState, args: list[str]) -> str:
    if not args:
        return "Usage: /desc <ref> <text>  (empty text clears the description)"
    try:
        task = await state.service.update_task(_resolve_ref(state, args[0]), description=" ".join(args[1:]))
    except (TaskNotFound, RemoteRejected) as e:
        return f"Update failed: {e}"
    return f"Description updated: {task.title}"


async def cmd_toggle(state: AppState, args: list[str]) -> str:
    if len(args) != 1:
        return "Usage: /toggle <ref>"
    try:
        task = await state.service.toggle_task(_resolve_ref(state, args[0]))
    except (TaskNotFound, RemoteRejected) as e:
        return f"Toggle failed: {e}"
    return f"{task.title}: {task.status.value}"


async def cmd_status(state: AppState, args: list[str]) -> str:
    if len(args) != 2:
        return "Usage: /status <ref> <pending|in_progress|done>"
    try:
        status = TaskStatus(args[1].lower().replace("-", "_"))
    except ValueError:
        return f"Unknown status: {args[1]}. Use pending, in_progress or done."
    try:
        task = await state.service.update_task(_resolve_ref(state, args[0]), status=status)
    except (TaskNotFound, RemoteRejected) as e:
        return f"Status change failed: {e}"
    return f"{task.title}: {task.status.value}"


async def cmd_rm(state: AppState, args: list[str]) -> str:
    if len(args) != 1:
        return "Usage: /rm <ref>"
    try:
        task_id = _resolve_ref(state, args[0])
        await state.service.delete_task(task_id)
    except (TaskNotFound, RemoteRejected) as e:
        return f"Delete failed: {e}"
    return f"Deleted {task_id}."


async def cmd_sync(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    if not state.connectivity.is_online():
        return f"Offline: {len(state.outbox)} change(s) queued. Use /online when the server is reachable."
    if emit is not None:
        emit(f"Syncing {len(state.outbox)} queued change(s)...")
    report = await state.service.sync_now()
    await state.service.load_tasks()
    if report.complete:
        return f"Sync complete: {len(report.applied)} applied, {len(report.dropped)} dropped."
    return (
        f"Sync partial: {len(report.applied)} applied, {len(report.failed)} failed, "
        f"{len(report.deferred)} deferred. Remaining changes stay queued."
    )


async def cmd_online(state: AppState, args: list[str]) -> str:
    if state.connectivity.is_online():
        return "Already online."
    state.connectivity.set_online(True)
    return "Online. Queued changes are being synced."


def cmd_offline(state: AppState, args: list[str]) -> str:
    if not state.connectivity.is_online():
        return "Already offline."
    state.connectivity.set_online(False)
    return "Offline. Changes will be queued."


def cmd_outbox(state: AppState, args: list[str]) -> str:
    entries = state.outbox.snapshot()
    if not entries:
        return "Outbox is empty."
    lines = [f"Outbox ({len(entries)} pending):"]
    for i, e in enumerate(entries, start=1):
        target = e.authoritative_id or e.provisional_id
        fields = ", ".join(sorted(e.payload)) if e.operation.value == "update" else ""
        extra = f" [{fields}]" if fields else ""
        lines.append(f"{i}. {_ts_local(e.enqueued_at)} {e.operation.value} {target}{extra}")
    return "\n".join(lines)


def cmd_dead(state: AppState, args: list[str]) -> str:
    dead = state.outbox.dead_letters()
    if not dead:
        return "No dead-lettered changes."
    lines = [f"Dead letters ({len(dead)}):"]
    for i, d in enumerate(dead, start=1):
        lines.append(
            f"{i}. {_ts_local(d.dead_at)} {d.entry.operation.value} {d.entry.provisional_id}: {d.reason}"
        )
    return "\n".join(lines)


def cmd_info(state: AppState, args: list[str]) -> str:
    settings = state.settings
    base_url = getattr(settings, "api_base_url", "") or "(none, offline-only)"
    stats = state.projector.stats()
    return (
        "Status:\n"
        f"  Connectivity: {'ONLINE' if state.connectivity.is_online() else 'OFFLINE'}\n"
        f"  Server: {base_url}\n"
        f"  Database: {getattr(settings, 'db_path', '?')}\n"
        f"  Tasks: {stats.total} ({stats.done} done)\n"
        f"  Outbox: {len(state.outbox)} pending, {len(state.outbox.dead_letters())} dead\n"
        f"  Reconcile in flight: {'yes' if state.reconciler.in_flight else 'no'}"
    )


registry.register("help", cmd_help, help_text="Show available commands.", aliases=["h", "?"])
registry.register("list", cmd_list, help_text="Show tasks (refreshes from the server when online).", aliases=["ls"])
registry.register("add", cmd_add, help_text="Create a task: /add <title>.")
registry.register("edit", cmd_edit, help_text="Rename a task: /edit <ref> <title>.")
registry.register("desc", cmd_desc, help_text="Set a description: /desc <ref> <text>.")
registry.register("toggle", cmd_toggle, help_text="Toggle done/pending: /toggle <ref>.", aliases=["done"])
registry.register("status", cmd_status, help_text="Set status: /status <ref> <pending|in_progress|done>.")
registry.register("rm", cmd_rm, help_text="Delete a task: /rm <ref>.", aliases=["del"])
registry.register("sync", cmd_sync, help_text="Replay queued changes now.")
registry.register("online", cmd_online, help_text="Mark the server reachable and sync.")
registry.register("offline", cmd_offline, help_text="Work offline (changes are queued).")
registry.register("outbox", cmd_outbox, help_text="Show queued changes.")
registry.register("dead", cmd_dead, help_text="Show changes the server refused permanently.")
registry.register("info", cmd_info, help_text="Show connectivity, server and queue status.")
