# src/taskpulse/cli/commands.py

from __future__ import annotations

import inspect
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import cast

from ..core.errors import FetchError, RequestError, TaskSyncError, TransportError, ValidationError
from ..core.state import AppState
from ..tasks.task_models import LocalId, ServerId, Task, TaskId, TaskStatus

CommandEmitter = Callable[[str], None]
PlainHandler = Callable[[AppState, list[str]], str]
EmittingHandler = Callable[[AppState, list[str], CommandEmitter | None], str]
CommandHandler = PlainHandler | EmittingHandler

logger = logging.getLogger(__name__)


def _takes_emit(handler: CommandHandler) -> bool:
    try:
        return len(inspect.signature(handler).parameters) >= 3
    except (TypeError, ValueError):
        return True


@dataclass(slots=True)
class Command:
    name: str
    handler: CommandHandler
    help_text: str
    aliases: list[str] = field(default_factory=list)
    takes_emit: bool = False

    def run(self, state: AppState, args: list[str], emit: CommandEmitter | None) -> str:
        if self.takes_emit:
            return cast(EmittingHandler, self.handler)(state, args, emit)
        return cast(PlainHandler, self.handler)(state, args)


class CommandRegistry:
    """
    Slash-command table for the console (/help, /add, ...).

    Handlers take (state, args) or (state, args, emit); `emit` is for progress
    lines printed before the final reply.
    """

    def __init__(self) -> None:
        self._commands: dict[str, Command] = {}
        self._lookup: dict[str, Command] = {}

    def register(
        self,
        name: str,
        handler: CommandHandler,
        help_text: str,
        aliases: list[str] | None = None,
    ) -> None:
        cmd = Command(
            name=name.lower(),
            handler=handler,
            help_text=help_text,
            aliases=[a.lower() for a in aliases or []],
            takes_emit=_takes_emit(handler),
        )
        self._commands[cmd.name] = cmd
        for key in (cmd.name, *cmd.aliases):
            self._lookup[key] = cmd

    def handle(
        self,
        state: AppState,
        line: str,
        emit: CommandEmitter | None = None,
    ) -> str | None:
        """Run "/name args..."; None when `line` is not a command at all."""
        if not line.startswith("/"):
            return None

        name, *args = line[1:].split() or [""]
        if not name:
            return "Empty command. Use /help to list available commands."

        cmd = self._lookup.get(name.lower())
        if cmd is None:
            return f"Unknown command: /{name.lower()}. Use /help to list available commands."

        logger.debug("Command /%s args=%d", cmd.name, len(args))
        return cmd.run(state, args, emit)

    def build_help(self) -> str:
        lines = ["Available commands:"]
        for cmd in self._commands.values():
            alias = f" ({', '.join(cmd.aliases)})" if cmd.aliases else ""
            lines.append(f"  /{cmd.name}{alias} - {cmd.help_text}")
        lines.append("  /exit - Quit.")
        return "\n".join(lines)


registry = CommandRegistry()


# ---- rendering / lookup helpers ----


def _short_id(task_id: TaskId) -> str:
    if isinstance(task_id, LocalId):
        return "saving..."
    return str(task_id)[:8]


def render_tasks(tasks: Sequence[Task], status_filter: TaskStatus | None = None) -> str:
    scope = status_filter.value if status_filter is not None else "all"
    if not tasks:
        return f"No tasks ({scope})."

    lines = [f"Tasks ({scope}, {len(tasks)}):"]
    for i, t in enumerate(tasks, start=1):
        desc = f" - {t.description}" if t.description else ""
        lines.append(f"{i:>3}. [{t.status.value:<11}] {t.title}{desc}  ({_short_id(t.id)})")
    return "\n".join(lines)


def _resolve(state: AppState, ref: str) -> TaskId:
    """
    Turn a user reference into a task id:
    - "3"       -> third task of the current listing
    - "a1b2c3"  -> the only task whose server id starts with it
    - otherwise the reference is used as a server id as-is
    """
    tasks = state.synchronizer.tasks
    if ref.isdigit():
        n = int(ref)
        if 1 <= n <= len(tasks):
            return tasks[n - 1].id
        raise ValidationError(f"No task #{n} (listing has {len(tasks)}).")

    matches = [t.id for t in tasks if isinstance(t.id, ServerId) and t.id.value.startswith(ref)]
    if len(matches) == 1:
        return matches[0]
    if len(matches) > 1:
        raise ValidationError(f"Ambiguous task id prefix: {ref}")
    return ServerId(ref)


def _friendly_error(err: TaskSyncError) -> str:
    if isinstance(err, ValidationError):
        return f"Invalid input: {err}"
    if isinstance(err, RequestError):
        return f"Store rejected the request: {err}"
    if isinstance(err, (TransportError, FetchError)):
        return f"Store unreachable: {err}"
    return f"Error: {err}"


def _timeout(state: AppState) -> float:
    # Create/update/delete wait for one store round trip.
    return float(getattr(state.settings, "request_timeout_seconds", 10.0)) + 5.0


# ---- commands ----


def cmd_help(state: AppState, args: list[str]) -> str:
    return registry.build_help()


def cmd_list(state: AppState, args: list[str]) -> str:
    sync = state.synchronizer
    return render_tasks(sync.tasks, sync.status_filter)


def cmd_add(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    """
    /add Buy milk
    /add Buy milk | 2 liters, oat
    """
    text = " ".join(args)
    title, _, description = text.partition("|")
    try:
        task = state.call(
            state.synchronizer.create(title, description.strip() or None),
            timeout=_timeout(state),
        )
    except TaskSyncError as e:
        return _friendly_error(e)
    except TimeoutError:
        return "Still waiting for the store; the task will appear once confirmed."
    return f"Task created: {task.title} ({_short_id(task.id)})"


def _update(state: AppState, ref: str, changes: dict[str, object]) -> str:
    try:
        task_id = _resolve(state, ref)
        task = state.call(state.synchronizer.update(task_id, changes), timeout=_timeout(state))
    except TaskSyncError as e:
        return _friendly_error(e)
    except TimeoutError:
        return "Still waiting for the store; the change is shown optimistically."
    return f"Task updated: [{task.status.value}] {task.title}"


def cmd_edit(state: AppState, args: list[str]) -> str:
    if len(args) < 2:
        return "Usage: /edit <n|id> <new title>"
    return _update(state, args[0], {"title": " ".join(args[1:])})


def cmd_desc(state: AppState, args: list[str]) -> str:
    """/desc <n|id> [text] ; without text the description is cleared."""
    if not args:
        return "Usage: /desc <n|id> [text]"
    return _update(state, args[0], {"description": " ".join(args[1:]) or None})


def cmd_status(state: AppState, args: list[str]) -> str:
    if len(args) != 2:
        valid = " | ".join(s.value for s in TaskStatus)
        return f"Usage: /status <n|id> <{valid}>"
    return _update(state, args[0], {"status": args[1].lower()})


def cmd_done(state: AppState, args: list[str]) -> str:
    if len(args) != 1:
        return "Usage: /done <n|id>"
    return _update(state, args[0], {"status": TaskStatus.COMPLETED})


def cmd_rm(state: AppState, args: list[str]) -> str:
    if len(args) != 1:
        return "Usage: /rm <n|id>"
    try:
        task_id = _resolve(state, args[0])
        state.call(state.synchronizer.delete(task_id), timeout=_timeout(state))
    except TaskSyncError as e:
        return _friendly_error(e)
    except TimeoutError:
        return "Still waiting for the store; the task is hidden until it answers."
    return "Task deleted."


def cmd_filter(state: AppState, args: list[str]) -> str:
    """
    /filter            -> show current filter
    /filter completed  -> only completed tasks
    /filter all        -> no filter
    """
    sync = state.synchronizer
    if not args:
        current = sync.status_filter.value if sync.status_filter is not None else "all"
        return f"Current filter: {current}. Use /filter <status|all>."

    raw = args[0].lower()
    status = None if raw == "all" else raw
    try:
        tasks = state.call(sync.load(status), timeout=_timeout(state))
    except TaskSyncError as e:
        return _friendly_error(e)
    except TimeoutError:
        return "Still waiting for the store."
    return render_tasks(tasks, sync.status_filter)


def cmd_reload(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    sync = state.synchronizer
    if emit:
        emit("Reloading tasks...")
    try:
        tasks = state.call(sync.load(sync.status_filter), timeout=_timeout(state))
    except TaskSyncError as e:
        return _friendly_error(e)
    except TimeoutError:
        return "Still waiting for the store."
    return render_tasks(tasks, sync.status_filter)


registry.register("help", cmd_help, help_text="Show available commands.", aliases=["h", "?"])
registry.register("list", cmd_list, help_text="Show the current tasks.", aliases=["ls"])
registry.register("add", cmd_add, help_text="Create a task: /add <title> [| description].")
registry.register("edit", cmd_edit, help_text="Rename a task: /edit <n|id> <title>.")
registry.register("desc", cmd_desc, help_text="Set or clear a description: /desc <n|id> [text].")
registry.register("status", cmd_status, help_text="Set status: /status <n|id> <pending|in-progress|completed>.")
registry.register("done", cmd_done, help_text="Mark a task completed: /done <n|id>.")
registry.register("rm", cmd_rm, help_text="Delete a task: /rm <n|id>.", aliases=["del"])
registry.register("filter", cmd_filter, help_text="Filter by status: /filter <status|all>.")
registry.register("reload", cmd_reload, help_text="Reload tasks from the store.")
