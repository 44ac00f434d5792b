# src/carelog/cli/commands.py

from __future__ import annotations

import inspect
import logging
from collections.abc import Awaitable, Callable
from datetime import date, datetime, time
from typing import cast

from ..care.adhoc import QUICK_LOG_CATEGORIES, display_task
from ..care.classifier import Bucket, effective_time
from ..care.models import ConfirmationRecord, OccurrenceView
from ..care.snooze import SNOOZE_CHOICES
from ..care.tracker import ActionResult
from ..core.errors import CareError, ConflictBlocked, TransientIOError
from ..core.state import AppState

CommandEmitter = Callable[[str], None]
CommandHandler3 = Callable[[AppState, list[str], str | None], Awaitable[str]]
CommandHandler4 = Callable[[AppState, list[str], str | None, CommandEmitter | None], Awaitable[str]]
CommandHandler = CommandHandler3 | CommandHandler4

logger = logging.getLogger(__name__)

SHORT_ID = 8


class CommandRegistry:
    """Simple slash-command registry used by connectors (/help, /today, ...)."""

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
        user_id: str | None = None,
        emit: CommandEmitter | None = None,
    ) -> str | None:
        """
        Handle a string like "/command args".
        Returns a reply string or None if not a command.
        Engine errors come back as reply text; anything else propagates.
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
            nparams = 4

        try:
            if nparams >= 4:
                h4 = cast(CommandHandler4, handler)
                return await h4(state, args, user_id, emit)
            h3 = cast(CommandHandler3, handler)
            return await h3(state, args, user_id)
        except ConflictBlocked as exc:
            return f"Blocked: {exc}. Repeat with --override to confirm anyway."
        except TransientIOError as exc:
            logger.info("Store unreachable during /%s: %s", name, exc)
            return f"Store unreachable ({exc}). Use /offline on to keep working offline."
        except CareError as exc:
            return f"Error: {exc}"

    def build_help(self) -> str:
        lines = ["Available commands:"]
        for name, help_text in self._help.items():
            lines.append(f"  /{name} - {help_text}")
        return "\n".join(lines)


registry = CommandRegistry()


# ---- formatting ----


def _short(ident: str) -> str:
    return ident[:SHORT_ID]


def _hhmm(value: datetime | None) -> str:
    return value.strftime("%H:%M") if value is not None else "--:--"


def format_view(view: OccurrenceView) -> str:
    occ = view.occurrence
    task = display_task(occ, view.task)
    when = effective_time(occ)
    dose = f" {task.dose}" if task.dose else ""
    where = f" ({task.location})" if task.location else ""
    extra = f" by {occ.confirmed_by} at {_hhmm(occ.confirmed_at)}" if occ.confirmed_at else ""
    return f"  [{_short(occ.id)}] {_hhmm(when)} {task.name}{dose}{where}{extra}"


def format_record(record: ConfirmationRecord) -> str:
    flag = " [needs review]" if record.needs_review else ""
    edited = f" edited by {record.edited_by}" if record.edited_by else ""
    notes = f" - {record.notes}" if record.notes else ""
    return (
        f"  v{record.version} {record.action.value} {record.confirmed_at:%Y-%m-%d %H:%M}"
        f" by {record.confirmed_by or '?'}{edited}{notes}{flag}\n    id={record.id}"
    )


def _describe(result: ActionResult, verb: str) -> str:
    if result.queued:
        return f"{verb} (offline, queued as {_short(result.action.id)})."
    return f"{verb}."


async def _resolve_occurrence(state: AppState, token: str) -> str:
    """Accept a full id or a unique prefix of one of today's occurrences."""
    views = await state.tracker.views()
    matches = [v.id for v in views if v.id.startswith(token)]
    if len(matches) == 1:
        return matches[0]
    return token


# ---- commands ----


async def cmd_help(state: AppState, args: list[str], user_id: str | None) -> str:
    return registry.build_help()


async def cmd_status(state: AppState, args: list[str], user_id: str | None) -> str:
    tracker = state.tracker
    board = await tracker.board()
    pending = await tracker.reconciler.pending()
    reminders = tracker.reminders.scheduled_count if tracker.reminders is not None else 0
    return (
        "Status:\n"
        f"  Mode: {'OFFLINE' if tracker.offline else 'ONLINE'}\n"
        f"  User: {tracker.actor.id} ({tracker.actor.role.value})\n"
        f"  Today: {board.badge_count} need attention, {board.pending_count} pending, "
        f"{board.confirmed_count} confirmed\n"
        f"  Reminders armed: {reminders}\n"
        f"  Offline queue: {len(pending)}"
    )


async def cmd_today(state: AppState, args: list[str], user_id: str | None) -> str:
    """
    /today             -> today's board
    /today 2026-01-15  -> board of another day (expanded on demand)
    """
    day: date | None = None
    if args:
        try:
            day = date.fromisoformat(args[0])
        except ValueError:
            return "Usage: /today [YYYY-MM-DD]"

    await state.tracker.refresh(day)
    board = await state.tracker.board(day)

    lines = [f"{day or state.tracker.today()}:"]
    for bucket in Bucket:
        items = board.get(bucket)
        if not items:
            continue
        lines.append(f"{bucket.value.upper()} ({len(items)})")
        lines.extend(format_view(v) for v in items)
    if board.total == 0:
        lines.append("  Nothing scheduled.")
    return "\n".join(lines)


async def cmd_confirm(state: AppState, args: list[str], user_id: str | None) -> str:
    """
    /confirm <id> [note...] [--override]
    """
    override = "--override" in args
    words = [a for a in args if a != "--override"]
    if not words:
        return "Usage: /confirm <id> [note] [--override]"

    occurrence_id = await _resolve_occurrence(state, words[0])
    note = " ".join(words[1:]) or None
    result = await state.tracker.confirm(occurrence_id, note, override_conflict=override)
    return _describe(result, f"Confirmed {_short(occurrence_id)}")


async def cmd_snooze(state: AppState, args: list[str], user_id: str | None) -> str:
    usage = f"Usage: /snooze <id> <{'|'.join(str(m) for m in SNOOZE_CHOICES)}>"
    if len(args) != 2:
        return usage
    try:
        minutes = int(args[1])
    except ValueError:
        return usage

    occurrence_id = await _resolve_occurrence(state, args[0])
    result = await state.tracker.snooze(occurrence_id, minutes)
    return _describe(result, f"Snoozed {_short(occurrence_id)} for {minutes} min")


async def cmd_undo(state: AppState, args: list[str], user_id: str | None) -> str:
    if len(args) != 1:
        return "Usage: /undo <id>"
    occurrence_id = await _resolve_occurrence(state, args[0])
    result = await state.tracker.undo(occurrence_id)
    return _describe(result, f"Undid confirmation of {_short(occurrence_id)}")


async def cmd_history(state: AppState, args: list[str], user_id: str | None) -> str:
    if len(args) != 1:
        return "Usage: /history <id>"
    if state.tracker.offline:
        return "History is not available offline."
    occurrence_id = await _resolve_occurrence(state, args[0])
    records = await state.tracker.history(occurrence_id)
    if not records:
        return f"No confirmations recorded for {_short(occurrence_id)}."
    return "\n".join([f"History of {_short(occurrence_id)}:"] + [format_record(r) for r in records])


async def cmd_edit(
    state: AppState,
    args: list[str],
    user_id: str | None,
    emit: CommandEmitter | None = None,
) -> str:
    """
    /edit <record-id> at=08:05 by=anna note=given late
    Everything after note= is the note; note= alone clears it.
    """
    if not args:
        return "Usage: /edit <record-id> [at=HH:MM] [by=user] [note=...]"

    record_id = args[0]
    fields: dict[str, object] = {}
    rest = args[1:]
    for i, token in enumerate(rest):
        key, sep, value = token.partition("=")
        if not sep:
            return f"Cannot parse {token!r}; expected key=value."
        if key == "note":
            fields["notes"] = " ".join([value, *rest[i + 1:]]).strip() or None
            break
        if key == "by":
            fields["confirmed_by"] = value or None
        elif key == "at":
            try:
                fields["confirmed_at"] = time.fromisoformat(value)
            except ValueError:
                return f"Bad time {value!r}; expected HH:MM."
        else:
            return f"Unknown field {key!r}; use at=, by= or note=."

    if not fields:
        return "Nothing to change. Use at=, by= or note=."

    if isinstance(fields.get("confirmed_at"), time):
        # The day stays the one of the original confirmation.
        base = None if state.tracker.offline else await state.store.get_confirmation_record(record_id)
        anchor = base.confirmed_at if base is not None else state.tracker.clock.now()
        fields["confirmed_at"] = datetime.combine(
            anchor.date(), cast(time, fields["confirmed_at"]), tzinfo=anchor.tzinfo
        )

    if emit is not None:
        emit(f"Editing record {_short(record_id)}: {', '.join(sorted(fields))}")
    result = await state.tracker.edit(record_id, **fields)  # type: ignore[arg-type]
    return _describe(result, f"Record {_short(record_id)} corrected")


async def cmd_log(state: AppState, args: list[str], user_id: str | None) -> str:
    keys = "|".join(QUICK_LOG_CATEGORIES)
    if not args:
        return f"Usage: /log <{keys}> [note]"
    note = " ".join(args[1:]) or None
    result = await state.tracker.quick_log(args[0], note)
    return _describe(result, f"Logged {args[0].lower()}")


async def cmd_offline(state: AppState, args: list[str], user_id: str | None) -> str:
    """
    /offline      -> show mode
    /offline on   -> queue every action locally
    /offline off  -> reconnect and replay the queue
    """
    tracker = state.tracker
    if not args:
        return f"Currently {'OFFLINE' if tracker.offline else 'ONLINE'}. Use /offline on or /offline off."

    arg = args[0].lower()
    if arg in ("on", "1", "true", "yes"):
        if tracker.offline:
            return "Already offline."
        tracker.go_offline()
        return "Offline mode: actions are queued until /offline off."

    if arg in ("off", "0", "false", "no"):
        if not tracker.offline:
            return "Already online."
        report = await tracker.go_online()
        lines = [f"Replayed: {len(report.synced)} synced, {len(report.failed)} failed."]
        if report.flagged_records:
            lines.append(f"{len(report.flagged_records)} duplicate confirmation(s) flagged for review.")
        if report.failed:
            lines.append("Failed actions stay queued; see /queue.")
        if report.stopped_early:
            lines.append("Store still unreachable; staying offline.")
        return "\n".join(lines)

    return "Usage: /offline on or /offline off."


async def cmd_queue(state: AppState, args: list[str], user_id: str | None) -> str:
    """
    /queue            -> list pending offline actions
    /queue drop <id>  -> discard one for good
    """
    reconciler = state.tracker.reconciler
    if args and args[0].lower() == "drop":
        if len(args) != 2:
            return "Usage: /queue drop <id>"
        pending = await reconciler.pending()
        match = [a.id for a in pending if a.id.startswith(args[1])]
        if len(match) != 1:
            return f"No single queued action matches {args[1]!r}."
        await reconciler.discard(match[0])
        return f"Dropped {_short(match[0])}."

    pending = await reconciler.pending()
    if not pending:
        return "Offline queue is empty."
    lines = [f"Offline queue ({len(pending)}):"]
    for a in pending:
        target = a.payload.get("occurrence_id") or a.payload.get("record_id") or a.payload.get("category") or ""
        lines.append(f"  [{_short(a.id)}] {a.timestamp:%H:%M} {a.kind.value} {_short(str(target))}")
    return "\n".join(lines)


registry.register("help", cmd_help, help_text="Show available commands.", aliases=["h", "?"])
registry.register("status", cmd_status, help_text="Show mode, user and today's counts.")
registry.register("today", cmd_today, help_text="Today's board: /today [YYYY-MM-DD].", aliases=["t"])
registry.register("confirm", cmd_confirm, help_text="Mark given: /confirm <id> [note] [--override].", aliases=["c"])
registry.register("snooze", cmd_snooze, help_text="Defer: /snooze <id> <15|30|60>.")
registry.register("undo", cmd_undo, help_text="Revert a confirmation: /undo <id>.")
registry.register("history", cmd_history, help_text="Confirmation records: /history <id>.")
registry.register(
    "edit", cmd_edit, help_text="Correct a record (admin): /edit <record-id> [at=HH:MM] [by=user] [note=...]."
)
registry.register("log", cmd_log, help_text="Quick log: /log <snack|behavior|symptom|other> [note].")
registry.register("offline", cmd_offline, help_text="Connectivity: /offline on | /offline off.")
registry.register("queue", cmd_queue, help_text="Offline queue: /queue | /queue drop <id>.")
