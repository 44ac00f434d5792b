# src/carelog/connectors/console_connector.py

from __future__ import annotations

import asyncio
import logging
import sys
import threading
from datetime import datetime

from ..care.reminders import Reminder
from ..cli.commands import registry as command_registry
from ..core.state import AppState

logger = logging.getLogger(__name__)

PROMPT = ">>> "


def _ts_local() -> str:
    return datetime.now().astimezone().strftime("%Y-%m-%d %H:%M:%S")


def _rewrite_prev_line(line: str) -> None:
    """
    Replace the last terminal line with `line`.
    Best-effort: if not a TTY, just print a new line.
    """
    try:
        if sys.stdout.isatty():
            sys.stdout.write("\033[1A\033[2K\r")
            sys.stdout.write(line + "\n")
            sys.stdout.flush()
        else:
            print(line)
    except OSError:
        print(line)


def _print_ts(text: str) -> None:
    print(f"[{_ts_local()}] {text}", flush=True)


class ConsoleReminderSink:
    """ReminderSink that prints reminders into the interactive console."""

    async def deliver(self, reminder: Reminder) -> None:
        _print_ts(f"[{reminder.title}] {reminder.text}  (/confirm {reminder.occurrence_id[:8]})")


def _start_stdin_reader(loop: asyncio.AbstractEventLoop, lines: asyncio.Queue[str | None]) -> threading.Thread:
    """
    Blocking input() lives in a daemon thread; lines are handed to the loop.
    None marks EOF. A daemon thread never holds up interpreter exit.
    """

    def _reader() -> None:
        while True:
            try:
                text = input(PROMPT)
            except (EOFError, KeyboardInterrupt):
                loop.call_soon_threadsafe(lines.put_nowait, None)
                return
            loop.call_soon_threadsafe(lines.put_nowait, text)

    thread = threading.Thread(target=_reader, name="console-stdin", daemon=True)
    thread.start()
    return thread


async def run_console_loop(state: AppState, stop: asyncio.Event | None = None) -> None:
    """
    Read slash commands until /exit, EOF or `stop`.

    Reminder timers keep firing on the loop while the prompt waits.
    """
    logger.info("Console connector started (offline=%s).", state.tracker.offline)
    _print_ts("[CONSOLE] Use /today to see the board, /help for commands, /exit to quit.\n")

    user_id = state.tracker.actor.id
    lines: asyncio.Queue[str | None] = asyncio.Queue()
    _start_stdin_reader(asyncio.get_running_loop(), lines)

    while stop is None or not stop.is_set():
        raw = await lines.get()
        if raw is None:
            logger.info("Console EOF received, exiting.")
            break
        line = raw.strip()
        _rewrite_prev_line(f"[{_ts_local()}] {PROMPT}{line}")

        if not line:
            continue

        if line.lower() in ("/exit", "/quit"):
            logger.info("Console exit command received.")
            break

        try:
            reply = await command_registry.handle(state, line, user_id=user_id, emit=_print_ts)
        except Exception:
            logger.exception("Command handler crashed.")
            reply = "Internal error while handling a command."

        if reply is None:
            reply = "Commands start with '/'. Use /help to list them."
        print(f"[{_ts_local()}] {reply}\n", flush=True)

    logger.info("Console connector finished.")
