# src/carelog/cli/main.py

"""
CLI entrypoint.

Initializes logging, builds AppState, loads today (arming reminders), then runs
the console REPL on the event loop until /exit or a signal.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal

from ..cli.bootstrap import create_initial_state, prepare_state
from ..config import get_settings
from ..connectors.console_connector import ConsoleReminderSink, run_console_loop
from ..core.errors import TransientIOError
from ..core.state import AppState
from ..logging_setup import level_from_name, setup_logging

logger = logging.getLogger(__name__)


def _shutdown(state: AppState) -> None:
    """Best-effort shutdown (no exceptions should escape)."""
    reminders = state.tracker.reminders
    if reminders is not None:
        reminders.clear()

    # SqliteCareStore uses short-lived connections per call; close() is a no-op hook.
    try:
        close = getattr(state.store, "close", None)
        if close is not None:
            close()
    except Exception:
        logger.debug("Store close failed.", exc_info=True)


async def _run(state: AppState) -> None:
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()

    def _handle_signal(signum: int) -> None:
        logger.info("Signal %s received, shutting down...", signum)
        stop.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        # Not available on every platform (e.g. Windows event loops).
        with contextlib.suppress(NotImplementedError, RuntimeError):
            loop.add_signal_handler(sig, _handle_signal, sig)

    try:
        await prepare_state(state)
    except TransientIOError:
        logger.warning("Store unreachable at startup; continuing offline.")
        state.tracker.go_offline()

    console = asyncio.create_task(run_console_loop(state, stop))
    stopper = asyncio.create_task(stop.wait())
    done, _ = await asyncio.wait({console, stopper}, return_when=asyncio.FIRST_COMPLETED)
    stopper.cancel()
    if console in done:
        console.result()
    else:
        console.cancel()


def main() -> None:
    settings = get_settings()

    log_file = setup_logging(log_dir=settings.data_dir, console_level=level_from_name(settings.log_level))

    logger.info("Starting %s (full log: %s)...", settings.app_name, log_file)

    # IMPORTANT: reuse same settings object
    state = create_initial_state(settings=settings, sink=ConsoleReminderSink())

    try:
        asyncio.run(_run(state))
    except KeyboardInterrupt:
        logger.info("Interrupted.")
    finally:
        _shutdown(state)
        logger.info("Bye.")


if __name__ == "__main__":
    main()
