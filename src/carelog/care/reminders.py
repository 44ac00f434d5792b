# src/carelog/care/reminders.py

"""
Reminder triggers.

One asyncio timer per pending occurrence, keyed by occurrence id:
- armed for scheduled_at when the day is loaded,
- cancelled when the occurrence is confirmed (or otherwise leaves pending),
- re-armed for snooze_until when snoozed.

The scheduler decides when and what; the ReminderSink decides how it is delivered.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime

from ..core.clock import Clock
from ..core.ports import ReminderSink
from .models import OccurrenceStatus, OccurrenceView

logger = logging.getLogger(__name__)

REMINDER_TITLE = "Medication Reminder"


@dataclass(slots=True, frozen=True)
class Reminder:
    occurrence_id: str
    title: str
    text: str
    due_at: datetime


def reminder_text(view: OccurrenceView) -> str:
    """'LEFT eye: Ofloxacin 0.3% 1 drop due now'. No dose, no dose segment."""
    task = view.task
    location = task.location or ""
    dose = f" {task.dose}" if task.dose else ""
    return f"{location}: {task.name}{dose} due now"


def build_reminder(view: OccurrenceView, due_at: datetime | None = None) -> Reminder:
    return Reminder(
        occurrence_id=view.occurrence.id,
        title=REMINDER_TITLE,
        text=reminder_text(view),
        due_at=due_at or view.occurrence.scheduled_at,
    )


class ReminderScheduler:
    def __init__(self, sink: ReminderSink, clock: Clock) -> None:
        self._sink = sink
        self._clock = clock
        self._timers: dict[str, asyncio.TimerHandle] = {}
        self._inflight: set[asyncio.Task[None]] = set()

    @property
    def scheduled_count(self) -> int:
        return len(self._timers)

    def is_scheduled(self, occurrence_id: str) -> bool:
        return occurrence_id in self._timers

    def schedule(self, view: OccurrenceView, at: datetime | None = None) -> bool:
        """
        Arm (or re-arm) the reminder for one occurrence.

        Returns False when the due time already passed; nothing is armed then.
        Must be called from inside a running event loop.
        """
        occurrence_id = view.occurrence.id
        self.cancel(occurrence_id)

        reminder = build_reminder(view, at)
        delay = (reminder.due_at - self._clock.now()).total_seconds()
        if delay <= 0:
            return False

        loop = asyncio.get_running_loop()
        self._timers[occurrence_id] = loop.call_later(delay, self._fire, reminder)
        logger.debug("Reminder armed in %.1fs", delay, extra={"occurrence_id": occurrence_id})
        return True

    def cancel(self, occurrence_id: str) -> None:
        handle = self._timers.pop(occurrence_id, None)
        if handle is not None:
            handle.cancel()
            logger.debug("Reminder cancelled", extra={"occurrence_id": occurrence_id})

    def clear(self) -> None:
        for handle in self._timers.values():
            handle.cancel()
        self._timers.clear()

    def schedule_all(self, views: Iterable[OccurrenceView]) -> int:
        """
        Replace every timer with one per open occurrence. Returns how many were armed.

        Pending rows fire at scheduled_at, snoozed rows at snooze_until.
        """
        self.clear()
        armed = 0
        for view in views:
            occ = view.occurrence
            if occ.status == OccurrenceStatus.PENDING:
                due_at = occ.scheduled_at
            elif occ.status == OccurrenceStatus.SNOOZED and occ.snooze_until is not None:
                due_at = occ.snooze_until
            else:
                continue
            if self.schedule(view, due_at):
                armed += 1
        logger.info("Reminders armed: %d", armed)
        return armed

    def _fire(self, reminder: Reminder) -> None:
        self._timers.pop(reminder.occurrence_id, None)
        task = asyncio.get_running_loop().create_task(self._deliver(reminder))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)

    async def _deliver(self, reminder: Reminder) -> None:
        try:
            await self._sink.deliver(reminder)
            logger.info("Reminder delivered", extra={"occurrence_id": reminder.occurrence_id})
        except Exception:
            logger.exception("Reminder delivery failed", extra={"occurrence_id": reminder.occurrence_id})
