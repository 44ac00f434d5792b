# tests/fakes.py

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date, datetime, time, timezone
from typing import Any

from carelog.care.models import (
    Frequency,
    Occurrence,
    OccurrenceStatus,
    OccurrenceView,
    ScheduleSlot,
    TaskDefinition,
    TaskKind,
    new_id,
    slot_label_for_hour,
)
from carelog.care.reminders import Reminder
from carelog.core.errors import TransientIOError

# Thursday morning; every test clock starts here.
T0 = datetime(2026, 1, 15, 8, 0, tzinfo=timezone.utc)
DAY = T0.date()


def make_definition(
    name: str,
    times: Iterable[str] = ("08:00",),
    *,
    kind: TaskKind = TaskKind.MEDICATION,
    group: str | None = None,
    dose: str | None = None,
    location: str | None = None,
    start_date: date | None = None,
    end_date: date | None = None,
    active: bool = True,
) -> TaskDefinition:
    definition_id = new_id()
    slots = []
    for hhmm in times:
        at = time.fromisoformat(hhmm)
        slots.append(
            ScheduleSlot(
                id=new_id(),
                task_definition_id=definition_id,
                time_of_day=at,
                label=slot_label_for_hour(at.hour),
            )
        )
    return TaskDefinition(
        id=definition_id,
        subject_id="yuki",
        kind=kind,
        category=group or kind.value,
        name=name,
        dose=dose,
        location=location,
        frequency=Frequency.ONCE_DAILY if len(slots) == 1 else Frequency.TWICE_DAILY,
        active=active,
        start_date=start_date,
        end_date=end_date,
        conflict_group=group,
        slots=tuple(slots),
    )


def make_view(
    task: TaskDefinition,
    scheduled_at: datetime = T0,
    *,
    status: OccurrenceStatus = OccurrenceStatus.PENDING,
    confirmed_at: datetime | None = None,
    snooze_until: datetime | None = None,
) -> OccurrenceView:
    occ = Occurrence(
        id=new_id(),
        task_definition_id=task.id,
        schedule_slot_id=task.slots[0].id if task.slots else None,
        date=scheduled_at.date(),
        scheduled_at=scheduled_at,
        status=status,
        confirmed_at=confirmed_at,
        confirmed_by="anna" if confirmed_at else None,
        snooze_until=snooze_until,
    )
    return OccurrenceView(occurrence=occ, task=task)


def by_name(views: Iterable[OccurrenceView], name: str, hhmm: str | None = None) -> OccurrenceView:
    for view in views:
        if view.task.name != name:
            continue
        if hhmm is None or view.occurrence.scheduled_at.strftime("%H:%M") == hhmm:
            return view
    raise AssertionError(f"No occurrence of {name!r} at {hhmm}")


class RecordingReminderSink:
    """Fake ReminderSink: keeps every delivered reminder; can be told to fail."""

    def __init__(self, *, fail: bool = False) -> None:
        self.delivered: list[Reminder] = []
        self.fail = fail

    async def deliver(self, reminder: Reminder) -> None:
        if self.fail:
            raise RuntimeError("push service down")
        self.delivered.append(reminder)


@dataclass
class FlakyStore:
    """
    Wraps a real CareStore. While `down` is set every call raises TransientIOError;
    names in `fail_once` raise once and then recover.
    """

    inner: Any
    down: bool = False
    fail_once: set[str] = field(default_factory=set)
    calls: list[str] = field(default_factory=list)

    def __getattr__(self, name: str) -> Any:
        target = getattr(self.inner, name)
        if not callable(target):
            return target

        async def _call(*args: Any, **kwargs: Any) -> Any:
            self.calls.append(name)
            if self.down:
                raise TransientIOError(f"{name}: store unreachable")
            if name in self.fail_once:
                self.fail_once.discard(name)
                raise TransientIOError(f"{name}: store unreachable")
            return await target(*args, **kwargs)

        return _call
