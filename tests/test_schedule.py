# tests/test_schedule.py

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from carelog.care.schedule import ScheduleExpander, plan_occurrences
from carelog.storage.memory_store import MemoryCareStore

from .fakes import DAY, make_definition


def test_plan_creates_one_pending_occurrence_per_slot() -> None:
    d = make_definition("Ofloxacin 0.3%", ("08:00", "12:00", "17:00", "21:00"))

    planned = plan_occurrences(DAY, [d], [], tz=timezone.utc)

    assert len(planned) == 4
    assert {o.status.value for o in planned} == {"pending"}
    assert [o.scheduled_at for o in planned] == [
        datetime(2026, 1, 15, h, 0, tzinfo=timezone.utc) for h in (8, 12, 17, 21)
    ]
    assert all(o.date == DAY and not o.is_adhoc for o in planned)


def test_plan_skips_existing_keys() -> None:
    d = make_definition("Atropine 1%", ("08:00", "20:00"))
    existing = [(d.id, d.slots[0].id)]

    planned = plan_occurrences(DAY, [d], existing, tz=timezone.utc)

    assert [o.schedule_slot_id for o in planned] == [d.slots[1].id]


def test_plan_respects_effective_window() -> None:
    tomorrow = DAY + timedelta(days=1)
    yesterday = DAY - timedelta(days=1)
    defs = [
        make_definition("Starts tomorrow", start_date=tomorrow),
        make_definition("Ended yesterday", end_date=yesterday),
        make_definition("Inactive", active=False),
        make_definition("Ends today", end_date=DAY),
        make_definition("Starts today", start_date=DAY),
    ]

    planned = plan_occurrences(DAY, defs, [], tz=timezone.utc)

    names = {d.id: d.name for d in defs}
    assert sorted(names[o.task_definition_id] for o in planned) == ["Ends today", "Starts today"]


@pytest.mark.asyncio
async def test_expand_is_idempotent(store: MemoryCareStore) -> None:
    d = make_definition("Prednisolone", ("08:00", "20:00"))
    store.definitions[d.id] = d
    expander = ScheduleExpander(store, tz=timezone.utc)

    first = await expander.expand(DAY)
    second = await expander.expand(DAY)

    assert len(first) == 2
    assert second == []
    assert len(await store.list_occurrences(DAY)) == 2


@pytest.mark.asyncio
async def test_expand_start_date_tomorrow_creates_nothing(store: MemoryCareStore) -> None:
    d = make_definition("New medication", start_date=DAY + timedelta(days=1))
    store.definitions[d.id] = d

    created = await ScheduleExpander(store, tz=timezone.utc).expand(DAY)

    assert created == []
    assert await store.list_occurrences(DAY) == []


@pytest.mark.asyncio
async def test_expand_tolerates_concurrent_writer(store: MemoryCareStore) -> None:
    d = make_definition("Gabapentin 50mg", ("08:00", "20:00"))
    store.definitions[d.id] = d
    expander = ScheduleExpander(store, tz=timezone.utc)
    await expander.expand(DAY)

    # Stale view of the day: every insert hits the natural key.
    created = await expander.expand(DAY, existing_keys=[])

    assert created == []
    assert len(await store.list_occurrences(DAY)) == 2


@pytest.mark.asyncio
async def test_expand_continues_after_failed_insert(store: MemoryCareStore) -> None:
    a = make_definition("Breakfast", ("07:30",))
    b = make_definition("Dinner", ("18:00",))
    store.definitions[a.id] = a
    store.definitions[b.id] = b

    original = store.create_occurrence
    calls = {"n": 0}

    async def flaky_create(occurrence):
        calls["n"] += 1
        if calls["n"] == 1:
            raise RuntimeError("disk full")
        return await original(occurrence)

    store.create_occurrence = flaky_create  # type: ignore[method-assign]

    created = await ScheduleExpander(store, tz=timezone.utc).expand(DAY)

    assert calls["n"] == 2
    assert len(created) == 1
