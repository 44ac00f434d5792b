# tests/test_tracker.py

from __future__ import annotations

from datetime import timedelta

import pytest

from carelog.care.models import Actor, OccurrenceStatus, OfflineActionKind, RecordAction
from carelog.care.tracker import ActionStatus, CareTracker
from carelog.core.errors import ConflictBlocked, NotFoundError, PermissionDenied

from .fakes import DAY, T0, by_name


@pytest.mark.asyncio
async def test_refresh_builds_the_board(tracker, store) -> None:
    views = await tracker.refresh()

    assert tracker.today() == DAY
    assert len(views) == 4
    assert len(store.occurrences) == 4

    board = await tracker.board()
    assert [v.task.name for v in board.overdue] == ["Breakfast"]
    assert sorted(v.task.name for v in board.due) == ["Atropine 1%", "Ofloxacin 0.3%"]
    assert [v.occurrence.scheduled_at for v in board.upcoming] == [T0 + timedelta(hours=4)]
    assert board.badge_count == 3
    assert board.total == 4


@pytest.mark.asyncio
async def test_board_moves_with_the_clock(tracker, clock) -> None:
    await tracker.refresh()

    clock.advance(minutes=30)
    board = await tracker.board()

    assert len(board.overdue) == 3
    assert board.due == []


@pytest.mark.asyncio
async def test_confirm_is_applied_and_returns_record(tracker) -> None:
    views = await tracker.refresh()
    breakfast = by_name(views, "Breakfast").occurrence.id

    result = await tracker.confirm(breakfast, "ate half")

    assert result.status == ActionStatus.APPLIED
    assert not result.queued
    assert result.occurrence.status == OccurrenceStatus.CONFIRMED
    assert result.record.action == RecordAction.CONFIRM
    assert [r.id for r in await tracker.history(breakfast)] == [result.record.id]


@pytest.mark.asyncio
async def test_conflict_blocks_until_override(tracker, clock) -> None:
    views = await tracker.refresh()
    oflox = by_name(views, "Ofloxacin 0.3%", "08:00").occurrence.id
    atropine = by_name(views, "Atropine 1%").occurrence.id

    await tracker.confirm(oflox)
    clock.advance(minutes=1)

    check = await tracker.check_conflict(atropine)
    assert check.remaining_minutes == 4

    with pytest.raises(ConflictBlocked):
        await tracker.confirm(atropine)

    result = await tracker.confirm(atropine, override_conflict=True)
    assert result.occurrence.confirmed_at == T0 + timedelta(minutes=1)


@pytest.mark.asyncio
async def test_offline_confirm_respects_conflict_window(tracker, clock) -> None:
    views = await tracker.refresh()
    await tracker.confirm(by_name(views, "Ofloxacin 0.3%", "08:00").occurrence.id)
    tracker.go_offline()
    clock.advance(minutes=2)

    with pytest.raises(ConflictBlocked) as excinfo:
        await tracker.confirm(by_name(views, "Atropine 1%").occurrence.id)

    assert excinfo.value.remaining_minutes == 3


@pytest.mark.asyncio
async def test_snooze_then_undo_round_trip(tracker, clock) -> None:
    views = await tracker.refresh()
    breakfast = by_name(views, "Breakfast").occurrence.id

    snoozed = await tracker.snooze(breakfast, 30)
    assert snoozed.occurrence.snooze_until == T0 + timedelta(minutes=30)
    assert [v.occurrence.id for v in (await tracker.board()).snoozed] == [breakfast]

    await tracker.confirm(breakfast)
    undone = await tracker.undo(breakfast)

    assert undone.occurrence.status == OccurrenceStatus.PENDING
    assert undone.record.action == RecordAction.UNDO
    assert "[Undone at 8:00 AM]" in undone.occurrence.notes


@pytest.mark.asyncio
async def test_edit_by_admin(tracker) -> None:
    views = await tracker.refresh()
    breakfast = by_name(views, "Breakfast").occurrence.id
    confirmed = await tracker.confirm(breakfast)

    result = await tracker.edit(confirmed.record.id, confirmed_by="anna", notes="anna fed him")

    assert result.record.version == 2
    assert result.occurrence.confirmed_by == "anna"
    assert result.occurrence.notes == "anna fed him"


@pytest.mark.asyncio
async def test_edit_by_caregiver_is_refused_online_and_offline(store, clock, queue, plan) -> None:
    tracker = CareTracker(store, clock, queue, actor=Actor("anna"))
    views = await tracker.refresh()
    confirmed = await tracker.confirm(by_name(views, "Breakfast").occurrence.id)

    with pytest.raises(PermissionDenied):
        await tracker.edit(confirmed.record.id, notes="x")

    tracker.go_offline()
    with pytest.raises(PermissionDenied):
        await tracker.edit(confirmed.record.id, notes="x")
    assert await tracker.reconciler.pending() == []


@pytest.mark.asyncio
async def test_offline_edit_and_undo_are_replayed(tracker, store) -> None:
    views = await tracker.refresh()
    breakfast = by_name(views, "Breakfast").occurrence.id
    confirmed = await tracker.confirm(breakfast)
    tracker.go_offline()

    edited = await tracker.edit(confirmed.record.id, confirmed_at=T0 - timedelta(minutes=10))
    undone = await tracker.undo(breakfast)
    assert edited.queued and undone.queued
    assert [a.kind for a in await tracker.reconciler.pending()] == [OfflineActionKind.EDIT, OfflineActionKind.UNDO]
    assert by_name(await tracker.views(), "Breakfast").occurrence.status == OccurrenceStatus.PENDING

    report = await tracker.go_online()

    assert report.ok
    history = await tracker.history(breakfast)
    assert [r.action for r in history] == [RecordAction.UNDO, RecordAction.EDIT, RecordAction.CONFIRM]
    assert history[1].confirmed_at == T0 - timedelta(minutes=10)
    assert (await store.get_occurrence(breakfast)).status == OccurrenceStatus.PENDING


@pytest.mark.asyncio
async def test_quick_log_online(tracker) -> None:
    await tracker.refresh()

    result = await tracker.quick_log("Snack", "carrot")

    assert result.occurrence.category == "snack"
    board = await tracker.board()
    assert [v.occurrence.id for v in board.confirmed] == [result.occurrence.id]
    assert result.occurrence.notes == "[snack] carrot"


@pytest.mark.asyncio
async def test_create_adhoc_arms_its_reminder(tracker, plan) -> None:
    await tracker.refresh()
    at = T0 + timedelta(hours=2)

    result = await tracker.create_adhoc(plan["oflox"].id, at, "extra dose")

    assert result.occurrence.scheduled_at == at
    assert tracker.reminders.is_scheduled(result.occurrence.id)
    assert len(await tracker.views()) == 5
    tracker.reminders.clear()


@pytest.mark.asyncio
async def test_offline_create_adhoc_is_replayed(tracker, store, plan) -> None:
    await tracker.refresh()
    tracker.go_offline()

    result = await tracker.create_adhoc(plan["atropine"].id, T0 + timedelta(hours=1))
    assert result.queued
    assert len(store.occurrences) == 4

    await tracker.go_online()
    created = await store.get_occurrence(result.action.payload["occurrence_id"])
    assert created.is_adhoc
    tracker.reminders.clear()


@pytest.mark.asyncio
async def test_offline_without_loaded_day_knows_nothing(store, clock, queue, plan, admin) -> None:
    tracker = CareTracker(store, clock, queue, actor=admin, offline=True)

    assert await tracker.refresh() == []
    assert (await tracker.board()).total == 0
    with pytest.raises(NotFoundError):
        await tracker.confirm("anything")
