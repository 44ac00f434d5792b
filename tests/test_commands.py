# tests/test_commands.py

from __future__ import annotations

from datetime import timedelta

import pytest

from carelog.cli.commands import CommandRegistry, registry
from carelog.core.errors import NotFoundError, TransientIOError

from .fakes import T0, by_name


@pytest.mark.asyncio
async def test_command_registry_routes_3_and_4_params(state) -> None:
    reg = CommandRegistry()
    called = {"h3": 0, "h4": 0}
    notes: list[str] = []

    async def h3(state, args, user_id):
        called["h3"] += 1
        return f"h3 {args}"

    async def h4(state, args, user_id, emit):
        called["h4"] += 1
        if emit is not None:
            emit("note")
        return "h4"

    reg.register("a", h3, "a")
    reg.register("b", h4, "b", aliases=["bee"])

    assert await reg.handle(state, "/a x", user_id="u") == "h3 ['x']"
    assert await reg.handle(state, "/BEE y", user_id="u", emit=notes.append) == "h4"
    assert called == {"h3": 1, "h4": 1}
    assert notes == ["note"]
    assert "/b - b" in reg.build_help()


@pytest.mark.asyncio
async def test_command_registry_unknown_and_non_command(state) -> None:
    reg = CommandRegistry()

    assert await reg.handle(state, "hello") is None
    assert "Unknown command" in (await reg.handle(state, "/nope") or "")
    assert "Empty command" in (await reg.handle(state, "/") or "")


@pytest.mark.asyncio
async def test_engine_errors_become_replies(state) -> None:
    reg = CommandRegistry()

    async def missing(state, args, user_id):
        raise NotFoundError("Occurrence", "abc")

    async def unreachable(state, args, user_id):
        raise TransientIOError("database is locked")

    async def broken(state, args, user_id):
        raise RuntimeError("bug")

    reg.register("missing", missing, "")
    reg.register("down", unreachable, "")
    reg.register("broken", broken, "")

    assert await reg.handle(state, "/missing") == "Error: Occurrence abc not found"
    assert "Store unreachable (database is locked)" in await reg.handle(state, "/down")
    with pytest.raises(RuntimeError):
        await reg.handle(state, "/broken")


@pytest.mark.asyncio
async def test_today_lists_buckets(state) -> None:
    reply = await registry.handle(state, "/today")

    assert reply.startswith("2026-01-15:")
    assert "OVERDUE (1)" in reply
    assert "DUE (2)" in reply
    assert "UPCOMING (1)" in reply
    assert "Ofloxacin 0.3% 1 drop (LEFT eye)" in reply
    assert "CONFIRMED" not in reply

    assert await registry.handle(state, "/today tomorrow") == "Usage: /today [YYYY-MM-DD]"
    other_day = await registry.handle(state, "/t 2026-01-20")
    assert other_day.startswith("2026-01-20:")
    assert "Breakfast" in other_day


@pytest.mark.asyncio
async def test_confirm_by_prefix_and_conflict_override(state, clock) -> None:
    views = await state.tracker.refresh()
    oflox = by_name(views, "Ofloxacin 0.3%", "08:00").id
    atropine = by_name(views, "Atropine 1%").id

    assert await registry.handle(state, f"/confirm {oflox[:8]} left eye") == f"Confirmed {oflox[:8]}."
    clock.advance(minutes=1)

    blocked = await registry.handle(state, f"/c {atropine[:8]}")
    assert blocked.startswith("Blocked: Wait 4 min - Ofloxacin 0.3% was just given")
    assert "--override" in blocked

    assert await registry.handle(state, f"/c {atropine[:8]} --override") == f"Confirmed {atropine[:8]}."
    history = await registry.handle(state, f"/history {oflox[:8]}")
    assert "v1 confirm" in history
    assert "left eye" in history


@pytest.mark.asyncio
async def test_bad_input_is_reported(state) -> None:
    views = await state.tracker.refresh()
    breakfast = by_name(views, "Breakfast").id

    assert (await registry.handle(state, f"/snooze {breakfast} 20")).startswith("Error: Snooze must be one of")
    assert await registry.handle(state, "/snooze x") == "Usage: /snooze <id> <15|30|60>"
    assert (await registry.handle(state, "/undo nope")).startswith("Error:")
    assert (await registry.handle(state, "/log walk")).startswith("Error: Unknown quick log category")


@pytest.mark.asyncio
async def test_quick_log_shows_note_as_name(state) -> None:
    assert await registry.handle(state, "/log snack treat") == "Logged snack."

    reply = await registry.handle(state, "/today")
    assert "CONFIRMED (1)" in reply
    assert "treat by matthew at 08:00" in reply


@pytest.mark.asyncio
async def test_edit_keeps_the_original_day(state) -> None:
    views = await state.tracker.refresh()
    breakfast = by_name(views, "Breakfast").id
    confirmed = await state.tracker.confirm(breakfast)
    notes: list[str] = []

    reply = await registry.handle(
        state, f"/edit {confirmed.record.id} at=07:50 note=given a bit late", emit=notes.append
    )

    assert reply == f"Record {confirmed.record.id[:8]} corrected."
    assert notes == [f"Editing record {confirmed.record.id[:8]}: confirmed_at, notes"]
    occ = await state.store.get_occurrence(breakfast)
    assert occ.confirmed_at == T0 - timedelta(minutes=10)
    assert occ.notes == "given a bit late"

    assert "expected HH:MM" in await registry.handle(state, f"/edit {confirmed.record.id} at=late")
    assert "Unknown field" in await registry.handle(state, f"/edit {confirmed.record.id} who=anna")


@pytest.mark.asyncio
async def test_offline_round_trip(state) -> None:
    views = await state.tracker.refresh()
    breakfast = by_name(views, "Breakfast").id

    assert (await registry.handle(state, "/offline on")).startswith("Offline mode")
    assert await registry.handle(state, "/offline on") == "Already offline."

    queued = await registry.handle(state, f"/confirm {breakfast[:8]}")
    assert "(offline, queued as" in queued
    assert await registry.handle(state, f"/history {breakfast[:8]}") == "History is not available offline."

    listing = await registry.handle(state, "/queue")
    assert listing.startswith("Offline queue (1):")
    assert f"confirm {breakfast[:8]}" in listing

    status = await registry.handle(state, "/status")
    assert "Mode: OFFLINE" in status
    assert "Offline queue: 1" in status

    assert await registry.handle(state, "/offline off") == "Replayed: 1 synced, 0 failed."
    assert await registry.handle(state, "/queue") == "Offline queue is empty."
    assert await registry.handle(state, "/offline") == "Currently ONLINE. Use /offline on or /offline off."
    state.tracker.reminders.clear()


@pytest.mark.asyncio
async def test_queue_drop(state) -> None:
    views = await state.tracker.refresh()
    await registry.handle(state, "/offline on")
    await registry.handle(state, f"/snooze {by_name(views, 'Breakfast').id} 15")
    action = (await state.tracker.reconciler.pending())[0]

    assert await registry.handle(state, "/queue drop zzz") == "No single queued action matches 'zzz'."
    assert await registry.handle(state, f"/queue drop {action.id[:6]}") == f"Dropped {action.id[:8]}."
    assert await state.tracker.reconciler.pending() == []
    state.tracker.reminders.clear()
