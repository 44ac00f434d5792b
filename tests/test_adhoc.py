# tests/test_adhoc.py

from __future__ import annotations

from datetime import timedelta

import pytest

from carelog.care.adhoc import (
    QUICK_LOG_CATEGORIES,
    QUICK_LOG_NAME,
    AdHocLogger,
    decode_quick_log,
    display_task,
    is_quick_log,
)
from carelog.care.models import Actor, OccurrenceStatus, RecordAction, TaskKind
from carelog.core.errors import NotFoundError, ValidationError

from .fakes import T0, make_definition, make_view

ANNA = Actor("anna")


@pytest.mark.asyncio
async def test_quick_log_snack_is_confirmed_and_decodes(store, clock) -> None:
    logger = AdHocLogger(store, clock)

    occ = await logger.create_quick_log("snack", "treat", actor=ANNA)

    assert occ.status == OccurrenceStatus.CONFIRMED
    assert occ.is_adhoc
    assert occ.confirmed_at == T0
    assert occ.confirmed_by == "anna"
    assert occ.category == "snack"
    assert occ.notes == "[snack] treat"

    task = await store.get_definition(occ.task_definition_id)
    assert task.name == QUICK_LOG_NAME
    shown = display_task(occ, task)
    assert shown.name == "treat"
    assert shown.kind == TaskKind.FOOD
    assert decode_quick_log(occ)[0] is QUICK_LOG_CATEGORIES["snack"]

    history = await store.list_confirmation_history(occ.id)
    assert [r.action for r in history] == [RecordAction.CONFIRM]


@pytest.mark.asyncio
async def test_placeholder_is_created_once(store, clock) -> None:
    logger = AdHocLogger(store, clock)

    a = await logger.create_quick_log("behavior", None, actor=ANNA)
    b = await AdHocLogger(store, clock).create_quick_log("other", "vomited once", actor=ANNA)

    assert a.task_definition_id == b.task_definition_id
    assert len([d for d in store.definitions.values() if d.name == QUICK_LOG_NAME]) == 1
    # Without a note the category name is shown.
    task = await store.get_definition(a.task_definition_id)
    assert display_task(a, task).name == "Behavior"


@pytest.mark.asyncio
async def test_quick_log_rejects_unknown_category(store, clock) -> None:
    with pytest.raises(ValidationError):
        await AdHocLogger(store, clock).create_quick_log("walk", actor=ANNA)


def test_legacy_rows_decode_from_notes_tag() -> None:
    placeholder = make_definition(QUICK_LOG_NAME, ())
    view = make_view(placeholder, status=OccurrenceStatus.CONFIRMED, confirmed_at=T0)
    occ = view.occurrence
    occ.is_adhoc = True
    occ.notes = "[symptom] coughing"

    info, text = decode_quick_log(occ)

    assert is_quick_log(occ)
    assert info.key == "symptom"
    assert text == "coughing"
    assert display_task(occ, placeholder).kind == TaskKind.MEDICATION


def test_unknown_tag_falls_back_to_other() -> None:
    placeholder = make_definition(QUICK_LOG_NAME, ())
    occ = make_view(placeholder).occurrence
    occ.is_adhoc = True
    occ.notes = "[zoomies] around the garden"

    info, text = decode_quick_log(occ)

    assert info.key == "other"
    assert text == "around the garden"


def test_scheduled_rows_are_shown_as_is() -> None:
    task = make_definition("Breakfast")
    occ = make_view(task).occurrence
    occ.notes = "[snack] not a quick log"

    assert not is_quick_log(occ)
    assert display_task(occ, task) is task


@pytest.mark.asyncio
async def test_create_adhoc_adds_pending_instance(store, clock, plan) -> None:
    logger = AdHocLogger(store, clock)
    oflox = plan["oflox"]
    at = T0 + timedelta(hours=2)

    first = await logger.create_adhoc(oflox.id, at, "extra dose")
    second = await logger.create_adhoc(oflox.id, at)

    assert first.status == OccurrenceStatus.PENDING
    assert first.is_adhoc and first.schedule_slot_id is None
    assert first.scheduled_at == at
    assert first.id != second.id


@pytest.mark.asyncio
async def test_create_adhoc_unknown_definition(store, clock) -> None:
    with pytest.raises(NotFoundError):
        await AdHocLogger(store, clock).create_adhoc("missing", T0)
