# tests/conftest.py

from __future__ import annotations

from datetime import timezone
from pathlib import Path
from types import SimpleNamespace

import pytest

from carelog.care.models import Actor, Role, TaskDefinition, TaskKind
from carelog.care.reminders import ReminderScheduler
from carelog.care.tracker import CareTracker
from carelog.core.clock import FixedClock
from carelog.core.state import AppState
from carelog.storage.memory_store import MemoryCareStore, MemoryOfflineQueue

from .fakes import T0, RecordingReminderSink, make_definition


@pytest.fixture()
def settings(tmp_path: Path) -> SimpleNamespace:
    """
    Minimal settings object compatible with AppState and the bootstrap.

    We intentionally use a SimpleNamespace rather than importing real config,
    to keep unit tests isolated and deterministic.
    """
    return SimpleNamespace(
        app_name="carelog-test",
        log_level="DEBUG",
        user_id="matthew",
        user_role="admin",
        subject_id="yuki",
        timezone="UTC",
        tz=timezone.utc,
        overdue_minutes=30,
        conflict_spacing_minutes=5,
        start_offline=False,
        data_dir=tmp_path,
        db_path=tmp_path / "carelog.sqlite3",
        offline_queue_path=tmp_path / "offline_queue.json",
        seed_path=None,
    )


@pytest.fixture()
def clock() -> FixedClock:
    return FixedClock(T0)


@pytest.fixture()
def store() -> MemoryCareStore:
    return MemoryCareStore()


@pytest.fixture()
def queue() -> MemoryOfflineQueue:
    return MemoryOfflineQueue()


@pytest.fixture()
def sink() -> RecordingReminderSink:
    return RecordingReminderSink()


@pytest.fixture()
def plan(store: MemoryCareStore) -> dict[str, TaskDefinition]:
    """
    A small care plan written straight into the memory store:
    two left-eye drops sharing a conflict group, plus breakfast.
    """
    defs = {
        "oflox": make_definition(
            "Ofloxacin 0.3%", ("08:00", "12:00"), group="leftEye", dose="1 drop", location="LEFT eye"
        ),
        "atropine": make_definition("Atropine 1%", ("08:00",), group="leftEye", dose="1 drop", location="LEFT eye"),
        "breakfast": make_definition("Breakfast", ("07:30",), kind=TaskKind.FOOD),
    }
    for d in defs.values():
        store.definitions[d.id] = d
    return defs


@pytest.fixture()
def admin() -> Actor:
    return Actor(id="matthew", role=Role.ADMIN)


@pytest.fixture()
def tracker(
    store: MemoryCareStore,
    clock: FixedClock,
    queue: MemoryOfflineQueue,
    sink: RecordingReminderSink,
    plan: dict[str, TaskDefinition],
    admin: Actor,
) -> CareTracker:
    return CareTracker(store, clock, queue, actor=admin, reminders=ReminderScheduler(sink, clock))


@pytest.fixture()
def state(
    settings: SimpleNamespace,
    store: MemoryCareStore,
    queue: MemoryOfflineQueue,
    tracker: CareTracker,
) -> AppState:
    """AppState wired to in-memory adapters and the fixed clock."""
    return AppState(settings=settings, store=store, queue=queue, tracker=tracker)
