# src/carelog/cli/bootstrap.py

"""
CLI bootstrap helpers.

This module is the "composition root":
- loads settings once,
- ensures local (gitignored) directories exist,
- wires concrete implementations into AppState (SQLite store, JSON offline queue,
  reminder scheduler, tracker),
- seeds the care plan from a JSON file on first run (optional).
"""

from __future__ import annotations

import logging
from datetime import timedelta

from ..care.conflicts import ConflictArbiter
from ..care.models import Actor, Role
from ..care.reminders import ReminderScheduler
from ..care.tracker import CareTracker
from ..config import get_settings
from ..core.clock import SystemClock
from ..core.errors import ValidationError
from ..core.ports import ReminderSink
from ..core.state import AppState
from ..storage.queue_store import JsonOfflineQueue
from ..storage.seed import SeedPlan, load_seed_file, seed_store
from ..storage.sqlite_store import SqliteCareStore

logger = logging.getLogger(__name__)


def _ensure_local_dirs(settings) -> None:
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.db_path.parent.mkdir(parents=True, exist_ok=True)
    settings.offline_queue_path.parent.mkdir(parents=True, exist_ok=True)


def _actor_from_settings(settings) -> Actor:
    try:
        role = Role(settings.user_role)
    except ValueError:
        logger.warning("Unknown user role %r; using %s", settings.user_role, Role.USER.value)
        role = Role.USER
    return Actor(id=settings.user_id, role=role)


def _load_seed(settings) -> SeedPlan | None:
    path = getattr(settings, "seed_path", None)
    if not path:
        return None
    try:
        return load_seed_file(path, subject_id=settings.subject_id)
    except ValidationError:
        logger.exception("Seed file %s ignored", path)
        return None


def create_initial_state(*, settings=None, sink: ReminderSink | None = None) -> AppState:
    """
    Create AppState from the provided settings.

    Keeping settings injectable makes the app easier to test and avoids hidden global config reads.
    If settings is None, falls back to get_settings().
    """
    if settings is None:
        settings = get_settings()

    _ensure_local_dirs(settings)

    tz = settings.tz
    clock = SystemClock(tz)
    store = SqliteCareStore(settings.db_path)
    queue = JsonOfflineQueue(settings.offline_queue_path)

    seed = _load_seed(settings)
    arbiter = ConflictArbiter(
        seed.conflict_groups if seed else None,
        default_spacing_minutes=settings.conflict_spacing_minutes,
    )

    tracker = CareTracker(
        store,
        clock,
        queue,
        actor=_actor_from_settings(settings),
        tz=tz,
        arbiter=arbiter,
        reminders=ReminderScheduler(sink, clock) if sink is not None else None,
        overdue_after=timedelta(minutes=settings.overdue_minutes),
        subject_id=settings.subject_id,
        offline=settings.start_offline,
    )

    return AppState(settings=settings, store=store, queue=queue, tracker=tracker, seed=seed)


async def prepare_state(state: AppState) -> None:
    """Async part of startup: seed an empty store, then load today."""
    if state.seed is not None and not state.tracker.offline:
        await seed_store(state.store, state.seed)
    views = await state.tracker.refresh()
    logger.info("Today loaded: %d occurrence(s)", len(views))
