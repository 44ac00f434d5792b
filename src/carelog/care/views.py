# src/carelog/care/views.py

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import date, datetime, timedelta

from ..core.errors import NotFoundError
from ..core.ports import CareStore
from .models import Occurrence, OccurrenceView, TaskDefinition

logger = logging.getLogger(__name__)


async def load_views(store: CareStore, occurrences: Iterable[Occurrence]) -> list[OccurrenceView]:
    """
    Join occurrences with their definitions.

    Rows whose definition no longer exists are dropped (and logged): there is
    nothing meaningful to show or arbitrate for them.
    """
    cache: dict[str, TaskDefinition | None] = {}
    out: list[OccurrenceView] = []

    for occ in occurrences:
        def_id = occ.task_definition_id
        if def_id not in cache:
            cache[def_id] = await store.get_definition(def_id)
        task = cache[def_id]
        if task is None:
            logger.warning("Occurrence %s references missing definition %s", occ.id, def_id)
            continue
        out.append(OccurrenceView(occurrence=occ, task=task))

    return out


async def load_day(store: CareStore, day: date) -> list[OccurrenceView]:
    return await load_views(store, await store.list_occurrences(day))


def conflict_days(occurrence: Occurrence, at: datetime) -> list[date]:
    """
    Days whose occurrences can hold a confirmation close to `at`.

    The occurrence's own day, the local day of `at` and the day before it: a dose given
    just after midnight is spaced against the previous evening, and a late confirmation
    of yesterday's item is spaced against today's.
    """
    local = at.astimezone(occurrence.scheduled_at.tzinfo).date()
    return sorted({occurrence.date, local, local - timedelta(days=1)})


async def load_days(store: CareStore, days: Iterable[date]) -> list[OccurrenceView]:
    views: list[OccurrenceView] = []
    for day in days:
        views.extend(await load_day(store, day))
    return views


async def require_occurrence(store: CareStore, occurrence_id: str) -> Occurrence:
    occ = await store.get_occurrence(occurrence_id)
    if occ is None:
        raise NotFoundError("Occurrence", occurrence_id)
    return occ
