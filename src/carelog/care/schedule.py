# src/carelog/care/schedule.py

"""
Schedule expansion.

Turns recurring task definitions into the occurrences of one calendar day.
Expansion is idempotent: the natural key (definition, slot, date) of every
existing occurrence is skipped, so re-running for an expanded day creates nothing.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import date, datetime, tzinfo

from ..core.errors import DuplicateOccurrence
from ..core.ports import CareStore
from .models import Occurrence, OccurrenceStatus, TaskDefinition, new_id

logger = logging.getLogger(__name__)

SlotKey = tuple[str, str | None]


def plan_occurrences(
    day: date,
    definitions: Iterable[TaskDefinition],
    existing_keys: Iterable[SlotKey],
    *,
    tz: tzinfo,
) -> list[Occurrence]:
    """
    Pure planning step: which occurrences are missing for `day`.

    existing_keys holds (definition_id, slot_id) pairs already present on that day.
    """
    seen = set(existing_keys)
    planned: list[Occurrence] = []

    for definition in definitions:
        if not definition.is_effective_on(day):
            continue

        for slot in definition.slots:
            key = (definition.id, slot.id)
            if key in seen:
                continue
            seen.add(key)

            planned.append(
                Occurrence(
                    id=new_id(),
                    task_definition_id=definition.id,
                    schedule_slot_id=slot.id,
                    date=day,
                    scheduled_at=datetime.combine(day, slot.time_of_day, tzinfo=tz),
                    status=OccurrenceStatus.PENDING,
                )
            )

    return planned


class ScheduleExpander:
    def __init__(self, store: CareStore, *, tz: tzinfo) -> None:
        self._store = store
        self._tz = tz

    async def expand(
        self,
        day: date,
        definitions: Iterable[TaskDefinition] | None = None,
        existing_keys: Iterable[SlotKey] | None = None,
    ) -> list[Occurrence]:
        """
        Create the day's missing occurrences and return only the new rows.

        Best-effort: a failed insert is logged and the rest of the batch still runs.
        """
        if definitions is None:
            definitions = await self._store.list_definitions(active_only=True)
        if existing_keys is None:
            existing = await self._store.list_occurrences(day)
            existing_keys = [(o.task_definition_id, o.schedule_slot_id) for o in existing]

        planned = plan_occurrences(day, definitions, existing_keys, tz=self._tz)
        created: list[Occurrence] = []

        for occurrence in planned:
            try:
                created.append(await self._store.create_occurrence(occurrence))
            except DuplicateOccurrence:
                # Another writer expanded the same slot first.
                logger.info(
                    "Occurrence already exists definition=%s slot=%s date=%s",
                    occurrence.task_definition_id,
                    occurrence.schedule_slot_id,
                    day,
                )
            except Exception:
                logger.exception(
                    "create_occurrence failed definition=%s slot=%s date=%s",
                    occurrence.task_definition_id,
                    occurrence.schedule_slot_id,
                    day,
                )

        logger.info("Expanded %s: planned=%d created=%d", day, len(planned), len(created))
        return created
