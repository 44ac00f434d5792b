# src/carelog/storage/seed.py

"""
Initial care plan from a JSON file.

Definitions are managed outside the engine; this is how a fresh install gets
its first ones. Seeding is skipped when the store already holds definitions.

File shape:
    {
      "conflict_groups": [{"name": "leftEye", "spacing_minutes": 5}],
      "definitions": [
        {"name": "Ofloxacin 0.3%", "kind": "medication", "category": "leftEye",
         "dose": "1 drop", "location": "LEFT eye", "frequency": "4x_daily",
         "conflict_group": "leftEye", "start_date": "2026-01-12",
         "times": ["08:00", "12:00", "17:00", "21:00"]}
      ]
    }
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import date, time
from pathlib import Path
from typing import Any

from ..care.models import (
    DEFAULT_SPACING_MINUTES,
    ConflictGroup,
    Frequency,
    ScheduleSlot,
    TaskDefinition,
    TaskKind,
    new_id,
    slot_label_for_hour,
)
from ..core.errors import ValidationError
from ..core.ports import CareStore

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class SeedPlan:
    definitions: list[TaskDefinition] = field(default_factory=list)
    conflict_groups: dict[str, ConflictGroup] = field(default_factory=dict)


def _optional_date(raw: Any) -> date | None:
    return date.fromisoformat(str(raw)) if raw else None


def _slot(definition_id: str, hhmm: str) -> ScheduleSlot:
    at = time.fromisoformat(hhmm)
    return ScheduleSlot(
        id=new_id(),
        task_definition_id=definition_id,
        time_of_day=at,
        label=slot_label_for_hour(at.hour),
    )


def parse_definition(raw: dict[str, Any], *, subject_id: str | None = None) -> TaskDefinition:
    name = str(raw.get("name") or "").strip()
    if not name:
        raise ValidationError("Seed definition without a name")

    definition_id = str(raw.get("id") or new_id())
    try:
        slots = tuple(_slot(definition_id, str(hhmm)) for hhmm in raw.get("times") or [])
        return TaskDefinition(
            id=definition_id,
            subject_id=raw.get("subject_id") or subject_id,
            kind=TaskKind(raw.get("kind", TaskKind.MEDICATION.value)),
            category=raw.get("category"),
            name=name,
            dose=raw.get("dose"),
            location=raw.get("location"),
            notes=raw.get("notes"),
            frequency=Frequency(raw.get("frequency", Frequency.ONCE_DAILY.value)),
            active=bool(raw.get("active", True)),
            start_date=_optional_date(raw.get("start_date")),
            end_date=_optional_date(raw.get("end_date")),
            conflict_group=raw.get("conflict_group") or None,
            slots=slots,
        )
    except ValueError as exc:
        raise ValidationError(f"Seed definition {name!r} is invalid: {exc}") from exc


def load_seed_file(path: str | Path, *, subject_id: str | None = None) -> SeedPlan:
    path = Path(path)
    try:
        data = json.loads(path.read_text("utf-8"))
    except (OSError, ValueError) as exc:
        raise ValidationError(f"Cannot read seed file {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ValidationError(f"Seed file {path} must hold a JSON object")

    plan = SeedPlan()
    for raw in data.get("conflict_groups") or []:
        group = ConflictGroup(
            name=str(raw["name"]),
            spacing_minutes=int(raw.get("spacing_minutes", DEFAULT_SPACING_MINUTES)),
        )
        plan.conflict_groups[group.name] = group
    for raw in data.get("definitions") or []:
        plan.definitions.append(parse_definition(raw, subject_id=subject_id))
    return plan


async def seed_store(store: CareStore, plan: SeedPlan) -> int:
    """Insert the plan's definitions into an empty store. Returns how many were added."""
    existing = await store.list_definitions(active_only=False)
    if existing:
        logger.info("Store already has %d definition(s); seed skipped", len(existing))
        return 0

    for definition in plan.definitions:
        await store.create_definition(definition)
    logger.info("Seeded %d definition(s)", len(plan.definitions))
    return len(plan.definitions)
