# src/carelog/care/adhoc.py

"""
Ad-hoc entries: quick logs and one-off task instances.

Quick logs (snack, behavior, symptom, other) are log-only events: they are created
already confirmed and never remind anyone. They all hang off one placeholder
definition ("Quick Log"); the chosen category lives on the occurrence.

Older rows carry the category only as a "[category] text" tag in notes. New rows
store it in Occurrence.category and still write the tag so those readers keep working.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, replace
from datetime import datetime

from ..core.clock import Clock
from ..core.errors import NotFoundError, ValidationError
from ..core.ports import CareStore
from .models import (
    Actor,
    Frequency,
    NewConfirmationRecord,
    Occurrence,
    OccurrenceStatus,
    RecordAction,
    TaskDefinition,
    TaskKind,
    new_id,
)

logger = logging.getLogger(__name__)

QUICK_LOG_NAME = "Quick Log"

_TAG_RE = re.compile(r"^\[(\w+)\]\s*")


@dataclass(slots=True, frozen=True)
class QuickLogCategory:
    key: str
    name: str
    icon: str
    kind: TaskKind
    category: str


QUICK_LOG_CATEGORIES: dict[str, QuickLogCategory] = {
    "snack": QuickLogCategory("snack", "Snack", "cookie", TaskKind.FOOD, "food"),
    "behavior": QuickLogCategory("behavior", "Behavior", "activity", TaskKind.SUPPLEMENT, "oral"),
    "symptom": QuickLogCategory("symptom", "Symptom", "thermometer", TaskKind.MEDICATION, "oral"),
    "other": QuickLogCategory("other", QUICK_LOG_NAME, "note", TaskKind.SUPPLEMENT, "oral"),
}


def encode_quick_log(category: str, note: str | None) -> str:
    note = (note or "").strip()
    return f"[{category}] {note}" if note else f"[{category}]"


def decode_quick_log(occurrence: Occurrence) -> tuple[QuickLogCategory, str]:
    """
    Resolve (category, free text) for a quick-log occurrence.

    The explicit category field wins; otherwise the notes tag is parsed.
    Unknown categories fall back to "other".
    """
    notes = occurrence.notes or ""
    match = _TAG_RE.match(notes)
    text = notes[match.end():] if match else notes

    key = (occurrence.category or (match.group(1) if match else "") or "other").lower()
    return QUICK_LOG_CATEGORIES.get(key, QUICK_LOG_CATEGORIES["other"]), text.strip()


def is_quick_log(occurrence: Occurrence) -> bool:
    if not occurrence.is_adhoc:
        return False
    return occurrence.category is not None or bool(_TAG_RE.match(occurrence.notes or ""))


def display_task(occurrence: Occurrence, task: TaskDefinition) -> TaskDefinition:
    """The definition as it should be shown for this occurrence (quick logs decoded)."""
    if not is_quick_log(occurrence):
        return task
    info, text = decode_quick_log(occurrence)
    return replace(
        task,
        name=text or info.name,
        kind=info.kind,
        category=info.category,
        notes=text or None,
    )


class AdHocLogger:
    def __init__(self, store: CareStore, clock: Clock, *, subject_id: str | None = None) -> None:
        self._store = store
        self._clock = clock
        self._subject_id = subject_id
        self._placeholder_id: str | None = None

    @property
    def placeholder_id(self) -> str | None:
        return self._placeholder_id

    async def ensure_placeholder(self) -> str:
        """Id of the "Quick Log" placeholder definition, created on first use."""
        if self._placeholder_id:
            return self._placeholder_id

        existing = await self._store.find_definition_by_name(QUICK_LOG_NAME)
        if existing is not None:
            self._placeholder_id = existing.id
            logger.debug("Quick log placeholder found id=%s", existing.id)
            return existing.id

        created = await self._store.create_definition(
            TaskDefinition(
                id=new_id(),
                subject_id=self._subject_id,
                kind=TaskKind.SUPPLEMENT,
                category="oral",
                name=QUICK_LOG_NAME,
                notes="Placeholder item for quick log entries",
                frequency=Frequency.AS_NEEDED,
                active=True,
            )
        )
        self._placeholder_id = created.id
        logger.info("Quick log placeholder created id=%s", created.id)
        return created.id

    async def create_quick_log(
        self,
        category: str,
        note: str | None = None,
        *,
        actor: Actor,
        at: datetime | None = None,
        occurrence_id: str | None = None,
    ) -> Occurrence:
        """Log an unscheduled event. The occurrence is confirmed on creation."""
        key = (category or "").strip().lower()
        if key not in QUICK_LOG_CATEGORIES:
            raise ValidationError(f"Unknown quick log category: {category!r}")

        at = at or self._clock.now()
        placeholder_id = await self.ensure_placeholder()
        notes = encode_quick_log(key, note)

        occ = await self._store.create_occurrence(
            Occurrence(
                id=occurrence_id or new_id(),
                task_definition_id=placeholder_id,
                schedule_slot_id=None,
                date=at.date(),
                scheduled_at=at,
                status=OccurrenceStatus.CONFIRMED,
                confirmed_at=at,
                confirmed_by=actor.id,
                notes=notes,
                is_adhoc=True,
                category=key,
            )
        )
        await self._store.append_confirmation_record(
            NewConfirmationRecord(
                occurrence_id=occ.id,
                action=RecordAction.CONFIRM,
                confirmed_at=at,
                confirmed_by=actor.id,
                notes=notes,
            )
        )
        logger.info("Quick log created id=%s category=%s", occ.id, key)
        return occ

    async def create_adhoc(
        self,
        task_definition_id: str,
        scheduled_at: datetime,
        notes: str | None = None,
        *,
        occurrence_id: str | None = None,
    ) -> Occurrence:
        """One extra pending instance of an existing definition (outside its schedule)."""
        task = await self._store.get_definition(task_definition_id)
        if task is None:
            raise NotFoundError("TaskDefinition", task_definition_id)

        occ = await self._store.create_occurrence(
            Occurrence(
                id=occurrence_id or new_id(),
                task_definition_id=task_definition_id,
                schedule_slot_id=None,
                date=scheduled_at.date(),
                scheduled_at=scheduled_at,
                status=OccurrenceStatus.PENDING,
                notes=notes,
                is_adhoc=True,
            )
        )

        logger.info("Ad-hoc occurrence created id=%s task=%s at=%s", occ.id, task.name, scheduled_at)
        return occ
