# src/carelog/care/models.py

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import date, datetime, time
from enum import StrEnum
from typing import Any


def new_id() -> str:
    return str(uuid.uuid4())


class TaskKind(StrEnum):
    MEDICATION = "medication"
    FOOD = "food"
    SUPPLEMENT = "supplement"


class Frequency(StrEnum):
    ONCE_DAILY = "1x_daily"
    TWICE_DAILY = "2x_daily"
    FOUR_TIMES_DAILY = "4x_daily"
    EVERY_12H = "12h"
    AS_NEEDED = "as_needed"


class SlotLabel(StrEnum):
    MORNING = "morning"
    MIDDAY = "midday"
    EVENING = "evening"
    NIGHT = "night"


def slot_label_for_hour(hour: int) -> SlotLabel:
    if 5 <= hour < 12:
        return SlotLabel.MORNING
    if 12 <= hour < 17:
        return SlotLabel.MIDDAY
    if 17 <= hour < 21:
        return SlotLabel.EVENING
    return SlotLabel.NIGHT


class OccurrenceStatus(StrEnum):
    """
    Stored lifecycle status.

    "expired" is never written by the engine itself: overdue is a display bucket
    computed on read. The value is kept so rows written by other tools stay readable.
    """

    PENDING = "pending"
    CONFIRMED = "confirmed"
    SNOOZED = "snoozed"
    EXPIRED = "expired"

    @classmethod
    def from_db(cls, raw: str | None) -> OccurrenceStatus:
        if not raw:
            return cls.PENDING
        try:
            return cls(raw)
        except ValueError:
            return cls.PENDING


class RecordAction(StrEnum):
    CONFIRM = "confirm"
    EDIT = "edit"
    UNDO = "undo"


class Role(StrEnum):
    ADMIN = "admin"
    USER = "user"


@dataclass(slots=True, frozen=True)
class Actor:
    id: str
    role: Role = Role.USER

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN


@dataclass(slots=True, frozen=True)
class ScheduleSlot:
    id: str
    task_definition_id: str
    time_of_day: time
    label: SlotLabel


@dataclass(slots=True, frozen=True)
class TaskDefinition:
    id: str
    subject_id: str | None
    kind: TaskKind
    category: str | None
    name: str
    dose: str | None = None
    location: str | None = None
    notes: str | None = None
    frequency: Frequency = Frequency.ONCE_DAILY
    active: bool = True
    start_date: date | None = None
    end_date: date | None = None
    conflict_group: str | None = None
    slots: tuple[ScheduleSlot, ...] = ()

    def is_effective_on(self, day: date) -> bool:
        """Active and inside [start_date, end_date], both ends inclusive and optional."""
        if not self.active:
            return False
        if self.start_date is not None and self.start_date > day:
            return False
        if self.end_date is not None and self.end_date < day:
            return False
        return True


OccurrenceKey = tuple[str, str | None, date]


@dataclass(slots=True)
class Occurrence:
    id: str
    task_definition_id: str
    schedule_slot_id: str | None
    date: date
    scheduled_at: datetime
    status: OccurrenceStatus = OccurrenceStatus.PENDING
    confirmed_at: datetime | None = None
    confirmed_by: str | None = None
    snooze_until: datetime | None = None
    notes: str | None = None
    is_adhoc: bool = False
    category: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def key(self) -> OccurrenceKey:
        return (self.task_definition_id, self.schedule_slot_id, self.date)


# Fields patch_occurrence() accepts. Identity fields (task, slot, date) are immutable.
PATCHABLE_OCCURRENCE_FIELDS = frozenset(
    {"status", "confirmed_at", "confirmed_by", "snooze_until", "notes", "scheduled_at"}
)


@dataclass(slots=True, frozen=True)
class OccurrenceView:
    """An occurrence joined with its task definition, as the dashboard sees it."""

    occurrence: Occurrence
    task: TaskDefinition

    @property
    def id(self) -> str:
        return self.occurrence.id


@dataclass(slots=True, frozen=True)
class ConfirmationRecord:
    id: str
    occurrence_id: str
    version: int
    action: RecordAction
    confirmed_at: datetime
    confirmed_by: str | None
    notes: str | None
    edited_at: datetime | None = None
    edited_by: str | None = None
    previous_values: dict[str, Any] | None = None
    needs_review: bool = False
    created_at: datetime | None = None


@dataclass(slots=True, frozen=True)
class NewConfirmationRecord:
    """A ledger entry before the store has assigned its id and version."""

    occurrence_id: str
    action: RecordAction
    confirmed_at: datetime
    confirmed_by: str | None
    notes: str | None
    edited_at: datetime | None = None
    edited_by: str | None = None
    previous_values: dict[str, Any] | None = None
    needs_review: bool = False


DEFAULT_SPACING_MINUTES = 5


@dataclass(slots=True, frozen=True)
class ConflictGroup:
    name: str
    spacing_minutes: int = DEFAULT_SPACING_MINUTES


class OfflineActionKind(StrEnum):
    CONFIRM = "confirm"
    SNOOZE = "snooze"
    EDIT = "edit"
    CREATE = "create"
    UNDO = "undo"


@dataclass(slots=True)
class OfflineAction:
    id: str
    kind: OfflineActionKind
    payload: dict[str, Any]
    timestamp: datetime
    synced: bool = False

    def to_json(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.kind.value,
            "payload": self.payload,
            "timestamp": self.timestamp.isoformat(),
            "synced": self.synced,
        }

    @classmethod
    def from_json(cls, raw: dict[str, Any]) -> OfflineAction:
        return cls(
            id=str(raw["id"]),
            kind=OfflineActionKind(raw["type"]),
            payload=dict(raw.get("payload") or {}),
            timestamp=datetime.fromisoformat(raw["timestamp"]),
            synced=bool(raw.get("synced", False)),
        )


@dataclass(slots=True)
class ReplayReport:
    synced: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    flagged_records: list[str] = field(default_factory=list)
    stopped_early: bool = False

    @property
    def ok(self) -> bool:
        return not self.failed and not self.stopped_early


def with_changes(occurrence: Occurrence, fields: dict[str, Any]) -> Occurrence:
    return replace(occurrence, **fields)
