# src/carelog/storage/memory_store.py

"""
In-memory adapters.

Same contract as the SQLite / JSON adapters (natural-key uniqueness, version
assignment, FIFO order), without touching disk. Used by tests and by the CLI
when no database path is configured.
"""

from __future__ import annotations

import asyncio
from dataclasses import replace
from datetime import date, datetime, timezone
from typing import Any

from ..care.models import (
    PATCHABLE_OCCURRENCE_FIELDS,
    ConfirmationRecord,
    NewConfirmationRecord,
    OfflineAction,
    Occurrence,
    OccurrenceKey,
    TaskDefinition,
    new_id,
)
from ..core.errors import DuplicateOccurrence, NotFoundError, ValidationError


class MemoryCareStore:
    def __init__(self) -> None:
        self.definitions: dict[str, TaskDefinition] = {}
        self.occurrences: dict[str, Occurrence] = {}
        self.records: dict[str, ConfirmationRecord] = {}
        self._keys: dict[OccurrenceKey, str] = {}
        self._lock = asyncio.Lock()

    # ---- definitions ----

    async def list_definitions(self, *, active_only: bool = True) -> list[TaskDefinition]:
        defs = sorted(self.definitions.values(), key=lambda d: d.name)
        return [d for d in defs if d.active or not active_only]

    async def get_definition(self, definition_id: str) -> TaskDefinition | None:
        return self.definitions.get(definition_id)

    async def find_definition_by_name(self, name: str) -> TaskDefinition | None:
        return next((d for d in self.definitions.values() if d.name == name), None)

    async def create_definition(self, definition: TaskDefinition) -> TaskDefinition:
        if definition.id in self.definitions:
            raise ValidationError(f"TaskDefinition {definition.id} already exists")
        self.definitions[definition.id] = definition
        return definition

    # ---- occurrences ----

    async def list_occurrences(self, day: date) -> list[Occurrence]:
        rows = [replace(o) for o in self.occurrences.values() if o.date == day]
        rows.sort(key=lambda o: o.scheduled_at)
        return rows

    async def get_occurrence(self, occurrence_id: str) -> Occurrence | None:
        occ = self.occurrences.get(occurrence_id)
        return replace(occ) if occ is not None else None

    async def create_occurrence(self, occurrence: Occurrence) -> Occurrence:
        if occurrence.task_definition_id not in self.definitions:
            raise ValidationError(f"Unknown task definition {occurrence.task_definition_id}")
        if occurrence.id in self.occurrences:
            raise DuplicateOccurrence(f"Occurrence id {occurrence.id} exists")
        # Ad-hoc rows have no slot and are not bound by the natural key.
        if occurrence.schedule_slot_id is not None and occurrence.key in self._keys:
            raise DuplicateOccurrence(f"Occurrence exists for {occurrence.key}")

        now = datetime.now(timezone.utc)
        stored = replace(occurrence, created_at=now, updated_at=now)
        self.occurrences[stored.id] = stored
        if stored.schedule_slot_id is not None:
            self._keys[stored.key] = stored.id
        return replace(stored)

    async def patch_occurrence(self, occurrence_id: str, fields: dict[str, Any]) -> None:
        unknown = set(fields) - PATCHABLE_OCCURRENCE_FIELDS
        if unknown:
            raise ValidationError(f"Occurrence fields not patchable: {sorted(unknown)}")
        occ = self.occurrences.get(occurrence_id)
        if occ is None:
            raise NotFoundError("Occurrence", occurrence_id)
        self.occurrences[occurrence_id] = replace(occ, **fields, updated_at=datetime.now(timezone.utc))

    # ---- ledger ----

    async def list_confirmation_history(self, occurrence_id: str) -> list[ConfirmationRecord]:
        rows = [r for r in self.records.values() if r.occurrence_id == occurrence_id]
        return sorted(rows, key=lambda r: r.version, reverse=True)

    async def get_confirmation_record(self, record_id: str) -> ConfirmationRecord | None:
        return self.records.get(record_id)

    async def append_confirmation_record(self, record: NewConfirmationRecord) -> ConfirmationRecord:
        async with self._lock:
            if record.occurrence_id not in self.occurrences:
                raise NotFoundError("Occurrence", record.occurrence_id)
            version = 1 + max(
                (r.version for r in self.records.values() if r.occurrence_id == record.occurrence_id),
                default=0,
            )
            stored = ConfirmationRecord(
                id=new_id(),
                occurrence_id=record.occurrence_id,
                version=version,
                action=record.action,
                confirmed_at=record.confirmed_at,
                confirmed_by=record.confirmed_by,
                notes=record.notes,
                edited_at=record.edited_at,
                edited_by=record.edited_by,
                previous_values=dict(record.previous_values) if record.previous_values else None,
                needs_review=record.needs_review,
                created_at=datetime.now(timezone.utc),
            )
            self.records[stored.id] = stored
            return stored


class MemoryOfflineQueue:
    """Insertion-ordered queue; list_pending sorts by action timestamp like the file queue."""

    def __init__(self) -> None:
        self.actions: dict[str, OfflineAction] = {}

    async def add(self, action: OfflineAction) -> None:
        self.actions[action.id] = replace(action, payload=dict(action.payload))

    async def get(self, action_id: str) -> OfflineAction | None:
        return self.actions.get(action_id)

    async def list_pending(self) -> list[OfflineAction]:
        pending = [a for a in self.actions.values() if not a.synced]
        # sorted() is stable: equal timestamps keep insertion order.
        return sorted(pending, key=lambda a: a.timestamp)

    async def mark_synced(self, action_id: str) -> None:
        action = self.actions.get(action_id)
        if action is None:
            raise NotFoundError("OfflineAction", action_id)
        action.synced = True

    async def remove(self, action_id: str) -> None:
        self.actions.pop(action_id, None)

    async def clear_synced(self) -> int:
        synced = [aid for aid, a in self.actions.items() if a.synced]
        for aid in synced:
            del self.actions[aid]
        return len(synced)
