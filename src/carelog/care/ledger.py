# src/carelog/care/ledger.py

"""
Confirmation ledger.

Every confirm, edit and undo appends a ConfirmationRecord. Records are never
updated or deleted: the occurrence row holds the current state, the ledger holds
how it got there (needed for veterinary record keeping).
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from ..core.clock import Clock
from ..core.errors import ConflictBlocked, InvalidTransition, NotFoundError, PermissionDenied, ValidationError
from ..core.ports import CareStore
from .conflicts import ConflictArbiter
from .models import (
    Actor,
    ConfirmationRecord,
    NewConfirmationRecord,
    Occurrence,
    OccurrenceStatus,
    RecordAction,
)
from .views import conflict_days, load_days, require_occurrence

logger = logging.getLogger(__name__)

UNSET: Any = object()


def undo_marker(at: datetime) -> str:
    """'[Undone at 8:05 AM]' in the occurrence's local time."""
    hour12 = at.hour % 12 or 12
    suffix = "AM" if at.hour < 12 else "PM"
    return f"[Undone at {hour12}:{at.minute:02d} {suffix}]"


def _jsonable(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    return value


class ConfirmationLedger:
    def __init__(self, store: CareStore, clock: Clock, arbiter: ConflictArbiter) -> None:
        self._store = store
        self._clock = clock
        self._arbiter = arbiter

    async def _occurrence_view(self, occurrence: Occurrence, at: datetime):
        views = await load_days(self._store, conflict_days(occurrence, at))
        target = next((v for v in views if v.occurrence.id == occurrence.id), None)
        return target, views

    async def confirm(
        self,
        occurrence_id: str,
        notes: str | None = None,
        override_conflict: bool = False,
        *,
        actor: Actor,
        at: datetime | None = None,
    ) -> ConfirmationRecord:
        """
        Mark an occurrence as given.

        Without override_conflict, a recent confirmation in the same conflict group
        raises ConflictBlocked (carrying the task name and minutes left).
        """
        at = at or self._clock.now()
        occ = await require_occurrence(self._store, occurrence_id)

        if not override_conflict:
            target, views = await self._occurrence_view(occ, at)
            if target is not None:
                check = self._arbiter.check(target, views, at)
                if check.has_conflict:
                    logger.info(
                        "Confirm blocked occurrence=%s by=%s remaining=%s",
                        occurrence_id,
                        check.conflicting_task_name,
                        check.remaining_minutes,
                    )
                    raise ConflictBlocked(check.conflicting_task_name or "", check.remaining_minutes or 1)

        await self._store.patch_occurrence(
            occurrence_id,
            {
                "status": OccurrenceStatus.CONFIRMED,
                "confirmed_at": at,
                "confirmed_by": actor.id,
                "snooze_until": None,
                "notes": notes,
            },
        )
        record = await self._store.append_confirmation_record(
            NewConfirmationRecord(
                occurrence_id=occurrence_id,
                action=RecordAction.CONFIRM,
                confirmed_at=at,
                confirmed_by=actor.id,
                notes=notes,
            )
        )
        logger.info(
            "Confirmed by=%s version=%s", actor.id, record.version, extra={"occurrence_id": occurrence_id}
        )
        return record

    async def confirm_replayed(
        self,
        occurrence_id: str,
        notes: str | None = None,
        *,
        actor: Actor,
        at: datetime,
    ) -> tuple[ConfirmationRecord, bool]:
        """
        Apply a confirmation captured offline.

        When someone else already confirmed the occurrence, both confirmations are kept:
        the replayed one becomes its own record flagged for review and the occurrence row
        keeps the first confirmation. Returns (record, flagged).

        A confirmation already in the ledger (same confirmer and timestamp) is returned
        as is, so replaying after a restart never adds a second record.
        """
        occ = await require_occurrence(self._store, occurrence_id)

        for existing in await self._store.list_confirmation_history(occurrence_id):
            if (
                existing.action == RecordAction.CONFIRM
                and existing.confirmed_by == actor.id
                and existing.confirmed_at == at
            ):
                logger.info(
                    "Replayed confirmation already recorded",
                    extra={"occurrence_id": occurrence_id, "record_id": existing.id},
                )
                return existing, False

        if occ.status != OccurrenceStatus.CONFIRMED:
            record = await self.confirm(occurrence_id, notes, override_conflict=True, actor=actor, at=at)
            return record, False

        record = await self._store.append_confirmation_record(
            NewConfirmationRecord(
                occurrence_id=occurrence_id,
                action=RecordAction.CONFIRM,
                confirmed_at=at,
                confirmed_by=actor.id,
                notes=notes,
                needs_review=True,
            )
        )
        logger.warning(
            "Duplicate confirmation kept for review occurrence=%s record=%s (first by=%s, replayed by=%s)",
            occurrence_id,
            record.id,
            occ.confirmed_by,
            actor.id,
        )
        return record, True

    async def undo(self, occurrence_id: str, *, actor: Actor, at: datetime | None = None) -> ConfirmationRecord:
        """Revert a confirmation to pending. Notes get an undo marker; the ledger keeps everything."""
        at = at or self._clock.now()
        occ = await require_occurrence(self._store, occurrence_id)

        if occ.status != OccurrenceStatus.CONFIRMED:
            raise InvalidTransition(f"Occurrence {occurrence_id} is not confirmed (status={occ.status})")

        prefix = f"{occ.notes} " if occ.notes else ""
        new_notes = prefix + undo_marker(at)

        await self._store.patch_occurrence(
            occurrence_id,
            {
                "status": OccurrenceStatus.PENDING,
                "confirmed_at": None,
                "confirmed_by": None,
                "snooze_until": None,
                "notes": new_notes,
            },
        )
        record = await self._store.append_confirmation_record(
            NewConfirmationRecord(
                occurrence_id=occurrence_id,
                action=RecordAction.UNDO,
                confirmed_at=occ.confirmed_at or at,
                confirmed_by=occ.confirmed_by,
                notes=new_notes,
                edited_at=at,
                edited_by=actor.id,
                previous_values={
                    "status": OccurrenceStatus.CONFIRMED.value,
                    "confirmed_at": _jsonable(occ.confirmed_at),
                    "confirmed_by": occ.confirmed_by,
                    "notes": occ.notes,
                },
            )
        )
        logger.info("Undone by=%s, back to pending", actor.id, extra={"occurrence_id": occurrence_id})
        return record

    async def edit(
        self,
        record_id: str,
        *,
        actor: Actor,
        confirmed_at: datetime = UNSET,
        confirmed_by: str | None = UNSET,
        notes: str | None = UNSET,
        at: datetime | None = None,
    ) -> ConfirmationRecord:
        """
        Correct a recorded confirmation (admin only).

        Writes a new record with the corrected values and a snapshot of what changed;
        the edited record itself is left as it was. Which task was performed cannot be
        edited: that takes a new occurrence.
        """
        if not actor.is_admin:
            raise PermissionDenied("Only admins can edit confirmation history")

        at = at or self._clock.now()
        base = await self._store.get_confirmation_record(record_id)
        if base is None:
            raise NotFoundError("ConfirmationRecord", record_id)

        requested = {"confirmed_at": confirmed_at, "confirmed_by": confirmed_by, "notes": notes}
        changes = {
            name: value
            for name, value in requested.items()
            if value is not UNSET and value != getattr(base, name)
        }
        if not changes:
            raise ValidationError("Edit does not change anything")
        if "confirmed_at" in changes and changes["confirmed_at"] is None:
            raise ValidationError("confirmed_at cannot be cleared")

        previous = {name: _jsonable(getattr(base, name)) for name in changes}

        record = await self._store.append_confirmation_record(
            NewConfirmationRecord(
                occurrence_id=base.occurrence_id,
                action=RecordAction.EDIT,
                confirmed_at=changes.get("confirmed_at", base.confirmed_at),
                confirmed_by=changes.get("confirmed_by", base.confirmed_by),
                notes=changes.get("notes", base.notes),
                edited_at=at,
                edited_by=actor.id,
                previous_values=previous,
            )
        )

        occ = await self._store.get_occurrence(base.occurrence_id)
        if occ is not None and occ.status == OccurrenceStatus.CONFIRMED:
            await self._store.patch_occurrence(base.occurrence_id, changes)

        logger.info(
            "Confirmation edited by=%s fields=%s new_version=%s",
            actor.id,
            sorted(changes),
            record.version,
            extra={"occurrence_id": base.occurrence_id, "record_id": record_id},
        )
        return record

    async def history(self, occurrence_id: str) -> list[ConfirmationRecord]:
        """All records for an occurrence, newest version first."""
        return await self._store.list_confirmation_history(occurrence_id)
