# src/carelog/care/snooze.py

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from ..core.clock import Clock
from ..core.errors import InvalidTransition, ValidationError
from ..core.ports import CareStore
from .models import Occurrence, OccurrenceStatus, with_changes
from .views import require_occurrence

logger = logging.getLogger(__name__)

SNOOZE_CHOICES = (15, 30, 60)


class SnoozeManager:
    """
    Defers an occurrence by a fixed interval.

    Only one write happens (status + snooze_until). When snooze_until passes the
    classifier shows the occurrence as due again; nothing is written at that point.
    """

    def __init__(self, store: CareStore, clock: Clock) -> None:
        self._store = store
        self._clock = clock

    async def snooze(self, occurrence_id: str, minutes: int, *, at: datetime | None = None) -> Occurrence:
        if minutes not in SNOOZE_CHOICES:
            raise ValidationError(f"Snooze must be one of {SNOOZE_CHOICES} minutes, got {minutes}")

        occ = await require_occurrence(self._store, occurrence_id)
        if occ.status == OccurrenceStatus.CONFIRMED:
            raise InvalidTransition(f"Occurrence {occurrence_id} is already confirmed")

        at = at or self._clock.now()
        fields = {
            "status": OccurrenceStatus.SNOOZED,
            "snooze_until": at + timedelta(minutes=minutes),
        }
        await self._store.patch_occurrence(occurrence_id, fields)
        logger.info("Snoozed until %s", fields["snooze_until"], extra={"occurrence_id": occurrence_id})
        return with_changes(occ, fields)
