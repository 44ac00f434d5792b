# src/carelog/care/conflicts.py

"""
Conflict arbitration between tasks sharing a conflict group.

Two eye drops in the same eye must be spaced out. The arbiter only advises:
a block can always be overridden, because the real dose may already have been
given before anyone touched the app.
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import datetime, timedelta

from .models import DEFAULT_SPACING_MINUTES, ConflictGroup, OccurrenceStatus, OccurrenceView


@dataclass(slots=True, frozen=True)
class ConflictCheck:
    has_conflict: bool
    conflicting_task_name: str | None = None
    remaining_minutes: int | None = None
    can_override: bool = True


NO_CONFLICT = ConflictCheck(has_conflict=False)


class ConflictArbiter:
    def __init__(
        self,
        groups: Mapping[str, ConflictGroup] | None = None,
        *,
        default_spacing_minutes: int = DEFAULT_SPACING_MINUTES,
    ) -> None:
        if default_spacing_minutes < 1:
            raise ValueError("default_spacing_minutes must be >= 1")
        self._groups = dict(groups or {})
        self._default_spacing = default_spacing_minutes

    def spacing_for(self, group_name: str) -> int:
        group = self._groups.get(group_name)
        if group is None:
            return self._default_spacing
        return max(1, int(group.spacing_minutes))

    def check(self, target: OccurrenceView, all_items: Iterable[OccurrenceView], now: datetime) -> ConflictCheck:
        group_name = target.task.conflict_group
        if not group_name:
            return NO_CONFLICT

        spacing = self.spacing_for(group_name)
        window = timedelta(minutes=spacing)

        latest: OccurrenceView | None = None
        for item in all_items:
            occ = item.occurrence
            if occ.id == target.occurrence.id:
                continue
            if item.task.conflict_group != group_name:
                continue
            if occ.status != OccurrenceStatus.CONFIRMED or occ.confirmed_at is None:
                continue
            if now - occ.confirmed_at >= window:
                continue
            if latest is None or occ.confirmed_at > latest.occurrence.confirmed_at:
                latest = item

        if latest is None:
            return NO_CONFLICT

        elapsed = now - latest.occurrence.confirmed_at
        remaining = math.ceil((window - elapsed).total_seconds() / 60)
        return ConflictCheck(
            has_conflict=True,
            conflicting_task_name=latest.task.name,
            remaining_minutes=max(1, min(remaining, spacing)),
            can_override=True,
        )
