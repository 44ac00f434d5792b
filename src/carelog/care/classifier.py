# src/carelog/care/classifier.py

"""
Occurrence classification.

Buckets are derived on every read from (occurrence, now). Nothing here writes:
an occurrence that sits pending past the overdue threshold is shown as overdue,
but its stored status stays "pending". No background expiry job is needed.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import StrEnum
from typing import Generic, TypeVar

from .models import Occurrence, OccurrenceStatus

OVERDUE_AFTER = timedelta(minutes=30)

T = TypeVar("T")


class Bucket(StrEnum):
    OVERDUE = "overdue"
    DUE = "due"
    UPCOMING = "upcoming"
    SNOOZED = "snoozed"
    CONFIRMED = "confirmed"


def classify(occurrence: Occurrence, now: datetime, *, overdue_after: timedelta = OVERDUE_AFTER) -> Bucket:
    status = occurrence.status

    if status == OccurrenceStatus.CONFIRMED:
        return Bucket.CONFIRMED

    if status == OccurrenceStatus.SNOOZED:
        # A snooze without an end time has nothing deferring it.
        if occurrence.snooze_until is not None and occurrence.snooze_until > now:
            return Bucket.SNOOZED
        return Bucket.DUE

    if status == OccurrenceStatus.EXPIRED:
        return Bucket.OVERDUE

    if occurrence.scheduled_at > now:
        return Bucket.UPCOMING
    if now - occurrence.scheduled_at < overdue_after:
        return Bucket.DUE
    return Bucket.OVERDUE


def effective_time(occurrence: Occurrence) -> datetime:
    """Time used for ordering: the snooze end for snoozed rows, else the schedule."""
    if occurrence.status == OccurrenceStatus.SNOOZED and occurrence.snooze_until is not None:
        return occurrence.snooze_until
    return occurrence.scheduled_at


@dataclass
class Buckets(Generic[T]):
    overdue: list[T] = field(default_factory=list)
    due: list[T] = field(default_factory=list)
    upcoming: list[T] = field(default_factory=list)
    snoozed: list[T] = field(default_factory=list)
    confirmed: list[T] = field(default_factory=list)

    def get(self, bucket: Bucket) -> list[T]:
        return getattr(self, bucket.value)

    @property
    def pending_count(self) -> int:
        return len(self.overdue) + len(self.due) + len(self.snoozed)

    @property
    def confirmed_count(self) -> int:
        return len(self.confirmed)

    @property
    def badge_count(self) -> int:
        """Items needing attention right now (app badge)."""
        return len(self.overdue) + len(self.due)

    @property
    def total(self) -> int:
        return sum(len(self.get(b)) for b in Bucket)


def _identity(item):
    return item


def bucket_occurrences(
    items: Iterable[T],
    now: datetime,
    *,
    key: Callable[[T], Occurrence] | None = None,
    overdue_after: timedelta = OVERDUE_AFTER,
) -> Buckets[T]:
    """
    Group items into the five display buckets, each sorted by effective time.

    `key` extracts the Occurrence from an item (e.g. OccurrenceView -> .occurrence).
    Items pass through untouched, so callers get back whatever they put in.
    """
    get_occ = key or _identity
    out: Buckets[T] = Buckets()

    for item in items:
        out.get(classify(get_occ(item), now, overdue_after=overdue_after)).append(item)

    for bucket in Bucket:
        out.get(bucket).sort(key=lambda it: effective_time(get_occ(it)))

    return out
