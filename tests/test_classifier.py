# tests/test_classifier.py

from __future__ import annotations

from datetime import timedelta

from carelog.care.classifier import Bucket, bucket_occurrences, classify
from carelog.care.models import OccurrenceStatus

from .fakes import T0, make_definition, make_view

TASK = make_definition("Ofloxacin 0.3%")


def occ(offset_minutes: float = 0, **kwargs):
    return make_view(TASK, T0 + timedelta(minutes=offset_minutes), **kwargs).occurrence


def test_pending_buckets_by_time() -> None:
    assert classify(occ(10), T0) == Bucket.UPCOMING
    assert classify(occ(0), T0) == Bucket.DUE
    assert classify(occ(-29.99), T0) == Bucket.DUE
    assert classify(occ(-30), T0) == Bucket.OVERDUE
    assert classify(occ(-180), T0) == Bucket.OVERDUE


def test_overdue_threshold_is_configurable() -> None:
    assert classify(occ(-10), T0, overdue_after=timedelta(minutes=5)) == Bucket.OVERDUE
    assert classify(occ(-10), T0, overdue_after=timedelta(minutes=60)) == Bucket.DUE


def test_confirmed_wins_over_time() -> None:
    item = occ(-600, status=OccurrenceStatus.CONFIRMED, confirmed_at=T0 - timedelta(hours=9))
    assert classify(item, T0) == Bucket.CONFIRMED


def test_snoozed_until_future_then_due_again() -> None:
    item = occ(-10, status=OccurrenceStatus.SNOOZED, snooze_until=T0 + timedelta(minutes=5))
    assert classify(item, T0) == Bucket.SNOOZED
    # Snooze expiry is derived on read; nothing writes the status back.
    assert classify(item, T0 + timedelta(minutes=5)) == Bucket.DUE
    assert item.status == OccurrenceStatus.SNOOZED


def test_snoozed_without_end_time_is_due() -> None:
    assert classify(occ(-5, status=OccurrenceStatus.SNOOZED), T0) == Bucket.DUE


def test_expired_status_shows_overdue() -> None:
    assert classify(occ(60, status=OccurrenceStatus.EXPIRED), T0) == Bucket.OVERDUE


def test_bucket_occurrences_is_total_and_sorted() -> None:
    items = [
        occ(90),
        occ(-45),
        occ(-5),
        occ(30),
        occ(-120),
        occ(-60, status=OccurrenceStatus.CONFIRMED, confirmed_at=T0),
        occ(-20, status=OccurrenceStatus.SNOOZED, snooze_until=T0 + timedelta(minutes=15)),
        occ(-30, status=OccurrenceStatus.SNOOZED, snooze_until=T0 + timedelta(minutes=5)),
    ]

    buckets = bucket_occurrences(items, T0)

    assert buckets.total == len(items)
    assert [o.scheduled_at for o in buckets.upcoming] == [T0 + timedelta(minutes=m) for m in (30, 90)]
    assert [o.scheduled_at for o in buckets.overdue] == [T0 - timedelta(minutes=m) for m in (120, 45)]
    assert len(buckets.due) == 1
    # Snoozed rows are ordered by snooze end, not by schedule.
    assert [o.snooze_until for o in buckets.snoozed] == [T0 + timedelta(minutes=5), T0 + timedelta(minutes=15)]
    assert buckets.badge_count == 3
    assert buckets.pending_count == 5
    assert buckets.confirmed_count == 1


def test_bucket_occurrences_passes_items_through() -> None:
    views = [make_view(TASK, T0 - timedelta(minutes=40)), make_view(TASK, T0 + timedelta(hours=1))]

    buckets = bucket_occurrences(views, T0, key=lambda v: v.occurrence)

    assert buckets.overdue == [views[0]]
    assert buckets.upcoming == [views[1]]
    assert buckets.get(Bucket.DUE) == []
