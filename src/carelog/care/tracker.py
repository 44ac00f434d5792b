# src/carelog/care/tracker.py

"""
CareTracker: the one object connectors talk to.

Flow of a user action:
  conflict gate (ledger) -> mutation (ledger / snooze / ad-hoc) -> store -> reminders.
While offline the store is not touched: the action is queued, applied to the local
copy of the day so the board stays truthful, and replayed on reconnect.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import date, datetime, timedelta, tzinfo
from enum import StrEnum
from typing import Any

from ..core.clock import Clock
from ..core.errors import (
    ConflictBlocked,
    DuplicateOccurrence,
    InvalidTransition,
    NotFoundError,
    PermissionDenied,
    ValidationError,
)
from ..core.ports import CareStore, OfflineQueue
from .adhoc import QUICK_LOG_CATEGORIES, QUICK_LOG_NAME, AdHocLogger, encode_quick_log
from .classifier import OVERDUE_AFTER, Buckets, bucket_occurrences
from .conflicts import ConflictArbiter, ConflictCheck
from .ledger import UNSET, ConfirmationLedger, undo_marker
from .models import (
    Actor,
    ConfirmationRecord,
    Frequency,
    OfflineAction,
    OfflineActionKind,
    Occurrence,
    OccurrenceStatus,
    OccurrenceView,
    ReplayReport,
    Role,
    TaskDefinition,
    TaskKind,
    new_id,
)
from .offline import OfflineReconciler
from .reminders import ReminderScheduler
from .schedule import ScheduleExpander
from .snooze import SNOOZE_CHOICES, SnoozeManager
from .views import conflict_days, load_day, load_days, load_views, require_occurrence

logger = logging.getLogger(__name__)


class ActionStatus(StrEnum):
    APPLIED = "applied"
    QUEUED = "queued"


@dataclass(slots=True, frozen=True)
class ActionResult:
    status: ActionStatus
    occurrence: Occurrence | None = None
    record: ConfirmationRecord | None = None
    action: OfflineAction | None = None

    @property
    def queued(self) -> bool:
        return self.status == ActionStatus.QUEUED


def _ts(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _parse_ts(raw: Any) -> datetime | None:
    if raw is None:
        return None
    return datetime.fromisoformat(str(raw))


def _actor_payload(actor: Actor) -> dict[str, str]:
    return {"actor_id": actor.id, "actor_role": actor.role.value}


def _actor_from(payload: dict[str, Any]) -> Actor:
    return Actor(id=str(payload["actor_id"]), role=Role(payload.get("actor_role", Role.USER.value)))


class CareTracker:
    def __init__(
        self,
        store: CareStore,
        clock: Clock,
        queue: OfflineQueue,
        *,
        actor: Actor,
        tz: tzinfo | None = None,
        arbiter: ConflictArbiter | None = None,
        reminders: ReminderScheduler | None = None,
        overdue_after: timedelta = OVERDUE_AFTER,
        subject_id: str | None = None,
        offline: bool = False,
    ) -> None:
        self.store = store
        self.clock = clock
        self.actor = actor
        self.tz = tz or clock.now().tzinfo
        self.arbiter = arbiter or ConflictArbiter()
        self.reminders = reminders
        self.overdue_after = overdue_after

        self.expander = ScheduleExpander(store, tz=self.tz)
        self.ledger = ConfirmationLedger(store, clock, self.arbiter)
        self.snoozer = SnoozeManager(store, clock)
        self.adhoc = AdHocLogger(store, clock, subject_id=subject_id)
        self.reconciler = OfflineReconciler(queue, clock)

        self._offline = offline
        # Last loaded views per day; the only source of truth while offline.
        self._days: dict[date, list[OccurrenceView]] = {}

    # ---- connectivity ----

    @property
    def offline(self) -> bool:
        return self._offline

    def go_offline(self) -> None:
        if not self._offline:
            logger.info("Tracker switched to offline mode")
        self._offline = True

    async def go_online(self) -> ReplayReport:
        """Replay queued actions. Stays offline when the pass could not finish."""
        self._offline = False
        report = await self.reconciler.replay(self._apply_offline)
        if report.stopped_early:
            self._offline = True
            return report
        await self.refresh()
        return report

    # ---- reads ----

    def today(self) -> date:
        return self.clock.now().astimezone(self.tz).date()

    async def refresh(self, day: date | None = None) -> list[OccurrenceView]:
        """Expand the day, load it, and re-arm reminders."""
        day = day or self.today()
        if self._offline:
            return list(self._days.get(day, []))

        await self.expander.expand(day)
        views = await load_day(self.store, day)
        self._days[day] = views
        if self.reminders is not None and day == self.today():
            self.reminders.schedule_all(views)
        return views

    async def views(self, day: date | None = None) -> list[OccurrenceView]:
        day = day or self.today()
        if self._offline:
            return list(self._days.get(day, []))
        views = await load_day(self.store, day)
        self._days[day] = views
        return views

    async def board(self, day: date | None = None) -> Buckets[OccurrenceView]:
        views = await self.views(day)
        return bucket_occurrences(
            views,
            self.clock.now(),
            key=lambda v: v.occurrence,
            overdue_after=self.overdue_after,
        )

    async def check_conflict(self, occurrence_id: str) -> ConflictCheck:
        now = self.clock.now()
        target, _ = await self._find_view(occurrence_id)
        return self.arbiter.check(target, await self._conflict_views(target, now), now)

    async def history(self, occurrence_id: str) -> list[ConfirmationRecord]:
        return await self.ledger.history(occurrence_id)

    async def _find_view(self, occurrence_id: str) -> tuple[OccurrenceView, list[OccurrenceView]]:
        if self._offline:
            for views in self._days.values():
                for view in views:
                    if view.occurrence.id == occurrence_id:
                        return view, views
            raise NotFoundError("Occurrence", occurrence_id)

        occ = await require_occurrence(self.store, occurrence_id)
        views = await self.views(occ.date)
        target = next((v for v in views if v.occurrence.id == occurrence_id), None)
        if target is None:
            raise NotFoundError("Occurrence", occurrence_id)
        return target, views

    async def _conflict_views(self, target: OccurrenceView, at: datetime) -> list[OccurrenceView]:
        days = conflict_days(target.occurrence, at)
        if self._offline:
            return [v for day in days for v in self._days.get(day, [])]
        return await load_days(self.store, days)

    # ---- mutations ----

    async def confirm(
        self, occurrence_id: str, notes: str | None = None, override_conflict: bool = False
    ) -> ActionResult:
        if self._offline:
            now = self.clock.now()
            target, _ = await self._find_view(occurrence_id)
            if not override_conflict:
                check = self.arbiter.check(target, await self._conflict_views(target, now), now)
                if check.has_conflict:
                    raise ConflictBlocked(check.conflicting_task_name or "", check.remaining_minutes or 1)
            action = await self.reconciler.record(
                OfflineActionKind.CONFIRM,
                {
                    "occurrence_id": occurrence_id,
                    "notes": notes,
                    "confirmed_at": _ts(now),
                    **_actor_payload(self.actor),
                },
                at=now,
            )
            self._apply_local(
                occurrence_id,
                status=OccurrenceStatus.CONFIRMED,
                confirmed_at=now,
                confirmed_by=self.actor.id,
                snooze_until=None,
                notes=notes,
            )
            self._cancel_reminder(occurrence_id)
            return ActionResult(ActionStatus.QUEUED, action=action)

        record = await self.ledger.confirm(occurrence_id, notes, override_conflict, actor=self.actor)
        self._cancel_reminder(occurrence_id)
        occ = await self.store.get_occurrence(occurrence_id)
        return ActionResult(ActionStatus.APPLIED, occurrence=occ, record=record)

    async def snooze(self, occurrence_id: str, minutes: int) -> ActionResult:
        if self._offline:
            if minutes not in SNOOZE_CHOICES:
                raise ValidationError(f"Snooze must be one of {SNOOZE_CHOICES} minutes, got {minutes}")
            now = self.clock.now()
            target, _ = await self._find_view(occurrence_id)
            if target.occurrence.status == OccurrenceStatus.CONFIRMED:
                raise InvalidTransition(f"Occurrence {occurrence_id} is already confirmed")
            action = await self.reconciler.record(
                OfflineActionKind.SNOOZE,
                {"occurrence_id": occurrence_id, "minutes": minutes, "at": _ts(now)},
                at=now,
            )
            until = now + timedelta(minutes=minutes)
            view = self._apply_local(occurrence_id, status=OccurrenceStatus.SNOOZED, snooze_until=until)
            self._schedule_reminder(view, until)
            return ActionResult(ActionStatus.QUEUED, action=action)

        occ = await self.snoozer.snooze(occurrence_id, minutes)
        views = await load_views(self.store, [occ])
        if views:
            self._schedule_reminder(views[0], occ.snooze_until)
        return ActionResult(ActionStatus.APPLIED, occurrence=occ)

    async def undo(self, occurrence_id: str) -> ActionResult:
        if self._offline:
            now = self.clock.now()
            target, _ = await self._find_view(occurrence_id)
            occ = target.occurrence
            if occ.status != OccurrenceStatus.CONFIRMED:
                raise InvalidTransition(f"Occurrence {occurrence_id} is not confirmed (status={occ.status})")
            action = await self.reconciler.record(
                OfflineActionKind.UNDO,
                {"occurrence_id": occurrence_id, "at": _ts(now), **_actor_payload(self.actor)},
                at=now,
            )
            prefix = f"{occ.notes} " if occ.notes else ""
            view = self._apply_local(
                occurrence_id,
                status=OccurrenceStatus.PENDING,
                confirmed_at=None,
                confirmed_by=None,
                snooze_until=None,
                notes=prefix + undo_marker(now),
            )
            self._schedule_reminder(view, None)
            return ActionResult(ActionStatus.QUEUED, action=action)

        record = await self.ledger.undo(occurrence_id, actor=self.actor)
        occ = await require_occurrence(self.store, occurrence_id)
        views = await load_views(self.store, [occ])
        if views:
            self._schedule_reminder(views[0], None)
        return ActionResult(ActionStatus.APPLIED, occurrence=occ, record=record)

    async def edit(
        self,
        record_id: str,
        *,
        confirmed_at: datetime = UNSET,
        confirmed_by: str | None = UNSET,
        notes: str | None = UNSET,
    ) -> ActionResult:
        if self._offline:
            if not self.actor.is_admin:
                raise PermissionDenied("Only admins can edit confirmation history")
            changes: dict[str, Any] = {}
            if confirmed_at is not UNSET:
                changes["confirmed_at"] = _ts(confirmed_at)
            if confirmed_by is not UNSET:
                changes["confirmed_by"] = confirmed_by
            if notes is not UNSET:
                changes["notes"] = notes
            if not changes:
                raise ValidationError("Edit does not change anything")
            now = self.clock.now()
            action = await self.reconciler.record(
                OfflineActionKind.EDIT,
                {"record_id": record_id, "changes": changes, "at": _ts(now), **_actor_payload(self.actor)},
                at=now,
            )
            return ActionResult(ActionStatus.QUEUED, action=action)

        record = await self.ledger.edit(
            record_id,
            actor=self.actor,
            confirmed_at=confirmed_at,
            confirmed_by=confirmed_by,
            notes=notes,
        )
        occ = await self.store.get_occurrence(record.occurrence_id)
        return ActionResult(ActionStatus.APPLIED, occurrence=occ, record=record)

    async def quick_log(self, category: str, note: str | None = None) -> ActionResult:
        if self._offline:
            key = (category or "").strip().lower()
            if key not in QUICK_LOG_CATEGORIES:
                raise ValidationError(f"Unknown quick log category: {category!r}")
            now = self.clock.now()
            occurrence_id = new_id()
            action = await self.reconciler.record(
                OfflineActionKind.CREATE,
                {
                    "mode": "quick_log",
                    "occurrence_id": occurrence_id,
                    "category": key,
                    "note": note,
                    "at": _ts(now),
                    **_actor_payload(self.actor),
                },
                at=now,
            )
            self._add_local_quick_log(occurrence_id, key, note, now)
            return ActionResult(ActionStatus.QUEUED, action=action)

        occ = await self.adhoc.create_quick_log(category, note, actor=self.actor)
        return ActionResult(ActionStatus.APPLIED, occurrence=occ)

    async def create_adhoc(
        self, task_definition_id: str, scheduled_at: datetime, notes: str | None = None
    ) -> ActionResult:
        if self._offline:
            now = self.clock.now()
            action = await self.reconciler.record(
                OfflineActionKind.CREATE,
                {
                    "mode": "adhoc",
                    "occurrence_id": new_id(),
                    "task_definition_id": task_definition_id,
                    "scheduled_at": _ts(scheduled_at),
                    "notes": notes,
                },
                at=now,
            )
            return ActionResult(ActionStatus.QUEUED, action=action)

        occ = await self.adhoc.create_adhoc(task_definition_id, scheduled_at, notes)
        views = await load_views(self.store, [occ])
        if views:
            self._schedule_reminder(views[0], None)
        return ActionResult(ActionStatus.APPLIED, occurrence=occ)

    # ---- offline replay ----

    async def _apply_offline(self, action: OfflineAction) -> list[str]:
        p = action.payload
        kind = action.kind

        if kind == OfflineActionKind.CONFIRM:
            record, flagged = await self.ledger.confirm_replayed(
                p["occurrence_id"],
                p.get("notes"),
                actor=_actor_from(p),
                at=_parse_ts(p.get("confirmed_at")) or action.timestamp,
            )
            return [record.id] if flagged else []

        if kind == OfflineActionKind.SNOOZE:
            await self.snoozer.snooze(p["occurrence_id"], int(p["minutes"]), at=_parse_ts(p.get("at")))
            return []

        if kind == OfflineActionKind.UNDO:
            await self.ledger.undo(p["occurrence_id"], actor=_actor_from(p), at=_parse_ts(p.get("at")))
            return []

        if kind == OfflineActionKind.EDIT:
            changes = dict(p.get("changes") or {})
            if "confirmed_at" in changes:
                changes["confirmed_at"] = _parse_ts(changes["confirmed_at"])
            await self.ledger.edit(p["record_id"], actor=_actor_from(p), at=_parse_ts(p.get("at")), **changes)
            return []

        if kind == OfflineActionKind.CREATE:
            try:
                if p.get("mode") == "quick_log":
                    await self.adhoc.create_quick_log(
                        p["category"],
                        p.get("note"),
                        actor=_actor_from(p),
                        at=_parse_ts(p.get("at")) or action.timestamp,
                        occurrence_id=p["occurrence_id"],
                    )
                else:
                    await self.adhoc.create_adhoc(
                        p["task_definition_id"],
                        _parse_ts(p["scheduled_at"]) or action.timestamp,
                        p.get("notes"),
                        occurrence_id=p["occurrence_id"],
                    )
            except DuplicateOccurrence:
                logger.info("Offline create %s already applied (occurrence exists)", action.id)
            return []

        raise ValidationError(f"Unknown offline action kind: {kind}")

    # ---- local state / reminders ----

    def _apply_local(self, occurrence_id: str, **fields: Any) -> OccurrenceView:
        for views in self._days.values():
            for i, view in enumerate(views):
                if view.occurrence.id == occurrence_id:
                    updated = OccurrenceView(occurrence=replace(view.occurrence, **fields), task=view.task)
                    views[i] = updated
                    return updated
        raise NotFoundError("Occurrence", occurrence_id)

    def _add_local_quick_log(self, occurrence_id: str, category: str, note: str | None, at: datetime) -> None:
        placeholder = next(
            (v.task for views in self._days.values() for v in views if v.task.name == QUICK_LOG_NAME),
            None,
        )
        if placeholder is None:
            # Local stand-in until the next online refresh loads the real row.
            placeholder = TaskDefinition(
                id=self.adhoc.placeholder_id or "quick-log",
                subject_id=None,
                kind=TaskKind.SUPPLEMENT,
                category="oral",
                name=QUICK_LOG_NAME,
                frequency=Frequency.AS_NEEDED,
            )
        occ = Occurrence(
            id=occurrence_id,
            task_definition_id=placeholder.id,
            schedule_slot_id=None,
            date=at.date(),
            scheduled_at=at,
            status=OccurrenceStatus.CONFIRMED,
            confirmed_at=at,
            confirmed_by=self.actor.id,
            notes=encode_quick_log(category, note),
            is_adhoc=True,
            category=category,
        )
        self._days.setdefault(at.date(), []).append(OccurrenceView(occurrence=occ, task=placeholder))

    def _cancel_reminder(self, occurrence_id: str) -> None:
        if self.reminders is not None:
            self.reminders.cancel(occurrence_id)

    def _schedule_reminder(self, view: OccurrenceView, at: datetime | None) -> None:
        if self.reminders is not None:
            self.reminders.schedule(view, at)
