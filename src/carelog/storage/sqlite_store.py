# src/carelog/storage/sqlite_store.py

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import sqlite3
from collections.abc import Callable
from datetime import date, datetime, time, timezone
from pathlib import Path
from typing import Any, TypeVar

from ..care.models import (
    PATCHABLE_OCCURRENCE_FIELDS,
    ConfirmationRecord,
    Frequency,
    NewConfirmationRecord,
    Occurrence,
    OccurrenceStatus,
    RecordAction,
    ScheduleSlot,
    SlotLabel,
    TaskDefinition,
    TaskKind,
    new_id,
)
from ..core.errors import DuplicateOccurrence, NotFoundError, TransientIOError, ValidationError

logger = logging.getLogger(__name__)

R = TypeVar("R")


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


def _ts(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _parse_ts(raw: str | None) -> datetime | None:
    return datetime.fromisoformat(raw) if raw else None


def _parse_date(raw: str | None) -> date | None:
    return date.fromisoformat(raw) if raw else None


def _db_value(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, bool):
        return int(value)
    if hasattr(value, "value"):  # StrEnum
        return value.value
    return value


class SqliteCareStore:
    """
    SQLite implementation of CareStore.

    The schema is migration-safe the same way across tables:
    - create table if missing
    - use PRAGMA table_info to detect missing columns
    - add columns with ALTER TABLE only when needed

    Thread-safety:
    - each call opens its own SQLite connection
    - async methods run the blocking work in a worker thread

    Errors:
    - sqlite3.OperationalError (locked / unreachable file) -> TransientIOError
    - natural-key violation on occurrences -> DuplicateOccurrence
    """

    def __init__(self, db_path: str | Path = "carelog.sqlite3") -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()
        try:
            total = self._count("occurrences")
        except Exception:
            total = -1
        logger.info("SqliteCareStore ready db=%s occurrences=%s", self._db_path, total)

    def close(self) -> None:
        """Compatibility hook for shutdown (no persistent connections to close)."""
        return

    # ---- low-level helpers ----

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), timeout=30.0)
        conn.row_factory = sqlite3.Row
        self._configure_conn(conn)
        return conn

    @staticmethod
    def _configure_conn(conn: sqlite3.Connection) -> None:
        with contextlib.suppress(Exception):
            conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA foreign_keys=ON")

    async def _run(self, fn: Callable[..., R], *args: Any) -> R:
        try:
            return await asyncio.to_thread(fn, *args)
        except sqlite3.OperationalError as exc:
            logger.warning("SQLite unavailable db=%s: %s", self._db_path, exc)
            raise TransientIOError(str(exc)) from exc

    def _ensure_schema(self) -> None:
        conn = self._get_conn()
        try:
            cur = conn.cursor()

            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS task_definitions (
                    id TEXT PRIMARY KEY,
                    subject_id TEXT,
                    kind TEXT NOT NULL,
                    category TEXT,
                    name TEXT NOT NULL,
                    dose TEXT,
                    location TEXT,
                    notes TEXT,
                    frequency TEXT NOT NULL DEFAULT '1x_daily',
                    active INTEGER NOT NULL DEFAULT 1,
                    start_date TEXT,
                    end_date TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS schedule_slots (
                    id TEXT PRIMARY KEY,
                    task_definition_id TEXT NOT NULL REFERENCES task_definitions(id) ON DELETE CASCADE,
                    time_of_day TEXT NOT NULL,
                    label TEXT NOT NULL
                )
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS occurrences (
                    id TEXT PRIMARY KEY,
                    task_definition_id TEXT NOT NULL REFERENCES task_definitions(id) ON DELETE CASCADE,
                    schedule_slot_id TEXT,
                    date TEXT NOT NULL,
                    scheduled_at TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'pending',
                    confirmed_at TEXT,
                    confirmed_by TEXT,
                    snooze_until TEXT,
                    notes TEXT,
                    is_adhoc INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    UNIQUE(task_definition_id, schedule_slot_id, date)
                )
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS confirmation_history (
                    id TEXT PRIMARY KEY,
                    occurrence_id TEXT NOT NULL REFERENCES occurrences(id) ON DELETE CASCADE,
                    version INTEGER NOT NULL,
                    action TEXT NOT NULL DEFAULT 'confirm',
                    confirmed_at TEXT NOT NULL,
                    confirmed_by TEXT,
                    notes TEXT,
                    edited_at TEXT,
                    edited_by TEXT,
                    previous_values TEXT,
                    created_at TEXT NOT NULL,
                    UNIQUE(occurrence_id, version)
                )
                """
            )

            # Migrations (safe): columns added after the first release.
            def add_col(table: str, name: str, decl: str) -> None:
                cur.execute(f"PRAGMA table_info({table})")
                cols = {row["name"] for row in cur.fetchall()}
                if name in cols:
                    return
                cur.execute(f"ALTER TABLE {table} ADD COLUMN {name} {decl}")
                logger.info("SqliteCareStore migration: added column %s.%s", table, name)

            add_col("task_definitions", "conflict_group", "TEXT")
            add_col("occurrences", "category", "TEXT")
            add_col("confirmation_history", "needs_review", "INTEGER NOT NULL DEFAULT 0")

            cur.execute("CREATE INDEX IF NOT EXISTS idx_occurrences_date ON occurrences(date, scheduled_at)")
            cur.execute("CREATE INDEX IF NOT EXISTS idx_slots_definition ON schedule_slots(task_definition_id)")
            cur.execute(
                "CREATE INDEX IF NOT EXISTS idx_history_occurrence ON confirmation_history(occurrence_id, version)"
            )

            conn.commit()
        finally:
            conn.close()

    def _count(self, table: str) -> int:
        conn = self._get_conn()
        try:
            (n,) = conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()
            return int(n)
        finally:
            conn.close()

    # ---- row mapping ----

    @staticmethod
    def _row_to_slot(row: sqlite3.Row) -> ScheduleSlot:
        return ScheduleSlot(
            id=row["id"],
            task_definition_id=row["task_definition_id"],
            time_of_day=time.fromisoformat(row["time_of_day"]),
            label=SlotLabel(row["label"]),
        )

    @staticmethod
    def _row_to_definition(row: sqlite3.Row, slots: tuple[ScheduleSlot, ...]) -> TaskDefinition:
        return TaskDefinition(
            id=row["id"],
            subject_id=row["subject_id"],
            kind=TaskKind(row["kind"]),
            category=row["category"],
            name=row["name"],
            dose=row["dose"],
            location=row["location"],
            notes=row["notes"],
            frequency=Frequency(row["frequency"] or Frequency.ONCE_DAILY.value),
            active=bool(row["active"]),
            start_date=_parse_date(row["start_date"]),
            end_date=_parse_date(row["end_date"]),
            conflict_group=row["conflict_group"],
            slots=slots,
        )

    @staticmethod
    def _row_to_occurrence(row: sqlite3.Row) -> Occurrence:
        return Occurrence(
            id=row["id"],
            task_definition_id=row["task_definition_id"],
            schedule_slot_id=row["schedule_slot_id"],
            date=date.fromisoformat(row["date"]),
            scheduled_at=datetime.fromisoformat(row["scheduled_at"]),
            status=OccurrenceStatus.from_db(row["status"]),
            confirmed_at=_parse_ts(row["confirmed_at"]),
            confirmed_by=row["confirmed_by"],
            snooze_until=_parse_ts(row["snooze_until"]),
            notes=row["notes"],
            is_adhoc=bool(row["is_adhoc"]),
            category=row["category"],
            created_at=_parse_ts(row["created_at"]),
            updated_at=_parse_ts(row["updated_at"]),
        )

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> ConfirmationRecord:
        previous: dict[str, Any] | None = None
        if row["previous_values"]:
            try:
                val = json.loads(row["previous_values"])
                previous = val if isinstance(val, dict) else None
            except ValueError:
                logger.warning("Unreadable previous_values on record %s", row["id"])
        return ConfirmationRecord(
            id=row["id"],
            occurrence_id=row["occurrence_id"],
            version=int(row["version"]),
            action=RecordAction(row["action"] or RecordAction.CONFIRM.value),
            confirmed_at=datetime.fromisoformat(row["confirmed_at"]),
            confirmed_by=row["confirmed_by"],
            notes=row["notes"],
            edited_at=_parse_ts(row["edited_at"]),
            edited_by=row["edited_by"],
            previous_values=previous,
            needs_review=bool(row["needs_review"]),
            created_at=_parse_ts(row["created_at"]),
        )

    # ---- sync implementation ----

    def _load_definitions(self, where: str, params: tuple[Any, ...]) -> list[TaskDefinition]:
        conn = self._get_conn()
        try:
            rows = conn.execute(f"SELECT * FROM task_definitions {where} ORDER BY name ASC", params).fetchall()
            if not rows:
                return []
            ids = [r["id"] for r in rows]
            placeholders = ",".join("?" for _ in ids)
            slot_rows = conn.execute(
                f"SELECT * FROM schedule_slots WHERE task_definition_id IN ({placeholders}) "
                "ORDER BY time_of_day ASC",
                ids,
            ).fetchall()
        finally:
            conn.close()

        slots: dict[str, list[ScheduleSlot]] = {}
        for sr in slot_rows:
            slots.setdefault(sr["task_definition_id"], []).append(self._row_to_slot(sr))
        return [self._row_to_definition(r, tuple(slots.get(r["id"], ()))) for r in rows]

    def _insert_definition(self, d: TaskDefinition) -> TaskDefinition:
        now = _utcnow()
        conn = self._get_conn()
        try:
            with conn:
                conn.execute(
                    """
                    INSERT INTO task_definitions(
                        id, subject_id, kind, category, name, dose, location, notes,
                        frequency, active, start_date, end_date, conflict_group,
                        created_at, updated_at
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        d.id,
                        d.subject_id,
                        d.kind.value,
                        d.category,
                        d.name,
                        d.dose,
                        d.location,
                        d.notes,
                        d.frequency.value,
                        int(d.active),
                        _db_value(d.start_date),
                        _db_value(d.end_date),
                        d.conflict_group,
                        now,
                        now,
                    ),
                )
                conn.executemany(
                    "INSERT INTO schedule_slots(id, task_definition_id, time_of_day, label) VALUES (?, ?, ?, ?)",
                    [(s.id, d.id, s.time_of_day.strftime("%H:%M"), s.label.value) for s in d.slots],
                )
        except sqlite3.IntegrityError as exc:
            raise ValidationError(f"TaskDefinition {d.id} could not be stored: {exc}") from exc
        finally:
            conn.close()
        logger.debug("Definition added id=%s name=%s slots=%d", d.id, d.name, len(d.slots))
        return d

    def _select_occurrences(self, day: date) -> list[Occurrence]:
        conn = self._get_conn()
        try:
            rows = conn.execute(
                "SELECT * FROM occurrences WHERE date = ? ORDER BY scheduled_at ASC, created_at ASC",
                (day.isoformat(),),
            ).fetchall()
            return [self._row_to_occurrence(r) for r in rows]
        finally:
            conn.close()

    def _select_occurrence(self, occurrence_id: str) -> Occurrence | None:
        conn = self._get_conn()
        try:
            row = conn.execute("SELECT * FROM occurrences WHERE id = ?", (occurrence_id,)).fetchone()
            return self._row_to_occurrence(row) if row else None
        finally:
            conn.close()

    def _insert_occurrence(self, o: Occurrence) -> Occurrence:
        now = _utcnow()
        conn = self._get_conn()
        try:
            with conn:
                conn.execute(
                    """
                    INSERT INTO occurrences(
                        id, task_definition_id, schedule_slot_id, date, scheduled_at,
                        status, confirmed_at, confirmed_by, snooze_until, notes,
                        is_adhoc, category, created_at, updated_at
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        o.id,
                        o.task_definition_id,
                        o.schedule_slot_id,
                        o.date.isoformat(),
                        o.scheduled_at.isoformat(),
                        o.status.value,
                        _ts(o.confirmed_at),
                        o.confirmed_by,
                        _ts(o.snooze_until),
                        o.notes,
                        int(o.is_adhoc),
                        o.category,
                        now,
                        now,
                    ),
                )
        except sqlite3.IntegrityError as exc:
            msg = str(exc)
            if "UNIQUE" in msg or "PRIMARY KEY" in msg:
                raise DuplicateOccurrence(
                    f"Occurrence exists for definition={o.task_definition_id} "
                    f"slot={o.schedule_slot_id} date={o.date} (id={o.id})"
                ) from exc
            raise ValidationError(f"Occurrence {o.id} could not be stored: {msg}") from exc
        finally:
            conn.close()

        created = self._select_occurrence(o.id)
        if created is None:
            raise RuntimeError(f"Occurrence {o.id} vanished right after insert")
        logger.debug("Occurrence added id=%s definition=%s date=%s", o.id, o.task_definition_id, o.date)
        return created

    def _update_occurrence(self, occurrence_id: str, fields: dict[str, Any]) -> None:
        unknown = set(fields) - PATCHABLE_OCCURRENCE_FIELDS
        if unknown:
            raise ValidationError(f"Occurrence fields not patchable: {sorted(unknown)}")
        if not fields:
            return

        names = sorted(fields)
        assignments = [f"{name} = ?" for name in names]
        params: list[Any] = [_db_value(fields[name]) for name in names]
        assignments.append("updated_at = ?")
        params.append(_utcnow())
        params.append(occurrence_id)

        conn = self._get_conn()
        try:
            with conn:
                cur = conn.execute(f"UPDATE occurrences SET {', '.join(assignments)} WHERE id = ?", params)
            if cur.rowcount != 1:
                raise NotFoundError("Occurrence", occurrence_id)
        finally:
            conn.close()

    def _select_history(self, occurrence_id: str) -> list[ConfirmationRecord]:
        conn = self._get_conn()
        try:
            rows = conn.execute(
                "SELECT * FROM confirmation_history WHERE occurrence_id = ? ORDER BY version DESC",
                (occurrence_id,),
            ).fetchall()
            return [self._row_to_record(r) for r in rows]
        finally:
            conn.close()

    def _select_record(self, record_id: str) -> ConfirmationRecord | None:
        conn = self._get_conn()
        try:
            row = conn.execute("SELECT * FROM confirmation_history WHERE id = ?", (record_id,)).fetchone()
            return self._row_to_record(row) if row else None
        finally:
            conn.close()

    def _insert_record(self, r: NewConfirmationRecord) -> ConfirmationRecord:
        record_id = new_id()
        now = _utcnow()
        conn = self._get_conn()
        try:
            # Version is read and written under one write lock so concurrent appends
            # for the same occurrence never share a number.
            conn.execute("BEGIN IMMEDIATE")
            try:
                exists = conn.execute("SELECT 1 FROM occurrences WHERE id = ?", (r.occurrence_id,)).fetchone()
                if exists is None:
                    raise NotFoundError("Occurrence", r.occurrence_id)
                (version,) = conn.execute(
                    "SELECT COALESCE(MAX(version), 0) + 1 FROM confirmation_history WHERE occurrence_id = ?",
                    (r.occurrence_id,),
                ).fetchone()
                conn.execute(
                    """
                    INSERT INTO confirmation_history(
                        id, occurrence_id, version, action, confirmed_at, confirmed_by, notes,
                        edited_at, edited_by, previous_values, needs_review, created_at
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        record_id,
                        r.occurrence_id,
                        int(version),
                        r.action.value,
                        r.confirmed_at.isoformat(),
                        r.confirmed_by,
                        r.notes,
                        _ts(r.edited_at),
                        r.edited_by,
                        json.dumps(r.previous_values, ensure_ascii=False) if r.previous_values else None,
                        int(r.needs_review),
                        now,
                    ),
                )
                conn.commit()
            except Exception:
                conn.rollback()
                raise
        finally:
            conn.close()

        logger.debug(
            "Confirmation record added id=%s occurrence=%s version=%s action=%s",
            record_id,
            r.occurrence_id,
            version,
            r.action.value,
        )
        return ConfirmationRecord(
            id=record_id,
            occurrence_id=r.occurrence_id,
            version=int(version),
            action=r.action,
            confirmed_at=r.confirmed_at,
            confirmed_by=r.confirmed_by,
            notes=r.notes,
            edited_at=r.edited_at,
            edited_by=r.edited_by,
            previous_values=r.previous_values,
            needs_review=r.needs_review,
            created_at=datetime.fromisoformat(now),
        )

    # ---- CareStore ----

    async def list_definitions(self, *, active_only: bool = True) -> list[TaskDefinition]:
        if active_only:
            return await self._run(self._load_definitions, "WHERE active = 1", ())
        return await self._run(self._load_definitions, "", ())

    async def get_definition(self, definition_id: str) -> TaskDefinition | None:
        found = await self._run(self._load_definitions, "WHERE id = ?", (definition_id,))
        return found[0] if found else None

    async def find_definition_by_name(self, name: str) -> TaskDefinition | None:
        found = await self._run(self._load_definitions, "WHERE name = ?", (name,))
        return found[0] if found else None

    async def create_definition(self, definition: TaskDefinition) -> TaskDefinition:
        return await self._run(self._insert_definition, definition)

    async def list_occurrences(self, day: date) -> list[Occurrence]:
        return await self._run(self._select_occurrences, day)

    async def get_occurrence(self, occurrence_id: str) -> Occurrence | None:
        return await self._run(self._select_occurrence, occurrence_id)

    async def create_occurrence(self, occurrence: Occurrence) -> Occurrence:
        return await self._run(self._insert_occurrence, occurrence)

    async def patch_occurrence(self, occurrence_id: str, fields: dict[str, Any]) -> None:
        await self._run(self._update_occurrence, occurrence_id, dict(fields))

    async def list_confirmation_history(self, occurrence_id: str) -> list[ConfirmationRecord]:
        return await self._run(self._select_history, occurrence_id)

    async def get_confirmation_record(self, record_id: str) -> ConfirmationRecord | None:
        return await self._run(self._select_record, record_id)

    async def append_confirmation_record(self, record: NewConfirmationRecord) -> ConfirmationRecord:
        return await self._run(self._insert_record, record)
