# src/carelog/config.py

"""Centralized settings loaded from environment variables (+ optional .env).

Design goals:
- One Settings object for the whole app (normal "settings layer").
- No secrets required at import time.
- Every value has a default, so a bare `carelog` run works out of the box.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import tzinfo
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import load_dotenv

ENV_PREFIX = "CARELOG"


def _k(suffix: str) -> str:
    """Build env var name with the project prefix."""
    return f"{ENV_PREFIX}_{suffix}"


load_dotenv(override=False)


def _env(name: str, default: str = "") -> str:
    v = os.getenv(name)
    return default if v is None else v


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_path(name: str, default: Path) -> Path:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return Path(raw).expanduser()


def _env_optional_path(name: str) -> Path | None:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return None
    return Path(raw).expanduser()


@dataclass(frozen=True, slots=True)
class Settings:
    # ---- App / logging ----
    app_name: str
    log_level: str

    # ---- Who is using this install ----
    user_id: str
    user_role: str
    subject_id: str | None

    # ---- Scheduling rules ----
    timezone: str
    overdue_minutes: int
    conflict_spacing_minutes: int

    # ---- Connectivity ----
    start_offline: bool

    # ---- Local data paths (ignored by git) ----
    data_dir: Path
    db_path: Path
    offline_queue_path: Path
    seed_path: Path | None

    @property
    def tz(self) -> tzinfo | None:
        """Configured zone, or None for the device zone."""
        if not self.timezone:
            return None
        try:
            return ZoneInfo(self.timezone)
        except ZoneInfoNotFoundError:
            return None

    @staticmethod
    def from_env() -> "Settings":
        app_name = _env(_k("APP_NAME"), "carelog") or "carelog"
        log_level = _env(_k("LOG_LEVEL"), "INFO")

        user_id = _env(_k("USER_ID"), "caregiver").strip() or "caregiver"
        user_role = _env(_k("USER_ROLE"), "admin").strip().lower() or "admin"
        subject_id = _env(_k("SUBJECT_ID"), "").strip() or None

        timezone = _env(_k("TIMEZONE"), "").strip()
        # Below 1 minute the rules stop making sense; fall back to defaults.
        overdue_minutes = _env_int(_k("OVERDUE_MINUTES"), 30)
        if overdue_minutes < 1:
            overdue_minutes = 30
        conflict_spacing_minutes = _env_int(_k("CONFLICT_SPACING_MINUTES"), 5)
        if conflict_spacing_minutes < 1:
            conflict_spacing_minutes = 5

        start_offline = _env_bool(_k("START_OFFLINE"), False)

        data_dir = _env_path(_k("DATA_DIR"), Path(".local/carelog"))
        db_path = _env_path(_k("DB_PATH"), data_dir / "carelog.sqlite3")
        offline_queue_path = _env_path(_k("OFFLINE_QUEUE_PATH"), data_dir / "offline_queue.json")
        seed_path = _env_optional_path(_k("SEED_PATH"))

        return Settings(
            app_name=app_name,
            log_level=log_level,
            user_id=user_id,
            user_role=user_role,
            subject_id=subject_id,
            timezone=timezone,
            overdue_minutes=overdue_minutes,
            conflict_spacing_minutes=conflict_spacing_minutes,
            start_offline=start_offline,
            data_dir=data_dir,
            db_path=db_path,
            offline_queue_path=offline_queue_path,
            seed_path=seed_path,
        )


_SETTINGS: Settings | None = None


def get_settings() -> Settings:
    global _SETTINGS
    if _SETTINGS is None:
        _SETTINGS = Settings.from_env()
    return _SETTINGS
