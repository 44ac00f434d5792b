# config.example.py

"""
Documentation-only module (safe to commit).

The real configuration is loaded from environment variables (optionally via a local .env file).
Keep per-device values (user id, paths) in .env, which is gitignored.

This file exists to make the repo self-documenting even without opening .env.
"""

ENV_VARS = {
    # App / logging
    "CARELOG_APP_NAME": "App display name (default: carelog).",
    "CARELOG_LOG_LEVEL": "Console logging level (default: INFO). The log file always gets DEBUG.",
    # Who is using this install
    "CARELOG_USER_ID": "Caregiver id written into confirmations (default: caregiver).",
    "CARELOG_USER_ROLE": "admin or user (default: admin). Only admins may edit history.",
    "CARELOG_SUBJECT_ID": "Id of the cared-for subject attached to seeded definitions.",
    # Scheduling rules
    "CARELOG_TIMEZONE": "IANA zone used to place slots on a day (default: device zone).",
    "CARELOG_OVERDUE_MINUTES": "Minutes after scheduled time before a pending item is overdue (default: 30).",
    "CARELOG_CONFLICT_SPACING_MINUTES": "Spacing for conflict groups without their own (default: 5).",
    # Connectivity
    "CARELOG_START_OFFLINE": "Start with every action queued locally (true/false).",
    # Paths (gitignored)
    "CARELOG_DATA_DIR": "Local data directory (default: .local/carelog).",
    "CARELOG_DB_PATH": "SQLite care store path (default: <data_dir>/carelog.sqlite3).",
    "CARELOG_OFFLINE_QUEUE_PATH": "Offline queue JSON path (default: <data_dir>/offline_queue.json).",
    "CARELOG_SEED_PATH": "Care plan JSON loaded into an empty store on start (see seed.example.json).",
}
