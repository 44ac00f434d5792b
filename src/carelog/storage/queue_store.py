# src/carelog/storage/queue_store.py

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import os
import shutil
import time
from dataclasses import replace
from pathlib import Path
from typing import Any

from ..care.models import OfflineAction
from ..core.errors import NotFoundError, TransientIOError

logger = logging.getLogger(__name__)


class JsonOfflineQueue:
    """
    Offline queue persisted as one JSON array on disk.

    Survives restarts: every change rewrites the file atomically (tmp file + os.replace),
    so a crash mid-write leaves the previous version intact.
    The queue is unbounded; callers see how much is pending via list_pending().
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._lock = asyncio.Lock()
        self._actions: list[OfflineAction] = self._load()
        logger.info(
            "JsonOfflineQueue ready path=%s pending=%d",
            self._path,
            sum(1 for a in self._actions if not a.synced),
        )

    def _load(self) -> list[OfflineAction]:
        if not self._path.exists():
            return []
        try:
            raw = json.loads(self._path.read_text("utf-8") or "[]")
        except (OSError, ValueError):
            logger.exception("Failed to read offline queue %s", self._path)
            self._set_aside()
            return []
        if not isinstance(raw, list):
            logger.error("Offline queue %s is not a JSON array", self._path)
            self._set_aside()
            return []

        actions: list[OfflineAction] = []
        skipped = 0
        for item in raw:
            try:
                actions.append(OfflineAction.from_json(item))
            except (KeyError, TypeError, ValueError, AttributeError):
                logger.warning("Skipping malformed offline action: %r", item)
                skipped += 1
        if skipped:
            # The next write drops the skipped items; keep the original file for recovery.
            self._set_aside(copy=True)
        return actions

    def _set_aside(self, *, copy: bool = False) -> Path:
        """
        Keep an unreadable queue file as <name>.corrupt-<unix ts> so unsynced actions
        are never lost to the next write. Raises when the file cannot be kept.
        """
        backup = self._path.with_name(f"{self._path.name}.corrupt-{int(time.time())}")
        try:
            if copy:
                shutil.copy2(self._path, backup)
            else:
                os.replace(self._path, backup)
        except OSError as exc:
            raise TransientIOError(f"Cannot set aside unreadable offline queue {self._path}: {exc}") from exc
        logger.error("Unreadable offline queue kept at %s; review it before discarding", backup)
        return backup

    def _write(self, data: list[dict[str, Any]]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_suffix(".tmp")
        tmp.write_text(json.dumps(data, ensure_ascii=False, indent=2), "utf-8")
        os.replace(tmp, self._path)
        with contextlib.suppress(Exception):
            # Queue may hold care notes; keep the file private on disk.
            os.chmod(self._path, 0o600)

    async def _commit(self, actions: list[OfflineAction]) -> None:
        """Write the new list, then adopt it. A failed write leaves memory and disk as they were."""
        data = [a.to_json() for a in actions]
        try:
            await asyncio.to_thread(self._write, data)
        except OSError as exc:
            raise TransientIOError(f"Cannot write offline queue {self._path}: {exc}") from exc
        self._actions = actions

    # ---- OfflineQueue ----

    async def add(self, action: OfflineAction) -> None:
        async with self._lock:
            await self._commit([*self._actions, action])

    async def get(self, action_id: str) -> OfflineAction | None:
        return next((a for a in self._actions if a.id == action_id), None)

    async def list_pending(self) -> list[OfflineAction]:
        pending = [a for a in self._actions if not a.synced]
        return sorted(pending, key=lambda a: a.timestamp)

    async def mark_synced(self, action_id: str) -> None:
        async with self._lock:
            if not any(a.id == action_id for a in self._actions):
                raise NotFoundError("OfflineAction", action_id)
            await self._commit([replace(a, synced=True) if a.id == action_id else a for a in self._actions])

    async def remove(self, action_id: str) -> None:
        async with self._lock:
            kept = [a for a in self._actions if a.id != action_id]
            if len(kept) != len(self._actions):
                await self._commit(kept)

    async def clear_synced(self) -> int:
        async with self._lock:
            kept = [a for a in self._actions if not a.synced]
            removed = len(self._actions) - len(kept)
            if removed:
                await self._commit(kept)
            return removed
