# src/carelog/care/offline.py

"""
Offline capture and replay.

While disconnected, every mutation is appended to a durable FIFO as an OfflineAction.
On reconnect the queue is replayed in timestamp order. Nothing is dropped
automatically: a failed action stays queued until it syncs or an operator discards it.

Replay is de-duplicated by action id, so a retried pass never re-applies an
action that already went through. That memory ends with the process; after a
restart the appliers themselves must be idempotent (a replayed confirmation is
matched against the ledger before anything is written).
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Any

from ..core.clock import Clock
from ..core.errors import TransientIOError, ValidationError
from ..core.ports import OfflineQueue
from .models import OfflineAction, OfflineActionKind, ReplayReport, new_id

logger = logging.getLogger(__name__)

# An applier returns the ids of ledger records it flagged for manual review.
ActionApplier = Callable[[OfflineAction], Awaitable[list[str]]]


class OfflineReconciler:
    def __init__(self, queue: OfflineQueue, clock: Clock) -> None:
        self._queue = queue
        self._clock = clock
        # Applied in this process but maybe not yet marked synced (mark_synced can fail).
        self._applied: set[str] = set()

    async def record(
        self,
        kind: OfflineActionKind,
        payload: dict[str, Any],
        *,
        at: datetime | None = None,
    ) -> OfflineAction:
        action = OfflineAction(
            id=new_id(),
            kind=kind,
            payload=dict(payload),
            timestamp=at or self._clock.now(),
            synced=False,
        )
        await self._queue.add(action)
        logger.info("Queued offline %s", kind.value, extra={"action_id": action.id})
        return action

    async def pending(self) -> list[OfflineAction]:
        return await self._queue.list_pending()

    async def discard(self, action_id: str) -> bool:
        """Drop an action for good (operator decision for permanently failing ones)."""
        existing = await self._queue.get(action_id)
        if existing is None:
            return False
        await self._queue.remove(action_id)
        logger.warning("Offline %s discarded", existing.kind.value, extra={"action_id": action_id})
        return True

    async def purge_synced(self) -> int:
        return await self._queue.clear_synced()

    async def replay(self, apply: ActionApplier) -> ReplayReport:
        report = ReplayReport()
        actions = await self._queue.list_pending()
        logger.info("Replaying %d offline action(s)", len(actions))

        for action in actions:
            if action.synced:
                continue

            if action.id not in self._applied:
                try:
                    flagged = await apply(action)
                except TransientIOError:
                    logger.warning("Store unreachable during replay; left queued", extra={"action_id": action.id})
                    report.stopped_early = True
                    break
                except ValidationError as exc:
                    logger.warning("Offline %s rejected: %s", action.kind.value, exc, extra={"action_id": action.id})
                    report.failed.append(action.id)
                    continue
                self._applied.add(action.id)
                report.flagged_records.extend(flagged)
            else:
                logger.debug("Offline action %s already applied; only marking synced", action.id)

            try:
                await self._queue.mark_synced(action.id)
            except Exception:
                logger.exception("mark_synced failed", extra={"action_id": action.id})
                report.stopped_early = True
                break
            report.synced.append(action.id)

        purged = await self._queue.clear_synced()
        self._applied.difference_update(report.synced)
        logger.info(
            "Replay done synced=%d failed=%d flagged=%d purged=%d stopped_early=%s",
            len(report.synced),
            len(report.failed),
            len(report.flagged_records),
            purged,
            report.stopped_early,
        )
        return report
