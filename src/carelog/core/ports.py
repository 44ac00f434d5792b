# src/carelog/core/ports.py

from __future__ import annotations

"""
Ports (interfaces) used by the care engine.

The engine depends on Protocols instead of concrete implementations.
This keeps storage backends and reminder delivery swappable and makes testing easier.
All ports are async: adapters may hit a network service, a local database or memory.
"""

from datetime import date
from typing import Any, Protocol

from ..care.models import (
    ConfirmationRecord,
    NewConfirmationRecord,
    OfflineAction,
    Occurrence,
    TaskDefinition,
)


class CareStore(Protocol):
    """
    Persistence port for definitions, occurrences and the confirmation ledger.

    Adapters raise TransientIOError when the backend is unreachable and
    DuplicateOccurrence when an insert violates the natural key.
    """

    # Task definitions (read-mostly; management lives outside the engine)
    async def list_definitions(self, *, active_only: bool = True) -> list[TaskDefinition]: ...
    async def get_definition(self, definition_id: str) -> TaskDefinition | None: ...
    async def find_definition_by_name(self, name: str) -> TaskDefinition | None: ...
    async def create_definition(self, definition: TaskDefinition) -> TaskDefinition: ...

    # Occurrences
    async def list_occurrences(self, day: date) -> list[Occurrence]: ...
    async def get_occurrence(self, occurrence_id: str) -> Occurrence | None: ...
    async def create_occurrence(self, occurrence: Occurrence) -> Occurrence: ...
    async def patch_occurrence(self, occurrence_id: str, fields: dict[str, Any]) -> None: ...

    # Ledger (append-only)
    async def list_confirmation_history(self, occurrence_id: str) -> list[ConfirmationRecord]: ...
    async def get_confirmation_record(self, record_id: str) -> ConfirmationRecord | None: ...
    async def append_confirmation_record(self, record: NewConfirmationRecord) -> ConfirmationRecord: ...


class OfflineQueue(Protocol):
    """Durable FIFO of actions taken while disconnected. Unbounded by design of the product."""

    async def add(self, action: OfflineAction) -> None: ...
    async def get(self, action_id: str) -> OfflineAction | None: ...
    async def list_pending(self) -> list[OfflineAction]: ...
    async def mark_synced(self, action_id: str) -> None: ...
    async def remove(self, action_id: str) -> None: ...
    async def clear_synced(self) -> int: ...


class ReminderSink(Protocol):
    """
    Delivery side of reminders (push service, chat connector, console...).

    The engine decides when a reminder fires and what it says; the sink decides how
    it reaches a person.
    """

    async def deliver(self, reminder: Any) -> None: ...
