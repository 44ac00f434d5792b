# src/carelog/core/errors.py

"""
Error taxonomy of the care engine.

- ValidationError and subclasses: caller mistakes (missing rows, bad transitions).
  Reported directly, never retried.
- ConflictBlocked: not a failure but a decision point; retry with override_conflict=True.
- TransientIOError: the store is unreachable. Surfaced while online, captured into the
  offline queue while offline.
"""

from __future__ import annotations


class CareError(Exception):
    """Base class for every error raised by carelog."""


class ValidationError(CareError):
    pass


class NotFoundError(ValidationError):
    def __init__(self, what: str, ident: str) -> None:
        super().__init__(f"{what} {ident} not found")
        self.what = what
        self.ident = ident


class InvalidTransition(ValidationError):
    pass


class PermissionDenied(ValidationError):
    pass


class DuplicateOccurrence(ValidationError):
    """An occurrence with the same natural key (or id) already exists."""


class ConflictBlocked(CareError):
    """Soft block raised when a same-group task was confirmed moments ago."""

    can_override = True

    def __init__(self, conflicting_task_name: str, remaining_minutes: int) -> None:
        super().__init__(f"Wait {remaining_minutes} min - {conflicting_task_name} was just given")
        self.conflicting_task_name = conflicting_task_name
        self.remaining_minutes = remaining_minutes


class TransientIOError(CareError):
    pass
