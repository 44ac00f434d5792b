"""
Care engine.

Components:
- models.py: data structures (TaskDefinition, Occurrence, ConfirmationRecord, ...)
- schedule.py: recurring definitions -> one day's occurrences
- classifier.py: display buckets derived from (occurrence, now)
- conflicts.py: spacing between tasks of one conflict group
- ledger.py: append-only confirm / edit / undo records
- snooze.py, adhoc.py: deferral and unscheduled entries
- offline.py: queue capture and replay
- reminders.py: per-occurrence reminder timers
- tracker.py: CareTracker, the facade connectors use
"""
