"""
carelog: daily care-task tracking for one subject.

Components:
- core/: clock sources, error taxonomy, ports (Protocols), application state
- care/: the engine (schedule expansion, classification, conflicts, ledger,
  snooze, quick logs, offline replay, reminders) behind the CareTracker facade
- storage/: SQLite and in-memory stores, JSON offline queue, seed loader
- cli/, connectors/: composition root, slash commands, console REPL
"""
