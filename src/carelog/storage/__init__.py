"""Store adapters: SQLite (durable), in-memory, JSON offline queue, seed loader."""
