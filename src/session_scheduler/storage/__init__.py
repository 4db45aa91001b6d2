"""SQLite persistence for scheduler snapshots and execution statistics."""
