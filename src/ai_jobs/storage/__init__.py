"""SQLite persistence for the job engine."""
