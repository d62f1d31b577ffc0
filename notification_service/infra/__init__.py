"""Infrastructure adapters: logging, database, scheduling, auth."""
