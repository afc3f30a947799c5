"""Region catalog and dedup mapping store backed by SQLite."""
