"""Content store backends (local, storage node over HTTP, GCS)."""
