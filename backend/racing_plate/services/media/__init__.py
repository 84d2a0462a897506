"""Upload validation and per-user file storage."""
