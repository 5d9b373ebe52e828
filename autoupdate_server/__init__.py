"""Auto-update HTTP API (FastAPI)."""
