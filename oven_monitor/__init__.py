"""Two-oven temperature monitor: serial ingestion, session-scoped logging and an HTTP API."""

__version__ = "1.0.0"
