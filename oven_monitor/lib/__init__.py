"""Hardware transport, configuration and API server libraries."""
