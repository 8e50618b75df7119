"""Internal HTTP API."""
