"""Management API."""
