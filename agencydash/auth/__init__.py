"""Access control helpers for the admin JSON endpoints."""
