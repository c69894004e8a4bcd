"""Persistence: store protocol, in-memory store and PostgreSQL store."""
