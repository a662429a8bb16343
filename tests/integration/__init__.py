"""
Integration tests for the workspace_migration command line and HTTP API.

These tests drive the public entry points end to end against a SQLite
database file (through aiosqlite) or an in-memory document store.
"""
