"""Lifecycle core of a PostgreSQL cluster operator."""
