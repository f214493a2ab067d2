"""Relational job store backed by SQLModel and Alembic migrations."""
