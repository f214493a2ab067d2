"""SQLModel ORM tables for the job store."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, DateTime, Text
from sqlmodel import Field, SQLModel


class Job(SQLModel, table=True):
    __tablename__ = "jobs"  # type: ignore[bad-override]

    id: str = Field(primary_key=True)
    type: str = Field(index=True)
    payload: str = Field(default="", sa_column=Column(Text, nullable=False, server_default=""))
    status: str = Field(index=True)
    result: str | None = Field(default=None, sa_column=Column(Text))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
