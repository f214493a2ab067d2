"""Domain models for job lifecycle and persistence."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class JobStatus(str, Enum):
    """Durable job lifecycle states."""

    PENDING = "PENDING"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


# Statuses carried by StatusUpdate events; PENDING only exists as a stored row.
PUBLISHED_STATUSES = frozenset({JobStatus.RUNNING, JobStatus.COMPLETED, JobStatus.FAILED})


@dataclass(slots=True)
class JobCreate:
    """Input payload for creating a job row on the submission path."""

    job_type: str
    payload: str
    job_id: str | None = None


@dataclass(slots=True)
class JobView:
    """Readable job row for CLI and tests."""

    job_id: str
    job_type: str
    payload: str
    status: JobStatus
    result: str | None
    created_at: datetime
    updated_at: datetime
