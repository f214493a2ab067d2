"""Handler interface and registry for job types."""

from __future__ import annotations

from collections.abc import Iterable
from typing import Protocol


class JobHandlerError(Exception):
    """Job-level failure reported as a FAILED status, never as a delivery failure."""


class UnknownJobTypeError(JobHandlerError):
    def __init__(self, job_type: str) -> None:
        super().__init__(f"unknown job type: {job_type}")
        self.job_type = job_type


class JobValidationError(JobHandlerError):
    """Payload is malformed or outside the handler's accepted range."""


class JobExecutionError(JobHandlerError):
    """Payload was valid but running the job failed."""


class JobHandler(Protocol):
    """Protocol implemented by one handler per job type."""

    job_type: str

    def execute(self, payload: str) -> str:
        """Run the job described by ``payload`` and return a result summary."""


class HandlerRegistry:
    """Mapping from job type to handler, built once at process start."""

    def __init__(self, handlers: Iterable[JobHandler] = ()) -> None:
        self._handlers: dict[str, JobHandler] = {}
        for handler in handlers:
            self.register(handler)

    def register(self, handler: JobHandler) -> None:
        if handler.job_type in self._handlers:
            raise ValueError(f"Handler already registered for job type {handler.job_type!r}")
        self._handlers[handler.job_type] = handler

    def get(self, job_type: str) -> JobHandler:
        try:
            return self._handlers[job_type]
        except KeyError:
            raise UnknownJobTypeError(job_type) from None

    def __contains__(self, job_type: object) -> bool:
        return job_type in self._handlers

    @property
    def job_types(self) -> tuple[str, ...]:
        return tuple(sorted(self._handlers))
