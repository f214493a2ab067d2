"""Job handlers keyed by job type."""

from cloudtask.worker.handlers.base import (
    HandlerRegistry,
    JobExecutionError,
    JobHandler,
    JobHandlerError,
    JobValidationError,
    UnknownJobTypeError,
)
from cloudtask.worker.handlers.sleep import SleepHandler


def build_default_registry() -> HandlerRegistry:
    """Registry with every built-in job type."""

    return HandlerRegistry([SleepHandler()])


__all__ = [
    "HandlerRegistry",
    "JobExecutionError",
    "JobHandler",
    "JobHandlerError",
    "JobValidationError",
    "SleepHandler",
    "UnknownJobTypeError",
    "build_default_registry",
]
