"""Handler that blocks for a requested number of seconds."""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Callable

from cloudtask.worker.handlers.base import JobValidationError

logger = logging.getLogger(__name__)

SLEEP_JOB_TYPE = "sleep"
MIN_SLEEP_SECONDS = 1
MAX_SLEEP_SECONDS = 300


class SleepHandler:
    """Sleep for ``{"seconds": n}`` with ``n`` in [1, 300].

    The wait is not interrupted by a shutdown request.
    """

    job_type = SLEEP_JOB_TYPE

    def __init__(self, *, sleep: Callable[[float], None] = time.sleep) -> None:
        self._sleep = sleep

    def execute(self, payload: str) -> str:
        seconds = parse_sleep_seconds(payload)
        logger.info("Sleeping for %d seconds...", seconds)
        self._sleep(seconds)
        return f"Slept for {seconds} seconds"


def parse_sleep_seconds(payload: str) -> int:
    """Decode and range-check the ``seconds`` field of a sleep payload."""

    try:
        raw = json.loads(payload)
    except ValueError as error:
        raise JobValidationError(f"invalid sleep payload: {error}") from error
    if not isinstance(raw, dict):
        raise JobValidationError("invalid sleep payload: expected JSON object")
    if "seconds" not in raw:
        raise JobValidationError("invalid sleep payload: seconds is required")
    seconds = raw["seconds"]
    if isinstance(seconds, bool) or not isinstance(seconds, int):
        raise JobValidationError(
            f"invalid sleep payload: seconds must be an integer, got {seconds!r}",
        )
    if seconds < MIN_SLEEP_SECONDS or seconds > MAX_SLEEP_SECONDS:
        raise JobValidationError(
            f"seconds must be between {MIN_SLEEP_SECONDS} and {MAX_SLEEP_SECONDS}, got {seconds}",
        )
    return seconds
