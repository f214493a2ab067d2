"""Observer hooks for pipeline counters.

Consumption loops receive an observer instead of touching global counters,
so the message-handling path can be exercised without a metrics backend.
"""

from __future__ import annotations

from collections import Counter
from typing import Protocol

from cloudtask.models import JobStatus


class PipelineObserver(Protocol):
    """Callbacks invoked from the worker and results processor loops."""

    def on_job_received(self, job_type: str) -> None:
        """A JobMessage was decoded and is about to run."""

    def on_job_finished(self, job_type: str, status: JobStatus) -> None:
        """A job reached COMPLETED or FAILED."""

    def on_message_dropped(self, queue: str, reason: str) -> None:
        """A malformed delivery was rejected without requeue."""

    def on_publish_failed(self, queue: str) -> None:
        """A best-effort status publish failed."""

    def on_status_applied(self, status: JobStatus, rows: int) -> None:
        """A StatusUpdate was written to the job store."""

    def on_status_requeued(self, status: JobStatus) -> None:
        """A StatusUpdate was handed back to the broker after a store error."""


class NullObserver:
    """Observer that ignores every event."""

    def on_job_received(self, job_type: str) -> None:
        pass

    def on_job_finished(self, job_type: str, status: JobStatus) -> None:
        pass

    def on_message_dropped(self, queue: str, reason: str) -> None:
        pass

    def on_publish_failed(self, queue: str) -> None:
        pass

    def on_status_applied(self, status: JobStatus, rows: int) -> None:
        pass

    def on_status_requeued(self, status: JobStatus) -> None:
        pass


class CountingObserver:
    """In-memory tallies keyed by job type, status and queue."""

    def __init__(self) -> None:
        self.jobs_received: Counter[str] = Counter()
        self.jobs_finished: Counter[tuple[str, str]] = Counter()
        self.messages_dropped: Counter[str] = Counter()
        self.publish_failures: Counter[str] = Counter()
        self.statuses_applied: Counter[str] = Counter()
        self.statuses_missing_row: Counter[str] = Counter()
        self.statuses_requeued: Counter[str] = Counter()

    def on_job_received(self, job_type: str) -> None:
        self.jobs_received[job_type] += 1

    def on_job_finished(self, job_type: str, status: JobStatus) -> None:
        self.jobs_finished[(job_type, status.value)] += 1

    def on_message_dropped(self, queue: str, reason: str) -> None:  # noqa: ARG002
        self.messages_dropped[queue] += 1

    def on_publish_failed(self, queue: str) -> None:
        self.publish_failures[queue] += 1

    def on_status_applied(self, status: JobStatus, rows: int) -> None:
        self.statuses_applied[status.value] += 1
        if rows == 0:
            self.statuses_missing_row[status.value] += 1

    def on_status_requeued(self, status: JobStatus) -> None:
        self.statuses_requeued[status.value] += 1

    def render_lines(self) -> list[str]:
        """Render non-empty counters as CLI report lines."""

        lines: list[str] = []
        if self.jobs_received:
            lines.append(f"Jobs received: {_format_counter(self.jobs_received)}")
        if self.jobs_finished:
            finished = Counter(
                {
                    f"{job_type}:{status}": count
                    for (job_type, status), count in self.jobs_finished.items()
                },
            )
            lines.append(f"Jobs finished: {_format_counter(finished)}")
        if self.statuses_applied:
            lines.append(f"Statuses applied: {_format_counter(self.statuses_applied)}")
        if self.statuses_missing_row:
            lines.append(f"Statuses without job row: {_format_counter(self.statuses_missing_row)}")
        if self.statuses_requeued:
            lines.append(f"Statuses requeued: {_format_counter(self.statuses_requeued)}")
        if self.messages_dropped:
            lines.append(f"Messages dropped: {_format_counter(self.messages_dropped)}")
        if self.publish_failures:
            lines.append(f"Publish failures: {_format_counter(self.publish_failures)}")
        return lines


def _format_counter(counter: Counter[str]) -> str:
    return " ".join(f"{key}={counter[key]}" for key in sorted(counter))
