"""Results processor that persists job status transitions."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

from cloudtask.messaging.channel import (
    JOBS_COMPLETED_QUEUE,
    JOBS_STARTED_QUEUE,
    STATUS_QUEUES,
    Delivery,
    MessageChannel,
)
from cloudtask.messaging.contracts import MessageFormatError, StatusUpdate, decode_status_update
from cloudtask.metrics import NullObserver, PipelineObserver
from cloudtask.runtime import StopToken
from cloudtask.storage.repository import JobStoreError

logger = logging.getLogger(__name__)


class StatusStore(Protocol):
    """Conditional-update surface of the job store."""

    def apply_status_update(self, update: StatusUpdate) -> int:
        """Apply ``update`` and return matched rows; raise ``JobStoreError`` on failure."""


class UpdateOutcome(str, Enum):
    """How one status delivery was resolved."""

    APPLIED = "applied"
    MISSING_ROW = "missing_row"
    DROPPED = "dropped"
    REQUEUED = "requeued"


@dataclass(slots=True)
class ProcessorRunSummary:
    """Aggregate processor counters for CLI reporting."""

    processed: int = 0
    applied: int = 0
    missing_rows: int = 0
    dropped: int = 0
    requeued: int = 0
    idle_polls: int = 0

    def add(self, other: ProcessorRunSummary) -> None:
        self.processed += other.processed
        self.applied += other.applied
        self.missing_rows += other.missing_rows
        self.dropped += other.dropped
        self.requeued += other.requeued
        self.idle_polls += other.idle_polls


class ResultsProcessor:
    """Consumes status events from both status queues and writes them to the store."""

    def __init__(
        self,
        *,
        channel: MessageChannel,
        store: StatusStore,
        observer: PipelineObserver | None = None,
        poll_interval_seconds: float = 1.0,
        started_consumer_tag: str = "results-started",
        completed_consumer_tag: str = "results-completed",
    ) -> None:
        self.channel = channel
        self.store = store
        self.observer = observer or NullObserver()
        self.poll_interval_seconds = poll_interval_seconds
        self.started_consumer_tag = started_consumer_tag
        self.completed_consumer_tag = completed_consumer_tag
        self._started = False

    def start(self) -> None:
        """Declare the status queues and register one consumer on each."""

        if self._started:
            return
        self.channel.declare_queues(STATUS_QUEUES)
        self.channel.subscribe(JOBS_STARTED_QUEUE, consumer_tag=self.started_consumer_tag)
        self.channel.subscribe(JOBS_COMPLETED_QUEUE, consumer_tag=self.completed_consumer_tag)
        self._started = True
        logger.info("Waiting for status updates...")

    def run_once(self) -> ProcessorRunSummary:
        """Wait for at most one delivery and resolve it."""

        self.start()
        summary = ProcessorRunSummary()
        delivery = self.channel.next_delivery(self.poll_interval_seconds)
        if delivery is None:
            summary.idle_polls = 1
            return summary

        summary.processed = 1
        outcome = self.process_delivery(delivery)
        if outcome is UpdateOutcome.APPLIED:
            summary.applied = 1
        elif outcome is UpdateOutcome.MISSING_ROW:
            summary.applied = 1
            summary.missing_rows = 1
        elif outcome is UpdateOutcome.DROPPED:
            summary.dropped = 1
        else:
            summary.requeued = 1
        return summary

    def run_loop(
        self,
        stop: StopToken,
        *,
        max_updates: int | None = None,
        max_idle_polls: int | None = None,
    ) -> ProcessorRunSummary:
        """Consume until ``stop`` is requested or a limit is reached."""

        aggregate = ProcessorRunSummary()
        consecutive_idle = 0
        while not stop.stop_requested:
            if max_updates is not None and aggregate.processed >= max_updates:
                break
            summary = self.run_once()
            aggregate.add(summary)
            if summary.processed == 0:
                consecutive_idle += 1
                if max_idle_polls is not None and consecutive_idle >= max_idle_polls:
                    break
                continue
            consecutive_idle = 0
        if stop.stop_requested:
            logger.info("Results processor stopped (%s)", stop.reason)
        return aggregate

    def process_delivery(self, delivery: Delivery) -> UpdateOutcome:
        """Apply one status event; ack on success, requeue on store failure."""

        try:
            update = decode_status_update(delivery.body)
        except MessageFormatError as error:
            logger.warning("Failed to parse message from %s: %s", delivery.queue, error)
            self.observer.on_message_dropped(delivery.queue, str(error))
            self.channel.reject(delivery, requeue=False)
            return UpdateOutcome.DROPPED

        logger.info("Updating job %s to %s", update.job_id, update.status.value)
        try:
            rows = self.store.apply_status_update(update)
        except JobStoreError as error:
            logger.warning("Failed to update job %s: %s", update.job_id, error)
            self.observer.on_status_requeued(update.status)
            self.channel.reject(delivery, requeue=True)
            return UpdateOutcome.REQUEUED

        self.observer.on_status_applied(update.status, rows)
        self.channel.ack(delivery)
        if rows == 0:
            logger.warning(
                "No job row for %s; status %s not stored",
                update.job_id,
                update.status.value,
            )
            return UpdateOutcome.MISSING_ROW
        return UpdateOutcome.APPLIED
