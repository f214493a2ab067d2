"""Queue worker that executes jobs from ``jobs.created``."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

from cloudtask.messaging.channel import (
    ALL_QUEUES,
    JOBS_COMPLETED_QUEUE,
    JOBS_CREATED_QUEUE,
    JOBS_STARTED_QUEUE,
    ChannelError,
    Delivery,
    MessageChannel,
)
from cloudtask.messaging.contracts import (
    JobMessage,
    MessageFormatError,
    StatusUpdate,
    decode_job_message,
    encode_message,
)
from cloudtask.metrics import NullObserver, PipelineObserver
from cloudtask.models import JobStatus
from cloudtask.runtime import StopToken
from cloudtask.worker.handlers import HandlerRegistry, JobHandlerError

logger = logging.getLogger(__name__)


class JobOutcome(str, Enum):
    """How one ``jobs.created`` delivery was resolved."""

    COMPLETED = "completed"
    FAILED = "failed"
    DROPPED = "dropped"


@dataclass(slots=True)
class WorkerRunSummary:
    """Aggregate worker counters for CLI reporting."""

    processed: int = 0
    completed: int = 0
    failed: int = 0
    dropped: int = 0
    idle_polls: int = 0

    def add(self, other: WorkerRunSummary) -> None:
        self.processed += other.processed
        self.completed += other.completed
        self.failed += other.failed
        self.dropped += other.dropped
        self.idle_polls += other.idle_polls


class JobWorker:
    """Consumes job messages one at a time and reports lifecycle transitions."""

    def __init__(
        self,
        *,
        channel: MessageChannel,
        handlers: HandlerRegistry,
        observer: PipelineObserver | None = None,
        poll_interval_seconds: float = 1.0,
        consumer_tag: str = "",
    ) -> None:
        self.channel = channel
        self.handlers = handlers
        self.observer = observer or NullObserver()
        self.poll_interval_seconds = poll_interval_seconds
        self.consumer_tag = consumer_tag
        self._started = False

    def start(self) -> None:
        """Declare every pipeline queue and register the ``jobs.created`` consumer."""

        if self._started:
            return
        self.channel.declare_queues(ALL_QUEUES)
        self.channel.subscribe(JOBS_CREATED_QUEUE, consumer_tag=self.consumer_tag)
        self._started = True
        logger.info("Waiting for jobs (types: %s)", ", ".join(self.handlers.job_types))

    def run_once(self) -> WorkerRunSummary:
        """Wait for at most one delivery and resolve it."""

        self.start()
        summary = WorkerRunSummary()
        delivery = self.channel.next_delivery(self.poll_interval_seconds)
        if delivery is None:
            summary.idle_polls = 1
            return summary

        summary.processed = 1
        outcome = self.process_delivery(delivery)
        if outcome is JobOutcome.COMPLETED:
            summary.completed = 1
        elif outcome is JobOutcome.FAILED:
            summary.failed = 1
        else:
            summary.dropped = 1
        return summary

    def run_loop(
        self,
        stop: StopToken,
        *,
        max_jobs: int | None = None,
        max_idle_polls: int | None = None,
    ) -> WorkerRunSummary:
        """Consume until ``stop`` is requested or a limit is reached.

        Args:
            stop: Checked between deliveries; the in-flight job always finishes
                and is acked before the loop exits.
            max_jobs: Stop after resolving this many deliveries (None = unlimited).
            max_idle_polls: Stop after this many consecutive empty polls
                (None = wait forever).
        """

        aggregate = WorkerRunSummary()
        consecutive_idle = 0
        while not stop.stop_requested:
            if max_jobs is not None and aggregate.processed >= max_jobs:
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
            logger.info("Worker stopped (%s)", stop.reason)
        return aggregate

    def process_delivery(self, delivery: Delivery) -> JobOutcome:
        """Decode, run and report one job, then resolve its acknowledgment."""

        try:
            job = decode_job_message(delivery.body)
        except MessageFormatError as error:
            logger.warning("Failed to parse job message: %s", error)
            self.observer.on_message_dropped(delivery.queue, str(error))
            self.channel.reject(delivery, requeue=False)
            return JobOutcome.DROPPED

        logger.info(
            "Received job %s (type: %s)%s",
            job.job_id,
            job.job_type,
            " [redelivered]" if delivery.redelivered else "",
        )
        self.observer.on_job_received(job.job_type)
        self._publish(JOBS_STARTED_QUEUE, StatusUpdate.running(job.job_id))

        update = self._execute(job)
        if update.status is JobStatus.COMPLETED:
            logger.info("Job %s completed: %s", job.job_id, update.result)
        else:
            logger.warning("Job %s failed: %s", job.job_id, update.result)
        self._publish(JOBS_COMPLETED_QUEUE, update)
        self.observer.on_job_finished(job.job_type, update.status)

        # Job-level failures are a normal outcome; the delivery is never requeued for them.
        self.channel.ack(delivery)
        if update.status is JobStatus.COMPLETED:
            return JobOutcome.COMPLETED
        return JobOutcome.FAILED

    def _execute(self, job: JobMessage) -> StatusUpdate:
        try:
            handler = self.handlers.get(job.job_type)
            result = handler.execute(job.payload)
        except JobHandlerError as error:
            return StatusUpdate.failed(job.job_id, str(error))
        except Exception as error:  # noqa: BLE001
            logger.exception("Handler for job %s raised unexpectedly", job.job_id)
            return StatusUpdate.failed(job.job_id, str(error) or type(error).__name__)
        return StatusUpdate.completed(job.job_id, result)

    def _publish(self, queue: str, update: StatusUpdate) -> None:
        try:
            self.channel.publish(queue, encode_message(update))
        except ChannelError as error:
            logger.warning("Failed to publish to %s: %s", queue, error)
            self.observer.on_publish_failed(queue)
