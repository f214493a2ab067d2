"""Controllers for CLI commands."""

from __future__ import annotations

from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass

from cloudtask.config import Settings
from cloudtask.messaging.channel import (
    ALL_QUEUES,
    JOBS_CREATED_QUEUE,
    MessageChannel,
)
from cloudtask.messaging.contracts import JobMessage, encode_message
from cloudtask.messaging.rabbitmq import RabbitMqChannel
from cloudtask.metrics import CountingObserver
from cloudtask.models import JobCreate
from cloudtask.processor.processor import ResultsProcessor
from cloudtask.runtime import StopToken, signal_handlers
from cloudtask.storage.repository import JobRepository
from cloudtask.worker.handlers import build_default_registry
from cloudtask.worker.worker import JobWorker

ChannelFactory = Callable[[Settings], MessageChannel]


@dataclass(slots=True)
class WorkerCommand:
    """CLI input for worker execution."""

    max_jobs: int | None
    max_idle_polls: int | None = None


@dataclass(slots=True)
class ProcessorCommand:
    """CLI input for results processor execution."""

    database_url: str | None
    max_updates: int | None
    max_idle_polls: int | None = None


@dataclass(slots=True)
class EnqueueCommand:
    """CLI input for demo job submission."""

    database_url: str | None
    job_type: str
    payload: str
    job_id: str | None = None


@dataclass(slots=True)
class InspectJobCommand:
    """CLI input for job row inspection."""

    database_url: str | None
    job_id: str


def connect_rabbitmq(settings: Settings) -> MessageChannel:
    return RabbitMqChannel.connect(
        settings.broker.url,
        prefetch_count=settings.broker.prefetch_count,
        connection_attempts=settings.broker.connection_attempts,
        retry_delay_seconds=settings.broker.retry_delay_seconds,
        heartbeat_seconds=settings.broker.heartbeat_seconds,
    )


class JobsCliController:
    """Coordinates worker, processor, schema and inspection CLI operations."""

    def __init__(self, channel_factory: ChannelFactory = connect_rabbitmq) -> None:
        self.channel_factory = channel_factory

    def run_worker(self, command: WorkerCommand) -> list[str]:
        settings = _settings(None)
        observer = CountingObserver()
        stop = StopToken()
        with self._channel(settings) as channel:
            worker = JobWorker(
                channel=channel,
                handlers=build_default_registry(),
                observer=observer,
                poll_interval_seconds=settings.consumer.poll_interval_seconds,
                consumer_tag=settings.consumer.worker_consumer_tag,
            )
            with signal_handlers(stop):
                summary = worker.run_loop(
                    stop,
                    max_jobs=command.max_jobs,
                    max_idle_polls=command.max_idle_polls,
                )

        return [
            "Worker summary: "
            f"processed={summary.processed} completed={summary.completed} "
            f"failed={summary.failed} dropped={summary.dropped} "
            f"idle_polls={summary.idle_polls}",
            *observer.render_lines(),
        ]

    def run_processor(self, command: ProcessorCommand) -> list[str]:
        settings = _settings(command.database_url)
        observer = CountingObserver()
        stop = StopToken()
        with _repository(settings) as repository:
            repository.ping()
            with self._channel(settings) as channel:
                processor = ResultsProcessor(
                    channel=channel,
                    store=repository,
                    observer=observer,
                    poll_interval_seconds=settings.consumer.poll_interval_seconds,
                    started_consumer_tag=settings.consumer.processor_started_tag,
                    completed_consumer_tag=settings.consumer.processor_completed_tag,
                )
                with signal_handlers(stop):
                    summary = processor.run_loop(
                        stop,
                        max_updates=command.max_updates,
                        max_idle_polls=command.max_idle_polls,
                    )

        return [
            "Processor summary: "
            f"processed={summary.processed} applied={summary.applied} "
            f"missing_rows={summary.missing_rows} dropped={summary.dropped} "
            f"requeued={summary.requeued} idle_polls={summary.idle_polls}",
            *observer.render_lines(),
        ]

    def upgrade_schema(self, database_url: str | None) -> list[str]:
        settings = Settings.from_env(database_url=database_url)
        with _repository(settings) as repository:
            repository.init_schema()
        return ["Job store schema is up to date."]

    def enqueue(self, command: EnqueueCommand) -> list[str]:
        settings = _settings(command.database_url)
        with _repository(settings) as repository:
            job = repository.create_job(
                JobCreate(
                    job_type=command.job_type,
                    payload=command.payload,
                    job_id=command.job_id,
                ),
            )
            with self._channel(settings) as channel:
                channel.declare_queues(ALL_QUEUES)
                channel.publish(
                    JOBS_CREATED_QUEUE,
                    encode_message(
                        JobMessage(job_id=job.job_id, job_type=job.job_type, payload=job.payload),
                    ),
                )

        return [
            f"Job enqueued: job_id={job.job_id} type={job.job_type} status={job.status.value}",
        ]

    def inspect_job(self, command: InspectJobCommand) -> list[str] | None:
        settings = Settings.from_env(database_url=command.database_url)
        with _repository(settings) as repository:
            job = repository.get_job(command.job_id)
        if job is None:
            return None
        return [
            f"Job: {job.job_id}",
            f"Type: {job.job_type}",
            f"Status: {job.status.value}",
            f"Payload: {job.payload or '-'}",
            f"Result: {job.result if job.result is not None else '-'}",
            f"Created: {job.created_at.isoformat()}",
            f"Updated: {job.updated_at.isoformat()}",
        ]

    @contextmanager
    def _channel(self, settings: Settings) -> Iterator[MessageChannel]:
        channel = self.channel_factory(settings)
        try:
            yield channel
        finally:
            channel.close()


def _settings(database_url: str | None) -> Settings:
    settings = Settings.from_env(database_url=database_url)
    settings.validate()
    return settings


@contextmanager
def _repository(settings: Settings) -> Iterator[JobRepository]:
    repository = JobRepository(settings.database_url)
    try:
        yield repository
    finally:
        repository.close()
