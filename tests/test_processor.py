from __future__ import annotations

import allure

from cloudtask.messaging import (
    JOBS_COMPLETED_QUEUE,
    JOBS_CREATED_QUEUE,
    JOBS_STARTED_QUEUE,
    InMemoryChannel,
    StatusUpdate,
    encode_message,
)
from cloudtask.metrics import CountingObserver
from cloudtask.models import JobCreate, JobStatus
from cloudtask.processor.processor import ResultsProcessor, UpdateOutcome
from cloudtask.runtime import StopToken
from cloudtask.storage.repository import JobRepository, JobStoreError
from cloudtask.worker.worker import JobWorker

pytestmark = [
    allure.epic("Job Pipeline"),
    allure.feature("Results Processor"),
]


def _processor(channel: InMemoryChannel, store, **kwargs) -> ResultsProcessor:
    processor = ResultsProcessor(channel=channel, store=store, poll_interval_seconds=0.01, **kwargs)
    processor.start()
    return processor


class _FlakyStore:
    """Fails the first ``failures`` updates, then records every update."""

    def __init__(self, failures: int) -> None:
        self.failures = failures
        self.applied: list[StatusUpdate] = []

    def apply_status_update(self, update: StatusUpdate) -> int:
        if self.failures > 0:
            self.failures -= 1
            raise JobStoreError("connection refused")
        self.applied.append(update)
        return 1


def test_processor_applies_status_and_acks(broker, channel, repository) -> None:
    repository.create_job(JobCreate(job_type="sleep", payload='{"seconds":2}', job_id="j1"))
    processor = _processor(channel, repository)
    broker.publish(JOBS_STARTED_QUEUE, encode_message(StatusUpdate.running("j1")))

    summary = processor.run_once()

    assert summary.applied == 1
    job = repository.get_job("j1")
    assert job is not None
    assert job.status is JobStatus.RUNNING
    assert job.result is None
    assert channel.in_flight == 0
    assert broker.pending(JOBS_STARTED_QUEUE) == []


def test_processor_persists_terminal_result(broker, channel, repository) -> None:
    repository.create_job(JobCreate(job_type="sleep", payload='{"seconds":0}', job_id="j2"))
    processor = _processor(channel, repository)
    broker.publish(
        JOBS_COMPLETED_QUEUE,
        encode_message(StatusUpdate.failed("j2", "seconds must be between 1 and 300, got 0")),
    )

    processor.run_once()

    job = repository.get_job("j2")
    assert job is not None
    assert job.status is JobStatus.FAILED
    assert job.result == "seconds must be between 1 and 300, got 0"


def test_late_running_update_with_result_keeps_stored_result(broker, channel, repository) -> None:
    repository.create_job(JobCreate(job_type="sleep", payload='{"seconds":1}', job_id="j5"))
    repository.apply_status_update(StatusUpdate.completed("j5", "Slept for 1 seconds"))
    processor = _processor(channel, repository)
    broker.publish(JOBS_STARTED_QUEUE, b'{"jobId":"j5","status":"RUNNING","result":"early"}')

    assert processor.run_once().applied == 1

    job = repository.get_job("j5")
    assert job is not None
    assert job.status is JobStatus.RUNNING
    assert job.result == "Slept for 1 seconds"


def test_redelivered_update_is_idempotent(broker, channel, repository) -> None:
    repository.create_job(JobCreate(job_type="sleep", payload="{}", job_id="j3"))
    processor = _processor(channel, repository)
    body = encode_message(StatusUpdate.completed("j3", "Slept for 1 seconds"))
    broker.publish(JOBS_COMPLETED_QUEUE, body)
    broker.publish(JOBS_COMPLETED_QUEUE, body)

    processor.run_once()
    first = repository.get_job("j3")
    processor.run_once()
    second = repository.get_job("j3")

    assert first is not None and second is not None
    assert first.status == second.status == JobStatus.COMPLETED
    assert first.result == second.result == "Slept for 1 seconds"
    assert second.updated_at >= first.updated_at


def test_processor_drops_malformed_status_without_requeue(broker, channel) -> None:
    store = _FlakyStore(failures=0)
    observer = CountingObserver()
    processor = _processor(channel, store, observer=observer)
    broker.publish(JOBS_STARTED_QUEUE, b"{broken")
    broker.publish(JOBS_COMPLETED_QUEUE, b'{"jobId":"j1","status":"EXPLODED"}')

    summary = processor.run_loop(StopToken(), max_idle_polls=1)

    assert summary.dropped == 2
    assert store.applied == []
    assert broker.pending(JOBS_STARTED_QUEUE) == []
    assert broker.pending(JOBS_COMPLETED_QUEUE) == []
    assert sum(observer.messages_dropped.values()) == 2


def test_processor_requeues_on_store_error_and_retries(broker, channel) -> None:
    store = _FlakyStore(failures=2)
    observer = CountingObserver()
    processor = _processor(channel, store, observer=observer)
    broker.publish(JOBS_COMPLETED_QUEUE, encode_message(StatusUpdate.completed("j4", "ok")))

    first = channel.next_delivery(0.01)
    assert first is not None
    assert processor.process_delivery(first) is UpdateOutcome.REQUEUED
    assert len(broker.pending(JOBS_COMPLETED_QUEUE)) == 1

    summary = processor.run_loop(StopToken(), max_idle_polls=1)

    assert summary.requeued == 1
    assert summary.applied == 1
    assert store.applied == [StatusUpdate.completed("j4", "ok")]
    assert observer.statuses_requeued[JobStatus.COMPLETED.value] == 2
    assert channel.in_flight == 0


def test_processor_requeues_when_schema_is_missing(broker, channel, database_url) -> None:
    repository = JobRepository(database_url)
    try:
        processor = _processor(channel, repository)
        broker.publish(JOBS_STARTED_QUEUE, encode_message(StatusUpdate.running("j5")))

        summary = processor.run_once()
    finally:
        repository.close()

    assert summary.requeued == 1
    assert broker.pending(JOBS_STARTED_QUEUE) == [b'{"jobId":"j5","status":"RUNNING"}']


def test_processor_acks_update_for_missing_job_row(broker, channel, repository) -> None:
    observer = CountingObserver()
    processor = _processor(channel, repository, observer=observer)
    broker.publish(JOBS_STARTED_QUEUE, encode_message(StatusUpdate.running("ghost")))

    summary = processor.run_once()

    assert summary.applied == 1
    assert summary.missing_rows == 1
    assert repository.get_job("ghost") is None
    assert broker.pending(JOBS_STARTED_QUEUE) == []
    assert observer.statuses_missing_row[JobStatus.RUNNING.value] == 1


def test_processor_stops_between_messages(broker, channel) -> None:
    stop = StopToken()

    class StoppingStore:
        def apply_status_update(self, update: StatusUpdate) -> int:
            stop.request_stop("SIGTERM")
            return 1

    processor = _processor(channel, StoppingStore())
    broker.publish(JOBS_STARTED_QUEUE, encode_message(StatusUpdate.running("a")))
    broker.publish(JOBS_STARTED_QUEUE, encode_message(StatusUpdate.running("b")))

    summary = processor.run_loop(stop)

    assert summary.processed == 1
    assert channel.in_flight == 0
    assert len(broker.pending(JOBS_STARTED_QUEUE)) == 1


def test_pipeline_runs_sleep_job_to_completed_row(broker, repository, handlers) -> None:
    repository.create_job(JobCreate(job_type="sleep", payload='{"seconds":2}', job_id="j1"))
    worker_channel = InMemoryChannel(broker)
    processor_channel = InMemoryChannel(broker)
    worker = JobWorker(channel=worker_channel, handlers=handlers, poll_interval_seconds=0.01)
    processor = _processor(processor_channel, repository)
    worker.start()
    broker.publish(
        JOBS_CREATED_QUEUE,
        b'{"jobId":"j1","type":"sleep","payload":"{\\"seconds\\":2}"}',
    )

    worker_summary = worker.run_loop(StopToken(), max_jobs=1)
    processor_summary = processor.run_loop(StopToken(), max_updates=2)

    assert worker_summary.completed == 1
    assert processor_summary.applied == 2
    job = repository.get_job("j1")
    assert job is not None
    assert job.status is JobStatus.COMPLETED
    assert job.result == "Slept for 2 seconds"
    worker_channel.close()
    processor_channel.close()
