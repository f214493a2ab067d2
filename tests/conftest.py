"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import pytest

from cloudtask.messaging import InMemoryBroker, InMemoryChannel
from cloudtask.storage.repository import JobRepository
from cloudtask.worker.handlers import HandlerRegistry, SleepHandler


class SleepRecorder:
    """Stand-in for time.sleep that records requested durations."""

    def __init__(self) -> None:
        self.calls: list[float] = []

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture()
def database_url(tmp_path: Path) -> str:
    return f"sqlite:///{tmp_path / 'jobs.db'}"


@pytest.fixture()
def repository(database_url: str) -> Iterator[JobRepository]:
    repo = JobRepository(database_url)
    repo.init_schema()
    try:
        yield repo
    finally:
        repo.close()


@pytest.fixture()
def broker() -> InMemoryBroker:
    return InMemoryBroker()


@pytest.fixture()
def channel(broker: InMemoryBroker) -> Iterator[InMemoryChannel]:
    chan = InMemoryChannel(broker)
    try:
        yield chan
    finally:
        chan.close()


@pytest.fixture()
def sleep_recorder() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture()
def handlers(sleep_recorder: SleepRecorder) -> HandlerRegistry:
    return HandlerRegistry([SleepHandler(sleep=sleep_recorder)])
