"""Message channel interface shared by the worker and results processor."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from typing import Protocol

JOBS_CREATED_QUEUE = "jobs.created"
JOBS_STARTED_QUEUE = "jobs.started"
JOBS_COMPLETED_QUEUE = "jobs.completed"
ALL_QUEUES = (JOBS_CREATED_QUEUE, JOBS_STARTED_QUEUE, JOBS_COMPLETED_QUEUE)
STATUS_QUEUES = (JOBS_STARTED_QUEUE, JOBS_COMPLETED_QUEUE)


class ChannelError(RuntimeError):
    """Broker operation failed (connect, declare, publish, ack or reject)."""


@dataclass(frozen=True, slots=True)
class Delivery:
    """One message handed to a consumer and awaiting ack or reject."""

    queue: str
    body: bytes
    delivery_tag: int
    redelivered: bool = False


class MessageChannel(Protocol):
    """Protocol implemented by broker channels.

    A delivery returned by ``next_delivery`` stays in flight until the consumer
    calls ``ack`` or ``reject``. Closing the channel with deliveries still in
    flight hands them back to the broker for redelivery.
    """

    def declare_queues(self, names: Iterable[str]) -> None:
        """Declare durable, non-exclusive, non-auto-delete queues."""

    def publish(self, queue: str, body: bytes) -> None:
        """Publish a persistent JSON body to ``queue`` via the default exchange."""

    def subscribe(self, queue: str, *, consumer_tag: str = "") -> None:
        """Register a manual-ack consumer on ``queue``."""

    def next_delivery(self, timeout_seconds: float) -> Delivery | None:
        """Wait up to ``timeout_seconds`` for the next delivery on any subscribed queue."""

    def ack(self, delivery: Delivery) -> None:
        """Acknowledge a delivery."""

    def reject(self, delivery: Delivery, *, requeue: bool) -> None:
        """Reject a delivery, optionally handing it back for redelivery."""

    def close(self) -> None:
        """Release broker resources."""
