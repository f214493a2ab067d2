"""In-process broker with manual-ack and redelivery semantics.

Used by tests and single-process local runs. Several channels may share one
``InMemoryBroker`` and then act as competing consumers on the same queues.
"""

from __future__ import annotations

import itertools
import threading
from collections import deque
from collections.abc import Iterable
from dataclasses import dataclass

from cloudtask.messaging.channel import ChannelError, Delivery


@dataclass(slots=True)
class _QueuedMessage:
    body: bytes
    redelivered: bool = False


class InMemoryBroker:
    """Named FIFO queues shared between in-process channels."""

    def __init__(self) -> None:
        self._queues: dict[str, deque[_QueuedMessage]] = {}
        self._condition = threading.Condition()
        self._tags = itertools.count(1)

    def declare(self, name: str) -> None:
        with self._condition:
            self._queues.setdefault(name, deque())

    def publish(self, queue: str, body: bytes) -> None:
        with self._condition:
            if queue not in self._queues:
                # Default exchange drops messages routed to undeclared queues.
                return
            self._queues[queue].append(_QueuedMessage(body=body))
            self._condition.notify_all()

    def pending(self, queue: str) -> list[bytes]:
        """Bodies waiting on ``queue`` (not in flight), oldest first."""

        with self._condition:
            return [message.body for message in self._queues.get(queue, ())]

    def drain(self, queue: str) -> list[bytes]:
        """Remove and return every body waiting on ``queue``."""

        with self._condition:
            messages = self._queues.get(queue)
            if not messages:
                return []
            bodies = [message.body for message in messages]
            messages.clear()
            return bodies

    def take(self, queues: list[str], timeout_seconds: float) -> tuple[str, _QueuedMessage] | None:
        with self._condition:
            if timeout_seconds > 0:
                # wait_for re-checks after every wakeup until the deadline passes.
                self._condition.wait_for(
                    lambda: any(self._queues.get(name) for name in queues),
                    timeout=timeout_seconds,
                )
            return self._take_nowait(queues)

    def _take_nowait(self, queues: list[str]) -> tuple[str, _QueuedMessage] | None:
        for name in queues:
            messages = self._queues.get(name)
            if messages:
                return name, messages.popleft()
        return None

    def requeue(self, queue: str, body: bytes) -> None:
        with self._condition:
            self._queues.setdefault(queue, deque()).appendleft(
                _QueuedMessage(body=body, redelivered=True),
            )
            self._condition.notify_all()

    def next_tag(self) -> int:
        return next(self._tags)


class InMemoryChannel:
    """Consumer/publisher channel bound to an ``InMemoryBroker``."""

    def __init__(self, broker: InMemoryBroker) -> None:
        self.broker = broker
        self._subscriptions: list[str] = []
        self._in_flight: dict[int, Delivery] = {}
        self._closed = False
        self._rotation = 0

    def declare_queues(self, names: Iterable[str]) -> None:
        self._ensure_open()
        for name in names:
            self.broker.declare(name)

    def publish(self, queue: str, body: bytes) -> None:
        self._ensure_open()
        self.broker.publish(queue, body)

    def subscribe(self, queue: str, *, consumer_tag: str = "") -> None:  # noqa: ARG002
        self._ensure_open()
        if queue not in self._subscriptions:
            self._subscriptions.append(queue)

    def next_delivery(self, timeout_seconds: float) -> Delivery | None:
        self._ensure_open()
        if not self._subscriptions:
            return None
        # Rotate the starting queue so one busy queue cannot starve the others.
        start = self._rotation % len(self._subscriptions)
        self._rotation += 1
        order = self._subscriptions[start:] + self._subscriptions[:start]
        taken = self.broker.take(order, timeout_seconds)
        if taken is None:
            return None
        queue, message = taken
        delivery = Delivery(
            queue=queue,
            body=message.body,
            delivery_tag=self.broker.next_tag(),
            redelivered=message.redelivered,
        )
        self._in_flight[delivery.delivery_tag] = delivery
        return delivery

    def ack(self, delivery: Delivery) -> None:
        self._ensure_open()
        self._settle(delivery)

    def reject(self, delivery: Delivery, *, requeue: bool) -> None:
        self._ensure_open()
        self._settle(delivery)
        if requeue:
            self.broker.requeue(delivery.queue, delivery.body)

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        for delivery in self._in_flight.values():
            self.broker.requeue(delivery.queue, delivery.body)
        self._in_flight.clear()

    def _settle(self, delivery: Delivery) -> None:
        if self._in_flight.pop(delivery.delivery_tag, None) is None:
            raise ChannelError(f"Unknown delivery tag: {delivery.delivery_tag}")

    def _ensure_open(self) -> None:
        if self._closed:
            raise ChannelError("Channel is closed.")
