from __future__ import annotations

import threading
import time

import allure
import pytest

from cloudtask.messaging import (
    ALL_QUEUES,
    JOBS_CREATED_QUEUE,
    JOBS_STARTED_QUEUE,
    ChannelError,
    InMemoryChannel,
)

pytestmark = [
    allure.epic("Job Pipeline"),
    allure.feature("Message Channel"),
]


def _consumer(broker, queue: str = JOBS_CREATED_QUEUE) -> InMemoryChannel:
    channel = InMemoryChannel(broker)
    channel.declare_queues(ALL_QUEUES)
    channel.subscribe(queue)
    return channel


def test_unacked_delivery_is_redelivered_after_consumer_disconnects(broker) -> None:
    first = _consumer(broker)
    first.publish(JOBS_CREATED_QUEUE, b"job-1")

    delivery = first.next_delivery(0.01)
    assert delivery is not None
    assert delivery.redelivered is False
    assert broker.pending(JOBS_CREATED_QUEUE) == []
    first.close()

    second = _consumer(broker)
    redelivered = second.next_delivery(0.01)
    assert redelivered is not None
    assert redelivered.body == b"job-1"
    assert redelivered.redelivered is True
    second.ack(redelivered)
    second.close()
    assert broker.pending(JOBS_CREATED_QUEUE) == []


def test_reject_with_requeue_puts_message_back_at_head(broker, channel) -> None:
    channel.declare_queues(ALL_QUEUES)
    channel.subscribe(JOBS_CREATED_QUEUE)
    channel.publish(JOBS_CREATED_QUEUE, b"first")
    channel.publish(JOBS_CREATED_QUEUE, b"second")

    delivery = channel.next_delivery(0.01)
    assert delivery is not None
    channel.reject(delivery, requeue=True)

    assert broker.pending(JOBS_CREATED_QUEUE) == [b"first", b"second"]
    again = channel.next_delivery(0.01)
    assert again is not None
    assert again.redelivered is True


def test_reject_without_requeue_discards_message(broker, channel) -> None:
    channel.declare_queues(ALL_QUEUES)
    channel.subscribe(JOBS_CREATED_QUEUE)
    channel.publish(JOBS_CREATED_QUEUE, b"poison")

    delivery = channel.next_delivery(0.01)
    assert delivery is not None
    channel.reject(delivery, requeue=False)

    assert broker.pending(JOBS_CREATED_QUEUE) == []
    assert channel.next_delivery(0.01) is None


def test_competing_consumers_receive_distinct_messages(broker) -> None:
    first = _consumer(broker)
    second = _consumer(broker)
    first.publish(JOBS_CREATED_QUEUE, b"a")
    first.publish(JOBS_CREATED_QUEUE, b"b")

    one = first.next_delivery(0.01)
    two = second.next_delivery(0.01)

    assert one is not None and two is not None
    assert {one.body, two.body} == {b"a", b"b"}
    assert first.next_delivery(0.01) is None
    first.close()
    second.close()


def test_consumer_only_sees_subscribed_queues(broker) -> None:
    channel = _consumer(broker, JOBS_STARTED_QUEUE)
    channel.publish(JOBS_CREATED_QUEUE, b"not mine")

    assert channel.next_delivery(0.01) is None
    assert broker.pending(JOBS_CREATED_QUEUE) == [b"not mine"]
    channel.close()


def test_publish_to_undeclared_queue_is_dropped(broker, channel) -> None:
    channel.publish("nowhere", b"lost")

    assert broker.pending("nowhere") == []


def test_settling_unknown_delivery_raises(broker, channel) -> None:
    channel.declare_queues(ALL_QUEUES)
    channel.subscribe(JOBS_CREATED_QUEUE)
    channel.publish(JOBS_CREATED_QUEUE, b"x")
    delivery = channel.next_delivery(0.01)
    assert delivery is not None
    channel.ack(delivery)

    with pytest.raises(ChannelError, match="Unknown delivery tag"):
        channel.ack(delivery)


def test_closed_channel_refuses_operations(broker) -> None:
    channel = InMemoryChannel(broker)
    channel.close()

    with pytest.raises(ChannelError, match="closed"):
        channel.publish(JOBS_CREATED_QUEUE, b"x")


def test_publish_to_other_queue_does_not_end_wait_early(broker) -> None:
    consumer = _consumer(broker)
    other = threading.Timer(0.05, broker.publish, (JOBS_STARTED_QUEUE, b"status"))
    wanted = threading.Timer(0.2, broker.publish, (JOBS_CREATED_QUEUE, b"job-1"))
    other.start()
    wanted.start()
    try:
        delivery = consumer.next_delivery(2.0)
    finally:
        other.cancel()
        wanted.cancel()

    assert delivery is not None
    assert delivery.body == b"job-1"
    assert broker.pending(JOBS_STARTED_QUEUE) == [b"status"]


def test_idle_poll_waits_for_full_timeout(broker) -> None:
    consumer = _consumer(broker)
    noise = threading.Timer(0.02, broker.publish, (JOBS_STARTED_QUEUE, b"status"))
    noise.start()

    started = time.monotonic()
    delivery = consumer.next_delivery(0.3)
    elapsed = time.monotonic() - started
    noise.cancel()

    assert delivery is None
    assert elapsed >= 0.25
