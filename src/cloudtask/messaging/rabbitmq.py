"""RabbitMQ channel built on pika's blocking connection."""

from __future__ import annotations

import functools
import logging
from collections import deque
from collections.abc import Iterable

import pika
from pika.adapters.blocking_connection import BlockingChannel
from pika.exceptions import AMQPError
from pika.spec import Basic, BasicProperties

from cloudtask.messaging.channel import ChannelError, Delivery

logger = logging.getLogger(__name__)

JSON_CONTENT_TYPE = "application/json"


class RabbitMqChannel:
    """Manual-ack consumer and default-exchange publisher on one AMQP channel."""

    def __init__(
        self,
        connection: pika.BlockingConnection,
        *,
        prefetch_count: int = 1,
    ) -> None:
        self._connection = connection
        self._buffer: deque[Delivery] = deque()
        try:
            self._channel: BlockingChannel = connection.channel()
            self._channel.basic_qos(prefetch_count=prefetch_count)
        except AMQPError as error:
            raise ChannelError(f"Failed to open channel: {error!r}") from error

    @classmethod
    def connect(
        cls,
        url: str,
        *,
        prefetch_count: int = 1,
        connection_attempts: int = 3,
        retry_delay_seconds: float = 2.0,
        heartbeat_seconds: int | None = None,
    ) -> RabbitMqChannel:
        """Dial the broker and open a channel with the given prefetch window."""

        parameters = pika.URLParameters(url)
        parameters.connection_attempts = connection_attempts
        parameters.retry_delay = retry_delay_seconds
        if heartbeat_seconds is not None:
            parameters.heartbeat = heartbeat_seconds
        try:
            connection = pika.BlockingConnection(parameters)
        except AMQPError as error:
            raise ChannelError(f"Failed to connect to RabbitMQ: {error!r}") from error
        logger.info("Connected to RabbitMQ at %s:%s", parameters.host, parameters.port)
        return cls(connection, prefetch_count=prefetch_count)

    def declare_queues(self, names: Iterable[str]) -> None:
        for name in names:
            try:
                self._channel.queue_declare(
                    queue=name,
                    durable=True,
                    exclusive=False,
                    auto_delete=False,
                )
            except AMQPError as error:
                raise ChannelError(f"Failed to declare queue {name}: {error!r}") from error

    def publish(self, queue: str, body: bytes) -> None:
        try:
            self._channel.basic_publish(
                exchange="",
                routing_key=queue,
                body=body,
                properties=pika.BasicProperties(
                    content_type=JSON_CONTENT_TYPE,
                    delivery_mode=pika.DeliveryMode.Persistent,
                ),
            )
        except AMQPError as error:
            raise ChannelError(f"Failed to publish to {queue}: {error!r}") from error

    def subscribe(self, queue: str, *, consumer_tag: str = "") -> None:
        try:
            self._channel.basic_consume(
                queue=queue,
                on_message_callback=functools.partial(self._on_message, queue),
                auto_ack=False,
                consumer_tag=consumer_tag or None,
            )
        except AMQPError as error:
            raise ChannelError(f"Failed to register consumer on {queue}: {error!r}") from error

    def next_delivery(self, timeout_seconds: float) -> Delivery | None:
        if not self._buffer:
            try:
                self._connection.process_data_events(time_limit=timeout_seconds)
            except AMQPError as error:
                raise ChannelError(f"Failed to receive from broker: {error!r}") from error
        if not self._buffer:
            return None
        return self._buffer.popleft()

    def ack(self, delivery: Delivery) -> None:
        try:
            self._channel.basic_ack(delivery_tag=delivery.delivery_tag)
        except AMQPError as error:
            raise ChannelError(
                f"Failed to ack delivery {delivery.delivery_tag}: {error!r}",
            ) from error

    def reject(self, delivery: Delivery, *, requeue: bool) -> None:
        try:
            self._channel.basic_nack(
                delivery_tag=delivery.delivery_tag,
                multiple=False,
                requeue=requeue,
            )
        except AMQPError as error:
            raise ChannelError(
                f"Failed to reject delivery {delivery.delivery_tag}: {error!r}",
            ) from error

    def close(self) -> None:
        """Close channel and connection; unacked deliveries return to their queues."""

        self._buffer.clear()
        try:
            if self._connection.is_open:
                self._connection.close()
        except AMQPError as error:
            logger.warning("Failed to close RabbitMQ connection cleanly: %r", error)

    def _on_message(
        self,
        queue: str,
        _channel: BlockingChannel,
        method: Basic.Deliver,
        _properties: BasicProperties,
        body: bytes,
    ) -> None:
        self._buffer.append(
            Delivery(
                queue=queue,
                body=body,
                delivery_tag=method.delivery_tag,
                redelivered=bool(method.redelivered),
            ),
        )
