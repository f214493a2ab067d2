"""Broker channels and JSON message contracts."""

from cloudtask.messaging.channel import (
    ALL_QUEUES,
    JOBS_COMPLETED_QUEUE,
    JOBS_CREATED_QUEUE,
    JOBS_STARTED_QUEUE,
    STATUS_QUEUES,
    ChannelError,
    Delivery,
    MessageChannel,
)
from cloudtask.messaging.contracts import (
    JobMessage,
    MessageFormatError,
    StatusUpdate,
    decode_job_message,
    decode_status_update,
    encode_message,
)
from cloudtask.messaging.memory import InMemoryBroker, InMemoryChannel

__all__ = [
    "ALL_QUEUES",
    "JOBS_COMPLETED_QUEUE",
    "JOBS_CREATED_QUEUE",
    "JOBS_STARTED_QUEUE",
    "STATUS_QUEUES",
    "ChannelError",
    "Delivery",
    "InMemoryBroker",
    "InMemoryChannel",
    "JobMessage",
    "MessageChannel",
    "MessageFormatError",
    "StatusUpdate",
    "decode_job_message",
    "decode_status_update",
    "encode_message",
]
