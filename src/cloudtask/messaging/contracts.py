"""JSON wire contracts for job and status messages."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

from cloudtask.models import PUBLISHED_STATUSES, JobStatus


class MessageFormatError(ValueError):
    """Message body cannot be decoded into the expected contract."""


@dataclass(frozen=True, slots=True)
class JobMessage:
    """Unit of work published on ``jobs.created``."""

    job_id: str
    job_type: str
    payload: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"jobId": self.job_id, "type": self.job_type, "payload": self.payload}


@dataclass(frozen=True, slots=True)
class StatusUpdate:
    """Lifecycle transition published on ``jobs.started`` / ``jobs.completed``."""

    job_id: str
    status: JobStatus
    result: str | None = None

    @classmethod
    def running(cls, job_id: str) -> StatusUpdate:
        return cls(job_id=job_id, status=JobStatus.RUNNING)

    @classmethod
    def completed(cls, job_id: str, result: str) -> StatusUpdate:
        return cls(job_id=job_id, status=JobStatus.COMPLETED, result=result)

    @classmethod
    def failed(cls, job_id: str, error: str) -> StatusUpdate:
        return cls(job_id=job_id, status=JobStatus.FAILED, result=error)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"jobId": self.job_id, "status": self.status.value}
        if self.result is not None:
            payload["result"] = self.result
        return payload


def encode_message(message: JobMessage | StatusUpdate) -> bytes:
    """Serialize a contract into a compact UTF-8 JSON body."""

    return json.dumps(message.to_dict(), ensure_ascii=False, separators=(",", ":")).encode(
        "utf-8",
    )


def decode_job_message(body: bytes) -> JobMessage:
    """Deserialize and validate a ``jobs.created`` body."""

    raw = _load_object(body)
    job_id = raw.get("jobId")
    job_type = raw.get("type")
    payload = raw.get("payload", "")
    if not isinstance(job_id, str) or not job_id.strip():
        raise MessageFormatError("jobId must be a non-empty string")
    if not isinstance(job_type, str):
        raise MessageFormatError("type must be a string")
    if payload is None:
        payload = ""
    if not isinstance(payload, str):
        raise MessageFormatError("payload must be a serialized string")
    return JobMessage(job_id=job_id, job_type=job_type, payload=payload)


def decode_status_update(body: bytes) -> StatusUpdate:
    """Deserialize and validate a ``jobs.started`` / ``jobs.completed`` body."""

    raw = _load_object(body)
    job_id = raw.get("jobId")
    status_raw = raw.get("status")
    result = raw.get("result")
    if not isinstance(job_id, str) or not job_id.strip():
        raise MessageFormatError("jobId must be a non-empty string")
    if not isinstance(status_raw, str):
        raise MessageFormatError("status must be a string")
    try:
        status = JobStatus(status_raw)
    except ValueError as error:
        raise MessageFormatError(f"unsupported status: {status_raw!r}") from error
    if status not in PUBLISHED_STATUSES:
        raise MessageFormatError(f"unsupported status: {status_raw!r}")
    if result is not None and not isinstance(result, str):
        raise MessageFormatError("result must be a string when present")
    if status is JobStatus.RUNNING:
        # RUNNING never carries a result; keep a stray one out of the store.
        result = None
    return StatusUpdate(job_id=job_id, status=status, result=result)


def _load_object(body: bytes) -> dict[str, Any]:
    try:
        payload = json.loads(body)
    except (UnicodeDecodeError, ValueError) as error:
        raise MessageFormatError(f"invalid JSON body: {error}") from error
    if not isinstance(payload, dict):
        raise MessageFormatError("expected JSON object body")
    return payload
