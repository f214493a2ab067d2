"""Job store repository: row creation, lookup and conditional status updates."""

from __future__ import annotations

from uuid import uuid4

from alembic.util import CommandError
from sqlalchemy import text
from sqlalchemy import update as sa_update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, col, select

from cloudtask.messaging.contracts import StatusUpdate
from cloudtask.models import JobCreate, JobStatus, JobView
from cloudtask.storage.alembic_runner import upgrade_head
from cloudtask.storage.common import (
    build_engine,
    to_db_datetime,
    to_utc_aware_datetime,
    utc_now,
)
from cloudtask.storage.sqlmodel_models import Job


class JobStoreError(RuntimeError):
    """Datastore operation failed; the caller may retry later."""


class JobRepository:
    """Job persistence facade backed by SQLModel."""

    def __init__(self, database_url: str, *, engine: Engine | None = None) -> None:
        self.database_url = database_url
        self.engine = engine or build_engine(database_url)

    def close(self) -> None:
        """Close underlying DB resources."""

        self.engine.dispose()

    def init_schema(self) -> None:
        """Run schema migrations up to head."""

        try:
            upgrade_head(self.database_url)
        except (CommandError, SQLAlchemyError) as error:
            raise JobStoreError(f"Failed to migrate job store: {error}") from error

    def ping(self) -> None:
        """Round-trip a trivial statement to verify connectivity."""

        try:
            with self.engine.connect() as connection:
                connection.execute(text("SELECT 1"))
        except SQLAlchemyError as error:
            raise JobStoreError(f"Failed to reach job store: {error}") from error

    def create_job(self, payload: JobCreate) -> JobView:
        """Insert a PENDING row; used by the submission path before publishing."""

        now = utc_now()
        row = Job(
            id=payload.job_id or str(uuid4()),
            type=payload.job_type,
            payload=payload.payload,
            status=JobStatus.PENDING.value,
            result=None,
            created_at=to_db_datetime(now),
            updated_at=to_db_datetime(now),
        )
        try:
            with Session(self.engine) as session:
                session.add(row)
                session.commit()
                session.refresh(row)
                return _to_job_view(row)
        except SQLAlchemyError as error:
            raise JobStoreError(f"Failed to create job: {error}") from error

    def get_job(self, job_id: str) -> JobView | None:
        try:
            with Session(self.engine) as session:
                row = session.exec(select(Job).where(Job.id == job_id)).one_or_none()
                return _to_job_view(row) if row is not None else None
        except SQLAlchemyError as error:
            raise JobStoreError(f"Failed to load job {job_id}: {error}") from error

    def apply_status_update(self, update: StatusUpdate) -> int:
        """Overwrite status (and result when present) of an existing row.

        Never inserts. Returns the number of rows matched, which is zero when
        the job row does not exist. Applying the same update twice leaves the
        row unchanged apart from ``updated_at``.
        """

        values: dict[str, object] = {
            "status": update.status.value,
            "updated_at": to_db_datetime(utc_now()),
        }
        if update.result is not None:
            values["result"] = update.result
        try:
            with Session(self.engine) as session:
                result = session.exec(
                    sa_update(Job).where(col(Job.id) == update.job_id).values(**values),
                )
                session.commit()
                return int(result.rowcount or 0)
        except SQLAlchemyError as error:
            raise JobStoreError(f"Failed to update job {update.job_id}: {error}") from error


def _to_job_view(row: Job) -> JobView:
    return JobView(
        job_id=row.id,
        job_type=row.type,
        payload=row.payload,
        status=JobStatus(row.status),
        result=row.result,
        created_at=to_utc_aware_datetime(row.created_at),
        updated_at=to_utc_aware_datetime(row.updated_at),
    )
