"""CLI entrypoint for cloudtask."""

import json
import logging
from collections.abc import Callable
from typing import TypeVar

import rich_click as click

from cloudtask import __version__
from cloudtask.config import Settings
from cloudtask.controllers import (
    EnqueueCommand,
    InspectJobCommand,
    JobsCliController,
    ProcessorCommand,
    WorkerCommand,
)
from cloudtask.messaging.channel import ChannelError
from cloudtask.storage.repository import JobStoreError

click.rich_click.USE_MARKDOWN = True
CONTROLLER = JobsCliController()
_T = TypeVar("_T")
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


@click.group()
@click.version_option(version=__version__, prog_name="cloudtask")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default=None,
    help="Override CLOUDTASK_LOG_LEVEL.",
)
def cloudtask(log_level: str | None) -> None:
    """CloudTask job pipeline CLI."""

    level = (log_level or _run(lambda: Settings.from_env().log_level)).upper()
    logging.basicConfig(level=getattr(logging, level, logging.INFO), format=LOG_FORMAT)
    logging.getLogger("pika").setLevel(logging.WARNING)


@cloudtask.command("worker")
@click.option(
    "--max-jobs",
    type=click.IntRange(min=1),
    default=None,
    help="Exit after resolving this many job messages.",
)
@click.option(
    "--max-idle-polls",
    type=click.IntRange(min=1),
    default=None,
    help="Exit after this many consecutive empty polls. Runs until signalled by default.",
)
def worker(max_jobs: int | None, max_idle_polls: int | None) -> None:
    """Consume `jobs.created` and execute jobs one at a time."""

    _emit_lines(
        _run(
            lambda: CONTROLLER.run_worker(
                WorkerCommand(max_jobs=max_jobs, max_idle_polls=max_idle_polls),
            ),
        ),
    )


@cloudtask.command("processor")
@click.option("--database-url", default=None, help="SQLAlchemy database URL.")
@click.option(
    "--max-updates",
    type=click.IntRange(min=1),
    default=None,
    help="Exit after resolving this many status messages.",
)
@click.option(
    "--max-idle-polls",
    type=click.IntRange(min=1),
    default=None,
    help="Exit after this many consecutive empty polls. Runs until signalled by default.",
)
def processor(
    database_url: str | None,
    max_updates: int | None,
    max_idle_polls: int | None,
) -> None:
    """Consume `jobs.started` and `jobs.completed` and persist job status."""

    _emit_lines(
        _run(
            lambda: CONTROLLER.run_processor(
                ProcessorCommand(
                    database_url=database_url,
                    max_updates=max_updates,
                    max_idle_polls=max_idle_polls,
                ),
            ),
        ),
    )


@cloudtask.group()
def db() -> None:
    """Job store schema commands."""


@db.command("upgrade")
@click.option("--database-url", default=None, help="SQLAlchemy database URL.")
def db_upgrade(database_url: str | None) -> None:
    """Apply Alembic migrations up to head."""

    _emit_lines(_run(lambda: CONTROLLER.upgrade_schema(database_url)))


@cloudtask.command("enqueue-test")
@click.option("--database-url", default=None, help="SQLAlchemy database URL.")
@click.option("--job-type", default="sleep", show_default=True, help="Job type.")
@click.option(
    "--seconds",
    type=int,
    default=2,
    show_default=True,
    help="Sleep duration placed in the payload when --payload is not given.",
)
@click.option("--payload", default=None, help="Raw serialized payload overriding --seconds.")
@click.option("--job-id", default=None, help="Explicit job id (random UUID by default).")
def enqueue_test(
    database_url: str | None,
    job_type: str,
    seconds: int,
    payload: str | None,
    job_id: str | None,
) -> None:
    """Create a PENDING job row and publish it to `jobs.created`."""

    _emit_lines(
        _run(
            lambda: CONTROLLER.enqueue(
                EnqueueCommand(
                    database_url=database_url,
                    job_type=job_type,
                    payload=payload if payload is not None else json.dumps({"seconds": seconds}),
                    job_id=job_id,
                ),
            ),
        ),
    )


@cloudtask.group()
def job() -> None:
    """Job row inspection commands."""


@job.command("show")
@click.argument("job_id")
@click.option("--database-url", default=None, help="SQLAlchemy database URL.")
def job_show(job_id: str, database_url: str | None) -> None:
    """Show the stored state of one job."""

    lines = _run(
        lambda: CONTROLLER.inspect_job(
            InspectJobCommand(database_url=database_url, job_id=job_id),
        ),
    )
    if lines is None:
        raise click.ClickException(f"Job not found: {job_id}")
    _emit_lines(lines)


def _run(action: Callable[[], _T]) -> _T:
    try:
        return action()
    except (ChannelError, JobStoreError, ValueError) as error:
        raise click.ClickException(str(error)) from error


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    cloudtask()
