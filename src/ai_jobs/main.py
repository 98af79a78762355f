"""CLI entrypoint for ai-jobs."""

from collections.abc import Callable
from pathlib import Path

import rich_click as click

from ai_jobs import __version__
from ai_jobs.config import Settings
from ai_jobs.engine.controllers import (
    JobClaimCommand,
    JobEnqueueCommand,
    JobFailCommand,
    JobInspectCommand,
    JobListCommand,
    JobMutateCommand,
    JobsCliController,
    JobStaleCommand,
    JobSucceedCommand,
    JobWorkerCommand,
)
from ai_jobs.engine.errors import JobEngineError
from ai_jobs.engine.models import JobType

click.rich_click.USE_MARKDOWN = True
JOBS_CONTROLLER = JobsCliController()

STATUS_CHOICES = ["pending", "running", "completed", "failed", "cancelled"]
KNOWN_JOB_TYPES = ", ".join(job_type.value for job_type in JobType)


@click.group()
@click.version_option(version=__version__, prog_name="ai-jobs")
def ai_jobs() -> None:
    """AI response job engine CLI."""

    try:
        settings = Settings.from_env()
        settings.validate()
    except ValueError as error:
        raise click.ClickException(str(error)) from error
    settings.configure_logging()


@ai_jobs.group()
def jobs() -> None:
    """Job queue commands."""


@jobs.command("enqueue")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--org-id", "organization_id", type=int, required=True, help="Organization id.")
@click.option("--conversation-id", required=True, help="Conversation id.")
@click.option(
    "--job-type",
    default=JobType.GENERATE_RESPONSE.value,
    show_default=True,
    help=f"Job type. Known types: {KNOWN_JOB_TYPES}; other non-empty values are accepted.",
)
@click.option("--trigger-message-id", default=None, help="Inbound message that caused the job.")
@click.option(
    "--meta",
    "meta_items",
    multiple=True,
    help="Metadata entry as key=value. Can be repeated.",
)
@click.option("--actor-id", default=None, help="Actor recorded in the audit trail.")
def jobs_enqueue(  # noqa: PLR0913
    db_path: Path | None,
    organization_id: int,
    conversation_id: str,
    job_type: str,
    trigger_message_id: str | None,
    meta_items: tuple[str, ...],
    actor_id: str | None,
) -> None:
    """Enqueue a pending job."""

    metadata = _parse_meta(meta_items)
    _run(
        lambda: JOBS_CONTROLLER.enqueue(
            JobEnqueueCommand(
                db_path=db_path,
                organization_id=organization_id,
                conversation_id=conversation_id,
                job_type=job_type,
                trigger_message_id=trigger_message_id,
                metadata=metadata,
                actor_id=actor_id,
            ),
        ),
    )


@jobs.command("claim")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--worker-id", required=True, help="Worker claiming the job.")
@click.option("--job-type", "job_types", multiple=True, help="Only claim these job types.")
def jobs_claim(db_path: Path | None, worker_id: str, job_types: tuple[str, ...]) -> None:
    """Claim the oldest pending job."""

    _run(
        lambda: JOBS_CONTROLLER.claim(
            JobClaimCommand(db_path=db_path, worker_id=worker_id, job_types=job_types),
        ),
    )


@jobs.command("succeed")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--job-id", required=True, help="Job id.")
@click.option("--response-text", required=True, help="Generated response.")
@click.option("--result-message-id", default=None, help="Message created from the response.")
@click.option(
    "--confidence",
    "confidence_score",
    type=click.FloatRange(min=0.0, max=1.0),
    default=None,
    help="Confidence score between 0 and 1.",
)
@click.option("--fragment-id", "fragments_used", multiple=True, help="Knowledge fragment used.")
@click.option("--prompt-tokens", type=click.IntRange(min=0), default=None)
@click.option("--completion-tokens", type=click.IntRange(min=0), default=None)
@click.option("--total-cost", type=click.FloatRange(min=0.0), default=None)
@click.option("--actor-id", default=None, help="Actor recorded in the audit trail.")
def jobs_succeed(  # noqa: PLR0913
    db_path: Path | None,
    job_id: str,
    response_text: str,
    result_message_id: str | None,
    confidence_score: float | None,
    fragments_used: tuple[str, ...],
    prompt_tokens: int | None,
    completion_tokens: int | None,
    total_cost: float | None,
    actor_id: str | None,
) -> None:
    """Report a successful execution for a running job."""

    _run(
        lambda: JOBS_CONTROLLER.succeed(
            JobSucceedCommand(
                db_path=db_path,
                job_id=job_id,
                response_text=response_text,
                result_message_id=result_message_id,
                confidence_score=confidence_score,
                fragments_used=fragments_used,
                prompt_tokens=prompt_tokens,
                completion_tokens=completion_tokens,
                total_cost=total_cost,
                actor_id=actor_id,
            ),
        ),
    )


@jobs.command("fail")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--job-id", required=True, help="Job id.")
@click.option("--error-code", required=True, help="Machine-readable error code.")
@click.option("--error-message", default="", help="Human-readable error message.")
@click.option("--actor-id", default=None, help="Actor recorded in the audit trail.")
def jobs_fail(
    db_path: Path | None,
    job_id: str,
    error_code: str,
    error_message: str,
    actor_id: str | None,
) -> None:
    """Report a failed execution for a running job."""

    _run(
        lambda: JOBS_CONTROLLER.fail(
            JobFailCommand(
                db_path=db_path,
                job_id=job_id,
                error_code=error_code,
                error_message=error_message,
                actor_id=actor_id,
            ),
        ),
    )


@jobs.command("retry")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--job-id", required=True, help="Failed job id.")
@click.option("--actor-id", default=None, help="Actor requesting the retry.")
def jobs_retry(db_path: Path | None, job_id: str, actor_id: str | None) -> None:
    """Enqueue a new attempt for a failed job."""

    _run(
        lambda: JOBS_CONTROLLER.retry(
            JobMutateCommand(db_path=db_path, job_id=job_id, actor_id=actor_id),
        ),
    )


@jobs.command("cancel")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--job-id", required=True, help="Job id.")
@click.option("--actor-id", default=None, help="Actor requesting the cancellation.")
@click.option("--reason", default=None, help="Optional cancellation reason.")
def jobs_cancel(
    db_path: Path | None,
    job_id: str,
    actor_id: str | None,
    reason: str | None,
) -> None:
    """Cancel a pending or running job."""

    _run(
        lambda: JOBS_CONTROLLER.cancel(
            JobMutateCommand(db_path=db_path, job_id=job_id, actor_id=actor_id, reason=reason),
        ),
    )


def _filter_options(command: Callable) -> Callable:
    options = [
        click.option(
            "--db-path",
            type=click.Path(path_type=Path),
            default=None,
            help="SQLite DB path.",
        ),
        click.option("--org-id", "organization_id", type=int, required=True),
        click.option(
            "--status",
            type=click.Choice(STATUS_CHOICES, case_sensitive=False),
            default=None,
            help="Optional status filter.",
        ),
        click.option("--job-type", default=None, help="Optional job type filter."),
        click.option("--date-from", default=None, help="Inclusive ISO-8601 lower bound."),
        click.option("--date-to", default=None, help="Inclusive ISO-8601 upper bound."),
    ]
    for option in reversed(options):
        command = option(command)
    return command


@jobs.command("list")
@_filter_options
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=500),
    default=50,
    show_default=True,
    help="Max jobs to print.",
)
def jobs_list(  # noqa: PLR0913
    db_path: Path | None,
    organization_id: int,
    status: str | None,
    job_type: str | None,
    date_from: str | None,
    date_to: str | None,
    limit: int,
) -> None:
    """List an organization's jobs, newest first."""

    _run(
        lambda: JOBS_CONTROLLER.list_jobs(
            JobListCommand(
                db_path=db_path,
                organization_id=organization_id,
                status=status,
                job_type=job_type,
                date_from=date_from,
                date_to=date_to,
                limit=limit,
            ),
        ),
    )


@jobs.command("stats")
@_filter_options
@click.option(
    "--format",
    "output_format",
    type=click.Choice(["table", "json"], case_sensitive=False),
    default="table",
    show_default=True,
)
def jobs_stats(  # noqa: PLR0913
    db_path: Path | None,
    organization_id: int,
    status: str | None,
    job_type: str | None,
    date_from: str | None,
    date_to: str | None,
    output_format: str,
) -> None:
    """Show job counts per status."""

    _run(
        lambda: JOBS_CONTROLLER.stats(
            JobListCommand(
                db_path=db_path,
                organization_id=organization_id,
                status=status,
                job_type=job_type,
                date_from=date_from,
                date_to=date_to,
                output_format=output_format.lower(),
            ),
        ),
    )


@jobs.command("inspect")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--job-id", required=True, help="Job id.")
def jobs_inspect(db_path: Path | None, job_id: str) -> None:
    """Inspect one job with its retry lineage and audit trail."""

    _run(lambda: JOBS_CONTROLLER.inspect(JobInspectCommand(db_path=db_path, job_id=job_id)))


@jobs.command("stale")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--older-than-seconds",
    type=click.IntRange(min=1),
    default=1800,
    show_default=True,
    help="Report running jobs started longer ago than this.",
)
def jobs_stale(db_path: Path | None, older_than_seconds: int) -> None:
    """List running jobs that look stuck (read-only)."""

    _run(
        lambda: JOBS_CONTROLLER.stale(
            JobStaleCommand(db_path=db_path, older_than_seconds=older_than_seconds),
        ),
    )


@jobs.command("worker")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--worker-id", default=None, help="Worker id; defaults to host:pid.")
@click.option(
    "--once/--loop",
    default=True,
    show_default=True,
    help="Run one claim-execute cycle or loop until idle.",
)
@click.option(
    "--max-jobs",
    type=click.IntRange(min=1),
    default=None,
    help="Optional cap for processed jobs in loop mode.",
)
@click.option(
    "--max-idle-polls",
    type=click.IntRange(min=1),
    default=1,
    show_default=True,
    help="Consecutive empty polls before the loop exits.",
)
@click.option("--job-type", "job_types", multiple=True, help="Only claim these job types.")
def jobs_worker(  # noqa: PLR0913
    db_path: Path | None,
    worker_id: str | None,
    once: bool,
    max_jobs: int | None,
    max_idle_polls: int,
    job_types: tuple[str, ...],
) -> None:
    """Run the job worker with the bundled echo executor."""

    _run(
        lambda: JOBS_CONTROLLER.run_worker(
            JobWorkerCommand(
                db_path=db_path,
                worker_id=worker_id,
                once=once,
                max_jobs=max_jobs,
                max_idle_polls=max_idle_polls,
                job_types=job_types,
            ),
        ),
    )


def _parse_meta(items: tuple[str, ...]) -> dict[str, str]:
    metadata: dict[str, str] = {}
    for item in items:
        key, separator, value = item.partition("=")
        if not separator or not key.strip():
            raise click.BadParameter(f"Expected key=value, got {item!r}.", param_hint="--meta")
        metadata[key.strip()] = value
    return metadata


def _run(action: Callable[[], list[str]]) -> None:
    try:
        lines = action()
    except (JobEngineError, ValueError) as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(lines)


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    ai_jobs()
