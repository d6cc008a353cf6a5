"""CLI entrypoint for legacy-agency."""

import logging
from pathlib import Path

import rich_click as click

from legacy_agency import __version__
from legacy_agency.orchestrator.controllers import (
    AgencyCliController,
    DeadLettersCommand,
    InspectTaskCommand,
    ListTasksCommand,
    MessageCommand,
    SchedulerRunCommand,
    SchedulerStatusCommand,
    SubmitTaskCommand,
)
from legacy_agency.orchestrator.contracts import CollaboratorError
from legacy_agency.orchestrator.models import ExecutionMode, TaskStatus
from legacy_agency.orchestrator.repository import TaskNotFoundError

click.rich_click.USE_MARKDOWN = True
AGENCY_CONTROLLER = AgencyCliController()

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


@click.group()
@click.version_option(version=__version__, prog_name="legacy-agency")
@click.option(
    "--log-level",
    type=click.Choice(LOG_LEVELS, case_sensitive=False),
    default="WARNING",
    show_default=True,
    help="Root logger level.",
)
def legacy_agency(log_level: str) -> None:
    """Legacy software automation task dispatcher."""

    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@legacy_agency.group()
def tasks() -> None:
    """Task submission and inspection commands."""


@tasks.command("submit")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--description", required=True, help="What needs to be done.")
@click.option(
    "--software",
    "software_name",
    default="unknown",
    show_default=True,
    help="Target legacy software label.",
)
@click.option(
    "--task-type",
    default="data-entry",
    show_default=True,
    help="Task type tag, for example data-entry or data-extraction.",
)
@click.option(
    "--mode",
    type=click.Choice([mode.value for mode in ExecutionMode], case_sensitive=False),
    default=ExecutionMode.EXECUTE.value,
    show_default=True,
    help="Initial execution mode.",
)
@click.option(
    "--document",
    "documents",
    type=click.Path(path_type=Path),
    multiple=True,
    help="Attached document path. Can be repeated.",
)
def tasks_submit(  # noqa: PLR0913
    db_path: Path | None,
    description: str,
    software_name: str,
    task_type: str,
    mode: str,
    documents: tuple[Path, ...],
) -> None:
    """Create a task; a running or later scheduler picks it up."""

    try:
        lines = AGENCY_CONTROLLER.submit_task(
            SubmitTaskCommand(
                db_path=db_path,
                description=description,
                software_name=software_name,
                task_type=task_type,
                mode=mode,
                documents=documents,
            ),
        )
    except ValueError as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(lines)


@tasks.command("list")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--status",
    type=click.Choice([status.value for status in TaskStatus], case_sensitive=False),
    default=None,
    help="Optional status filter.",
)
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=1000),
    default=50,
    show_default=True,
    help="Max number of tasks to print.",
)
def tasks_list(db_path: Path | None, status: str | None, limit: int) -> None:
    """List tasks, most recently created first."""

    _emit_lines(
        AGENCY_CONTROLLER.list_tasks(
            ListTasksCommand(db_path=db_path, status=status, limit=limit),
        ),
    )


@tasks.command("inspect")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--task-id", required=True, help="Task id to inspect.")
@click.option("--json", "as_json", is_flag=True, help="Print the full record as JSON.")
def tasks_inspect(db_path: Path | None, task_id: str, as_json: bool) -> None:
    """Show the full task record, envelope and event trail."""

    try:
        lines = AGENCY_CONTROLLER.inspect_task(
            InspectTaskCommand(db_path=db_path, task_id=task_id, as_json=as_json),
        )
    except TaskNotFoundError as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(lines)


@tasks.command("dead-letters")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
def tasks_dead_letters(db_path: Path | None) -> None:
    """List tasks that exhausted their hop budget."""

    _emit_lines(AGENCY_CONTROLLER.dead_letters(DeadLettersCommand(db_path=db_path)))


@legacy_agency.command("message")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--text", required=True, help="Free-text client message.")
@click.option("--channel", default=None, help="Originating channel, for example telegram.")
@click.option("--user-id", default=None, help="Originating user id.")
def message(db_path: Path | None, text: str, channel: str | None, user_id: str | None) -> None:
    """Classify a client message: answer it directly or turn it into a task."""

    try:
        lines = AGENCY_CONTROLLER.handle_message(
            MessageCommand(db_path=db_path, text=text, channel=channel, user_id=user_id),
        )
    except (ValueError, CollaboratorError) as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(lines)


@legacy_agency.group()
def scheduler() -> None:
    """Scheduler commands."""


@scheduler.command("run")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--once/--loop",
    default=False,
    show_default=True,
    help="Run one admission round or keep polling.",
)
@click.option(
    "--max-passes",
    type=click.IntRange(min=1),
    default=None,
    help="Stop admitting after this many passes.",
)
@click.option(
    "--max-idle-polls",
    type=click.IntRange(min=1),
    default=1,
    show_default=True,
    help="Consecutive empty polls before exiting the loop.",
)
def scheduler_run(
    db_path: Path | None,
    once: bool,
    max_passes: int | None,
    max_idle_polls: int,
) -> None:
    """Resume persisted tasks and drive them through the lifecycle."""

    try:
        lines = AGENCY_CONTROLLER.run_scheduler(
            SchedulerRunCommand(
                db_path=db_path,
                once=once,
                max_passes=max_passes,
                max_idle_polls=max_idle_polls,
            ),
        )
    except ValueError as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(lines)


@scheduler.command("status")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
def scheduler_status(db_path: Path | None) -> None:
    """Show stored task counts: pending, processing and finished."""

    _emit_lines(AGENCY_CONTROLLER.scheduler_status(SchedulerStatusCommand(db_path=db_path)))


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    legacy_agency()
