"""Controllers for agency CLI commands."""

from __future__ import annotations

import json
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from legacy_agency.config import Settings
from legacy_agency.orchestrator.backend import CliSessionExecutor, Executor
from legacy_agency.orchestrator.lifecycle import LifecyclePolicy
from legacy_agency.orchestrator.models import (
    DocumentRef,
    ExecutionMode,
    InboundMessage,
    Task,
    TaskStatus,
    TaskSubmission,
    task_to_payload,
)
from legacy_agency.orchestrator.planner import GeminiPlanner, Planner
from legacy_agency.orchestrator.repository import TaskRepository
from legacy_agency.orchestrator.scheduler import TaskScheduler
from legacy_agency.orchestrator.services import TaskService


@dataclass(slots=True)
class SubmitTaskCommand:
    """CLI input for task submission."""

    db_path: Path | None
    description: str
    software_name: str
    task_type: str
    mode: str
    documents: tuple[Path, ...] = ()


@dataclass(slots=True)
class ListTasksCommand:
    """CLI input for task listing."""

    db_path: Path | None
    status: str | None
    limit: int


@dataclass(slots=True)
class InspectTaskCommand:
    """CLI input for task inspection."""

    db_path: Path | None
    task_id: str
    as_json: bool = False


@dataclass(slots=True)
class DeadLettersCommand:
    db_path: Path | None


@dataclass(slots=True)
class MessageCommand:
    """CLI input for the inbound message channel."""

    db_path: Path | None
    text: str
    channel: str | None
    user_id: str | None


@dataclass(slots=True)
class SchedulerRunCommand:
    """CLI input for scheduler execution."""

    db_path: Path | None
    once: bool
    max_passes: int | None
    max_idle_polls: int = 1


@dataclass(slots=True)
class SchedulerStatusCommand:
    db_path: Path | None


class AgencyCliController:
    """Coordinates submission, scheduling and inspection CLI operations."""

    def submit_task(self, command: SubmitTaskCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            service = TaskService(repository=repository, ttl_max=settings.scheduler.ttl_max)
            task = service.submit(
                TaskSubmission(
                    description=command.description,
                    software_name=command.software_name,
                    task_type=command.task_type,
                    mode=ExecutionMode(command.mode.strip().upper()),
                    documents=[_document_ref(path) for path in command.documents],
                    source={"channel": "cli"},
                ),
            )
        return [
            "Task submitted: "
            f"task_id={task.task_id} type={task.task_type} status={task.status.value} "
            f"mode={task.envelope.mode.value}",
        ]

    def list_tasks(self, command: ListTasksCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        status_filter = _parse_status(command.status)
        with _repository(settings) as repository:
            tasks = TaskService(repository=repository).list_tasks(
                status=status_filter,
                limit=command.limit,
            )

        lines = [f"Tasks: {len(tasks)}"]
        lines.extend(f"  {_task_summary(task)}" for task in tasks)
        return lines

    def inspect_task(self, command: InspectTaskCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            details = TaskService(repository=repository).get_task(command.task_id)

        task = details.task
        if command.as_json:
            return [json.dumps(task_to_payload(task), indent=2, ensure_ascii=False)]

        envelope = task.envelope
        lines = [
            f"Task: {task.task_id}",
            f"Description: {task.description}",
            f"Software: {task.software_name}",
            f"Type: {task.task_type}",
            f"Status: {task.status.value}",
            f"Mode: {envelope.mode.value}",
            f"Hops: {envelope.hops}/{envelope.ttl_max}",
            f"Failures: {envelope.consecutive_failures}",
            f"Successes: {envelope.consecutive_successes}",
            f"Escalated: {'yes' if envelope.escalated else 'no'}",
            f"Plan steps: {len(task.plan.steps) if task.plan is not None else 0}",
            f"Sessions: {', '.join(envelope.session_ids) or '-'}",
            f"Error: {task.last_error or '-'}",
            f"Events: {len(details.events)}",
        ]
        for event in details.events:
            lines.append(
                f"  {event.created_at.isoformat()} {event.event_type} "
                f"{event.status_from.value if event.status_from else '-'} -> "
                f"{event.status_to.value if event.status_to else '-'}",
            )
        return lines

    def dead_letters(self, command: DeadLettersCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            entries = TaskService(repository=repository).list_dead_letters()

        lines = [f"Dead letters: {len(entries)}"]
        for entry in entries:
            lines.append(
                f"  {entry.task_id} hops={entry.hops}/{entry.ttl_max} "
                f"at={entry.dead_lettered_at.isoformat()} error={entry.last_error or '-'}",
            )
        return lines

    def handle_message(self, command: MessageCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository, _planner(settings) as planner:
            service = TaskService(
                repository=repository,
                planner=planner,
                ttl_max=settings.scheduler.ttl_max,
            )
            reply = service.handle_message(
                InboundMessage(
                    text=command.text,
                    channel=command.channel,
                    user_id=command.user_id,
                ),
            )

        if reply.task is None:
            return [reply.answer or ""]
        return [
            "Task created: "
            f"task_id={reply.task.task_id} type={reply.task.task_type} "
            f"mode={reply.task.envelope.mode.value} status={reply.task.status.value}",
        ]

    def run_scheduler(self, command: SchedulerRunCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        settings.validate_for_scheduler()
        with _repository(settings) as repository, _planner(settings) as planner:
            scheduler = TaskScheduler(
                repository=repository,
                planner=planner,
                executor=_build_executor(settings),
                max_concurrent_tasks=settings.scheduler.max_concurrent_tasks,
                poll_interval_seconds=settings.scheduler.poll_interval_seconds,
                policy=LifecyclePolicy(
                    escalation_failure_threshold=settings.scheduler.escalation_failure_threshold,
                    deescalation_success_threshold=(
                        settings.scheduler.deescalation_success_threshold
                    ),
                ),
            )
            service = TaskService(repository=repository, scheduler=scheduler, planner=planner)
            resumed = service.resume_pending() if settings.scheduler.resume_on_start else []
            summary = (
                scheduler.run_once()
                if command.once
                else scheduler.run_loop(
                    max_passes=command.max_passes,
                    max_idle_polls=command.max_idle_polls,
                )
            )

        return [
            f"Resumed tasks: {len(resumed)}",
            "Scheduler summary: "
            f"passes={summary.passes} completed={summary.completed} "
            f"retried={summary.retried} needs_human={summary.needs_human} "
            f"dead_lettered={summary.dead_lettered} idle_polls={summary.idle_polls}",
            f"Queue: pending={scheduler.pending()} active={scheduler.active()}",
        ]

    def scheduler_status(self, command: SchedulerStatusCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            status = TaskService(repository=repository).queue_status()

        return [
            "Scheduler status: "
            f"tasks_pending={status.pending} tasks_processing={status.processing} "
            f"tasks_completed={status.completed} needs_human={status.needs_human} "
            f"dead_lettered={status.dead_lettered}",
        ]


def _task_summary(task: Task) -> str:
    envelope = task.envelope
    return (
        f"{task.task_id} type={task.task_type} status={task.status.value} "
        f"mode={envelope.mode.value} hops={envelope.hops}/{envelope.ttl_max} "
        f"created_at={task.created_at.isoformat()}"
    )


def _parse_status(value: str | None) -> TaskStatus | None:
    if value is None:
        return None
    return TaskStatus(value.strip().lower())


def _document_ref(path: Path) -> DocumentRef:
    size_bytes = path.stat().st_size if path.is_file() else None
    return DocumentRef(original=path.name, path=str(path), size_bytes=size_bytes)


def _build_planner(settings: Settings) -> Planner:
    settings.validate_for_planner()
    planner_settings = settings.planner
    return GeminiPlanner(
        api_key=planner_settings.api_key or "",
        model=planner_settings.model,
        verify_model=planner_settings.verify_model,
        base_url=planner_settings.base_url,
        temperature=planner_settings.temperature,
        max_output_tokens=planner_settings.max_output_tokens,
        timeout_seconds=planner_settings.timeout_seconds,
        max_retries=planner_settings.max_retries,
    )


def _build_executor(settings: Settings) -> Executor:
    return CliSessionExecutor(
        workdir_root=settings.executor.workdir_root,
        command_template=settings.executor.command_template,
        timeout_seconds=settings.executor.timeout_seconds,
    )


@contextmanager
def _planner(settings: Settings) -> Iterator[Planner]:
    planner = _build_planner(settings)
    try:
        yield planner
    finally:
        close = getattr(planner, "close", None)
        if close is not None:
            close()


@contextmanager
def _repository(settings: Settings) -> Iterator[TaskRepository]:
    repository = TaskRepository(db_path=settings.db_path)
    repository.init_schema()
    try:
        yield repository
    finally:
        repository.close()
