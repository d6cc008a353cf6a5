"""Use-case services: task submission, lookup and the inbound message channel."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from uuid import uuid4

from legacy_agency.orchestrator.models import (
    DEFAULT_TTL_MAX,
    DeadLetterView,
    Envelope,
    InboundMessage,
    Task,
    TaskDetails,
    TaskStatus,
    TaskSubmission,
)
from legacy_agency.orchestrator.planner.base import Planner
from legacy_agency.orchestrator.repository import TaskNotFoundError, TaskRepository
from legacy_agency.orchestrator.scheduler import TaskScheduler
from legacy_agency.storage.common import utc_now

logger = logging.getLogger(__name__)

# Statuses a task may legitimately be parked in between passes.
_RESTING_STATUSES = frozenset({TaskStatus.RECEIVED, TaskStatus.RETRYING})


@dataclass(slots=True)
class MessageReply:
    """Outcome of an inbound message: a direct answer or a newly created task."""

    answer: str | None = None
    task: Task | None = None


@dataclass(slots=True)
class QueueStatus:
    """Stored task counts grouped the way the scheduler sees them."""

    pending: int
    processing: int
    completed: int
    needs_human: int
    dead_lettered: int


def new_task_id() -> str:
    return f"LEGACY-{int(time.time() * 1000)}-{uuid4().hex[:8]}"


class TaskService:
    """Creates tasks, hands them to the scheduler and answers read-only queries."""

    def __init__(
        self,
        *,
        repository: TaskRepository,
        scheduler: TaskScheduler | None = None,
        planner: Planner | None = None,
        ttl_max: int = DEFAULT_TTL_MAX,
    ) -> None:
        self.repository = repository
        self.scheduler = scheduler
        self.planner = planner
        self.ttl_max = ttl_max

    def submit(self, submission: TaskSubmission) -> Task:
        """Validate, persist and enqueue a new task."""

        description = submission.description.strip()
        if not description:
            raise ValueError("Task description must not be empty.")
        task_type = submission.task_type.strip()
        if not task_type:
            raise ValueError("Task type must not be empty.")

        now = utc_now()
        task = Task(
            task_id=new_task_id(),
            description=description,
            software_name=submission.software_name.strip() or "unknown",
            task_type=task_type,
            status=TaskStatus.RECEIVED,
            envelope=Envelope(ttl_max=self.ttl_max, mode=submission.mode),
            created_at=now,
            updated_at=now,
            documents=list(submission.documents),
            source=submission.source,
        )
        self.repository.save_task(
            task,
            event_type="task_received",
            details={"mode": task.envelope.mode.value, "documents": len(task.documents)},
        )
        logger.info("Task %s received (%s)", task.task_id, task.task_type)
        if self.scheduler is not None:
            self.scheduler.enqueue(task)
        return task

    def get_task(self, task_id: str) -> TaskDetails:
        details = self.repository.get_task_details(task_id)
        if details is None:
            raise TaskNotFoundError(f"Task not found: {task_id}")
        return details

    def list_tasks(
        self,
        *,
        status: TaskStatus | None = None,
        limit: int | None = None,
    ) -> list[Task]:
        return self.repository.list_tasks(status=status, limit=limit)

    def list_dead_letters(self) -> list[DeadLetterView]:
        return self.repository.list_dead_letters()

    def queue_status(self) -> QueueStatus:
        counts = self.repository.count_by_status()
        return QueueStatus(
            pending=sum(counts[status] for status in _RESTING_STATUSES),
            processing=sum(
                total
                for status, total in counts.items()
                if status not in _RESTING_STATUSES and not status.is_terminal
            ),
            completed=counts[TaskStatus.COMPLETED],
            needs_human=counts[TaskStatus.NEEDS_HUMAN],
            dead_lettered=counts[TaskStatus.DEAD_LETTERED],
        )

    def handle_message(self, message: InboundMessage) -> MessageReply:
        """Answer simple questions directly; turn everything else into a task."""

        text = message.text.strip()
        if not text:
            raise ValueError("Message text must not be empty.")
        if self.planner is None:
            raise ValueError("A planner is required to handle inbound messages.")

        classification = self.planner.classify(text)
        if classification.is_simple:
            logger.info("Answering simple message from %s", message.channel or "unknown")
            return MessageReply(answer=self.planner.answer(text))

        task = self.submit(
            TaskSubmission(
                description=text,
                software_name=classification.software or "unknown",
                task_type=classification.task_type,
                mode=classification.mode,
                source={"channel": message.channel, "user_id": message.user_id},
            ),
        )
        return MessageReply(task=task)

    def resume_pending(self) -> list[Task]:
        """Re-enqueue persisted non-terminal tasks after a restart.

        Tasks caught mid-pass are parked back in ``retrying`` first.
        """

        resumed = self.repository.load_resumable_tasks()
        for task in resumed:
            if task.status not in _RESTING_STATUSES:
                previous = task.status
                task.status = TaskStatus.RETRYING
                self.repository.save_task(
                    task,
                    event_type="task_resumed",
                    status_from=previous,
                )
            if self.scheduler is not None:
                self.scheduler.enqueue(task)
        if resumed:
            logger.info("Resumed %d pending task(s)", len(resumed))
        return resumed
