from __future__ import annotations

import re

import allure
import httpx
import pytest

from legacy_agency.orchestrator.contracts import Classification
from legacy_agency.orchestrator.models import (
    DocumentRef,
    ExecutionMode,
    InboundMessage,
    TaskStatus,
    TaskSubmission,
)
from legacy_agency.orchestrator.planner.gemini import GeminiPlanner
from legacy_agency.orchestrator.repository import TaskNotFoundError
from legacy_agency.orchestrator.scheduler import TaskScheduler
from legacy_agency.orchestrator.services import TaskService, new_task_id

pytestmark = [
    allure.epic("Task Intake"),
    allure.feature("Submission, Status and Inbound Messages"),
]


def _service(repository, planner, executor, **kwargs) -> tuple[TaskService, TaskScheduler]:
    scheduler = TaskScheduler(
        repository=repository,
        planner=planner,
        executor=executor,
        poll_interval_seconds=0.01,
    )
    return (
        TaskService(repository=repository, scheduler=scheduler, planner=planner, **kwargs),
        scheduler,
    )


def test_new_task_id_format() -> None:
    assert re.fullmatch(r"LEGACY-\d{13}-[0-9a-f]{8}", new_task_id())


def test_submit_persists_and_enqueues(repository, planner, executor) -> None:
    service, scheduler = _service(repository, planner, executor, ttl_max=7)

    task = service.submit(
        TaskSubmission(
            description="  Enter 12 purchase orders  ",
            software_name="Sage 50",
            documents=[DocumentRef(original="orders.xlsx", path="/uploads/orders.xlsx")],
        ),
    )

    assert task.status is TaskStatus.RECEIVED
    assert task.description == "Enter 12 purchase orders"
    assert task.envelope.ttl_max == 7
    assert task.envelope.hops == 0
    assert scheduler.pending_ids() == [task.task_id]

    details = service.get_task(task.task_id)
    assert details.task.software_name == "Sage 50"
    assert details.task.documents[0].original == "orders.xlsx"
    assert [event.event_type for event in details.events] == ["task_received"]


@pytest.mark.parametrize(
    ("description", "task_type"),
    [("   ", "data-entry"), ("Enter data", " ")],
)
def test_submit_rejects_invalid_input(repository, planner, executor, description, task_type):
    service, scheduler = _service(repository, planner, executor)

    with pytest.raises(ValueError, match="must not be empty"):
        service.submit(TaskSubmission(description=description, task_type=task_type))

    assert scheduler.pending() == 0
    assert repository.list_tasks() == []


def test_get_task_unknown_id_raises(repository, planner, executor) -> None:
    service, _ = _service(repository, planner, executor)

    with pytest.raises(TaskNotFoundError):
        service.get_task("LEGACY-0-deadbeef")


def test_simple_message_is_answered_without_a_task(repository, planner, executor) -> None:
    planner.classification = Classification(task_type="simple")
    service, scheduler = _service(repository, planner, executor)

    reply = service.handle_message(InboundMessage(text="What do you charge?", channel="web"))

    assert reply.task is None
    assert reply.answer == planner.answer_text
    assert scheduler.pending() == 0
    assert repository.list_tasks() == []


def test_non_simple_message_creates_task_with_classified_mode(
    repository,
    planner,
    executor,
) -> None:
    planner.classification = Classification(
        task_type="data-extraction",
        mode=ExecutionMode.SUPERVISE,
        software="AS400",
    )
    service, scheduler = _service(repository, planner, executor)

    reply = service.handle_message(
        InboundMessage(text="Export March orders", channel="telegram", user_id="99"),
    )

    assert reply.answer is None
    assert reply.task is not None
    assert reply.task.envelope.mode is ExecutionMode.SUPERVISE
    assert reply.task.software_name == "AS400"
    assert reply.task.task_type == "data-extraction"
    assert reply.task.source == {"channel": "telegram", "user_id": "99"}
    assert scheduler.pending_ids() == [reply.task.task_id]


def test_handle_message_requires_a_planner(repository) -> None:
    service = TaskService(repository=repository)

    with pytest.raises(ValueError, match="planner is required"):
        service.handle_message(InboundMessage(text="hello"))


def test_resume_pending_parks_interrupted_tasks(repository, planner, executor, make_task):
    interrupted = make_task(status=TaskStatus.EXECUTING)
    waiting = make_task(status=TaskStatus.RECEIVED)
    finished = make_task(status=TaskStatus.COMPLETED)
    for task in (interrupted, waiting, finished):
        repository.save_task(task, event_type="task_received")
    service, scheduler = _service(repository, planner, executor)

    resumed = service.resume_pending()

    assert [task.task_id for task in resumed] == [interrupted.task_id, waiting.task_id]
    assert scheduler.pending_ids() == [interrupted.task_id, waiting.task_id]
    assert repository.get_task(interrupted.task_id).status is TaskStatus.RETRYING
    assert repository.get_task(waiting.task_id).status is TaskStatus.RECEIVED
    events = repository.list_events(interrupted.task_id)
    assert events[-1].event_type == "task_resumed"
    assert events[-1].status_from is TaskStatus.EXECUTING


def test_submitted_task_runs_to_completion(repository, planner, executor) -> None:
    service, scheduler = _service(repository, planner, executor)
    task = service.submit(TaskSubmission(description="Enter invoice 7"))

    scheduler.run_once()

    listed = service.list_tasks(status=TaskStatus.COMPLETED)
    assert [item.task_id for item in listed] == [task.task_id]
    assert service.list_dead_letters() == []


def test_message_with_overflowing_estimate_still_creates_task(repository) -> None:
    reply_text = '{"type": "workflow", "mode": "EXECUTE", "estimated_steps": 1e999}'

    def respond(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json={"candidates": [{"content": {"parts": [{"text": reply_text}]}}]},
        )

    with GeminiPlanner(
        api_key="test-key",
        base_url="https://gemini.test/v1beta",
        transport=httpx.MockTransport(respond),
    ) as planner:
        service = TaskService(repository=repository, planner=planner)
        reply = service.handle_message(InboundMessage(text="Reconcile the March ledger"))

    assert reply.task is not None
    assert reply.task.task_type == "workflow"
    assert repository.get_task(reply.task.task_id).status is TaskStatus.RECEIVED


def test_queue_status_groups_stored_tasks(repository, make_task) -> None:
    statuses = [
        TaskStatus.RECEIVED,
        TaskStatus.RETRYING,
        TaskStatus.EXECUTING,
        TaskStatus.COMPLETED,
        TaskStatus.COMPLETED,
        TaskStatus.NEEDS_HUMAN,
        TaskStatus.DEAD_LETTERED,
    ]
    for status in statuses:
        repository.save_task(make_task(status=status), event_type="task_received")

    status = TaskService(repository=repository).queue_status()

    assert status.pending == 2
    assert status.processing == 1
    assert status.completed == 2
    assert status.needs_human == 1
    assert status.dead_lettered == 1
