"""Domain models for the task lifecycle and its control envelope."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

DEFAULT_TTL_MAX = 10


class TaskStatus(str, Enum):
    """Task lifecycle states driven by the scheduler."""

    RECEIVED = "received"
    CLASSIFYING = "classifying"
    PLANNED = "planned"
    EXECUTING = "executing"
    VERIFYING = "verifying"
    RETRYING = "retrying"
    COMPLETED = "completed"
    NEEDS_HUMAN = "needs-human"
    DEAD_LETTERED = "dead-lettered"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {TaskStatus.COMPLETED, TaskStatus.NEEDS_HUMAN, TaskStatus.DEAD_LETTERED},
)


class ExecutionMode(str, Enum):
    """Execution strategy applied on the next hop."""

    EXECUTE = "EXECUTE"
    SUPERVISE = "SUPERVISE"
    ARCHITECT = "ARCHITECT"


class Verdict(str, Enum):
    """Verifier outcome for one hop."""

    PASS = "PASS"
    RETRY = "RETRY"
    ESCALATE = "ESCALATE"


@dataclass(slots=True)
class DocumentRef:
    """Reference to an externally owned attachment."""

    original: str
    path: str
    mimetype: str | None = None
    size_bytes: int | None = None


@dataclass(slots=True)
class PlanStep:
    """One executable step of a plan."""

    step_number: int
    action: str
    mode: ExecutionMode = ExecutionMode.EXECUTE
    verification: str = ""
    tools_needed: list[str] = field(default_factory=list)


@dataclass(slots=True)
class Plan:
    """Ordered steps produced by the planner or revised by deep analysis."""

    steps: list[PlanStep] = field(default_factory=list)
    estimated_duration_minutes: float | None = None
    requires_human_approval: bool = False
    safety_notes: str = ""

    @property
    def expected_outcome(self) -> str:
        if self.steps and self.steps[-1].verification:
            return self.steps[-1].verification
        return "Task should complete successfully"


@dataclass(slots=True)
class Envelope:
    """Per-task control state: mode, hop budget and failure/success streaks."""

    ttl_max: int = DEFAULT_TTL_MAX
    hops: int = 0
    mode: ExecutionMode = ExecutionMode.EXECUTE
    consecutive_failures: int = 0
    consecutive_successes: int = 0
    escalated: bool = False
    state_hashes: list[str] = field(default_factory=list)
    session_ids: list[str] = field(default_factory=list)

    @property
    def ttl_exhausted(self) -> bool:
        return self.hops >= self.ttl_max


@dataclass(slots=True)
class Task:
    """Unit of work owned by exactly one envelope for its whole life."""

    task_id: str
    description: str
    software_name: str
    task_type: str
    status: TaskStatus
    envelope: Envelope
    created_at: datetime
    updated_at: datetime
    documents: list[DocumentRef] = field(default_factory=list)
    plan: Plan | None = None
    revised_plan_pending: bool = False
    classification: dict[str, Any] | None = None
    last_result: dict[str, Any] | None = None
    last_verification: dict[str, Any] | None = None
    last_analysis: dict[str, Any] | None = None
    last_error: str | None = None
    source: dict[str, Any] | None = None


@dataclass(slots=True)
class TaskSubmission:
    """Input payload for creating a task."""

    description: str
    software_name: str = "unknown"
    task_type: str = "data-entry"
    documents: list[DocumentRef] = field(default_factory=list)
    mode: ExecutionMode = ExecutionMode.EXECUTE
    source: dict[str, Any] | None = None


@dataclass(slots=True)
class InboundMessage:
    """Free-text message arriving from a chat channel."""

    text: str
    channel: str | None = None
    user_id: str | None = None


@dataclass(slots=True)
class TaskEventView:
    """Audit trail entry for one persisted transition."""

    event_id: int
    task_id: str
    event_type: str
    status_from: TaskStatus | None
    status_to: TaskStatus | None
    created_at: datetime
    details: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class TaskDetails:
    """Task record together with its event stream."""

    task: Task
    events: list[TaskEventView]


@dataclass(slots=True)
class DeadLetterView:
    """Immutable dead-letter entry."""

    task_id: str
    hops: int
    ttl_max: int
    last_error: str | None
    dead_lettered_at: datetime
    record: dict[str, Any]


def plan_to_payload(plan: Plan) -> dict[str, Any]:
    payload = asdict(plan)
    for step in payload["steps"]:
        step["mode"] = ExecutionMode(step["mode"]).value
    return payload


def plan_from_payload(payload: dict[str, Any]) -> Plan:
    steps = [
        PlanStep(
            step_number=int(step["step_number"]),
            action=str(step["action"]),
            mode=ExecutionMode(step.get("mode", ExecutionMode.EXECUTE.value)),
            verification=str(step.get("verification", "")),
            tools_needed=[str(tool) for tool in step.get("tools_needed", [])],
        )
        for step in payload.get("steps", [])
    ]
    return Plan(
        steps=steps,
        estimated_duration_minutes=payload.get("estimated_duration_minutes"),
        requires_human_approval=bool(payload.get("requires_human_approval", False)),
        safety_notes=str(payload.get("safety_notes", "")),
    )


def task_to_payload(task: Task) -> dict[str, Any]:
    """Serialize the full task record, envelope included."""

    envelope = task.envelope
    return {
        "id": task.task_id,
        "description": task.description,
        "software_name": task.software_name,
        "task_type": task.task_type,
        "status": task.status.value,
        "documents": [asdict(document) for document in task.documents],
        "plan": plan_to_payload(task.plan) if task.plan is not None else None,
        "revised_plan_pending": task.revised_plan_pending,
        "classification": task.classification,
        "last_result": task.last_result,
        "last_verification": task.last_verification,
        "last_analysis": task.last_analysis,
        "last_error": task.last_error,
        "source": task.source,
        "created_at": task.created_at.isoformat(),
        "updated_at": task.updated_at.isoformat(),
        "envelope": {
            "ttl_max": envelope.ttl_max,
            "hops": envelope.hops,
            "mode": envelope.mode.value,
            "consecutive_failures": envelope.consecutive_failures,
            "consecutive_successes": envelope.consecutive_successes,
            "escalated": envelope.escalated,
            "state_hashes": list(envelope.state_hashes),
            "session_ids": list(envelope.session_ids),
        },
    }
