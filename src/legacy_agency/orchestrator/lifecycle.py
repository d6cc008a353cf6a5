"""Envelope transitions: hop accounting, retry streaks, escalation and TTL.

The scheduler owns *when* these run; this module owns *what* they change.
Every function mutates only the envelope (and, for deep analysis, the plan)
of the task it is given and performs no I/O.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from legacy_agency.orchestrator.contracts import Analysis
from legacy_agency.orchestrator.models import Envelope, ExecutionMode, Task

ESCALATION_FAILURE_THRESHOLD = 3
DEESCALATION_SUCCESS_THRESHOLD = 2


class PassOutcome(str, Enum):
    """How one scheduling pass ended for a task."""

    COMPLETED = "completed"
    RETRYING = "retrying"
    NEEDS_HUMAN = "needs-human"
    DEAD_LETTERED = "dead-lettered"

    @property
    def is_terminal(self) -> bool:
        return self is not PassOutcome.RETRYING


@dataclass(slots=True, frozen=True)
class LifecyclePolicy:
    """Streak thresholds for escalation and de-escalation."""

    escalation_failure_threshold: int = ESCALATION_FAILURE_THRESHOLD
    deescalation_success_threshold: int = DEESCALATION_SUCCESS_THRESHOLD


@dataclass(slots=True, frozen=True)
class FailureDecision:
    """Result of recording one RETRY-class signal."""

    ttl_exhausted: bool
    escalated_now: bool


class TtlExceededError(RuntimeError):
    """Raised when a hop would push the envelope past its TTL."""


def begin_hop(envelope: Envelope) -> int:
    """Consume one hop; the caller dispatches immediately afterwards."""

    if envelope.ttl_exhausted:
        raise TtlExceededError(f"hops={envelope.hops} already at ttl_max={envelope.ttl_max}")
    envelope.hops += 1
    return envelope.hops


def record_success(envelope: Envelope, policy: LifecyclePolicy) -> bool:
    """Apply a PASS verdict. Returns True when the envelope de-escalated."""

    envelope.consecutive_successes += 1
    envelope.consecutive_failures = 0
    if (
        envelope.escalated
        and envelope.consecutive_successes >= policy.deescalation_success_threshold
    ):
        envelope.mode = ExecutionMode.EXECUTE
        envelope.escalated = False
        return True
    return False


def record_failure(envelope: Envelope, policy: LifecyclePolicy) -> FailureDecision:
    """Apply a RETRY verdict or a collaborator failure.

    TTL exhaustion wins over escalation: an exhausted envelope is never
    switched to ARCHITECT.
    """

    envelope.consecutive_failures += 1
    envelope.consecutive_successes = 0
    if envelope.ttl_exhausted:
        return FailureDecision(ttl_exhausted=True, escalated_now=False)
    if (
        not envelope.escalated
        and envelope.consecutive_failures >= policy.escalation_failure_threshold
    ):
        envelope.mode = ExecutionMode.ARCHITECT
        envelope.escalated = True
        return FailureDecision(ttl_exhausted=False, escalated_now=True)
    return FailureDecision(ttl_exhausted=False, escalated_now=False)


def apply_analysis(task: Task, analysis: Analysis) -> bool:
    """Swap in a revised plan and drop back to EXECUTE when the analysis allows it.

    The ``escalated`` flag is left untouched; only sustained recovery clears it.
    """

    if not analysis.is_actionable or analysis.revised_plan is None:
        return False
    task.plan = analysis.revised_plan
    task.revised_plan_pending = True
    task.envelope.mode = ExecutionMode.EXECUTE
    return True
