from __future__ import annotations

import allure
import pytest

from legacy_agency.orchestrator.contracts import Analysis
from legacy_agency.orchestrator.lifecycle import (
    LifecyclePolicy,
    PassOutcome,
    TtlExceededError,
    apply_analysis,
    begin_hop,
    record_failure,
    record_success,
)
from legacy_agency.orchestrator.models import Envelope, ExecutionMode, Plan, PlanStep

pytestmark = [
    allure.epic("Task Lifecycle"),
    allure.feature("Envelope Transitions"),
]

POLICY = LifecyclePolicy()


def test_begin_hop_increments_and_refuses_past_ttl() -> None:
    envelope = Envelope(ttl_max=2)

    assert begin_hop(envelope) == 1
    assert begin_hop(envelope) == 2
    with pytest.raises(TtlExceededError):
        begin_hop(envelope)
    assert envelope.hops == 2


def test_counters_are_mutually_exclusive() -> None:
    envelope = Envelope()

    record_failure(envelope, POLICY)
    record_failure(envelope, POLICY)
    assert (envelope.consecutive_failures, envelope.consecutive_successes) == (2, 0)

    record_success(envelope, POLICY)
    assert (envelope.consecutive_failures, envelope.consecutive_successes) == (0, 1)

    record_failure(envelope, POLICY)
    assert (envelope.consecutive_failures, envelope.consecutive_successes) == (1, 0)


def test_third_failure_escalates_to_architect_once() -> None:
    envelope = Envelope(hops=3)

    decisions = [record_failure(envelope, POLICY) for _ in range(3)]

    assert [decision.escalated_now for decision in decisions] == [False, False, True]
    assert envelope.mode is ExecutionMode.ARCHITECT
    assert envelope.escalated is True

    envelope.mode = ExecutionMode.EXECUTE
    fourth = record_failure(envelope, POLICY)
    assert fourth.escalated_now is False
    assert envelope.mode is ExecutionMode.EXECUTE


def test_ttl_exhaustion_wins_over_escalation() -> None:
    envelope = Envelope(ttl_max=3, hops=3, consecutive_failures=2)

    decision = record_failure(envelope, POLICY)

    assert decision.ttl_exhausted is True
    assert decision.escalated_now is False
    assert envelope.escalated is False
    assert envelope.mode is ExecutionMode.EXECUTE
    assert envelope.consecutive_failures == 3


def test_deescalation_requires_two_successes_while_escalated() -> None:
    envelope = Envelope(mode=ExecutionMode.ARCHITECT, escalated=True)

    assert record_success(envelope, POLICY) is False
    assert envelope.escalated is True

    assert record_success(envelope, POLICY) is True
    assert envelope.mode is ExecutionMode.EXECUTE
    assert envelope.escalated is False


def test_success_without_escalation_never_changes_mode() -> None:
    envelope = Envelope(mode=ExecutionMode.SUPERVISE, consecutive_successes=5)

    assert record_success(envelope, POLICY) is False
    assert envelope.mode is ExecutionMode.SUPERVISE


def test_custom_thresholds_are_honoured() -> None:
    policy = LifecyclePolicy(escalation_failure_threshold=1, deescalation_success_threshold=1)
    envelope = Envelope()

    assert record_failure(envelope, policy).escalated_now is True
    assert record_success(envelope, policy) is True


def test_apply_analysis_swaps_plan_and_resets_mode(make_task) -> None:
    task = make_task(mode=ExecutionMode.ARCHITECT)
    task.envelope.escalated = True
    revised = Plan(steps=[PlanStep(step_number=1, action="Close the popup first")])

    applied = apply_analysis(task, Analysis(root_cause="popup", revised_plan=revised))

    assert applied is True
    assert task.plan is revised
    assert task.revised_plan_pending is True
    assert task.envelope.mode is ExecutionMode.EXECUTE
    assert task.envelope.escalated is True


@pytest.mark.parametrize(
    "analysis",
    [
        Analysis(root_cause="unknown"),
        Analysis(
            root_cause="permissions",
            revised_plan=Plan(steps=[PlanStep(step_number=1, action="ask admin")]),
            should_escalate_to_human=True,
        ),
    ],
)
def test_apply_analysis_keeps_architect_when_not_actionable(make_task, analysis) -> None:
    task = make_task(mode=ExecutionMode.ARCHITECT)

    assert apply_analysis(task, analysis) is False
    assert task.plan is None
    assert task.envelope.mode is ExecutionMode.ARCHITECT


def test_only_retrying_is_a_non_terminal_outcome() -> None:
    assert [outcome for outcome in PassOutcome if not outcome.is_terminal] == [
        PassOutcome.RETRYING,
    ]
