"""Typed collaborator results validated at the planner/executor boundary."""

from __future__ import annotations

import hashlib
import math
from dataclasses import asdict, dataclass, field
from typing import Any

from legacy_agency.orchestrator.models import ExecutionMode, Plan, PlanStep, Verdict

SIMPLE_TASK_TYPE = "simple"


class CollaboratorError(RuntimeError):
    """Planner/executor call failure with retryability hint."""

    def __init__(self, message: str, *, transient: bool = True) -> None:
        super().__init__(message)
        self.transient = transient


class PlannerError(CollaboratorError):
    """Planner call failed or returned unusable data."""


class MalformedResponseError(PlannerError):
    """Structured data was expected but not received."""


class ExecutorError(CollaboratorError):
    """Executor could not carry out a step."""


@dataclass(slots=True)
class Classification:
    """Intent classification for an inbound message."""

    task_type: str = "unknown"
    mode: ExecutionMode = ExecutionMode.EXECUTE
    software: str | None = None
    complexity: str = "medium"
    estimated_steps: int | None = None

    @property
    def is_simple(self) -> bool:
        return self.task_type == SIMPLE_TASK_TYPE

    def to_payload(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["mode"] = self.mode.value
        return payload


@dataclass(slots=True)
class Analysis:
    """Deep root-cause analysis produced in ARCHITECT mode."""

    root_cause: str = "unknown"
    revised_plan: Plan | None = None
    confidence: float = 0.0
    alternatives: list[str] = field(default_factory=list)
    should_escalate_to_human: bool = False

    @property
    def is_actionable(self) -> bool:
        return self.revised_plan is not None and not self.should_escalate_to_human

    def to_payload(self) -> dict[str, Any]:
        return {
            "root_cause": self.root_cause,
            "has_revised_plan": self.revised_plan is not None,
            "confidence": self.confidence,
            "alternatives": list(self.alternatives),
            "should_escalate_to_human": self.should_escalate_to_human,
        }


@dataclass(slots=True)
class Verification:
    """Verifier verdict for one hop."""

    status: Verdict
    reason: str = ""
    suggestions: str | None = None

    def to_payload(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "reason": self.reason,
            "suggestions": self.suggestions,
        }


@dataclass(slots=True)
class StepOutcome:
    """Result of one executed (or skipped) plan step."""

    step_number: int
    status: str
    mode: ExecutionMode
    session_id: str | None = None
    exit_code: int | None = None
    output: str = ""
    error: str | None = None
    observations: dict[str, str | None] = field(default_factory=dict)

    def to_payload(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["mode"] = self.mode.value
        return payload


@dataclass(slots=True)
class ExecutionResult:
    """Everything the executing phase produced for the verifier."""

    mode: ExecutionMode
    steps: list[StepOutcome] = field(default_factory=list)
    analysis: Analysis | None = None

    def to_payload(self) -> dict[str, Any]:
        return {
            "mode": self.mode.value,
            "steps": [step.to_payload() for step in self.steps],
            "analysis": self.analysis.to_payload() if self.analysis is not None else None,
        }


def parse_classification(raw: object) -> Classification:
    """Build a classification, tolerating missing optional fields."""

    payload = _require_object(raw, "classification")
    task_type = _clean_text(payload.get("type"))
    complexity = _clean_text(payload.get("complexity"))
    return Classification(
        task_type=task_type.lower() if task_type else "unknown",
        mode=_parse_mode(payload.get("mode"), default=ExecutionMode.EXECUTE),
        software=_clean_text(payload.get("software")),
        complexity=complexity.lower() if complexity else "medium",
        estimated_steps=_optional_int(payload.get("estimated_steps")),
    )


def parse_plan(raw: object) -> Plan:
    """Build a plan; malformed steps are dropped, missing steps yield an empty plan."""

    payload = _require_object(raw, "plan")
    raw_steps = payload.get("steps")
    steps: list[PlanStep] = []
    if isinstance(raw_steps, list):
        for index, raw_step in enumerate(raw_steps, start=1):
            step = _parse_step(raw_step, fallback_number=index)
            if step is not None:
                steps.append(step)

    duration = payload.get("estimated_duration_minutes", payload.get("estimated_duration"))
    safety_notes = payload.get("safety_notes")
    return Plan(
        steps=steps,
        estimated_duration_minutes=float(duration)
        if isinstance(duration, int | float)
        and not isinstance(duration, bool)
        and math.isfinite(duration)
        else None,
        requires_human_approval=payload.get("requires_human_approval") is True,
        safety_notes=safety_notes if isinstance(safety_notes, str) else "",
    )


def parse_analysis(raw: object) -> Analysis:
    """Build a deep-analysis result; an unusable revised plan is treated as absent."""

    payload = _require_object(raw, "analysis")
    revised_plan: Plan | None = None
    raw_plan = payload.get("revised_plan")
    if isinstance(raw_plan, dict):
        candidate = parse_plan(raw_plan)
        if candidate.steps:
            revised_plan = candidate

    alternatives_raw = payload.get("alternatives", payload.get("alternative_approaches"))
    alternatives = (
        [str(item) for item in alternatives_raw if isinstance(item, str | int | float)]
        if isinstance(alternatives_raw, list)
        else []
    )
    root_cause = payload.get("root_cause")
    return Analysis(
        root_cause=root_cause if isinstance(root_cause, str) and root_cause else "unknown",
        revised_plan=revised_plan,
        confidence=_clamp_confidence(payload.get("confidence")),
        alternatives=alternatives,
        should_escalate_to_human=payload.get("should_escalate_to_human") is True,
    )


def parse_verification(raw: object) -> Verification:
    """Build a verification; a missing or unknown verdict is malformed."""

    payload = _require_object(raw, "verification")
    status = payload.get("status")
    if not isinstance(status, str):
        raise MalformedResponseError("verification.status is missing")
    try:
        verdict = Verdict(status.strip().upper())
    except ValueError as error:
        raise MalformedResponseError(f"Unknown verification status: {status!r}") from error

    reason = payload.get("reason")
    suggestions = payload.get("suggestions")
    return Verification(
        status=verdict,
        reason=reason if isinstance(reason, str) else "",
        suggestions=suggestions if isinstance(suggestions, str) and suggestions else None,
    )


def _parse_step(raw: object, *, fallback_number: int) -> PlanStep | None:
    if not isinstance(raw, dict):
        return None
    action = raw.get("action")
    if not isinstance(action, str) or not action.strip():
        return None
    tools = raw.get("tools_needed")
    verification = raw.get("verification")
    return PlanStep(
        step_number=_optional_int(raw.get("step_number")) or fallback_number,
        action=action.strip(),
        mode=_parse_mode(raw.get("mode"), default=ExecutionMode.EXECUTE),
        verification=verification if isinstance(verification, str) else "",
        tools_needed=[str(tool) for tool in tools] if isinstance(tools, list) else [],
    )


def _parse_mode(value: object, *, default: ExecutionMode) -> ExecutionMode:
    if not isinstance(value, str):
        return default
    try:
        return ExecutionMode(value.strip().upper())
    except ValueError:
        return default


def _clean_text(value: object) -> str | None:
    if not isinstance(value, str) or not value.strip():
        return None
    return value.strip()


def _optional_int(value: object) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if math.isfinite(value) else None
    if isinstance(value, str) and value.strip().isdecimal():
        return int(value.strip())
    return None


def _clamp_confidence(value: object) -> float:
    if isinstance(value, bool) or not isinstance(value, int | float) or math.isnan(value):
        return 0.0
    return min(1.0, max(0.0, float(value)))


def _require_object(raw: object, name: str) -> dict[str, Any]:
    if not isinstance(raw, dict):
        raise MalformedResponseError(f"Expected JSON object for {name}, got {type(raw).__name__}")
    return raw


def state_fingerprint(outcome: StepOutcome) -> str:
    """Opaque digest of the environment state a step left behind."""

    material = f"{outcome.step_number}:{outcome.status}:{outcome.output}"
    return hashlib.sha256(material.encode("utf-8")).hexdigest()[:16]
