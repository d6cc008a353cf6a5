"""Shared test fixtures: scripted planner/executor collaborators and task builders."""

from __future__ import annotations

import sys
import threading
from collections import deque
from collections.abc import Callable
from dataclasses import replace
from pathlib import Path

import pytest

from legacy_agency.config import Settings
from legacy_agency.orchestrator.contracts import (
    Analysis,
    Classification,
    ExecutionResult,
    StepOutcome,
    Verification,
)
from legacy_agency.orchestrator.models import (
    Envelope,
    ExecutionMode,
    Plan,
    PlanStep,
    Task,
    TaskStatus,
    Verdict,
)
from legacy_agency.orchestrator.repository import TaskRepository
from legacy_agency.storage.common import utc_now

ECHO_AGENT_COMMAND_TEMPLATE = (
    f"{sys.executable} -m legacy_agency.orchestrator.backend.echo_agent "
    "--prompt-file {prompt_file}"
)


class ScriptedPlanner:
    """Planner double returning scripted verdicts; records every call."""

    def __init__(self) -> None:
        self.classification = Classification(task_type="data-entry")
        self.answer_text = "We automate legacy desktop software."
        self.plan_steps = [
            PlanStep(step_number=1, action="Open the customer form", verification="Form open"),
        ]
        self.verdicts: deque[Verdict | Exception] = deque()
        self.default_verdict = Verdict.PASS
        self.analysis = Analysis(
            root_cause="dialog moved",
            revised_plan=Plan(
                steps=[PlanStep(step_number=1, action="Dismiss dialog, retry entry")],
            ),
            confidence=0.8,
        )
        self.classify_error: Exception | None = None
        self.plan_error: Exception | None = None
        self.calls: list[str] = []
        self.verified_modes: list[ExecutionMode] = []
        self._lock = threading.Lock()

    def classify(self, message: str) -> Classification:
        self._record("classify")
        if self.classify_error is not None:
            raise self.classify_error
        return self.classification

    def answer(self, message: str) -> str:
        self._record("answer")
        return self.answer_text

    def plan(self, task: Task) -> Plan:
        self._record("plan")
        if self.plan_error is not None:
            raise self.plan_error
        return Plan(steps=[replace(step) for step in self.plan_steps])

    def deep_analyze(self, task: Task) -> Analysis:
        self._record("deep_analyze")
        return self.analysis

    def verify(self, task: Task, result: ExecutionResult) -> Verification:
        self._record("verify")
        self.verified_modes.append(result.mode)
        verdict = self.verdicts.popleft() if self.verdicts else self.default_verdict
        if isinstance(verdict, Exception):
            raise verdict
        return Verification(status=verdict, reason=f"scripted {verdict.value}")

    def _record(self, name: str) -> None:
        with self._lock:
            self.calls.append(name)


class RecordingExecutor:
    """Executor double; ``gate`` blocks every step until released."""

    def __init__(self) -> None:
        self.direct: list[tuple[str, int]] = []
        self.supervised: list[tuple[str, int]] = []
        self.error: Exception | None = None
        self.gate: threading.Event | None = None
        self.running = 0
        self.max_running = 0
        self._lock = threading.Lock()
        self._counter = 0

    def run_direct(self, task: Task, step: PlanStep) -> StepOutcome:
        return self._run(task, step, ExecutionMode.EXECUTE, self.direct)

    def run_supervised(self, task: Task, step: PlanStep) -> StepOutcome:
        outcome = self._run(task, step, ExecutionMode.SUPERVISE, self.supervised)
        outcome.observations = {"before": None, "after": None}
        return outcome

    def _run(
        self,
        task: Task,
        step: PlanStep,
        mode: ExecutionMode,
        log: list[tuple[str, int]],
    ) -> StepOutcome:
        with self._lock:
            self.running += 1
            self.max_running = max(self.max_running, self.running)
            self._counter += 1
            session_id = f"session-{self._counter}"
            log.append((task.task_id, step.step_number))
        try:
            if self.gate is not None:
                self.gate.wait(timeout=5)
            if self.error is not None:
                raise self.error
            return StepOutcome(
                step_number=step.step_number,
                status="succeeded",
                mode=mode,
                session_id=session_id,
                exit_code=0,
                output=f"done {task.task_id} step {step.step_number}",
            )
        finally:
            with self._lock:
                self.running -= 1


@pytest.fixture()
def planner() -> ScriptedPlanner:
    return ScriptedPlanner()


@pytest.fixture()
def executor() -> RecordingExecutor:
    return RecordingExecutor()


@pytest.fixture()
def make_task() -> Callable[..., Task]:
    counter = iter(range(1, 10_000))

    def _make(
        *,
        task_id: str | None = None,
        ttl_max: int = 10,
        mode: ExecutionMode = ExecutionMode.EXECUTE,
        status: TaskStatus = TaskStatus.RECEIVED,
    ) -> Task:
        now = utc_now()
        return Task(
            task_id=task_id or f"LEGACY-TEST-{next(counter):04d}",
            description="Enter invoice 42 into the accounting app",
            software_name="QuickBooks 2009",
            task_type="data-entry",
            status=status,
            envelope=Envelope(ttl_max=ttl_max, mode=mode),
            created_at=now,
            updated_at=now,
        )

    return _make


@pytest.fixture()
def repository(tmp_path: Path):
    repo = TaskRepository(tmp_path / "agency.db")
    repo.init_schema()
    yield repo
    repo.close()


@pytest.fixture()
def echo_agent(monkeypatch, tmp_path: Path):
    """Monkeypatch Settings.from_env to run sessions through the echo agent."""
    original_from_env = Settings.from_env

    def _patched_from_env(db_path=None):
        settings = original_from_env(db_path=db_path)
        new_executor = replace(
            settings.executor,
            command_template=ECHO_AGENT_COMMAND_TEMPLATE,
            workdir_root=tmp_path / "sessions",
            timeout_seconds=30,
        )
        new_scheduler = replace(settings.scheduler, poll_interval_seconds=0.05)
        return replace(settings, executor=new_executor, scheduler=new_scheduler)

    monkeypatch.setattr(Settings, "from_env", staticmethod(_patched_from_env))
