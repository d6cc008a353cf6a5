"""Executor interface for running plan steps."""

from __future__ import annotations

from typing import Protocol

from legacy_agency.orchestrator.contracts import StepOutcome
from legacy_agency.orchestrator.models import PlanStep, Task


class Executor(Protocol):
    """Protocol implemented by step runners. Failures raise `ExecutorError`."""

    def run_direct(self, task: Task, step: PlanStep) -> StepOutcome:
        """Run a step through direct command execution."""

    def run_supervised(self, task: Task, step: PlanStep) -> StepOutcome:
        """Run a step through supervised UI interaction."""
