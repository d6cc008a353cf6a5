"""Planner interface consumed by the scheduler and the inbound message channel."""

from __future__ import annotations

from typing import Protocol

from legacy_agency.orchestrator.contracts import (
    Analysis,
    Classification,
    ExecutionResult,
    Verification,
)
from legacy_agency.orchestrator.models import Plan, Task


class Planner(Protocol):
    """Classify, plan, analyze and verify. Implementations may raise `PlannerError`."""

    def classify(self, message: str) -> Classification:
        """Classify a free-text request into a task type and execution mode."""

    def answer(self, message: str) -> str:
        """Answer a simple question directly."""

    def plan(self, task: Task) -> Plan:
        """Decompose a task into ordered steps."""

    def deep_analyze(self, task: Task) -> Analysis:
        """Find the root cause of repeated failures and propose a revised plan."""

    def verify(self, task: Task, result: ExecutionResult) -> Verification:
        """Judge the outcome of one hop."""
