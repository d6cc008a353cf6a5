"""Planner collaborator implementations."""

from legacy_agency.orchestrator.planner.base import Planner
from legacy_agency.orchestrator.planner.gemini import GeminiPlanner

__all__ = [
    "GeminiPlanner",
    "Planner",
]
