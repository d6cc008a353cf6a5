"""Executor collaborator implementations."""

from legacy_agency.orchestrator.backend.base import Executor
from legacy_agency.orchestrator.backend.cli_session import CliSessionExecutor

__all__ = [
    "CliSessionExecutor",
    "Executor",
]
