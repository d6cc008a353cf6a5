"""Runtime configuration for the scheduler and its collaborators."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import urlparse

DEFAULT_GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"


@dataclass(slots=True)
class SchedulerSettings:
    """Admission and lifecycle settings."""

    max_concurrent_tasks: int = 3
    poll_interval_seconds: float = 5.0
    ttl_max: int = 10
    escalation_failure_threshold: int = 3
    deescalation_success_threshold: int = 2
    resume_on_start: bool = True


@dataclass(slots=True)
class PlannerSettings:
    """Gemini planner settings."""

    api_key: str | None = None
    model: str = "gemini-3.1-pro-preview"
    verify_model: str = "gemini-2.5-flash-lite"
    base_url: str = DEFAULT_GEMINI_BASE_URL
    temperature: float = 0.2
    max_output_tokens: int = 4096
    timeout_seconds: float = 60.0
    max_retries: int = 3


@dataclass(slots=True)
class ExecutorSettings:
    """Agent CLI session settings."""

    command_template: str = "claude -p {prompt}"
    timeout_seconds: int = 600
    workdir_root: Path = Path(".legacy_agency/sessions")


@dataclass(slots=True)
class Settings:
    """Application settings grouped by collaborator."""

    db_path: Path = Path(".legacy_agency.db")
    scheduler: SchedulerSettings = field(default_factory=SchedulerSettings)
    planner: PlannerSettings = field(default_factory=PlannerSettings)
    executor: ExecutorSettings = field(default_factory=ExecutorSettings)

    @classmethod
    def from_env(cls, db_path: Path | None = None) -> Settings:
        """Load settings from environment with sane defaults for local development."""

        return cls(
            db_path=db_path or Path(os.getenv("LEGACY_AGENCY_DB_PATH", ".legacy_agency.db")),
            scheduler=SchedulerSettings(
                max_concurrent_tasks=int(os.getenv("LEGACY_AGENCY_MAX_CONCURRENT_TASKS", "3")),
                poll_interval_seconds=float(
                    os.getenv("LEGACY_AGENCY_POLL_INTERVAL_SECONDS", "5.0"),
                ),
                ttl_max=int(os.getenv("LEGACY_AGENCY_TTL_MAX", "10")),
                escalation_failure_threshold=int(
                    os.getenv("LEGACY_AGENCY_ESCALATION_FAILURE_THRESHOLD", "3"),
                ),
                deescalation_success_threshold=int(
                    os.getenv("LEGACY_AGENCY_DEESCALATION_SUCCESS_THRESHOLD", "2"),
                ),
                resume_on_start=_env_bool("LEGACY_AGENCY_RESUME_ON_START", default=True),
            ),
            planner=PlannerSettings(
                api_key=(
                    os.getenv("LEGACY_AGENCY_GEMINI_API_KEY") or os.getenv("GEMINI_API_KEY")
                ),
                model=os.getenv("LEGACY_AGENCY_GEMINI_MODEL", "gemini-3.1-pro-preview"),
                verify_model=os.getenv(
                    "LEGACY_AGENCY_GEMINI_VERIFY_MODEL",
                    "gemini-2.5-flash-lite",
                ),
                base_url=os.getenv("LEGACY_AGENCY_GEMINI_BASE_URL", DEFAULT_GEMINI_BASE_URL),
                temperature=float(os.getenv("LEGACY_AGENCY_GEMINI_TEMPERATURE", "0.2")),
                max_output_tokens=int(
                    os.getenv("LEGACY_AGENCY_GEMINI_MAX_OUTPUT_TOKENS", "4096"),
                ),
                timeout_seconds=float(os.getenv("LEGACY_AGENCY_GEMINI_TIMEOUT_SECONDS", "60")),
                max_retries=int(os.getenv("LEGACY_AGENCY_GEMINI_MAX_RETRIES", "3")),
            ),
            executor=ExecutorSettings(
                command_template=os.getenv(
                    "LEGACY_AGENCY_EXECUTOR_COMMAND_TEMPLATE",
                    "claude -p {prompt}",
                ),
                timeout_seconds=int(os.getenv("LEGACY_AGENCY_EXECUTOR_TIMEOUT_SECONDS", "600")),
                workdir_root=Path(
                    os.getenv("LEGACY_AGENCY_EXECUTOR_WORKDIR_ROOT", ".legacy_agency/sessions"),
                ),
            ),
        )

    def validate_for_scheduler(self) -> None:
        """Raise configuration error if scheduler or executor limits are unusable."""

        scheduler = self.scheduler
        if scheduler.max_concurrent_tasks <= 0:
            raise ValueError("LEGACY_AGENCY_MAX_CONCURRENT_TASKS must be > 0.")
        if scheduler.poll_interval_seconds <= 0:
            raise ValueError("LEGACY_AGENCY_POLL_INTERVAL_SECONDS must be > 0.")
        if scheduler.ttl_max <= 0:
            raise ValueError("LEGACY_AGENCY_TTL_MAX must be > 0.")
        if scheduler.escalation_failure_threshold <= 0:
            raise ValueError("LEGACY_AGENCY_ESCALATION_FAILURE_THRESHOLD must be > 0.")
        if scheduler.deescalation_success_threshold <= 0:
            raise ValueError("LEGACY_AGENCY_DEESCALATION_SUCCESS_THRESHOLD must be > 0.")
        if self.executor.timeout_seconds <= 0:
            raise ValueError("LEGACY_AGENCY_EXECUTOR_TIMEOUT_SECONDS must be > 0.")
        template = self.executor.command_template
        if "{prompt}" not in template and "{prompt_file}" not in template:
            raise ValueError(
                "LEGACY_AGENCY_EXECUTOR_COMMAND_TEMPLATE must include {prompt} or {prompt_file}.",
            )

    def validate_for_planner(self) -> None:
        """Raise configuration error if the Gemini planner cannot be built."""

        if not self.planner.api_key:
            raise ValueError(
                "Gemini API key is required. "
                "Set LEGACY_AGENCY_GEMINI_API_KEY or GEMINI_API_KEY.",
            )
        _validate_base_url(self.planner.base_url)
        if not 0.0 <= self.planner.temperature <= 2.0:
            raise ValueError("LEGACY_AGENCY_GEMINI_TEMPERATURE must be within [0, 2].")
        if self.planner.max_output_tokens <= 0:
            raise ValueError("LEGACY_AGENCY_GEMINI_MAX_OUTPUT_TOKENS must be > 0.")


def _validate_base_url(value: str) -> None:
    parsed = urlparse(value)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise ValueError(
            "Invalid Gemini base URL: "
            f"{value!r}. Expected an absolute URL with http:// or https:// scheme.",
        )


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean value for {name}: {value!r}")
