"""Subprocess-based executor that spawns one agent CLI session per step."""

from __future__ import annotations

import logging
import os
import shlex
import subprocess
import time
from pathlib import Path
from uuid import uuid4

from legacy_agency.orchestrator.contracts import ExecutorError, StepOutcome
from legacy_agency.orchestrator.models import ExecutionMode, PlanStep, Task

logger = logging.getLogger(__name__)

DEFAULT_COMMAND_TEMPLATE = "claude -p {prompt}"
OUTPUT_PREVIEW_CHARS = 2_000
TIMEOUT_EXIT_CODE = 124


class CliSessionExecutor:
    """Render the session prompt into a CLI command template and run it."""

    def __init__(
        self,
        *,
        workdir_root: Path,
        command_template: str = DEFAULT_COMMAND_TEMPLATE,
        timeout_seconds: int = 600,
    ) -> None:
        self.workdir_root = workdir_root
        self.command_template = command_template
        self.timeout_seconds = timeout_seconds

    def run_direct(self, task: Task, step: PlanStep) -> StepOutcome:
        return self._run(task=task, step=step, mode=ExecutionMode.EXECUTE)

    def run_supervised(self, task: Task, step: PlanStep) -> StepOutcome:
        outcome = self._run(task=task, step=step, mode=ExecutionMode.SUPERVISE)
        # Before/after screen captures are produced by the session itself, if at all.
        outcome.observations = {"before": None, "after": None}
        return outcome

    def _run(self, *, task: Task, step: PlanStep, mode: ExecutionMode) -> StepOutcome:
        session_id = f"task-{task.task_id[-8:]}-{uuid4().hex[:6]}"
        session_dir = self.workdir_root / task.task_id / session_id
        session_dir.mkdir(parents=True, exist_ok=True)
        prompt = build_session_prompt(task_id=task.task_id, mode=mode, step=step)
        prompt_file = session_dir / "prompt.txt"
        prompt_file.write_text(prompt, "utf-8")
        stdout_path = session_dir / "stdout.log"
        stderr_path = session_dir / "stderr.log"

        run_args, command_head = _build_run_args(
            command_template=self.command_template,
            prompt=prompt,
            prompt_file=prompt_file,
            mode=mode,
            session_id=session_id,
        )
        env = os.environ.copy()
        env["LEGACY_AGENCY_TASK_ID"] = task.task_id
        env["LEGACY_AGENCY_SESSION_ID"] = session_id
        env["LEGACY_AGENCY_MODE"] = mode.value

        logger.info(
            "Spawning session %s for task %s (mode: %s)",
            session_id,
            task.task_id,
            mode.value,
        )
        try:
            with (
                stdout_path.open("w", encoding="utf-8") as stdout_handle,
                stderr_path.open("w", encoding="utf-8") as stderr_handle,
            ):
                exit_code, timed_out = _run_subprocess(
                    run_args=run_args,
                    env=env,
                    cwd=session_dir,
                    timeout_seconds=self.timeout_seconds,
                    stdout_handle=stdout_handle,
                    stderr_handle=stderr_handle,
                )
        except FileNotFoundError as error:
            raise ExecutorError(
                f"Session command not found: {command_head}",
                transient=False,
            ) from error
        except OSError as error:
            raise ExecutorError(f"Session failed to start: {error}", transient=True) from error

        stdout_text = _read_text(stdout_path)
        stderr_text = _read_text(stderr_path)
        if timed_out:
            status = "timeout"
            error_text: str | None = f"Session timed out after {self.timeout_seconds}s"
        elif exit_code == 0:
            status = "succeeded"
            error_text = None
        else:
            status = "failed"
            error_text = stderr_text.strip()[:OUTPUT_PREVIEW_CHARS] or f"exit code {exit_code}"

        return StepOutcome(
            step_number=step.step_number,
            status=status,
            mode=mode,
            session_id=session_id,
            exit_code=exit_code,
            output=stdout_text.strip()[:OUTPUT_PREVIEW_CHARS],
            error=error_text,
        )


def build_session_prompt(*, task_id: str, mode: ExecutionMode, step: PlanStep) -> str:
    """Mode-specific instructions wrapped around one plan step."""

    base = f"Task ID: {task_id}\nMode: {mode.value}\n\n"
    action = f"Step {step.step_number}: {step.action}"
    if mode is ExecutionMode.SUPERVISE:
        return (
            base
            + "SUPERVISE MODE: Computer use enabled. Use screenshots, mouse, and keyboard.\n"
            + f"Complete this GUI step:\n{action}\n\n"
            + f"Expected UI state: {step.verification}\n\n"
            + "Take screenshots before and after each action. Report results as JSON."
        )
    return (
        base
        + "EXECUTE MODE: You have full tool access. Complete this step:\n"
        + f"{action}\n\nVerification: {step.verification}\n\n"
        + "Report results as JSON when complete."
    )


def _build_run_args(
    *,
    command_template: str,
    prompt: str,
    prompt_file: Path,
    mode: ExecutionMode,
    session_id: str,
) -> tuple[list[str], str]:
    stripped = command_template.strip()
    if not stripped:
        raise ExecutorError("Session command template is empty.", transient=False)
    if "{prompt}" not in stripped and "{prompt_file}" not in stripped:
        raise ExecutorError(
            "Session command template must include {prompt} or {prompt_file}.",
            transient=False,
        )
    try:
        rendered = stripped.format(
            prompt=shlex.quote(prompt),
            prompt_file=shlex.quote(str(prompt_file)),
            mode=shlex.quote(mode.value),
            session_id=shlex.quote(session_id),
        )
    except KeyError as error:
        raise ExecutorError(
            f"Unsupported command template placeholder: {error}",
            transient=False,
        ) from error

    argv = shlex.split(rendered)
    if not argv:
        raise ExecutorError("Session command template rendered empty command.", transient=False)
    return argv, argv[0]


def _run_subprocess(  # noqa: PLR0913
    *,
    run_args: list[str],
    env: dict[str, str],
    cwd: Path,
    timeout_seconds: int,
    stdout_handle,
    stderr_handle,
) -> tuple[int, bool]:
    process = subprocess.Popen(  # noqa: S603
        run_args,
        env=env,
        cwd=cwd,
        stdout=stdout_handle,
        stderr=stderr_handle,
        text=True,
    )
    start_monotonic = time.monotonic()
    while True:
        returncode = process.poll()
        if returncode is not None:
            return returncode, False
        if time.monotonic() - start_monotonic >= timeout_seconds:
            _terminate_process(process)
            return TIMEOUT_EXIT_CODE, True
        time.sleep(0.1)


def _terminate_process(process: subprocess.Popen[str]) -> None:
    try:
        process.terminate()
    except OSError:
        return
    try:
        process.wait(timeout=2)
    except subprocess.TimeoutExpired:
        try:
            process.kill()
        except OSError:
            return
        process.wait(timeout=2)


def _read_text(path: Path) -> str:
    if not path.exists():
        return ""
    return path.read_text("utf-8", errors="replace")
