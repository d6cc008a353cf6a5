from __future__ import annotations

import json
import sys
from pathlib import Path

import allure
import pytest

from legacy_agency.orchestrator.backend.cli_session import (
    CliSessionExecutor,
    _build_run_args,
    build_session_prompt,
)
from legacy_agency.orchestrator.contracts import ExecutorError
from legacy_agency.orchestrator.models import ExecutionMode, PlanStep

pytestmark = [
    allure.epic("Collaborator Contracts"),
    allure.feature("CLI Session Executor"),
]

ECHO_AGENT = f"{sys.executable} -m legacy_agency.orchestrator.backend.echo_agent"
STEP = PlanStep(step_number=2, action="Enter invoice total", verification="Total shows 42.00")


def test_run_direct_spawns_session_and_captures_output(tmp_path: Path, make_task) -> None:
    executor = CliSessionExecutor(
        workdir_root=tmp_path,
        command_template=f"{ECHO_AGENT} --prompt-file {{prompt_file}}",
        timeout_seconds=30,
    )
    task = make_task()

    outcome = executor.run_direct(task, STEP)

    assert outcome.status == "succeeded"
    assert outcome.exit_code == 0
    assert outcome.mode is ExecutionMode.EXECUTE
    assert outcome.session_id is not None
    assert outcome.session_id.startswith(f"task-{task.task_id[-8:]}-")
    report = json.loads(outcome.output)
    assert report["task_id"] == task.task_id
    assert report["session_id"] == outcome.session_id
    assert report["mode"] == "EXECUTE"
    assert report["step"] == "Step 2: Enter invoice total"

    session_dir = tmp_path / task.task_id / outcome.session_id
    assert (session_dir / "prompt.txt").read_text("utf-8").startswith(f"Task ID: {task.task_id}")
    assert (session_dir / "stdout.log").exists()


def test_run_supervised_marks_mode_and_observations(tmp_path: Path, make_task) -> None:
    executor = CliSessionExecutor(
        workdir_root=tmp_path,
        command_template=f"{ECHO_AGENT} --prompt-file {{prompt_file}}",
        timeout_seconds=30,
    )

    outcome = executor.run_supervised(make_task(), STEP)

    assert outcome.mode is ExecutionMode.SUPERVISE
    assert json.loads(outcome.output)["mode"] == "SUPERVISE"
    assert outcome.observations == {"before": None, "after": None}


def test_nonzero_exit_is_a_failed_outcome(tmp_path: Path, make_task) -> None:
    executor = CliSessionExecutor(
        workdir_root=tmp_path,
        command_template=f"{ECHO_AGENT} --prompt-file {{prompt_file}} --exit-code 3",
        timeout_seconds=30,
    )

    outcome = executor.run_direct(make_task(), STEP)

    assert outcome.status == "failed"
    assert outcome.exit_code == 3
    assert outcome.error == "echo agent failed with exit code 3"


def test_timeout_terminates_session(tmp_path: Path, make_task) -> None:
    executor = CliSessionExecutor(
        workdir_root=tmp_path,
        command_template=(
            f"{sys.executable} -c \"import sys, time; time.sleep(30)\" {{prompt_file}}"
        ),
        timeout_seconds=1,
    )

    outcome = executor.run_direct(make_task(), STEP)

    assert outcome.status == "timeout"
    assert outcome.exit_code == 124
    assert outcome.error == "Session timed out after 1s"


def test_missing_binary_is_not_transient(tmp_path: Path, make_task) -> None:
    executor = CliSessionExecutor(
        workdir_root=tmp_path,
        command_template="definitely-not-an-agent-binary {prompt}",
    )

    with pytest.raises(ExecutorError) as error_info:
        executor.run_direct(make_task(), STEP)

    assert error_info.value.transient is False
    assert "definitely-not-an-agent-binary" in str(error_info.value)


def test_build_run_args_quotes_prompt_placeholders() -> None:
    run_args, command_head = _build_run_args(
        command_template="claude -p {prompt} --session {session_id} --mode {mode}",
        prompt="it's a 'quoted' prompt",
        prompt_file=Path("prompt.txt"),
        mode=ExecutionMode.SUPERVISE,
        session_id="task-1-abc",
    )

    assert command_head == "claude"
    assert run_args == [
        "claude",
        "-p",
        "it's a 'quoted' prompt",
        "--session",
        "task-1-abc",
        "--mode",
        "SUPERVISE",
    ]


@pytest.mark.parametrize(
    "template",
    ["", "claude --no-prompt", "claude {prompt} {unknown}"],
)
def test_build_run_args_rejects_bad_templates(template: str) -> None:
    with pytest.raises(ExecutorError) as error_info:
        _build_run_args(
            command_template=template,
            prompt="x",
            prompt_file=Path("prompt.txt"),
            mode=ExecutionMode.EXECUTE,
            session_id="s",
        )

    assert error_info.value.transient is False


def test_session_prompt_wording_depends_on_mode() -> None:
    execute = build_session_prompt(task_id="T-1", mode=ExecutionMode.EXECUTE, step=STEP)
    supervise = build_session_prompt(task_id="T-1", mode=ExecutionMode.SUPERVISE, step=STEP)

    assert "EXECUTE MODE" in execute
    assert "Verification: Total shows 42.00" in execute
    assert "SUPERVISE MODE" in supervise
    assert "Expected UI state: Total shows 42.00" in supervise
