"""Prompt templates for planner calls."""

from __future__ import annotations

import json

from legacy_agency.orchestrator.contracts import ExecutionResult
from legacy_agency.orchestrator.models import Task, plan_to_payload

JSON_ONLY_SUFFIX = "\n\nRespond with valid JSON only. No markdown, no code fences."

MAX_RESULT_CHARS = 2_000

CLASSIFY_PROMPT = """\
You are the orchestrator for a Legacy Interface Automation Agency.
Your job is to classify incoming client requests.

TASK TYPES:
- "data-entry": Client needs data entered into legacy software (GUI automation)
- "data-extraction": Client needs data pulled OUT of legacy software
- "workflow": Multi-step process (entry + extraction + transformation)
- "setup": Initial configuration/mapping of a new legacy application
- "simple": A simple question that doesn't need an execution session

EXECUTION MODES (for non-simple tasks):
- "EXECUTE": Standard CLI/code execution
- "SUPERVISE": GUI automation (screenshots, mouse, keyboard)
- "ARCHITECT": Complex planning that needs deep analysis first

CLIENT MESSAGE: {message}

Classify this request. Return JSON with: type, mode, software (if mentioned),
complexity (low/medium/high), estimated_steps."""

ANSWER_PROMPT = """\
You are the customer-facing assistant for a Legacy Interface Automation Agency.
Answer this client question helpfully and concisely.

Our services:
- Automate data entry into legacy desktop software (no API needed)
- Extract data from GUI-only applications
- Agents operate the mouse and keyboard like a human operator

CLIENT QUESTION: {message}"""

PLAN_PROMPT = """\
You are the orchestrator planning a legacy software automation task.

TASK: {description}
SOFTWARE: {software}
TYPE: {task_type}
COMPLEXITY: {complexity}
CURRENT MODE: {mode}
HOPS: {hops}/{ttl_max}
{documents}

Create an execution plan. Each step should be specific and verifiable.
For GUI tasks (SUPERVISE mode), include expected UI element descriptions.
For code tasks (EXECUTE mode), include the specific commands/scripts to run.

Return JSON with:
{{
  "steps": [
    {{
      "step_number": 1,
      "action": "description of what to do",
      "mode": "EXECUTE or SUPERVISE",
      "verification": "how to verify this step succeeded",
      "tools_needed": ["list", "of", "tools"]
    }}
  ],
  "estimated_duration_minutes": 10,
  "requires_human_approval": false,
  "safety_notes": "any safety considerations"
}}"""

ANALYZE_PROMPT = """\
You are in ARCHITECT mode: read-only deep analysis.

A legacy automation task has FAILED {failures} times.

TASK: {description}
SOFTWARE: {software}
LAST ERROR: {last_error}
PREVIOUS PLAN: {previous_plan}
STATE HASHES: {state_hashes}

Analyze the root cause of failure. Consider:
1. Is the UI different than expected? (element moved, dialog appeared)
2. Is the data format wrong? (parsing error)
3. Is there a timing issue? (element not loaded yet)
4. Is there a permission issue?

Return JSON with:
{{
  "root_cause": "what went wrong",
  "revised_plan": {{ "steps": [...] }},
  "confidence": 0.0,
  "alternatives": ["if this fails, try..."],
  "should_escalate_to_human": false
}}"""

VERIFY_PROMPT = """\
You are a verification agent. Check if this task completed correctly.

TASK: {description}
EXPECTED OUTCOME: {expected}
ACTUAL RESULT: {result}

Return JSON:
{{
  "status": "PASS" or "RETRY" or "ESCALATE",
  "reason": "why this status",
  "suggestions": "if RETRY, what to fix"
}}"""


def build_classify_prompt(message: str) -> str:
    return CLASSIFY_PROMPT.format(message=json.dumps(message, ensure_ascii=False))


def build_answer_prompt(message: str) -> str:
    return ANSWER_PROMPT.format(message=json.dumps(message, ensure_ascii=False))


def build_plan_prompt(task: Task) -> str:
    if task.documents:
        names = ", ".join(document.original for document in task.documents)
        documents = f"Attached documents: {names}"
    else:
        documents = "No documents attached."
    complexity = (task.classification or {}).get("complexity", "unknown")
    return PLAN_PROMPT.format(
        description=task.description,
        software=task.software_name,
        task_type=task.task_type,
        complexity=complexity,
        mode=task.envelope.mode.value,
        hops=task.envelope.hops,
        ttl_max=task.envelope.ttl_max,
        documents=documents,
    )


def build_analyze_prompt(task: Task) -> str:
    previous_plan = (
        json.dumps(plan_to_payload(task.plan), indent=2, ensure_ascii=False)
        if task.plan is not None
        else "none"
    )
    return ANALYZE_PROMPT.format(
        failures=task.envelope.consecutive_failures,
        description=task.description,
        software=task.software_name,
        last_error=task.last_error or "unknown",
        previous_plan=previous_plan,
        state_hashes=json.dumps(task.envelope.state_hashes),
    )


def build_verify_prompt(task: Task, result: ExecutionResult) -> str:
    expected = (
        task.plan.expected_outcome
        if task.plan is not None
        else "Task should complete successfully"
    )
    return VERIFY_PROMPT.format(
        description=task.description,
        expected=expected,
        result=json.dumps(result.to_payload(), ensure_ascii=False)[:MAX_RESULT_CHARS],
    )
