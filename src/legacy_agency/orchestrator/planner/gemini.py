"""Planner backed by the Gemini generateContent REST API."""

from __future__ import annotations

import json
import logging
import re
from typing import Any

import httpx

from legacy_agency.orchestrator.contracts import (
    Analysis,
    Classification,
    ExecutionResult,
    PlannerError,
    Verification,
    parse_analysis,
    parse_classification,
    parse_plan,
    parse_verification,
)
from legacy_agency.orchestrator.models import Plan, Task
from legacy_agency.orchestrator.planner.prompts import (
    JSON_ONLY_SUFFIX,
    build_analyze_prompt,
    build_answer_prompt,
    build_classify_prompt,
    build_plan_prompt,
    build_verify_prompt,
)

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"
DEFAULT_MODEL = "gemini-3.1-pro-preview"
DEFAULT_VERIFY_MODEL = "gemini-2.5-flash-lite"
DEFAULT_MAX_RETRIES = 3

_FENCED_JSON = re.compile(r"```(?:json)?\s*(\{.*?\})\s*```", re.DOTALL | re.IGNORECASE)


class GeminiPlanner:
    """Planner implementation issuing one generateContent call per operation."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        api_key: str,
        model: str = DEFAULT_MODEL,
        verify_model: str = DEFAULT_VERIFY_MODEL,
        base_url: str = DEFAULT_BASE_URL,
        temperature: float = 0.2,
        max_output_tokens: int = 4096,
        timeout_seconds: float = 60.0,
        max_retries: int = DEFAULT_MAX_RETRIES,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.model = model
        self.verify_model = verify_model
        self.temperature = temperature
        self.max_output_tokens = max_output_tokens
        self._api_key = api_key
        self._client = httpx.Client(
            base_url=base_url,
            timeout=httpx.Timeout(timeout_seconds, connect=10.0),
            headers={"Content-Type": "application/json"},
            transport=transport or httpx.HTTPTransport(retries=max_retries),
        )
        logger.info("Gemini planner initialized (model: %s)", model)

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> GeminiPlanner:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()

    def classify(self, message: str) -> Classification:
        return parse_classification(self._generate_json(build_classify_prompt(message)))

    def answer(self, message: str) -> str:
        return self._generate(build_answer_prompt(message), model=self.model)

    def plan(self, task: Task) -> Plan:
        plan = parse_plan(self._generate_json(build_plan_prompt(task)))
        logger.info(
            "[%s] Plan created: %d steps, est. %s min",
            task.task_id,
            len(plan.steps),
            "?" if plan.estimated_duration_minutes is None else plan.estimated_duration_minutes,
        )
        return plan

    def deep_analyze(self, task: Task) -> Analysis:
        analysis = parse_analysis(self._generate_json(build_analyze_prompt(task)))
        logger.info(
            "[%s] ARCHITECT analysis: %s (confidence: %.2f)",
            task.task_id,
            analysis.root_cause,
            analysis.confidence,
        )
        return analysis

    def verify(self, task: Task, result: ExecutionResult) -> Verification:
        verification = parse_verification(
            self._generate_json(build_verify_prompt(task, result), model=self.verify_model),
        )
        logger.info(
            "[%s] Verification: %s (%s)",
            task.task_id,
            verification.status.value,
            verification.reason,
        )
        return verification

    def _generate_json(self, prompt: str, *, model: str | None = None) -> dict[str, Any]:
        raw = self._generate(prompt + JSON_ONLY_SUFFIX, model=model or self.model)
        payload = extract_json_object(raw)
        if payload is None:
            logger.warning("Failed to parse planner JSON response, returning raw text")
            return {"raw": raw.strip()}
        return payload

    def _generate(self, prompt: str, *, model: str) -> str:
        body = {
            "contents": [{"parts": [{"text": prompt}]}],
            "generationConfig": {
                "temperature": self.temperature,
                "maxOutputTokens": self.max_output_tokens,
            },
        }
        try:
            response = self._client.post(
                f"/models/{model}:generateContent",
                params={"key": self._api_key},
                json=body,
            )
        except httpx.TimeoutException as error:
            raise PlannerError(f"Gemini request timed out ({model})", transient=True) from error
        except httpx.HTTPError as error:
            raise PlannerError(f"Gemini request failed: {error}", transient=True) from error

        if not response.is_success:
            status = response.status_code
            raise PlannerError(
                f"Gemini API error ({status}): {response.text[:500]}",
                transient=status == 429 or status >= 500,
            )
        try:
            data = response.json()
        except json.JSONDecodeError as error:
            raise PlannerError("Gemini API returned a non-JSON body", transient=True) from error
        return _candidate_text(data)


def extract_json_object(text: str) -> dict[str, Any] | None:
    """Recover a JSON object from model text that may carry fences or prose."""

    stripped = text.strip()
    if not stripped:
        return None

    direct = _try_load_dict(stripped)
    if direct is not None:
        return direct

    fenced = _FENCED_JSON.search(stripped)
    if fenced is not None:
        payload = _try_load_dict(fenced.group(1))
        if payload is not None:
            return payload

    start = stripped.find("{")
    end = stripped.rfind("}")
    if start == -1 or end == -1 or end <= start:
        return None
    return _try_load_dict(stripped[start : end + 1])


def _try_load_dict(raw: str) -> dict[str, Any] | None:
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        return None
    if not isinstance(parsed, dict):
        return None
    return parsed


def _candidate_text(data: object) -> str:
    if not isinstance(data, dict):
        return ""
    candidates = data.get("candidates")
    if not isinstance(candidates, list) or not candidates:
        return ""
    content = candidates[0].get("content") if isinstance(candidates[0], dict) else None
    parts = content.get("parts") if isinstance(content, dict) else None
    if not isinstance(parts, list) or not parts or not isinstance(parts[0], dict):
        return ""
    text = parts[0].get("text")
    return text if isinstance(text, str) else ""
