"""FIFO task scheduler driving the lifecycle state machine under a concurrency cap."""

from __future__ import annotations

import logging
import signal
import threading
import time
from collections import deque
from collections.abc import Iterator
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from contextlib import contextmanager
from dataclasses import dataclass

from sqlalchemy.exc import SQLAlchemyError

from legacy_agency.orchestrator.backend.base import Executor
from legacy_agency.orchestrator.contracts import (
    ExecutionResult,
    StepOutcome,
    Verification,
    state_fingerprint,
)
from legacy_agency.orchestrator.lifecycle import (
    LifecyclePolicy,
    PassOutcome,
    apply_analysis,
    begin_hop,
    record_failure,
    record_success,
)
from legacy_agency.orchestrator.models import ExecutionMode, Task, TaskStatus, Verdict
from legacy_agency.orchestrator.planner.base import Planner
from legacy_agency.orchestrator.repository import TaskRepository

logger = logging.getLogger(__name__)

DEFAULT_MAX_CONCURRENT_TASKS = 3
DEFAULT_POLL_INTERVAL_SECONDS = 5.0


@dataclass(slots=True)
class SchedulerRunSummary:
    """Aggregate scheduler counters for CLI reporting."""

    passes: int = 0
    completed: int = 0
    retried: int = 0
    needs_human: int = 0
    dead_lettered: int = 0
    idle_polls: int = 0

    def add(self, outcome: PassOutcome) -> None:
        self.passes += 1
        if outcome is PassOutcome.COMPLETED:
            self.completed += 1
        elif outcome is PassOutcome.RETRYING:
            self.retried += 1
        elif outcome is PassOutcome.NEEDS_HUMAN:
            self.needs_human += 1
        else:
            self.dead_lettered += 1


class TaskScheduler:
    """Owns the pending, processing and finished collections.

    Moves between them happen under ``_lock``. Passes run on pool threads,
    so repository writes are serialized by ``_store_lock``.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        repository: TaskRepository | None,
        planner: Planner,
        executor: Executor,
        max_concurrent_tasks: int = DEFAULT_MAX_CONCURRENT_TASKS,
        poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS,
        policy: LifecyclePolicy | None = None,
    ) -> None:
        if max_concurrent_tasks < 1:
            raise ValueError("max_concurrent_tasks must be >= 1")
        self.repository = repository
        self.planner = planner
        self.executor = executor
        self.max_concurrent_tasks = max_concurrent_tasks
        self.poll_interval_seconds = poll_interval_seconds
        self.policy = policy or LifecyclePolicy()
        self._pending: deque[Task] = deque()
        self._processing: dict[str, Task] = {}
        self._finished: dict[str, Task] = {}
        self._lock = threading.Lock()
        self._store_lock = threading.Lock()
        self._stop_requested = False

    def enqueue(self, task: Task) -> None:
        """Append a task to the tail of the pending queue."""

        if task.status.is_terminal:
            raise ValueError(f"Task {task.task_id} is already {task.status.value}")
        with self._lock:
            self._pending.append(task)
            depth = len(self._pending)
        logger.info("Task %s enqueued. Queue depth: %d", task.task_id, depth)

    def pending(self) -> int:
        with self._lock:
            return len(self._pending)

    def active(self) -> int:
        with self._lock:
            return len(self._processing)

    def completed(self) -> int:
        with self._lock:
            return len(self._finished)

    def pending_ids(self) -> list[str]:
        with self._lock:
            return [task.task_id for task in self._pending]

    def active_ids(self) -> list[str]:
        with self._lock:
            return list(self._processing)

    def finished_task(self, task_id: str) -> Task | None:
        with self._lock:
            return self._finished.get(task_id)

    def admit(self, limit: int | None = None) -> list[Task]:
        """Move tasks from the head of pending into processing, up to the cap.

        A pending entry whose id is already processing stays queued in place.
        """

        admitted: list[Task] = []
        with self._lock:
            skipped: list[Task] = []
            while self._pending and len(self._processing) < self.max_concurrent_tasks:
                if limit is not None and len(admitted) >= limit:
                    break
                task = self._pending.popleft()
                if task.task_id in self._processing:
                    skipped.append(task)
                    continue
                self._processing[task.task_id] = task
                admitted.append(task)
            self._pending.extendleft(reversed(skipped))
        for task in admitted:
            logger.info("Processing task %s (%s)", task.task_id, task.description[:60])
        return admitted

    def claim_persisted(self) -> list[Task]:
        """Enqueue stored received/retrying tasks this scheduler has not seen yet.

        Picks up work submitted by other processes while the loop is running.
        """

        if self.repository is None:
            return []
        try:
            candidates = self.repository.load_queued_tasks()
        except (SQLAlchemyError, OSError):
            logger.exception("Failed to poll stored tasks")
            return []

        claimed: list[Task] = []
        with self._lock:
            known = {task.task_id for task in self._pending}
            known.update(self._processing)
            known.update(self._finished)
            for task in candidates:
                if task.task_id not in known:
                    self._pending.append(task)
                    claimed.append(task)
        for task in claimed:
            logger.info("Task %s picked up from store (%s)", task.task_id, task.status.value)
        return claimed

    def run_pass(self, task: Task) -> PassOutcome:
        """Run one pass for an admitted task and settle it afterwards.

        The processing slot is released even when the pass raises.
        """

        try:
            outcome = self.process_pass(task)
        except Exception:
            logger.exception("[%s] Pass aborted", task.task_id)
            self._settle(task, None)
            raise
        self._settle(task, outcome)
        return outcome

    def process_pass(self, task: Task) -> PassOutcome:
        """One classify -> plan -> execute -> verify cycle; never more than one hop."""

        if task.envelope.ttl_exhausted:
            task.last_error = task.last_error or (
                f"TTL exhausted before dispatch ({task.envelope.hops}/{task.envelope.ttl_max})"
            )
            return self._dead_letter(task)

        hop_started = task.envelope.hops
        try:
            logger.info("[%s] Phase 1: classification", task.task_id)
            self._transition(task, TaskStatus.CLASSIFYING)
            classification = self.planner.classify(task.description)
            task.classification = classification.to_payload()

            if task.revised_plan_pending and task.plan is not None:
                task.revised_plan_pending = False
            else:
                task.plan = self.planner.plan(task)
            self._transition(
                task,
                TaskStatus.PLANNED,
                details={"steps": len(task.plan.steps)},
            )

            logger.info(
                "[%s] Phase 2: execution (mode: %s)",
                task.task_id,
                task.envelope.mode.value,
            )
            hop = begin_hop(task.envelope)
            self._transition(
                task,
                TaskStatus.EXECUTING,
                details={"hop": hop, "mode": task.envelope.mode.value},
            )
            result = self._dispatch(task)
            task.last_result = result.to_payload()

            logger.info("[%s] Phase 3: verification", task.task_id)
            self._transition(task, TaskStatus.VERIFYING)
            verification = self.planner.verify(task, result)
        except Exception as error:  # noqa: BLE001
            return self._handle_failure(task, error, hop_consumed=task.envelope.hops > hop_started)

        return self._apply_verdict(task, verification)

    def _dispatch(self, task: Task) -> ExecutionResult:
        mode = task.envelope.mode
        if mode is ExecutionMode.ARCHITECT:
            analysis = self.planner.deep_analyze(task)
            task.last_analysis = analysis.to_payload()
            applied = apply_analysis(task, analysis)
            if applied:
                logger.info("[%s] Revised plan applied, mode reset to EXECUTE", task.task_id)
            self._persist(
                task,
                event_type="analysis_recorded",
                details={"applied": applied, "confidence": analysis.confidence},
            )
            return ExecutionResult(mode=mode, analysis=analysis)

        steps: list[StepOutcome] = []
        plan_steps = task.plan.steps if task.plan is not None else []
        for step in plan_steps:
            if step.mode is ExecutionMode.SUPERVISE and mode is ExecutionMode.EXECUTE:
                steps.append(
                    StepOutcome(
                        step_number=step.step_number,
                        status="skipped",
                        mode=step.mode,
                        error="GUI step requires SUPERVISE mode",
                    ),
                )
                continue

            logger.info("[%s] Executing step %d: %s", task.task_id, step.step_number, step.action)
            if mode is ExecutionMode.SUPERVISE:
                outcome = self.executor.run_supervised(task, step)
            else:
                outcome = self.executor.run_direct(task, step)
            if outcome.session_id:
                task.envelope.session_ids.append(outcome.session_id)
            task.envelope.state_hashes.append(state_fingerprint(outcome))
            steps.append(outcome)
            self._persist(
                task,
                event_type="step_finished",
                details={
                    "step_number": outcome.step_number,
                    "status": outcome.status,
                    "session_id": outcome.session_id,
                },
            )
        return ExecutionResult(mode=mode, steps=steps)

    def _apply_verdict(self, task: Task, verification: Verification) -> PassOutcome:
        task.last_verification = verification.to_payload()

        if verification.status is Verdict.PASS:
            if record_success(task.envelope, self.policy):
                logger.info("[%s] De-escalated to EXECUTE mode", task.task_id)
            self._transition(task, TaskStatus.COMPLETED, event_type="task_completed")
            logger.info("[%s] COMPLETED successfully", task.task_id)
            return PassOutcome.COMPLETED

        if verification.status is Verdict.RETRY:
            return self._retry_or_dead_letter(task, reason=verification.reason)

        self._transition(
            task,
            TaskStatus.NEEDS_HUMAN,
            event_type="task_needs_human",
            details={"reason": verification.reason},
        )
        logger.warning("[%s] Needs human intervention: %s", task.task_id, verification.reason)
        return PassOutcome.NEEDS_HUMAN

    def _handle_failure(
        self,
        task: Task,
        error: Exception,
        *,
        hop_consumed: bool,
    ) -> PassOutcome:
        logger.error("Task %s failed: %s", task.task_id, error)
        task.last_error = str(error) or type(error).__name__
        if not hop_consumed and not task.envelope.ttl_exhausted:
            # A pass that never reached dispatch still costs a hop.
            begin_hop(task.envelope)
        return self._retry_or_dead_letter(task, reason=task.last_error)

    def _retry_or_dead_letter(self, task: Task, *, reason: str) -> PassOutcome:
        decision = record_failure(task.envelope, self.policy)
        if decision.ttl_exhausted:
            logger.warning(
                "[%s] TTL exceeded (%d/%d). Dead-lettering.",
                task.task_id,
                task.envelope.hops,
                task.envelope.ttl_max,
            )
            return self._dead_letter(task)

        if decision.escalated_now:
            logger.info(
                "[%s] Escalated to ARCHITECT mode after %d failures",
                task.task_id,
                task.envelope.consecutive_failures,
            )
        self._transition(
            task,
            TaskStatus.RETRYING,
            event_type="task_retrying",
            details={
                "reason": reason,
                "consecutive_failures": task.envelope.consecutive_failures,
                "escalated": task.envelope.escalated,
            },
        )
        logger.info(
            "[%s] Retrying (hop %d/%d)",
            task.task_id,
            task.envelope.hops,
            task.envelope.ttl_max,
        )
        return PassOutcome.RETRYING

    def _dead_letter(self, task: Task) -> PassOutcome:
        self._transition(
            task,
            TaskStatus.DEAD_LETTERED,
            event_type="task_dead_lettered",
            details={"hops": task.envelope.hops, "ttl_max": task.envelope.ttl_max},
        )
        if self.repository is not None:
            try:
                with self._store_lock:
                    written = self.repository.dead_letter(task)
            except (SQLAlchemyError, OSError):
                logger.exception("Failed to dead-letter task %s", task.task_id)
            else:
                if written:
                    logger.warning("Task %s moved to dead-letter store", task.task_id)
        return PassOutcome.DEAD_LETTERED

    def _settle(self, task: Task, outcome: PassOutcome | None) -> None:
        finished = outcome.is_terminal if outcome is not None else task.status.is_terminal
        with self._lock:
            self._processing.pop(task.task_id, None)
            if finished:
                self._finished[task.task_id] = task
            else:
                self._pending.append(task)

    def _transition(
        self,
        task: Task,
        status: TaskStatus,
        *,
        event_type: str = "status_changed",
        details: dict[str, object] | None = None,
    ) -> None:
        previous = task.status
        task.status = status
        self._persist(task, event_type=event_type, status_from=previous, details=details)

    def _persist(
        self,
        task: Task,
        *,
        event_type: str,
        status_from: TaskStatus | None = None,
        details: dict[str, object] | None = None,
    ) -> None:
        if self.repository is None:
            return
        try:
            with self._store_lock:
                self.repository.save_task(
                    task,
                    event_type=event_type,
                    status_from=status_from,
                    details=details,
                )
        except (SQLAlchemyError, OSError):
            logger.exception("Failed to save task %s", task.task_id)

    def run_once(self) -> SchedulerRunSummary:
        """Admit up to the cap, run those passes concurrently and wait for them."""

        summary = SchedulerRunSummary()
        admitted = [] if self._stop_requested else self.admit()
        if not admitted:
            summary.idle_polls = 1
            return summary

        with ThreadPoolExecutor(
            max_workers=self.max_concurrent_tasks,
            thread_name_prefix="legacy-agency-pass",
        ) as pool:
            futures = [pool.submit(self.run_pass, task) for task in admitted]
            for future in futures:
                summary.add(future.result())
        return summary

    def run_loop(
        self,
        *,
        max_passes: int | None = None,
        max_idle_polls: int = 1,
    ) -> SchedulerRunSummary:
        """Poll the pending queue until idle, stopped, or ``max_passes`` were admitted.

        Every poll first claims newly stored tasks from the repository.

        Args:
            max_passes: Stop admitting after this many passes (None = unlimited).
            max_idle_polls: How many consecutive polls with nothing pending and
                nothing in flight before exiting.
        """

        aggregate = SchedulerRunSummary()
        in_flight: set[Future[PassOutcome]] = set()
        admitted_total = 0
        consecutive_idle = 0
        with (
            self._signal_handlers(),
            ThreadPoolExecutor(
                max_workers=self.max_concurrent_tasks,
                thread_name_prefix="legacy-agency-pass",
            ) as pool,
        ):
            while True:
                in_flight = self._collect_done(in_flight, aggregate)
                if self._stop_requested:
                    break
                if max_passes is not None and admitted_total >= max_passes:
                    break

                self.claim_persisted()
                remaining = None if max_passes is None else max_passes - admitted_total
                admitted = self.admit(limit=remaining)
                for task in admitted:
                    in_flight.add(pool.submit(self.run_pass, task))
                admitted_total += len(admitted)

                if not admitted and not in_flight and self.pending() == 0:
                    consecutive_idle += 1
                    aggregate.idle_polls += 1
                    if consecutive_idle >= max_idle_polls:
                        break
                else:
                    consecutive_idle = 0
                self._wait_for_progress(in_flight)

            wait(in_flight)
            self._collect_done(in_flight, aggregate)
        return aggregate

    def request_stop(self) -> None:
        self._stop_requested = True

    def _collect_done(
        self,
        in_flight: set[Future[PassOutcome]],
        summary: SchedulerRunSummary,
    ) -> set[Future[PassOutcome]]:
        remaining: set[Future[PassOutcome]] = set()
        for future in in_flight:
            if future.done():
                summary.add(future.result())
            else:
                remaining.add(future)
        return remaining

    def _wait_for_progress(self, in_flight: set[Future[PassOutcome]]) -> None:
        if in_flight:
            wait(in_flight, timeout=self.poll_interval_seconds, return_when=FIRST_COMPLETED)
            return
        self._sleep_with_stop(self.poll_interval_seconds)

    def _sleep_with_stop(self, seconds: float) -> None:
        deadline = time.monotonic() + seconds
        while not self._stop_requested and time.monotonic() < deadline:
            time.sleep(min(0.1, max(0.0, deadline - time.monotonic())))

    @contextmanager
    def _signal_handlers(self) -> Iterator[None]:
        if threading.current_thread() is not threading.main_thread():
            # Signal handlers can only be installed in main thread.
            yield
            return

        original_sigint = signal.getsignal(signal.SIGINT)
        original_sigterm = signal.getsignal(signal.SIGTERM)

        def _handler(signum: int, _: object | None) -> None:
            try:
                name = signal.Signals(signum).name
            except ValueError:
                name = str(signum)
            logger.warning("Received %s, finishing in-flight passes", name)
            self.request_stop()

        signal.signal(signal.SIGINT, _handler)
        signal.signal(signal.SIGTERM, _handler)
        try:
            yield
        finally:
            signal.signal(signal.SIGINT, original_sigint)
            signal.signal(signal.SIGTERM, original_sigterm)
