"""Durable task store backed by SQLModel + SQLite."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from sqlalchemy import func
from sqlmodel import Session, col, select

from legacy_agency.orchestrator.models import (
    DeadLetterView,
    DocumentRef,
    Envelope,
    ExecutionMode,
    Task,
    TaskDetails,
    TaskEventView,
    TaskStatus,
    TERMINAL_STATUSES,
    plan_from_payload,
    plan_to_payload,
    task_to_payload,
)
from legacy_agency.storage.common import (
    build_sqlite_engine,
    to_db_datetime,
    to_utc_aware_datetime,
    utc_now,
)
from legacy_agency.storage.migrations import current_revision, upgrade
from legacy_agency.storage.sqlmodel_models import AgencyDeadLetter, AgencyTask, AgencyTaskEvent


class TaskNotFoundError(LookupError):
    """Requested task id is unknown."""


class TaskRepository:
    """Task record persistence facade.

    Each save rewrites the full task row and appends one audit event in the
    same transaction.
    """

    def __init__(self, db_path: Path, *, sqlite_busy_timeout_ms: int = 5_000) -> None:
        self.db_path = db_path
        self.engine = build_sqlite_engine(
            db_path=db_path,
            busy_timeout_ms=sqlite_busy_timeout_ms,
        )

    def close(self) -> None:
        """Close underlying DB resources."""

        self.engine.dispose()

    def init_schema(self) -> None:
        """Run schema migrations."""

        upgrade(self.db_path)

    def schema_revision(self) -> str | None:
        return current_revision(self.engine)

    def save_task(
        self,
        task: Task,
        *,
        event_type: str,
        status_from: TaskStatus | None = None,
        details: dict[str, object] | None = None,
    ) -> None:
        """Rewrite the whole task record and log the transition."""

        now = utc_now()
        task.updated_at = now
        values = _task_columns(task)
        with Session(self.engine) as session:
            row = session.get(AgencyTask, task.task_id)
            if row is None:
                row = AgencyTask(**values)
            else:
                for name, value in values.items():
                    setattr(row, name, value)
            session.add(row)
            session.flush()
            self._add_event(
                session=session,
                task_id=task.task_id,
                event_type=event_type,
                status_from=status_from,
                status_to=task.status,
                details=details or {},
            )
            session.commit()

    def get_task(self, task_id: str) -> Task | None:
        """Return the persisted task record."""

        with Session(self.engine) as session:
            row = session.get(AgencyTask, task_id)
            if row is None:
                return None
            return _to_task(row)

    def get_task_details(self, task_id: str) -> TaskDetails | None:
        """Return the task record together with its event stream."""

        task = self.get_task(task_id)
        if task is None:
            return None
        return TaskDetails(task=task, events=self.list_events(task_id))

    def list_tasks(
        self,
        *,
        status: TaskStatus | None = None,
        limit: int | None = None,
    ) -> list[Task]:
        """List tasks, most recently created first."""

        with Session(self.engine) as session:
            statement = select(AgencyTask).order_by(
                col(AgencyTask.created_at).desc(),
                col(AgencyTask.task_id).desc(),
            )
            if status is not None:
                statement = statement.where(AgencyTask.status == status.value)
            if limit is not None:
                statement = statement.limit(limit)
            rows = session.exec(statement).all()
            return [_to_task(row) for row in rows]

    def load_resumable_tasks(self) -> list[Task]:
        """Non-terminal tasks in creation order, for recovery after a restart."""

        terminal = [status.value for status in TERMINAL_STATUSES]
        with Session(self.engine) as session:
            rows = session.exec(
                select(AgencyTask)
                .where(col(AgencyTask.status).not_in(terminal))
                .order_by(col(AgencyTask.created_at).asc(), col(AgencyTask.task_id).asc()),
            ).all()
            return [_to_task(row) for row in rows]

    def load_queued_tasks(self) -> list[Task]:
        """Tasks waiting for their next pass (received or retrying), oldest first."""

        queued = [TaskStatus.RECEIVED.value, TaskStatus.RETRYING.value]
        with Session(self.engine) as session:
            rows = session.exec(
                select(AgencyTask)
                .where(col(AgencyTask.status).in_(queued))
                .order_by(col(AgencyTask.created_at).asc(), col(AgencyTask.task_id).asc()),
            ).all()
            return [_to_task(row) for row in rows]

    def count_by_status(self) -> dict[TaskStatus, int]:
        """Stored task counts per status; statuses with no tasks map to 0."""

        counts = {status: 0 for status in TaskStatus}
        with Session(self.engine) as session:
            rows = session.exec(
                select(AgencyTask.status, func.count()).group_by(AgencyTask.status),
            ).all()
        for status, total in rows:
            counts[TaskStatus(status)] = int(total)
        return counts

    def list_events(self, task_id: str) -> list[TaskEventView]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(AgencyTaskEvent)
                .where(AgencyTaskEvent.task_id == task_id)
                .order_by(col(AgencyTaskEvent.id).asc()),
            ).all()

        events: list[TaskEventView] = []
        for row in rows:
            events.append(
                TaskEventView(
                    event_id=row.id or 0,
                    task_id=row.task_id,
                    event_type=row.event_type,
                    status_from=(
                        TaskStatus(row.status_from) if row.status_from is not None else None
                    ),
                    status_to=TaskStatus(row.status_to) if row.status_to is not None else None,
                    created_at=to_utc_aware_datetime(row.created_at),
                    details=_loads_dict(row.details_json) or {},
                ),
            )
        return events

    def dead_letter(self, task: Task) -> bool:
        """Write the dead-letter record once; later calls are no-ops."""

        with Session(self.engine) as session:
            if session.get(AgencyDeadLetter, task.task_id) is not None:
                return False
            session.add(
                AgencyDeadLetter(
                    task_id=task.task_id,
                    hops=task.envelope.hops,
                    ttl_max=task.envelope.ttl_max,
                    last_error=task.last_error,
                    record_json=json.dumps(task_to_payload(task), ensure_ascii=False),
                    dead_lettered_at=utc_now(),
                ),
            )
            session.commit()
            return True

    def list_dead_letters(self) -> list[DeadLetterView]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(AgencyDeadLetter).order_by(col(AgencyDeadLetter.dead_lettered_at).desc()),
            ).all()
        return [
            DeadLetterView(
                task_id=row.task_id,
                hops=row.hops,
                ttl_max=row.ttl_max,
                last_error=row.last_error,
                dead_lettered_at=to_utc_aware_datetime(row.dead_lettered_at),
                record=_loads_dict(row.record_json) or {},
            )
            for row in rows
        ]

    def _add_event(  # noqa: PLR0913
        self,
        *,
        session: Session,
        task_id: str,
        event_type: str,
        status_from: TaskStatus | None,
        status_to: TaskStatus | None,
        details: dict[str, object],
    ) -> None:
        session.add(
            AgencyTaskEvent(
                task_id=task_id,
                event_type=event_type,
                status_from=status_from.value if status_from is not None else None,
                status_to=status_to.value if status_to is not None else None,
                details_json=json.dumps(details, ensure_ascii=False, sort_keys=True)
                if details
                else None,
                created_at=to_db_datetime(utc_now()),
            ),
        )


def _task_columns(task: Task) -> dict[str, Any]:
    envelope = task.envelope
    return {
        "task_id": task.task_id,
        "description": task.description,
        "software_name": task.software_name,
        "task_type": task.task_type,
        "status": task.status.value,
        "mode": envelope.mode.value,
        "hops": envelope.hops,
        "ttl_max": envelope.ttl_max,
        "consecutive_failures": envelope.consecutive_failures,
        "consecutive_successes": envelope.consecutive_successes,
        "escalated": envelope.escalated,
        "revised_plan_pending": task.revised_plan_pending,
        "state_hashes_json": json.dumps(list(envelope.state_hashes)),
        "session_ids_json": json.dumps(list(envelope.session_ids)),
        "documents_json": json.dumps(
            [
                {
                    "original": document.original,
                    "path": document.path,
                    "mimetype": document.mimetype,
                    "size_bytes": document.size_bytes,
                }
                for document in task.documents
            ],
            ensure_ascii=False,
        ),
        "plan_json": _dumps(plan_to_payload(task.plan) if task.plan is not None else None),
        "classification_json": _dumps(task.classification),
        "last_result_json": _dumps(task.last_result),
        "last_verification_json": _dumps(task.last_verification),
        "last_analysis_json": _dumps(task.last_analysis),
        "source_json": _dumps(task.source),
        "last_error": task.last_error,
        "created_at": to_db_datetime(task.created_at),
        "updated_at": to_db_datetime(task.updated_at),
    }


def _to_task(row: AgencyTask) -> Task:
    plan_payload = _loads_dict(row.plan_json)
    return Task(
        task_id=row.task_id,
        description=row.description,
        software_name=row.software_name,
        task_type=row.task_type,
        status=TaskStatus(row.status),
        envelope=Envelope(
            ttl_max=row.ttl_max,
            hops=row.hops,
            mode=ExecutionMode(row.mode),
            consecutive_failures=row.consecutive_failures,
            consecutive_successes=row.consecutive_successes,
            escalated=row.escalated,
            state_hashes=[str(item) for item in json.loads(row.state_hashes_json or "[]")],
            session_ids=[str(item) for item in json.loads(row.session_ids_json or "[]")],
        ),
        created_at=to_utc_aware_datetime(row.created_at),
        updated_at=to_utc_aware_datetime(row.updated_at),
        documents=[
            DocumentRef(
                original=str(item.get("original", "")),
                path=str(item.get("path", "")),
                mimetype=item.get("mimetype"),
                size_bytes=item.get("size_bytes"),
            )
            for item in json.loads(row.documents_json or "[]")
            if isinstance(item, dict)
        ],
        plan=plan_from_payload(plan_payload) if plan_payload is not None else None,
        revised_plan_pending=row.revised_plan_pending,
        classification=_loads_dict(row.classification_json),
        last_result=_loads_dict(row.last_result_json),
        last_verification=_loads_dict(row.last_verification_json),
        last_analysis=_loads_dict(row.last_analysis_json),
        last_error=row.last_error,
        source=_loads_dict(row.source_json),
    )


def _dumps(payload: dict[str, Any] | None) -> str | None:
    if payload is None:
        return None
    return json.dumps(payload, ensure_ascii=False, sort_keys=True)


def _loads_dict(raw: str | None) -> dict[str, Any] | None:
    if not raw:
        return None
    parsed = json.loads(raw)
    if not isinstance(parsed, dict):
        return None
    return parsed
