"""SQLModel ORM tables for agency task storage."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Index, Text
from sqlmodel import Field, SQLModel


class AgencyTask(SQLModel, table=True):
    __tablename__ = "agency_tasks"  # type: ignore[bad-override]

    task_id: str = Field(primary_key=True)
    description: str = Field(sa_column=Column(Text, nullable=False))
    software_name: str
    task_type: str
    status: str = Field(index=True)
    mode: str
    hops: int = 0
    ttl_max: int
    consecutive_failures: int = 0
    consecutive_successes: int = 0
    escalated: bool = False
    revised_plan_pending: bool = False
    state_hashes_json: str = Field(default="[]", sa_column=Column(Text, nullable=False))
    session_ids_json: str = Field(default="[]", sa_column=Column(Text, nullable=False))
    documents_json: str = Field(default="[]", sa_column=Column(Text, nullable=False))
    plan_json: str | None = Field(default=None, sa_column=Column(Text))
    classification_json: str | None = Field(default=None, sa_column=Column(Text))
    last_result_json: str | None = Field(default=None, sa_column=Column(Text))
    last_verification_json: str | None = Field(default=None, sa_column=Column(Text))
    last_analysis_json: str | None = Field(default=None, sa_column=Column(Text))
    source_json: str | None = Field(default=None, sa_column=Column(Text))
    last_error: str | None = Field(default=None, sa_column=Column(Text))
    created_at: datetime = Field(
        sa_column=Column(DateTime(timezone=True), index=True, nullable=False),
    )
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class AgencyTaskEvent(SQLModel, table=True):
    __tablename__ = "agency_task_events"  # type: ignore[bad-override]
    __table_args__ = (
        Index("idx_agency_task_events_task_time", "task_id", "created_at"),
    )

    id: int | None = Field(default=None, primary_key=True)
    task_id: str = Field(
        sa_column=Column(
            ForeignKey("agency_tasks.task_id", ondelete="CASCADE"),
            nullable=False,
        ),
    )
    event_type: str
    status_from: str | None = None
    status_to: str | None = None
    details_json: str | None = Field(default=None, sa_column=Column(Text))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class AgencyDeadLetter(SQLModel, table=True):
    __tablename__ = "agency_dead_letters"  # type: ignore[bad-override]

    task_id: str = Field(primary_key=True)
    hops: int
    ttl_max: int
    last_error: str | None = Field(default=None, sa_column=Column(Text))
    record_json: str = Field(sa_column=Column(Text, nullable=False))
    dead_lettered_at: datetime = Field(
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
