from pathlib import Path

import allure
from sqlalchemy import inspect

from legacy_agency.orchestrator.repository import TaskRepository

pytestmark = [
    allure.epic("Task Storage"),
    allure.feature("Schema Migrations"),
]


def test_alembic_schema_is_initialized_to_head(tmp_path: Path) -> None:
    repository = TaskRepository(tmp_path / "migrations.db")
    repository.init_schema()

    assert repository.schema_revision() == "20261018_0001"

    inspector = inspect(repository.engine)
    assert {"agency_tasks", "agency_task_events", "agency_dead_letters"} <= set(
        inspector.get_table_names(),
    )
    index_names = {index["name"] for index in inspector.get_indexes("agency_tasks")}
    assert {"idx_agency_tasks_status", "idx_agency_tasks_created_at"} <= index_names
    repository.close()


def test_init_schema_is_idempotent(tmp_path: Path) -> None:
    db_path = tmp_path / "nested" / "twice.db"
    for _ in range(2):
        repository = TaskRepository(db_path)
        repository.init_schema()
        repository.close()

    repository = TaskRepository(db_path)
    assert repository.list_tasks() == []
    assert repository.schema_revision() == "20261018_0001"
    repository.close()
