"""Alembic migrations stay reversible and match the ORM tables."""

from __future__ import annotations

import sqlite3
from contextlib import closing
from pathlib import Path

import pytest
from alembic import command
from alembic.config import Config
from alembic.script import ScriptDirectory

from recipe_automation.models import Base

PROJECT_ROOT = Path(__file__).resolve().parents[1]

TABLES_BY_REVISION = {
    "0001_schedules_and_runs": {"automation_schedules", "pipeline_runs"},
    "0002_activity_logs": {"automation_schedules", "pipeline_runs", "activity_logs"},
}


def _state(database_file: Path) -> tuple[str | None, set[str]]:
    with closing(sqlite3.connect(database_file)) as connection:
        tables = {
            name
            for (name,) in connection.execute(
                "SELECT name FROM sqlite_master WHERE type = 'table'"
            )
        }
        revision = None
        if "alembic_version" in tables:
            row = connection.execute(
                "SELECT version_num FROM alembic_version"
            ).fetchone()
            revision = row[0] if row else None
    return revision, tables - {"alembic_version"}


@pytest.fixture
def alembic_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Config:
    monkeypatch.setenv(
        "DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'migrations.sqlite'}"
    )
    return Config(str(PROJECT_ROOT / "alembic.ini"))


def test_revision_chain_is_linear(alembic_config: Config) -> None:
    script = ScriptDirectory.from_config(alembic_config)

    revisions = [revision.revision for revision in script.walk_revisions()]

    assert script.get_heads() == ["0002_activity_logs"]
    assert list(reversed(revisions)) == list(TABLES_BY_REVISION)


def test_head_creates_every_orm_table(alembic_config: Config, tmp_path: Path) -> None:
    command.upgrade(alembic_config, "head")

    revision, tables = _state(tmp_path / "migrations.sqlite")
    assert revision == "0002_activity_logs"
    assert tables == set(Base.metadata.tables)


def test_each_step_downgrades_and_reupgrades(
    alembic_config: Config, tmp_path: Path
) -> None:
    database_file = tmp_path / "migrations.sqlite"
    command.upgrade(alembic_config, "head")

    command.downgrade(alembic_config, "-1")
    assert _state(database_file) == (
        "0001_schedules_and_runs",
        TABLES_BY_REVISION["0001_schedules_and_runs"],
    )

    command.downgrade(alembic_config, "base")
    assert _state(database_file) == (None, set())

    command.upgrade(alembic_config, "head")
    assert _state(database_file) == (
        "0002_activity_logs",
        TABLES_BY_REVISION["0002_activity_logs"],
    )
