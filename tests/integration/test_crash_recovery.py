"""Chaos-style crash recovery tests."""

from __future__ import annotations

import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime, timedelta
from pathlib import Path
from uuid import uuid4

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./test.sqlite")

from recipe_automation.models import (
    AutomationSchedule,
    Base,
    PipelineRun,
    RunStatus,
    RunTrigger,
)
from recipe_automation.services.run_recovery_service import (
    RECOVERY_REASON,
    RECOVERY_STAGE,
    RunRecoveryService,
)
from recipe_automation.services.run_tracker import RunTracker


@pytest.mark.asyncio
async def test_crash_recovery_marks_running_runs_failed_and_stamps_schedule(
    tmp_path: Path,
    caplog: pytest.LogCaptureFixture,
) -> None:
    database_url = f"sqlite+aiosqlite:///{tmp_path / 'crash-recovery.sqlite'}"
    engine = create_async_engine(database_url)
    session_factory = async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        autoflush=False,
        expire_on_commit=False,
    )

    @asynccontextmanager
    async def scoped_session() -> AsyncIterator[AsyncSession]:
        session = session_factory()
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()

    async with engine.begin() as connection:
        await connection.run_sync(Base.metadata.create_all)

    schedule_id = uuid4()
    started_at = datetime.now(UTC) - timedelta(minutes=5)
    async with scoped_session() as session:
        session.add(
            AutomationSchedule(
                id=schedule_id,
                enabled=True,
                cron_expression="0 */2 * * *",
                run_count=1,
            )
        )
        session.add(
            PipelineRun(
                schedule_id=schedule_id,
                source_id="recipe-3",
                status=RunStatus.RUNNING,
                stage="draft",
                progress=40,
                logs=[],
                triggered_by=RunTrigger.SCHEDULE,
                started_at=started_at,
            )
        )
        session.add(
            PipelineRun(
                status=RunStatus.SUCCESS,
                progress=100,
                logs=[],
                triggered_by=RunTrigger.MANUAL,
                started_at=started_at,
                completed_at=started_at + timedelta(minutes=1),
            )
        )

    tracker = RunTracker(session_factory=scoped_session)
    finished_schedule_ids = []
    tracker.add_terminal_listener(
        lambda run: finished_schedule_ids.append(run.schedule_id)
    )
    recovery_service = RunRecoveryService(
        tracker=tracker, session_factory=scoped_session
    )
    caplog.set_level("INFO", logger="recipe_automation.recovery")

    result = await recovery_service.handle_startup_recovery()

    assert result.detected_count == 1
    assert result.recovered == 1
    assert result.detected_runs[0].schedule_id == schedule_id
    assert result.detected_runs[0].stage == "draft"
    assert finished_schedule_ids == [schedule_id]

    async with scoped_session() as session:
        runs = (
            (
                await session.execute(
                    select(PipelineRun).where(PipelineRun.schedule_id == schedule_id)
                )
            )
            .scalars()
            .all()
        )

    assert len(runs) == 1
    assert runs[0].status == RunStatus.FAILED
    assert runs[0].error == RECOVERY_REASON
    assert runs[0].error_stage == RECOVERY_STAGE
    assert runs[0].completed_at is not None

    detected_records = [
        record
        for record in caplog.records
        if record.name == "recipe_automation.recovery"
        and record.msg == "startup_interrupted_runs_detected"
    ]
    assert len(detected_records) == 1
    assert getattr(detected_records[0], "count", None) == 1

    second_pass = await recovery_service.handle_startup_recovery()
    assert second_pass.detected_count == 0

    summary = await recovery_service.summarize_session(
        session_started_at=started_at - timedelta(seconds=1)
    )
    assert summary.runs_started == 2
    assert summary.runs_succeeded == 1
    assert summary.runs_failed == 1
    assert summary.runs_running == 0

    await engine.dispose()
