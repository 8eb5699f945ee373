"""Tests for the pipeline run state machine and progress channel."""

from __future__ import annotations

from collections.abc import AsyncIterator, Callable
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from datetime import datetime
from pathlib import Path
from uuid import uuid4

import pytest
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from recipe_automation.models import Base, RunStatus, RunTrigger
from recipe_automation.services.run_tracker import (
    RunEventChannel,
    RunNotFoundError,
    RunSnapshot,
    RunStateError,
    RunTracker,
    SourceRef,
)

SessionScopeFactory = Callable[[], AbstractAsyncContextManager[AsyncSession]]


async def _database(tmp_path: Path) -> tuple[SessionScopeFactory, AsyncEngine]:
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'runs.sqlite'}")
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

    return scoped_session, engine


def _timestamps(run: RunSnapshot) -> list[datetime]:
    return [datetime.fromisoformat(entry["timestamp"]) for entry in run.logs]


@pytest.mark.asyncio
async def test_create_run_starts_running_with_initial_log(tmp_path: Path) -> None:
    scoped_session, engine = await _database(tmp_path)
    tracker = RunTracker(session_factory=scoped_session)
    schedule_id = uuid4()

    run = await tracker.create_run(
        triggered_by=RunTrigger.SCHEDULE,
        source=SourceRef(source_id="recipe-42", title="Lemon tart"),
        schedule_id=schedule_id,
    )

    assert run.status is RunStatus.RUNNING
    assert run.progress == 0
    assert run.schedule_id == schedule_id
    assert run.source_id == "recipe-42"
    assert run.source_title == "Lemon tart"
    assert run.completed_at is None
    assert run.logs[0]["message"] == "Pipeline started"
    assert await tracker.has_active_run(schedule_id) is True
    assert [active.id for active in await tracker.list_active_runs()] == [run.id]

    await engine.dispose()


@pytest.mark.asyncio
async def test_progress_updates_stage_and_appends_ordered_logs(
    tmp_path: Path,
) -> None:
    scoped_session, engine = await _database(tmp_path)
    tracker = RunTracker(session_factory=scoped_session)
    run = await tracker.create_run(triggered_by=RunTrigger.MANUAL)

    await tracker.record_progress(run.id, progress=25, stage="fetch", message="a")
    await tracker.append_log(run.id, "b", step=2, total=4)
    updated = await tracker.record_progress(run.id, progress=50)

    assert updated.progress == 50
    assert updated.stage == "fetch"
    assert [entry["message"] for entry in updated.logs] == ["Pipeline started", "a", "b"]
    assert updated.logs[-1]["step"] == 2
    assert updated.logs[-1]["total"] == 4
    timestamps = _timestamps(updated)
    assert timestamps == sorted(timestamps)

    with pytest.raises(ValueError, match="between 0 and 100"):
        await tracker.record_progress(run.id, progress=101)

    await engine.dispose()


@pytest.mark.asyncio
async def test_complete_run_is_terminal(tmp_path: Path) -> None:
    scoped_session, engine = await _database(tmp_path)
    tracker = RunTracker(session_factory=scoped_session)
    schedule_id = uuid4()
    run = await tracker.create_run(
        triggered_by=RunTrigger.SCHEDULE, schedule_id=schedule_id
    )

    completed = await tracker.complete_run(
        run.id,
        result_ref="post-7",
        result_url="https://blog.example/post-7",
        messages=["Published"],
    )

    assert completed.status is RunStatus.SUCCESS
    assert completed.progress == 100
    assert completed.result_ref == "post-7"
    assert completed.completed_at is not None
    assert completed.duration_ms is not None and completed.duration_ms >= 0
    assert completed.logs[-1]["message"] == "Published"
    assert await tracker.has_active_run(schedule_id) is False

    with pytest.raises(RunStateError):
        await tracker.fail_run(run.id, error="late failure")
    with pytest.raises(RunStateError):
        await tracker.record_progress(run.id, progress=10)

    stored = await tracker.get_run(run.id)
    assert stored is not None
    assert stored.status is RunStatus.SUCCESS
    assert stored.error is None

    await engine.dispose()


@pytest.mark.asyncio
async def test_fail_run_records_error_and_stage(tmp_path: Path) -> None:
    scoped_session, engine = await _database(tmp_path)
    tracker = RunTracker(session_factory=scoped_session)
    run = await tracker.create_run(triggered_by=RunTrigger.MANUAL)

    failed = await tracker.fail_run(run.id, error="upstream timeout", error_stage="publish")

    assert failed.status is RunStatus.FAILED
    assert failed.error == "upstream timeout"
    assert failed.error_stage == "publish"
    assert failed.logs[-1]["message"] == "Error: upstream timeout"

    with pytest.raises(RunStateError):
        await tracker.complete_run(run.id)

    await engine.dispose()


@pytest.mark.asyncio
async def test_unknown_run_raises_not_found(tmp_path: Path) -> None:
    scoped_session, engine = await _database(tmp_path)
    tracker = RunTracker(session_factory=scoped_session)

    assert await tracker.get_run(uuid4()) is None
    with pytest.raises(RunNotFoundError):
        await tracker.complete_run(uuid4())

    await engine.dispose()


@pytest.mark.asyncio
async def test_terminal_listeners_run_once_per_transition(tmp_path: Path) -> None:
    scoped_session, engine = await _database(tmp_path)
    tracker = RunTracker(session_factory=scoped_session)
    finished: list[RunSnapshot] = []

    async def record(run: RunSnapshot) -> None:
        finished.append(run)

    def explode(run: RunSnapshot) -> None:
        raise RuntimeError("listener failure")

    tracker.add_terminal_listener(explode)
    tracker.add_terminal_listener(record)

    first = await tracker.create_run(triggered_by=RunTrigger.MANUAL)
    second = await tracker.create_run(triggered_by=RunTrigger.MANUAL)
    await tracker.complete_run(first.id)
    await tracker.fail_run(second.id, error="boom")

    assert [(run.id, run.status) for run in finished] == [
        (first.id, RunStatus.SUCCESS),
        (second.id, RunStatus.FAILED),
    ]

    await engine.dispose()


@pytest.mark.asyncio
async def test_consume_events_applies_channel_events_in_order(
    tmp_path: Path,
) -> None:
    scoped_session, engine = await _database(tmp_path)
    tracker = RunTracker(session_factory=scoped_session)
    run = await tracker.create_run(triggered_by=RunTrigger.MANUAL)
    channel = RunEventChannel()

    channel.report(stage="draft", message="Drafting", step=1, total=4)
    channel.report(progress=150, stage="publish", message="Publishing")
    channel.close()

    applied = await tracker.consume_events(run.id, channel)
    updated = await tracker.get_run(run.id)

    assert applied == 2
    assert channel.stage == "publish"
    assert updated is not None
    assert updated.progress == 100
    assert updated.stage == "publish"
    assert [entry["message"] for entry in updated.logs][-2:] == [
        "Drafting",
        "Publishing",
    ]

    with pytest.raises(RunStateError, match="closed"):
        channel.report(message="too late")

    await engine.dispose()


@pytest.mark.asyncio
async def test_consume_events_drops_events_for_finished_runs(tmp_path: Path) -> None:
    scoped_session, engine = await _database(tmp_path)
    tracker = RunTracker(session_factory=scoped_session)
    run = await tracker.create_run(triggered_by=RunTrigger.MANUAL)
    await tracker.complete_run(run.id)
    channel = RunEventChannel()

    channel.report(progress=10, message="ignored")
    channel.close()

    assert await tracker.consume_events(run.id, channel) == 0

    await engine.dispose()


@pytest.mark.asyncio
async def test_channel_derives_progress_from_step_and_total() -> None:
    channel = RunEventChannel()

    channel.report(step=1, total=4)
    channel.close()

    event = await channel.next_event()
    assert event is not None
    assert event.progress == 25
    assert await channel.next_event() is None
    assert channel.closed is True
