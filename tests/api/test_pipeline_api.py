"""Tests for manual runs, run history, and executor callback routes."""

from __future__ import annotations

import os
from collections.abc import AsyncIterator, Awaitable
from contextlib import asynccontextmanager
from datetime import UTC
from pathlib import Path
from typing import Any
from uuid import uuid4

import httpx
import pytest
from apscheduler.jobstores.memory import MemoryJobStore  # type: ignore[import-untyped]
from apscheduler.schedulers.asyncio import AsyncIOScheduler  # type: ignore[import-untyped]
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./test.sqlite")

from recipe_automation.api.pipeline import router
from recipe_automation.models import Base, RunTrigger
from recipe_automation.services.activity_service import ActivityService
from recipe_automation.services.executor import ExecutionOutcome, RunContext
from recipe_automation.services.job_registry import FireOutcome, JobRegistry
from recipe_automation.services.run_history import RunHistoryService
from recipe_automation.services.run_tracker import RunTracker, SourceRef
from recipe_automation.services.schedule_store import ScheduleStore
from recipe_automation.services.scheduler import SchedulerService


class CallbackExecutor:
    """Executor double that leaves runs open for the callback routes."""

    def __init__(self) -> None:
        self.source: SourceRef | None = SourceRef(source_id="recipe-5", title="Stew")
        self.next_source_error: Exception | None = None

    async def next_source(self, options: dict[str, Any]) -> SourceRef | None:
        if self.next_source_error is not None:
            raise self.next_source_error
        return self.source

    def execute(self, context: RunContext) -> Awaitable[ExecutionOutcome | None]:
        return self._dispatch()

    async def _dispatch(self) -> ExecutionOutcome | None:
        return None


@asynccontextmanager
async def _pipeline_app(
    tmp_path: Path,
) -> AsyncIterator[tuple[FastAPI, JobRegistry, CallbackExecutor]]:
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'pipeline.sqlite'}")
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

    backend = AsyncIOScheduler(jobstores={"default": MemoryJobStore()}, timezone=UTC)
    backend.start(paused=True)
    scheduler = SchedulerService(enabled=True, scheduler=backend)
    tracker = RunTracker(session_factory=scoped_session)
    history = RunHistoryService(session_factory=scoped_session)
    executor = CallbackExecutor()
    registry = JobRegistry(
        scheduler=scheduler,
        store=ScheduleStore(session_factory=scoped_session),
        tracker=tracker,
        executor=executor,
        history=history,
        activity_service=ActivityService(session_factory=scoped_session),
    )

    app = FastAPI()
    app.include_router(router)
    app.state.job_registry = registry
    app.state.run_tracker = tracker
    app.state.run_history_service = history
    try:
        yield app, registry, executor
    finally:
        await registry.shutdown()
        await scheduler.shutdown()
        await engine.dispose()


@pytest.mark.asyncio
async def test_manual_run_and_callbacks_drive_run_to_success(tmp_path: Path) -> None:
    async with _pipeline_app(tmp_path) as (app, registry, _):
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            start_response = await client.post(
                "/api/automation/pipeline/run",
                json={"sourceId": "recipe-11", "sourceTitle": "Curry"},
            )
            assert start_response.status_code == 202
            run = start_response.json()
            assert run["status"] == "RUNNING"
            assert run["triggeredBy"] == "manual"
            assert run["scheduleId"] is None
            assert run["sourceId"] == "recipe-11"
            run_id = run["id"]
            await registry.wait_for_idle(timeout=5)

            event_response = await client.post(
                f"/api/automation/pipeline/runs/{run_id}/events",
                json={"stage": "draft", "message": "Drafting", "step": 1, "total": 4},
            )
            assert event_response.status_code == 200
            assert event_response.json()["progress"] == 25
            assert event_response.json()["stage"] == "draft"

            complete_response = await client.post(
                f"/api/automation/pipeline/runs/{run_id}/complete",
                json={"resultRef": "post-3", "messages": ["Published"]},
            )
            assert complete_response.status_code == 200
            completed = complete_response.json()
            assert completed["status"] == "SUCCESS"
            assert completed["progress"] == 100
            assert completed["resultRef"] == "post-3"
            assert completed["completedAt"] is not None
            assert completed["logs"][-1]["message"] == "Published"

            late_failure = await client.post(
                f"/api/automation/pipeline/runs/{run_id}/fail",
                json={"error": "too late"},
            )
            assert late_failure.status_code == 409

            get_response = await client.get(f"/api/automation/pipeline/runs/{run_id}")
            assert get_response.status_code == 200
            assert get_response.json()["status"] == "SUCCESS"


@pytest.mark.asyncio
async def test_fail_callback_records_error_stage(tmp_path: Path) -> None:
    async with _pipeline_app(tmp_path) as (app, _, _executor):
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            start_response = await client.post(
                "/api/automation/pipeline/run", json={"autoSelect": True}
            )
            assert start_response.status_code == 202
            run_id = start_response.json()["id"]
            assert start_response.json()["sourceId"] == "recipe-5"

            fail_response = await client.post(
                f"/api/automation/pipeline/runs/{run_id}/fail",
                json={"error": "image service down", "errorStage": "images"},
            )
            assert fail_response.status_code == 200
            assert fail_response.json()["status"] == "FAILED"
            assert fail_response.json()["errorStage"] == "images"

            stale_event = await client.post(
                f"/api/automation/pipeline/runs/{run_id}/events",
                json={"progress": 50},
            )
            assert stale_event.status_code == 409


@pytest.mark.asyncio
async def test_manual_run_request_errors(tmp_path: Path) -> None:
    async with _pipeline_app(tmp_path) as (app, _, executor):
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            missing_target = await client.post("/api/automation/pipeline/run", json={})
            assert missing_target.status_code == 400

            executor.source = None
            no_work = await client.post(
                "/api/automation/pipeline/run", json={"autoSelect": True}
            )
            assert no_work.status_code == 409

            executor.next_source_error = httpx.ConnectError("connection refused")
            unreachable = await client.post(
                "/api/automation/pipeline/run", json={"autoSelect": True}
            )
            assert unreachable.status_code == 502

            missing_run = await client.get(
                f"/api/automation/pipeline/runs/{uuid4()}"
            )
            assert missing_run.status_code == 404

            missing_callback = await client.post(
                f"/api/automation/pipeline/runs/{uuid4()}/complete", json={}
            )
            assert missing_callback.status_code == 404

            bad_progress = await client.post(
                f"/api/automation/pipeline/runs/{uuid4()}/events",
                json={"progress": 150},
            )
            assert bad_progress.status_code == 422


@pytest.mark.asyncio
async def test_manual_run_bypasses_running_scheduled_run(tmp_path: Path) -> None:
    async with _pipeline_app(tmp_path) as (app, registry, _):
        schedule = await registry.create_schedule(
            enabled=True, cron_expression="*/30 * * * *"
        )
        fired = await registry.on_fire(schedule.id)
        assert fired.outcome is FireOutcome.STARTED

        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            response = await client.post(
                "/api/automation/pipeline/run", json={"autoSelect": True}
            )

            assert response.status_code == 202
            assert response.json()["triggeredBy"] == "manual"
            assert response.json()["scheduleId"] is None

            running = await client.get(
                "/api/automation/pipeline/logs", params={"status": "RUNNING"}
            )
            assert running.json()["pagination"]["total"] == 2


@pytest.mark.asyncio
async def test_history_pagination_filters_and_deletion(tmp_path: Path) -> None:
    async with _pipeline_app(tmp_path) as (app, registry, _):
        tracker: RunTracker = app.state.run_tracker
        run_ids = []
        for _ in range(5):
            run = await tracker.create_run(triggered_by=RunTrigger.MANUAL)
            await tracker.complete_run(run.id)
            run_ids.append(str(run.id))
        failed = await tracker.create_run(triggered_by=RunTrigger.SCHEDULE)
        await tracker.fail_run(failed.id, error="boom")

        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            first_page = await client.get(
                "/api/automation/pipeline/logs", params={"page": 1, "limit": 4}
            )
            assert first_page.status_code == 200
            assert len(first_page.json()["logs"]) == 4
            assert first_page.json()["pagination"] == {
                "page": 1,
                "limit": 4,
                "total": 6,
                "totalPages": 2,
                "hasMore": True,
            }

            failed_only = await client.get(
                "/api/automation/pipeline/logs",
                params={"status": "FAILED", "triggeredBy": "schedule"},
            )
            assert [item["id"] for item in failed_only.json()["logs"]] == [
                str(failed.id)
            ]

            invalid_status = await client.get(
                "/api/automation/pipeline/logs", params={"status": "PAUSED"}
            )
            assert invalid_status.status_code == 422

            empty_delete = await client.request(
                "DELETE", "/api/automation/pipeline/logs/delete", json={"logIds": []}
            )
            assert empty_delete.status_code == 400

            bulk_delete = await client.request(
                "DELETE",
                "/api/automation/pipeline/logs/delete",
                json={"logIds": [run_ids[0], run_ids[1], str(uuid4())]},
            )
            assert bulk_delete.status_code == 200
            assert bulk_delete.json()["success"] is True
            assert bulk_delete.json()["deletedCount"] == 2

            single_delete = await client.delete(
                f"/api/automation/pipeline/runs/{run_ids[2]}"
            )
            assert single_delete.status_code == 204
            repeat_delete = await client.delete(
                f"/api/automation/pipeline/runs/{run_ids[2]}"
            )
            assert repeat_delete.status_code == 404

            remaining = await client.get("/api/automation/pipeline/logs")
            assert remaining.json()["pagination"]["total"] == 3
