"""Tests for scheduler status, job monitoring, diagnostics, and activity routes."""

from __future__ import annotations

import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC
from pathlib import Path
from typing import Any

import pytest
from apscheduler.jobstores.memory import MemoryJobStore  # type: ignore[import-untyped]
from apscheduler.schedulers.asyncio import AsyncIOScheduler  # type: ignore[import-untyped]
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./test.sqlite")

from recipe_automation.api.activity import router as activity_router
from recipe_automation.api.scheduler import router as scheduler_router
from recipe_automation.database import get_db_session
from recipe_automation.models import Base
from recipe_automation.services.activity_service import ActivityService
from recipe_automation.services.executor import UnconfiguredPipelineExecutor
from recipe_automation.services.job_registry import JobRegistry
from recipe_automation.services.run_history import RunHistoryService
from recipe_automation.services.run_tracker import RunTracker, SourceRef
from recipe_automation.services.schedule_store import ScheduleStore
from recipe_automation.services.scheduler import SchedulerService


class IdleExecutor(UnconfiguredPipelineExecutor):
    async def next_source(self, options: dict[str, Any]) -> SourceRef | None:
        return None


@asynccontextmanager
async def _scheduler_app(
    tmp_path: Path,
    *,
    scheduler_enabled: bool = True,
) -> AsyncIterator[tuple[FastAPI, JobRegistry, ScheduleStore]]:
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'scheduler.sqlite'}")
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

    async def override_db_session() -> AsyncIterator[AsyncSession]:
        async with scoped_session() as session:
            yield session

    async with engine.begin() as connection:
        await connection.run_sync(Base.metadata.create_all)

    backend = AsyncIOScheduler(jobstores={"default": MemoryJobStore()}, timezone=UTC)
    if scheduler_enabled:
        backend.start(paused=True)
    scheduler = SchedulerService(enabled=scheduler_enabled, scheduler=backend)
    store = ScheduleStore(session_factory=scoped_session)
    registry = JobRegistry(
        scheduler=scheduler,
        store=store,
        tracker=RunTracker(session_factory=scoped_session),
        executor=IdleExecutor(),
        history=RunHistoryService(session_factory=scoped_session),
        activity_service=ActivityService(session_factory=scoped_session),
    )

    app = FastAPI()
    app.include_router(scheduler_router)
    app.include_router(activity_router)
    app.dependency_overrides[get_db_session] = override_db_session
    app.state.scheduler_service = scheduler
    app.state.job_registry = registry
    try:
        yield app, registry, store
    finally:
        await scheduler.shutdown()
        await engine.dispose()


@pytest.mark.asyncio
async def test_scheduler_status_and_armed_jobs(tmp_path: Path) -> None:
    async with _scheduler_app(tmp_path) as (app, registry, _):
        schedule = await registry.create_schedule(
            enabled=True, interval_minutes=30, name="Half hourly"
        )
        await registry.on_fire(schedule.id)

        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            status_response = await client.get("/api/automation/scheduler")
            assert status_response.status_code == 200
            assert status_response.json() == {
                "enabled": True,
                "running": True,
                "timezone": "UTC",
                "armedJobs": 1,
                "inflightRuns": 0,
            }

            jobs_response = await client.get("/api/automation/scheduler/jobs")
            assert jobs_response.status_code == 200
            jobs = jobs_response.json()
            assert len(jobs) == 1
            assert jobs[0]["scheduleId"] == str(schedule.id)
            assert jobs[0]["name"] == "Half hourly"
            assert jobs[0]["cronExpression"] == "*/30 * * * *"
            assert jobs[0]["description"] == "Every 30 minutes"
            assert jobs[0]["nextRunTime"] is not None
            assert jobs[0]["fires"] == 1
            assert jobs[0]["idleSkips"] == 1


@pytest.mark.asyncio
async def test_reconcile_route_arms_stored_schedules(tmp_path: Path) -> None:
    async with _scheduler_app(tmp_path) as (app, registry, store):
        schedule = await store.create_schedule(
            cron_expression="*/10 * * * *", enabled=True
        )

        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            response = await client.post("/api/automation/scheduler/reconcile")

        assert response.status_code == 200
        assert response.json() == {
            "armed": [str(schedule.id)],
            "disarmed": [],
            "rearmed": [],
            "failed": [],
        }
        assert registry.is_armed(schedule.id) is True


@pytest.mark.asyncio
async def test_diagnostics_reports_health_and_registry_drift(tmp_path: Path) -> None:
    async with _scheduler_app(tmp_path) as (app, registry, store):
        await registry.create_schedule(enabled=True, cron_expression="*/10 * * * *")

        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            healthy = await client.get("/api/automation/diagnostics")
            assert healthy.status_code == 200
            body = healthy.json()
            assert body["overallStatus"] == "HEALTHY"
            assert body["checks"]["scheduler"]["status"] == "RUNNING"
            assert body["checks"]["registry"]["armedJobs"] == 1
            assert body["checks"]["registry"]["executorConfigured"] is False
            assert body["checks"]["database"]["enabledSchedules"] == 1
            assert body["checks"]["recentExecutions"]["logs"] == []

            await store.create_schedule(cron_expression="*/20 * * * *", enabled=True)
            drifted = await client.get("/api/automation/diagnostics")
            assert drifted.json()["overallStatus"] == "DEGRADED"
            assert drifted.json()["checks"]["registry"]["status"] == "ERROR"


@pytest.mark.asyncio
async def test_disabled_scheduler_rejects_job_listing(tmp_path: Path) -> None:
    async with _scheduler_app(tmp_path, scheduler_enabled=False) as (app, _, _):
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            status_response = await client.get("/api/automation/scheduler")
            assert status_response.json()["enabled"] is False
            assert status_response.json()["running"] is False

            jobs_response = await client.get("/api/automation/scheduler/jobs")
            assert jobs_response.status_code == 409

            diagnostics = await client.get("/api/automation/diagnostics")
            assert diagnostics.json()["checks"]["scheduler"]["status"] == "DISABLED"


@pytest.mark.asyncio
async def test_activity_feed_lists_schedule_events(tmp_path: Path) -> None:
    async with _scheduler_app(tmp_path) as (app, registry, _):
        schedule = await registry.create_schedule(
            enabled=True, cron_expression="*/10 * * * *"
        )
        await registry.set_enabled(schedule.id, False)

        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            response = await client.get(
                "/api/activity", params={"scheduleId": str(schedule.id)}
            )
            assert response.status_code == 200
            body = response.json()
            assert body["pagination"]["total"] == 2
            assert body["pagination"]["hasMore"] is False
            assert {item["eventType"] for item in body["items"]} == {
                "schedule_created",
                "schedule_updated",
            }

            filtered = await client.get(
                "/api/activity", params={"eventType": "schedule_created"}
            )
            assert filtered.json()["pagination"]["total"] == 1
            assert filtered.json()["items"][0]["metadata"]["enabled"] is True
