"""Scheduler status, armed job monitoring, and diagnostics API routes."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Literal
from uuid import UUID

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from recipe_automation.api.dependencies import (
    get_job_registry,
    get_scheduler_service,
    raise_service_error,
)
from recipe_automation.database import get_db_session
from recipe_automation.models import AutomationSchedule, PipelineRun, RunStatus
from recipe_automation.schemas.base import ApiModel
from recipe_automation.services.cron_translator import cron_to_human
from recipe_automation.services.executor import UnconfiguredPipelineExecutor
from recipe_automation.services.job_registry import JobRegistry, schedule_job_id
from recipe_automation.services.scheduler import SchedulerJobState, SchedulerService
from recipe_automation.utils.timestamps import as_utc, utc_now

router = APIRouter(prefix="/api/automation", tags=["scheduler"])

_diagnostics_logger = logging.getLogger("recipe_automation.diagnostics")

RECENT_RUNS_LIMIT = 5


class SchedulerStatusResponse(ApiModel):
    """Runtime scheduler status response."""

    enabled: bool
    running: bool
    timezone: str
    armed_jobs: int
    inflight_runs: int


class SchedulerJobResponse(ApiModel):
    """Armed schedule job with its runtime metrics."""

    job_id: str
    schedule_id: UUID
    name: str | None
    trigger: str
    cron_expression: str
    description: str
    next_run_time: datetime | None
    fires: int
    runs_started: int
    overlap_skips: int
    idle_skips: int
    start_failures: int
    succeeded_runs: int
    failed_runs: int
    last_fired_at: datetime | None
    last_finished_at: datetime | None
    last_error: str | None


class ReconcileResponse(ApiModel):
    armed: list[UUID]
    disarmed: list[UUID]
    rearmed: list[UUID]
    failed: list[UUID]


class DiagnosticsResponse(ApiModel):
    timestamp: datetime
    checks: dict[str, dict[str, Any]]
    overall_status: Literal["HEALTHY", "DEGRADED"]


@router.get(
    "/scheduler",
    response_model=SchedulerStatusResponse,
    status_code=status.HTTP_200_OK,
)
async def get_scheduler_status(
    scheduler: SchedulerService = Depends(get_scheduler_service),
    registry: JobRegistry = Depends(get_job_registry),
) -> SchedulerStatusResponse:
    return SchedulerStatusResponse(
        enabled=scheduler.enabled,
        running=scheduler.running,
        timezone=str(scheduler.timezone),
        armed_jobs=len(registry.armed_schedule_ids),
        inflight_runs=len(registry.inflight_run_ids),
    )


@router.get(
    "/scheduler/jobs",
    response_model=list[SchedulerJobResponse],
    status_code=status.HTTP_200_OK,
)
async def list_scheduler_jobs(
    scheduler: SchedulerService = Depends(get_scheduler_service),
    registry: JobRegistry = Depends(get_job_registry),
) -> list[SchedulerJobResponse]:
    job_states: dict[str, SchedulerJobState] = {}
    try:
        job_states = {job.job_id: job for job in scheduler.list_jobs()}
    except Exception as error:
        raise_service_error(error)

    metrics_by_schedule = {
        metrics.schedule_id: metrics for metrics in registry.metrics_snapshot()
    }
    responses: list[SchedulerJobResponse] = []
    for armed in registry.armed_jobs():
        job_state = job_states.get(schedule_job_id(armed.schedule_id))
        metrics = metrics_by_schedule.get(armed.schedule_id)
        responses.append(
            SchedulerJobResponse(
                job_id=armed.job_id,
                schedule_id=armed.schedule_id,
                name=armed.name,
                trigger=job_state.trigger if job_state else "unknown",
                cron_expression=armed.cron_expression,
                description=cron_to_human(armed.cron_expression),
                next_run_time=(
                    job_state.next_run_time
                    if job_state and job_state.next_run_time
                    else registry.next_fire_time(armed.cron_expression)
                ),
                fires=metrics.fires if metrics else 0,
                runs_started=metrics.runs_started if metrics else 0,
                overlap_skips=metrics.overlap_skips if metrics else 0,
                idle_skips=metrics.idle_skips if metrics else 0,
                start_failures=metrics.start_failures if metrics else 0,
                succeeded_runs=metrics.succeeded_runs if metrics else 0,
                failed_runs=metrics.failed_runs if metrics else 0,
                last_fired_at=metrics.last_fired_at if metrics else None,
                last_finished_at=metrics.last_finished_at if metrics else None,
                last_error=metrics.last_error if metrics else None,
            )
        )
    return responses


@router.post(
    "/scheduler/reconcile",
    response_model=ReconcileResponse,
    status_code=status.HTTP_200_OK,
)
async def reconcile_scheduler_jobs(
    registry: JobRegistry = Depends(get_job_registry),
) -> ReconcileResponse:
    result = await registry.reconcile()
    return ReconcileResponse(
        armed=list(result.armed),
        disarmed=list(result.disarmed),
        rearmed=list(result.rearmed),
        failed=list(result.failed),
    )


async def _database_check(session: AsyncSession) -> dict[str, Any]:
    schedules = int(
        (await session.scalar(select(func.count(AutomationSchedule.id)))) or 0
    )
    enabled_schedules = int(
        (
            await session.scalar(
                select(func.count(AutomationSchedule.id)).where(
                    AutomationSchedule.enabled.is_(True)
                )
            )
        )
        or 0
    )
    status_rows = (
        await session.execute(
            select(PipelineRun.status, func.count(PipelineRun.id)).group_by(
                PipelineRun.status
            )
        )
    ).all()
    runs_by_status = {RunStatus(row[0]).value: int(row[1]) for row in status_rows}
    return {
        "status": "OK",
        "schedules": schedules,
        "enabledSchedules": enabled_schedules,
        "executionLogs": sum(runs_by_status.values()),
        "runsByStatus": runs_by_status,
    }


async def _recent_runs_check(session: AsyncSession) -> dict[str, Any]:
    rows = (
        await session.scalars(
            select(PipelineRun)
            .order_by(PipelineRun.started_at.desc())
            .limit(RECENT_RUNS_LIMIT)
        )
    ).all()
    oldest_running_started_at = await session.scalar(
        select(func.min(PipelineRun.started_at)).where(
            PipelineRun.status == RunStatus.RUNNING
        )
    )
    return {
        "status": "OK",
        "oldestRunningStartedAt": (
            as_utc(oldest_running_started_at).isoformat()
            if oldest_running_started_at
            else None
        ),
        "logs": [
            {
                "id": str(row.id),
                "status": RunStatus(row.status).value,
                "stage": row.stage,
                "error": row.error,
                "triggeredBy": row.triggered_by.value,
                "startedAt": as_utc(row.started_at).isoformat(),
                "completedAt": (
                    as_utc(row.completed_at).isoformat() if row.completed_at else None
                ),
            }
            for row in rows
        ],
    }


@router.get(
    "/diagnostics",
    response_model=DiagnosticsResponse,
    status_code=status.HTTP_200_OK,
)
async def get_diagnostics(
    request: Request,
    session: AsyncSession = Depends(get_db_session),
) -> DiagnosticsResponse:
    checks: dict[str, dict[str, Any]] = {}
    scheduler = getattr(request.app.state, "scheduler_service", None)
    registry = getattr(request.app.state, "job_registry", None)

    if isinstance(scheduler, SchedulerService):
        if not scheduler.enabled:
            scheduler_status = "DISABLED"
        elif scheduler.running:
            scheduler_status = "RUNNING"
        else:
            scheduler_status = "ERROR"
        checks["scheduler"] = {
            "status": scheduler_status,
            "enabled": scheduler.enabled,
            "running": scheduler.running,
        }
    else:
        checks["scheduler"] = {"status": "ERROR", "error": "Scheduler not initialized"}

    if isinstance(registry, JobRegistry):
        checks["registry"] = {
            "status": "OK",
            "armedJobs": len(registry.armed_schedule_ids),
            "inflightRuns": len(registry.inflight_run_ids),
            "executorConfigured": not isinstance(
                registry.executor, UnconfiguredPipelineExecutor
            ),
        }
    else:
        checks["registry"] = {"status": "ERROR", "error": "Registry not initialized"}

    for name, check in (
        ("database", _database_check),
        ("recentExecutions", _recent_runs_check),
    ):
        try:
            checks[name] = await check(session)
        except Exception as error:
            _diagnostics_logger.exception(
                "diagnostics_check_failed", extra={"check": name}
            )
            checks[name] = {"status": "ERROR", "error": str(error)}

    database_check = checks.get("database", {})
    registry_check = checks.get("registry", {})
    if (
        checks["scheduler"].get("status") == "RUNNING"
        and database_check.get("status") == "OK"
        and registry_check.get("status") == "OK"
        and registry_check["armedJobs"] != database_check["enabledSchedules"]
    ):
        registry_check["status"] = "ERROR"
        registry_check["error"] = "Armed jobs do not match enabled schedules"

    has_errors = any(check.get("status") == "ERROR" for check in checks.values())
    return DiagnosticsResponse(
        timestamp=utc_now(),
        checks=checks,
        overall_status="DEGRADED" if has_errors else "HEALTHY",
    )
