"""Automation schedule CRUD API routes."""

from __future__ import annotations

from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from recipe_automation.api.dependencies import get_job_registry, raise_service_error
from recipe_automation.schemas import (
    ScheduleCreate,
    ScheduleDeleteResponse,
    ScheduleListResponse,
    ScheduleRead,
    ScheduleUpdate,
)
from recipe_automation.services.job_registry import JobRegistry, ScheduleView

router = APIRouter(prefix="/api/automation/schedules", tags=["schedules"])


def _read(view: ScheduleView) -> ScheduleRead:
    return ScheduleRead.model_validate(view)


@router.get("", response_model=ScheduleListResponse, status_code=status.HTTP_200_OK)
async def list_schedules(
    registry: JobRegistry = Depends(get_job_registry),
) -> ScheduleListResponse:
    views = await registry.list_schedules()
    return ScheduleListResponse(schedules=[_read(view) for view in views])


@router.get(
    "/{schedule_id}", response_model=ScheduleRead, status_code=status.HTTP_200_OK
)
async def get_schedule(
    schedule_id: UUID,
    registry: JobRegistry = Depends(get_job_registry),
) -> ScheduleRead:
    try:
        view = await registry.get_schedule(schedule_id)
    except Exception as error:
        raise_service_error(error)
    return _read(view)


@router.post("", response_model=ScheduleRead, status_code=status.HTTP_201_CREATED)
async def create_schedule(
    payload: ScheduleCreate,
    registry: JobRegistry = Depends(get_job_registry),
) -> ScheduleRead:
    try:
        view = await registry.create_schedule(
            enabled=payload.enabled,
            cron_expression=payload.cron_expression,
            interval_minutes=payload.interval_minutes,
            name=payload.name,
            executor_options=payload.executor_options,
        )
    except Exception as error:
        raise_service_error(error)
    return _read(view)


@router.put("", response_model=ScheduleRead, status_code=status.HTTP_200_OK)
async def update_schedule(
    payload: ScheduleUpdate,
    registry: JobRegistry = Depends(get_job_registry),
) -> ScheduleRead:
    # Only explicitly sent keys may clear nullable fields.
    optional_fields: dict[str, Any] = {
        field_name: getattr(payload, field_name)
        for field_name in ("name", "executor_options")
        if field_name in payload.model_fields_set
    }
    try:
        view = await registry.update_schedule(
            payload.id,
            enabled=payload.enabled,
            cron_expression=payload.cron_expression,
            interval_minutes=payload.interval_minutes,
            **optional_fields,
        )
    except Exception as error:
        raise_service_error(error)
    return _read(view)


@router.delete(
    "", response_model=ScheduleDeleteResponse, status_code=status.HTTP_200_OK
)
async def delete_schedule(
    schedule_id: UUID = Query(alias="id"),
    delete_runs: bool = Query(default=False, alias="deleteRuns"),
    registry: JobRegistry = Depends(get_job_registry),
) -> ScheduleDeleteResponse:
    try:
        deletion = await registry.delete_schedule(schedule_id, delete_runs=delete_runs)
    except Exception as error:
        raise_service_error(error)
    return ScheduleDeleteResponse(
        deleted=deletion.deleted,
        deleted_run_count=deletion.deleted_run_count,
    )
