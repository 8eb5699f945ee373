"""Pipeline run API routes: manual runs, history, and executor callbacks."""

from __future__ import annotations

import logging
from datetime import datetime
from uuid import UUID

import httpx
from fastapi import APIRouter, Body, Depends, HTTPException, Query, Response, status

from recipe_automation.api.dependencies import (
    get_job_registry,
    get_run_history_service,
    get_run_tracker,
    raise_service_error,
)
from recipe_automation.models import RunStatus, RunTrigger
from recipe_automation.schemas import (
    ManualRunRequest,
    PaginationRead,
    PipelineRunPage,
    PipelineRunRead,
    RunCompletePayload,
    RunDeleteRequest,
    RunDeleteResponse,
    RunEventPayload,
    RunFailPayload,
)
from recipe_automation.services.job_registry import JobRegistry, NoPendingWorkError
from recipe_automation.services.run_history import (
    DEFAULT_PAGE_SIZE,
    RunHistoryFilters,
    RunHistoryService,
)
from recipe_automation.services.run_tracker import RunNotFoundError, RunTracker

router = APIRouter(prefix="/api/automation/pipeline", tags=["pipeline"])

_pipeline_api_logger = logging.getLogger("recipe_automation.api.pipeline")


@router.post(
    "/run", response_model=PipelineRunRead, status_code=status.HTTP_202_ACCEPTED
)
async def start_manual_run(
    payload: ManualRunRequest,
    registry: JobRegistry = Depends(get_job_registry),
) -> PipelineRunRead:
    if not payload.source_id and not payload.auto_select:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing sourceId or autoSelect=true",
        )

    try:
        run = await registry.start_manual_run(
            source_id=payload.source_id,
            source_title=payload.source_title,
            options=payload.options,
        )
    except NoPendingWorkError as error:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=str(error),
        ) from error
    except httpx.HTTPError as error:
        _pipeline_api_logger.exception("pipeline_executor_unreachable")
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Pipeline executor is unavailable",
        ) from error
    except Exception as error:
        raise_service_error(error)
    return PipelineRunRead.model_validate(run)


@router.get("/logs", response_model=PipelineRunPage, status_code=status.HTTP_200_OK)
async def list_run_logs(
    page: int = 1,
    limit: int = DEFAULT_PAGE_SIZE,
    status_filter: RunStatus | None = Query(default=None, alias="status"),
    triggered_by: RunTrigger | None = Query(default=None, alias="triggeredBy"),
    schedule_id: UUID | None = Query(default=None, alias="scheduleId"),
    source_id: str | None = Query(default=None, alias="sourceId"),
    date_from: datetime | None = Query(default=None, alias="dateFrom"),
    date_to: datetime | None = Query(default=None, alias="dateTo"),
    history: RunHistoryService = Depends(get_run_history_service),
) -> PipelineRunPage:
    result = await history.list_runs(
        RunHistoryFilters(
            status=status_filter,
            triggered_by=triggered_by,
            schedule_id=schedule_id,
            source_id=source_id.strip() if source_id else None,
            date_from=date_from,
            date_to=date_to,
        ),
        page=page,
        limit=limit,
    )
    return PipelineRunPage(
        logs=[PipelineRunRead.model_validate(run) for run in result.runs],
        pagination=PaginationRead.model_validate(result.pagination),
    )


@router.delete(
    "/logs/delete", response_model=RunDeleteResponse, status_code=status.HTTP_200_OK
)
async def delete_run_logs(
    payload: RunDeleteRequest = Body(...),
    history: RunHistoryService = Depends(get_run_history_service),
) -> RunDeleteResponse:
    if not payload.log_ids:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="logIds array is required",
        )

    deleted_count = await history.delete_runs(payload.log_ids)
    return RunDeleteResponse(
        deleted_count=deleted_count,
        message=f"Successfully deleted {deleted_count} execution log(s)",
    )


@router.get(
    "/runs/{run_id}", response_model=PipelineRunRead, status_code=status.HTTP_200_OK
)
async def get_run(
    run_id: UUID,
    tracker: RunTracker = Depends(get_run_tracker),
) -> PipelineRunRead:
    run = await tracker.get_run(run_id)
    if run is None:
        raise_service_error(RunNotFoundError(run_id))
    return PipelineRunRead.model_validate(run)


@router.delete("/runs/{run_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_run(
    run_id: UUID,
    history: RunHistoryService = Depends(get_run_history_service),
) -> Response:
    if not await history.delete_run(run_id):
        raise_service_error(RunNotFoundError(run_id))
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/runs/{run_id}/events",
    response_model=PipelineRunRead,
    status_code=status.HTTP_200_OK,
)
async def record_run_event(
    run_id: UUID,
    payload: RunEventPayload,
    tracker: RunTracker = Depends(get_run_tracker),
) -> PipelineRunRead:
    progress = payload.progress
    if progress is None and payload.step is not None and payload.total:
        progress = min(100, int(payload.step * 100 / payload.total))

    try:
        run = await tracker.record_progress(
            run_id,
            progress=progress,
            stage=payload.stage,
            message=payload.message,
            step=payload.step,
            total=payload.total,
        )
    except Exception as error:
        raise_service_error(error)
    return PipelineRunRead.model_validate(run)


@router.post(
    "/runs/{run_id}/complete",
    response_model=PipelineRunRead,
    status_code=status.HTTP_200_OK,
)
async def complete_run(
    run_id: UUID,
    payload: RunCompletePayload,
    tracker: RunTracker = Depends(get_run_tracker),
) -> PipelineRunRead:
    try:
        run = await tracker.complete_run(
            run_id,
            result_ref=payload.result_ref,
            result_url=payload.result_url,
            messages=payload.messages,
        )
    except Exception as error:
        raise_service_error(error)
    return PipelineRunRead.model_validate(run)


@router.post(
    "/runs/{run_id}/fail",
    response_model=PipelineRunRead,
    status_code=status.HTTP_200_OK,
)
async def fail_run(
    run_id: UUID,
    payload: RunFailPayload,
    tracker: RunTracker = Depends(get_run_tracker),
) -> PipelineRunRead:
    try:
        run = await tracker.fail_run(
            run_id,
            error=payload.error,
            error_stage=payload.error_stage,
            messages=payload.messages,
        )
    except Exception as error:
        raise_service_error(error)
    return PipelineRunRead.model_validate(run)
