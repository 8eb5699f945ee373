"""Service lookups from application state and error mapping for routes."""

from __future__ import annotations

from typing import NoReturn

from fastapi import HTTPException, Request, status

from recipe_automation.services.job_registry import JobRegistry
from recipe_automation.services.run_history import RunHistoryService
from recipe_automation.services.run_tracker import RunTracker
from recipe_automation.services.scheduler import SchedulerService


def get_scheduler_service(request: Request) -> SchedulerService:
    scheduler = getattr(request.app.state, "scheduler_service", None)
    if isinstance(scheduler, SchedulerService):
        return scheduler

    raise HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail="Scheduler service is unavailable",
    )


def get_job_registry(request: Request) -> JobRegistry:
    registry = getattr(request.app.state, "job_registry", None)
    if isinstance(registry, JobRegistry):
        return registry

    raise HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail="Job registry is unavailable",
    )


def get_run_tracker(request: Request) -> RunTracker:
    tracker = getattr(request.app.state, "run_tracker", None)
    if isinstance(tracker, RunTracker):
        return tracker

    raise HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail="Run tracker is unavailable",
    )


def get_run_history_service(request: Request) -> RunHistoryService:
    history = getattr(request.app.state, "run_history_service", None)
    if isinstance(history, RunHistoryService):
        return history

    raise HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail="Run history service is unavailable",
    )


def raise_service_error(error: Exception) -> NoReturn:
    if isinstance(error, HTTPException):
        raise error

    if isinstance(error, LookupError):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(error),
        ) from error

    if isinstance(error, ValueError):
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(error),
        ) from error

    if isinstance(error, RuntimeError):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=str(error),
        ) from error

    raise HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail="Unexpected automation operation failure",
    ) from error


__all__ = [
    "get_job_registry",
    "get_run_history_service",
    "get_run_tracker",
    "get_scheduler_service",
    "raise_service_error",
]
