"""ASGI application factory and lifecycle for the recipe automation scheduler."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
import logging
import signal
from typing import Any

from fastapi import FastAPI, Request
from starlette.responses import Response
import uvicorn

from recipe_automation import __version__
from recipe_automation.api.activity import router as activity_router
from recipe_automation.api.pipeline import router as pipeline_router
from recipe_automation.api.scheduler import router as scheduler_router
from recipe_automation.api.schedules import router as schedules_router
from recipe_automation.config import Settings, get_settings
from recipe_automation.database import (
    close_database,
    initialize_database,
    run_startup_database_health_check,
)
from recipe_automation.services.activity_service import ActivityService
from recipe_automation.services.executor import build_executor
from recipe_automation.services.job_registry import JobRegistry
from recipe_automation.services.run_history import RunHistoryService
from recipe_automation.services.run_recovery_service import RunRecoveryService
from recipe_automation.services.run_tracker import RunTracker
from recipe_automation.services.schedule_store import ScheduleStore
from recipe_automation.services.scheduler import SchedulerService
from recipe_automation.utils.logging import (
    add_request_logging_middleware,
    setup_logging,
)
from recipe_automation.utils.timestamps import utc_now

__all__ = ["app", "create_app", "main"]

HANDLED_SIGNALS = (signal.SIGTERM, signal.SIGINT)

_lifecycle_logger = logging.getLogger("recipe_automation.lifecycle")


def _reset_lifecycle_state(app: FastAPI) -> None:
    state = app.state
    state.inflight_requests = 0
    state.requests_drained = asyncio.Event()
    state.requests_drained.set()
    state.shutdown_requested = asyncio.Event()
    state.shutdown_signal = None
    state.session_started_at = utc_now()


def _register_services(app: FastAPI, settings: Settings) -> None:
    """Wire the service graph onto ``app.state`` for the request handlers."""

    scheduler_service = SchedulerService.from_settings(settings)
    run_tracker = RunTracker()
    activity_service = ActivityService()
    run_history_service = RunHistoryService(
        max_page_size=settings.HISTORY_MAX_PAGE_SIZE,
        activity_service=activity_service,
    )

    app.state.scheduler_service = scheduler_service
    app.state.run_tracker = run_tracker
    app.state.run_history_service = run_history_service
    app.state.job_registry = JobRegistry(
        scheduler=scheduler_service,
        store=ScheduleStore(),
        tracker=run_tracker,
        executor=build_executor(settings),
        history=run_history_service,
        activity_service=activity_service,
    )
    app.state.recovery_service = RunRecoveryService(tracker=run_tracker)


def _install_signal_handlers(app: FastAPI) -> dict[signal.Signals, Any]:
    """Record shutdown signals, then chain to whatever handler was there."""

    previous_handlers = {
        handled: signal.getsignal(handled) for handled in HANDLED_SIGNALS
    }

    def _on_signal(signum: int, frame: object | None) -> None:
        if not app.state.shutdown_requested.is_set():
            app.state.shutdown_signal = signal.Signals(signum).name
            app.state.shutdown_requested.set()
            _lifecycle_logger.warning(
                "shutdown_signal_received",
                extra={"signal": app.state.shutdown_signal},
            )

        previous_handler = previous_handlers[signal.Signals(signum)]
        if callable(previous_handler):
            previous_handler(signum, frame)

    for handled in HANDLED_SIGNALS:
        signal.signal(handled, _on_signal)
    return previous_handlers


async def _wait_for_inflight_requests(app: FastAPI, *, timeout_seconds: int) -> bool:
    if app.state.inflight_requests <= 0:
        return True

    try:
        await asyncio.wait_for(
            app.state.requests_drained.wait(), timeout=timeout_seconds
        )
    except TimeoutError:
        return False
    return True


async def _recover_interrupted_runs(app: FastAPI, settings: Settings) -> None:
    if not settings.RUN_RECOVERY_ON_STARTUP:
        _lifecycle_logger.info("startup_recovery_disabled")
        return

    recovery_result = await app.state.recovery_service.handle_startup_recovery()
    _lifecycle_logger.info(
        "startup_recovery_summary",
        extra={
            "interrupted_runs_detected": recovery_result.detected_count,
            "interrupted_runs_recovered": recovery_result.recovered,
        },
    )


async def _log_shutdown_summary(
    app: FastAPI, *, runs_interrupted: int, graceful_shutdown: bool
) -> None:
    summary = await app.state.recovery_service.summarize_session(
        session_started_at=app.state.session_started_at
    )
    _lifecycle_logger.info(
        "shutdown_summary",
        extra={
            "runs_started": summary.runs_started,
            "runs_succeeded": summary.runs_succeeded,
            "runs_failed": summary.runs_failed,
            "runs_still_running": summary.runs_running,
            "runs_interrupted": runs_interrupted,
            "graceful_shutdown": graceful_shutdown,
            "inflight_requests": app.state.inflight_requests,
            "signal": app.state.shutdown_signal,
        },
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    settings = get_settings()
    _reset_lifecycle_state(app)
    _register_services(app, settings)
    previous_handlers = _install_signal_handlers(app)

    scheduler_service: SchedulerService = app.state.scheduler_service
    job_registry: JobRegistry = app.state.job_registry

    await initialize_database()
    await run_startup_database_health_check()
    await _recover_interrupted_runs(app, settings)

    # Jobs live in memory only; arm them from the persisted schedules.
    reconcile_result = await job_registry.reconcile()
    await scheduler_service.start()
    _lifecycle_logger.info(
        "application_started",
        extra={
            "version": __version__,
            "armed_schedules": len(reconcile_result.armed),
            "failed_schedules": len(reconcile_result.failed),
        },
    )

    try:
        yield
    finally:
        graceful_shutdown = await _wait_for_inflight_requests(
            app, timeout_seconds=settings.SHUTDOWN_GRACE_PERIOD_SECONDS
        )
        await scheduler_service.shutdown()
        runs_interrupted = await job_registry.shutdown()
        await _log_shutdown_summary(
            app,
            runs_interrupted=runs_interrupted,
            graceful_shutdown=graceful_shutdown,
        )
        for handled, previous_handler in previous_handlers.items():
            signal.signal(handled, previous_handler)
        await close_database()


def _add_inflight_tracking(app: FastAPI) -> None:
    @app.middleware("http")
    async def track_inflight_requests(
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        state = app.state
        state.inflight_requests = int(getattr(state, "inflight_requests", 0)) + 1
        drained: asyncio.Event = state.requests_drained
        drained.clear()
        try:
            return await call_next(request)
        finally:
            state.inflight_requests = max(0, state.inflight_requests - 1)
            if state.inflight_requests == 0:
                drained.set()


def create_app() -> FastAPI:
    settings = get_settings()
    setup_logging(settings)

    app = FastAPI(
        title="Recipe Automation Scheduler",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings
    _reset_lifecycle_state(app)
    _add_inflight_tracking(app)
    add_request_logging_middleware(app)

    for router in (
        schedules_router,
        pipeline_router,
        scheduler_router,
        activity_router,
    ):
        app.include_router(router)

    @app.get("/health", tags=["health"])
    async def health_check() -> dict[str, str]:
        return {"status": "ok"}

    return app


app = create_app()


def main() -> None:
    settings = get_settings()
    uvicorn.run(
        "recipe_automation.main:app",
        host=settings.HOST,
        port=settings.PORT,
        log_level=settings.LOG_LEVEL.lower(),
        reload=False,
    )


if __name__ == "__main__":
    main()
