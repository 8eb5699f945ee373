"""Startup and shutdown recovery helpers for interrupted pipeline runs."""

from __future__ import annotations

import logging
from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from recipe_automation.models import PipelineRun, RunStatus
from recipe_automation.services.run_tracker import RunTracker

SessionScopeFactory = Callable[[], AbstractAsyncContextManager[AsyncSession]]

RECOVERY_STAGE = "startup_recovery"
RECOVERY_REASON = "Recovered unfinished run after process interruption"

_recovery_logger = logging.getLogger("recipe_automation.recovery")


@dataclass(slots=True, frozen=True)
class InterruptedRunRecord:
    """Interrupted run details for logs and lifecycle summaries."""

    run_id: UUID
    schedule_id: UUID | None
    source_id: str | None
    stage: str | None
    started_at: datetime


@dataclass(slots=True, frozen=True)
class StartupRecoveryResult:
    detected_runs: tuple[InterruptedRunRecord, ...]
    recovered: int

    @property
    def detected_count(self) -> int:
        return len(self.detected_runs)


@dataclass(slots=True, frozen=True)
class ShutdownRunSummary:
    """Session-scoped shutdown aggregate counters."""

    runs_started: int
    runs_succeeded: int
    runs_failed: int
    runs_running: int


class RunRecoveryService:
    """Fail runs a previous process left RUNNING and summarize sessions."""

    def __init__(
        self,
        *,
        tracker: RunTracker,
        session_factory: SessionScopeFactory | None = None,
    ) -> None:
        if session_factory is None:
            from recipe_automation.database import session_scope

            session_factory = session_scope

        self._tracker = tracker
        self._session_factory = session_factory

    async def handle_startup_recovery(self) -> StartupRecoveryResult:
        """Mark every RUNNING run as failed at the recovery stage.

        Runs go through the tracker so that the owning schedule's ``last_run``
        is stamped exactly as it would be for any other failure.
        """

        interrupted = await self._list_running_runs()
        if not interrupted:
            _recovery_logger.info("startup_interrupted_runs_not_found")
            return StartupRecoveryResult(detected_runs=(), recovered=0)

        _recovery_logger.warning(
            "startup_interrupted_runs_detected",
            extra={
                "count": len(interrupted),
                "run_ids": [str(record.run_id) for record in interrupted],
            },
        )

        recovered = 0
        for record in interrupted:
            try:
                await self._tracker.fail_run(
                    record.run_id,
                    error=RECOVERY_REASON,
                    error_stage=RECOVERY_STAGE,
                )
            except (LookupError, RuntimeError):
                _recovery_logger.exception(
                    "startup_run_recovery_failed",
                    extra={"run_id": str(record.run_id)},
                )
                continue
            recovered += 1

        _recovery_logger.info(
            "running_runs_marked_failed",
            extra={"count": recovered, "stage": RECOVERY_STAGE},
        )
        return StartupRecoveryResult(
            detected_runs=tuple(interrupted),
            recovered=recovered,
        )

    async def summarize_session(
        self,
        *,
        session_started_at: datetime,
    ) -> ShutdownRunSummary:
        """Return run totals for runs started since ``session_started_at``."""

        async with self._session_factory() as session:
            rows = (
                await session.execute(
                    select(PipelineRun.status, func.count())
                    .where(PipelineRun.started_at >= session_started_at)
                    .group_by(PipelineRun.status)
                )
            ).all()

        counts = {RunStatus(status): int(count) for status, count in rows}
        return ShutdownRunSummary(
            runs_started=sum(counts.values()),
            runs_succeeded=counts.get(RunStatus.SUCCESS, 0),
            runs_failed=counts.get(RunStatus.FAILED, 0),
            runs_running=counts.get(RunStatus.RUNNING, 0),
        )

    async def _list_running_runs(self) -> list[InterruptedRunRecord]:
        async with self._session_factory() as session:
            rows = (
                await session.scalars(
                    select(PipelineRun)
                    .where(PipelineRun.status == RunStatus.RUNNING)
                    .order_by(PipelineRun.started_at.asc())
                )
            ).all()

            return [
                InterruptedRunRecord(
                    run_id=row.id,
                    schedule_id=row.schedule_id,
                    source_id=row.source_id,
                    stage=row.stage,
                    started_at=row.started_at,
                )
                for row in rows
            ]


__all__ = [
    "RECOVERY_REASON",
    "RECOVERY_STAGE",
    "InterruptedRunRecord",
    "RunRecoveryService",
    "ShutdownRunSummary",
    "StartupRecoveryResult",
]
