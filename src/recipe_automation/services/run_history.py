"""Filtered, paginated queries and bulk deletion over pipeline run history."""

from __future__ import annotations

import logging
import math
from collections.abc import Callable, Iterable
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from recipe_automation.models import PipelineRun, RunStatus, RunTrigger
from recipe_automation.services.activity_service import ActivityService
from recipe_automation.services.run_tracker import RunSnapshot

SessionScopeFactory = Callable[[], AbstractAsyncContextManager[AsyncSession]]

DEFAULT_PAGE_SIZE = 20

_history_logger = logging.getLogger("recipe_automation.history")


@dataclass(slots=True, frozen=True)
class RunHistoryFilters:
    status: RunStatus | None = None
    triggered_by: RunTrigger | None = None
    schedule_id: UUID | None = None
    source_id: str | None = None
    date_from: datetime | None = None
    date_to: datetime | None = None


@dataclass(slots=True, frozen=True)
class Pagination:
    page: int
    limit: int
    total: int
    total_pages: int
    has_more: bool

    @classmethod
    def build(cls, *, page: int, limit: int, total: int) -> Pagination:
        total_pages = math.ceil(total / limit) if total else 0
        return cls(
            page=page,
            limit=limit,
            total=total,
            total_pages=total_pages,
            has_more=page < total_pages,
        )


@dataclass(slots=True, frozen=True)
class RunHistoryPage:
    runs: list[RunSnapshot]
    pagination: Pagination


class RunHistoryService:
    """Read and prune run records; never touches schedules or live jobs."""

    def __init__(
        self,
        *,
        session_factory: SessionScopeFactory | None = None,
        max_page_size: int = 100,
        activity_service: ActivityService | None = None,
    ) -> None:
        if session_factory is None:
            from recipe_automation.database import session_scope

            session_factory = session_scope

        self._session_factory = session_factory
        self._max_page_size = max(1, max_page_size)
        self._activity_service = activity_service

    def _bounded(self, page: int, limit: int) -> tuple[int, int]:
        return max(page, 1), min(max(limit, 1), self._max_page_size)

    async def list_runs(
        self,
        filters: RunHistoryFilters | None = None,
        *,
        page: int = 1,
        limit: int = DEFAULT_PAGE_SIZE,
    ) -> RunHistoryPage:
        """Return one page of runs, newest first by start time."""

        filters = filters or RunHistoryFilters()
        safe_page, safe_limit = self._bounded(page, limit)

        statement = select(PipelineRun)
        if filters.status is not None:
            statement = statement.where(PipelineRun.status == filters.status)
        if filters.triggered_by is not None:
            statement = statement.where(
                PipelineRun.triggered_by == filters.triggered_by
            )
        if filters.schedule_id is not None:
            statement = statement.where(PipelineRun.schedule_id == filters.schedule_id)
        if filters.source_id:
            statement = statement.where(PipelineRun.source_id == filters.source_id)
        if filters.date_from is not None:
            statement = statement.where(PipelineRun.started_at >= filters.date_from)
        if filters.date_to is not None:
            statement = statement.where(PipelineRun.started_at <= filters.date_to)

        async with self._session_factory() as session:
            total = int(
                (
                    await session.scalar(
                        select(func.count()).select_from(statement.subquery())
                    )
                )
                or 0
            )
            rows = (
                await session.scalars(
                    statement.order_by(
                        PipelineRun.started_at.desc(), PipelineRun.id.desc()
                    )
                    .offset((safe_page - 1) * safe_limit)
                    .limit(safe_limit)
                )
            ).all()
            runs = [RunSnapshot.from_row(row) for row in rows]

        return RunHistoryPage(
            runs=runs,
            pagination=Pagination.build(page=safe_page, limit=safe_limit, total=total),
        )

    async def delete_runs(self, run_ids: Iterable[UUID]) -> int:
        """Delete the given runs; unknown ids are ignored."""

        unique_ids = list(dict.fromkeys(run_ids))
        if not unique_ids:
            return 0

        async with self._session_factory() as session:
            result = await session.execute(
                delete(PipelineRun)
                .where(PipelineRun.id.in_(unique_ids))
                .execution_options(synchronize_session=False)
            )
        deleted = int(result.rowcount or 0)

        _history_logger.info(
            "pipeline_runs_deleted",
            extra={"requested": len(unique_ids), "deleted": deleted},
        )
        if deleted and self._activity_service is not None:
            await self._activity_service.record(
                event_type="pipeline_runs_deleted",
                message=f"Deleted {deleted} pipeline run(s)",
                resource_type="pipeline_run",
                metadata={"deleted_count": deleted},
            )
        return deleted

    async def delete_run(self, run_id: UUID) -> bool:
        return await self.delete_runs([run_id]) == 1

    async def delete_schedule_runs(self, schedule_id: UUID) -> int:
        """Delete finished runs of one schedule; RUNNING runs are kept."""

        async with self._session_factory() as session:
            result = await session.execute(
                delete(PipelineRun)
                .where(
                    PipelineRun.schedule_id == schedule_id,
                    PipelineRun.status != RunStatus.RUNNING,
                )
                .execution_options(synchronize_session=False)
            )
        deleted = int(result.rowcount or 0)

        _history_logger.info(
            "schedule_runs_deleted",
            extra={"schedule_id": str(schedule_id), "deleted": deleted},
        )
        return deleted

    async def delete_runs_before(self, cutoff: datetime) -> int:
        """Delete finished runs that started before ``cutoff``."""

        async with self._session_factory() as session:
            result = await session.execute(
                delete(PipelineRun)
                .where(
                    PipelineRun.started_at < cutoff,
                    PipelineRun.status != RunStatus.RUNNING,
                )
                .execution_options(synchronize_session=False)
            )
        deleted = int(result.rowcount or 0)

        _history_logger.info(
            "pipeline_runs_pruned",
            extra={"cutoff": cutoff.isoformat(), "deleted": deleted},
        )
        return deleted


__all__ = [
    "DEFAULT_PAGE_SIZE",
    "Pagination",
    "RunHistoryFilters",
    "RunHistoryPage",
    "RunHistoryService",
]
