"""Persistence operations for automation schedule records."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Callable
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from datetime import datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from recipe_automation.models import AutomationSchedule
from recipe_automation.utils.timestamps import utc_now

SessionScopeFactory = Callable[[], AbstractAsyncContextManager[AsyncSession]]

_store_logger = logging.getLogger("recipe_automation.schedules")


class ScheduleNotFoundError(LookupError):
    """Raised when a schedule id does not exist."""

    def __init__(self, schedule_id: UUID) -> None:
        self.schedule_id = schedule_id
        super().__init__(f"Schedule '{schedule_id}' not found")


# Marks keyword arguments the caller left out, as opposed to an explicit None.
UNSET: Any = object()


class ScheduleStore:
    """Read and mutate schedule rows; knows nothing about live timers."""

    def __init__(self, *, session_factory: SessionScopeFactory | None = None) -> None:
        if session_factory is None:
            from recipe_automation.database import session_scope

            session_factory = session_scope

        self._session_factory = session_factory

    def session(self) -> AbstractAsyncContextManager[AsyncSession]:
        """Open a transaction that callers can span across several calls."""

        return self._session_factory()

    @asynccontextmanager
    async def _scope(self, session: AsyncSession | None) -> AsyncIterator[AsyncSession]:
        if session is not None:
            yield session
            return

        async with self._session_factory() as scoped_session:
            yield scoped_session

    async def create_schedule(
        self,
        *,
        cron_expression: str,
        enabled: bool,
        name: str | None = None,
        executor_options: dict[str, Any] | None = None,
        schedule_id: UUID | None = None,
        session: AsyncSession | None = None,
    ) -> AutomationSchedule:
        async with self._scope(session) as scoped_session:
            schedule = AutomationSchedule(
                id=schedule_id or uuid4(),
                name=name,
                enabled=enabled,
                cron_expression=cron_expression,
                executor_options=executor_options,
                run_count=0,
            )
            scoped_session.add(schedule)
            await scoped_session.flush()
            await scoped_session.refresh(schedule)
            return schedule

    async def get_schedule(
        self,
        schedule_id: UUID,
        *,
        session: AsyncSession | None = None,
    ) -> AutomationSchedule | None:
        async with self._scope(session) as scoped_session:
            return await scoped_session.get(AutomationSchedule, schedule_id)

    async def require_schedule(
        self,
        schedule_id: UUID,
        *,
        session: AsyncSession | None = None,
    ) -> AutomationSchedule:
        schedule = await self.get_schedule(schedule_id, session=session)
        if schedule is None:
            raise ScheduleNotFoundError(schedule_id)
        return schedule

    async def list_schedules(
        self,
        *,
        enabled: bool | None = None,
        session: AsyncSession | None = None,
    ) -> list[AutomationSchedule]:
        statement = select(AutomationSchedule).order_by(
            AutomationSchedule.created_at.asc()
        )
        if enabled is not None:
            statement = statement.where(AutomationSchedule.enabled == enabled)

        async with self._scope(session) as scoped_session:
            return list((await scoped_session.scalars(statement)).all())

    async def update_schedule(
        self,
        schedule_id: UUID,
        *,
        enabled: bool | None = None,
        cron_expression: str | None = None,
        name: str | None = UNSET,
        executor_options: dict[str, Any] | None = UNSET,
        session: AsyncSession | None = None,
    ) -> AutomationSchedule:
        async with self._scope(session) as scoped_session:
            schedule = await self.require_schedule(schedule_id, session=scoped_session)
            if enabled is not None:
                schedule.enabled = enabled
            if cron_expression is not None:
                schedule.cron_expression = cron_expression
            if name is not UNSET:
                schedule.name = name
            if executor_options is not UNSET:
                schedule.executor_options = executor_options
            schedule.updated_at = utc_now()
            await scoped_session.flush()
            return schedule

    async def delete_schedule(
        self,
        schedule_id: UUID,
        *,
        session: AsyncSession | None = None,
    ) -> bool:
        async with self._scope(session) as scoped_session:
            schedule = await scoped_session.get(AutomationSchedule, schedule_id)
            if schedule is None:
                return False
            await scoped_session.delete(schedule)
            await scoped_session.flush()
            return True

    async def record_run_started(self, schedule_id: UUID) -> bool:
        """Increment the run counter; returns False if the schedule is gone."""

        async with self._session_factory() as session:
            result = await session.execute(
                update(AutomationSchedule)
                .where(AutomationSchedule.id == schedule_id)
                .values(run_count=AutomationSchedule.run_count + 1)
                .execution_options(synchronize_session=False)
            )

        if result.rowcount == 0:
            _store_logger.warning(
                "schedule_missing_on_run_start",
                extra={"schedule_id": str(schedule_id)},
            )
            return False
        return True

    async def record_run_finished(
        self,
        schedule_id: UUID,
        *,
        finished_at: datetime,
    ) -> bool:
        """Stamp ``last_run``; returns False if the schedule was deleted."""

        async with self._session_factory() as session:
            result = await session.execute(
                update(AutomationSchedule)
                .where(AutomationSchedule.id == schedule_id)
                .values(last_run=finished_at)
                .execution_options(synchronize_session=False)
            )

        if result.rowcount == 0:
            _store_logger.warning(
                "schedule_missing_on_run_finish",
                extra={"schedule_id": str(schedule_id)},
            )
            return False
        return True


__all__ = ["UNSET", "ScheduleNotFoundError", "ScheduleStore", "SessionScopeFactory"]
