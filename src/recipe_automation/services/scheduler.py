"""APScheduler integration service with lifecycle-safe controls."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from datetime import datetime, tzinfo
from typing import Any, cast
from zoneinfo import ZoneInfo

from apscheduler.events import EVENT_JOB_ERROR  # type: ignore[import-untyped]
from apscheduler.events import EVENT_JOB_EXECUTED
from apscheduler.events import EVENT_JOB_MISSED
from apscheduler.events import EVENT_JOB_SUBMITTED
from apscheduler.events import JobExecutionEvent
from apscheduler.events import JobSubmissionEvent
from apscheduler.events import SchedulerEvent
from apscheduler.job import Job  # type: ignore[import-untyped]
from apscheduler.jobstores.base import JobLookupError  # type: ignore[import-untyped]
from apscheduler.jobstores.memory import MemoryJobStore  # type: ignore[import-untyped]
from apscheduler.schedulers.asyncio import AsyncIOScheduler  # type: ignore[import-untyped]
from apscheduler.triggers.cron import CronTrigger  # type: ignore[import-untyped]

from recipe_automation.config import Settings

JobCallable = Callable[..., Awaitable[None] | None]

_scheduler_logger = logging.getLogger("recipe_automation.scheduler")


class InvalidCronExpressionError(ValueError):
    """Raised when a cron expression is not a valid five-field crontab."""


@dataclass(slots=True, frozen=True)
class SchedulerJobState:
    """Serializable scheduler job state for API responses."""

    job_id: str
    name: str | None
    trigger: str
    next_run_time: datetime | None


def parse_cron_expression(
    expression: str,
    *,
    timezone: tzinfo | str = "UTC",
) -> CronTrigger:
    """Build a cron trigger, rejecting anything but a five-field crontab."""

    if not isinstance(expression, str) or len(expression.split()) != 5:
        raise InvalidCronExpressionError(
            f"Cron expression must have exactly five fields: {expression!r}"
        )

    zone = ZoneInfo(timezone) if isinstance(timezone, str) else timezone
    try:
        return CronTrigger.from_crontab(expression, timezone=zone)
    except ValueError as error:
        raise InvalidCronExpressionError(
            f"Invalid cron expression {expression!r}: {error}"
        ) from error


def next_fire_time(
    expression: str,
    from_time: datetime,
    *,
    timezone: tzinfo | str = "UTC",
) -> datetime | None:
    """Return the first fire time at or after ``from_time``."""

    if from_time.tzinfo is None:
        raise ValueError("from_time must be timezone-aware")

    trigger = parse_cron_expression(expression, timezone=timezone)
    return cast(datetime | None, trigger.get_next_fire_time(None, from_time))


class SchedulerService:
    """Encapsulate scheduler startup, cron job management, and event logging."""

    def __init__(
        self,
        *,
        enabled: bool,
        timezone: str = "UTC",
        misfire_grace_seconds: int = 60,
        scheduler: AsyncIOScheduler | None = None,
    ) -> None:
        self._enabled = enabled
        self._timezone = ZoneInfo(timezone)
        self._misfire_grace_seconds = misfire_grace_seconds
        self._scheduler = scheduler or AsyncIOScheduler(
            jobstores={"default": MemoryJobStore()},
            timezone=self._timezone,
        )
        self._scheduler.add_listener(
            self._handle_job_event,
            EVENT_JOB_SUBMITTED | EVENT_JOB_EXECUTED | EVENT_JOB_ERROR | EVENT_JOB_MISSED,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> SchedulerService:
        return cls(
            enabled=settings.SCHEDULER_ENABLED,
            timezone=settings.SCHEDULER_TIMEZONE,
            misfire_grace_seconds=settings.SCHEDULER_MISFIRE_GRACE_SECONDS,
        )

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def timezone(self) -> ZoneInfo:
        return self._timezone

    @property
    def running(self) -> bool:
        if not self._enabled:
            return False
        return cast(bool, self._scheduler.running)

    async def start(self) -> None:
        if not self._enabled:
            _scheduler_logger.info("scheduler_disabled")
            return

        if self._scheduler.running:
            return

        self._scheduler.start()
        _scheduler_logger.info("scheduler_started")

    async def shutdown(self) -> None:
        if not self._enabled:
            return

        if not self._scheduler.running:
            return

        self._scheduler.shutdown(wait=False)
        _scheduler_logger.info("scheduler_shutdown")

    def add_crontab_job(
        self,
        *,
        job_id: str,
        func: JobCallable,
        cron_expression: str,
        args: Sequence[Any] = (),
        name: str | None = None,
        replace_existing: bool = True,
    ) -> Job:
        self._ensure_enabled()
        trigger = parse_cron_expression(cron_expression, timezone=self._timezone)

        return self._scheduler.add_job(
            func=func,
            trigger=trigger,
            args=list(args),
            id=job_id,
            name=name,
            replace_existing=replace_existing,
            coalesce=True,
            max_instances=1,
            misfire_grace_time=self._misfire_grace_seconds,
        )

    def remove_job(self, job_id: str) -> bool:
        """Remove a job if present; returns whether anything was removed."""

        if not self._enabled:
            return False

        try:
            self._scheduler.remove_job(job_id)
        except JobLookupError:
            return False

        _scheduler_logger.info("scheduler_job_removed", extra={"job_id": job_id})
        return True

    def has_job(self, job_id: str) -> bool:
        if not self._enabled:
            return False
        return self._scheduler.get_job(job_id) is not None

    def get_job_state(self, job_id: str) -> SchedulerJobState | None:
        if not self._enabled:
            return None
        job = self._scheduler.get_job(job_id)
        if job is None:
            return None
        return self._job_to_state(job)

    def list_jobs(self) -> list[SchedulerJobState]:
        self._ensure_enabled()
        return [self._job_to_state(job) for job in self._scheduler.get_jobs()]

    def _ensure_enabled(self) -> None:
        if self._enabled:
            return
        raise RuntimeError("Scheduler is disabled")

    @staticmethod
    def _job_to_state(job: Job) -> SchedulerJobState:
        # Jobs added before start() have no next_run_time attribute yet.
        return SchedulerJobState(
            job_id=job.id,
            name=job.name,
            trigger=str(job.trigger),
            next_run_time=getattr(job, "next_run_time", None),
        )

    @staticmethod
    def _handle_job_event(event: SchedulerEvent) -> None:
        if isinstance(event, JobSubmissionEvent):
            _scheduler_logger.debug(
                "scheduler_job_submitted",
                extra={
                    "job_id": event.job_id,
                    "scheduled_run_times": [
                        run_time.isoformat()
                        for run_time in event.scheduled_run_times or ()
                    ],
                },
            )
        elif not isinstance(event, JobExecutionEvent):
            return
        elif event.code == EVENT_JOB_MISSED:
            _scheduler_logger.warning(
                "scheduler_job_missed",
                extra={
                    "job_id": event.job_id,
                    "scheduled_run_time": event.scheduled_run_time.isoformat(),
                },
            )
        elif event.exception is not None:
            # Firing callbacks catch their own errors; reaching here is a bug.
            _scheduler_logger.error(
                "scheduler_job_failed",
                extra={
                    "job_id": event.job_id,
                    "error": repr(event.exception),
                    "traceback": event.traceback,
                },
            )


__all__ = [
    "InvalidCronExpressionError",
    "SchedulerJobState",
    "SchedulerService",
    "next_fire_time",
    "parse_cron_expression",
]
