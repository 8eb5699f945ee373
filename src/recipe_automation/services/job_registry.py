"""Live registry of armed schedule jobs and the pipeline run launcher.

Schedule records are the source of truth. The registry keeps one APScheduler
cron job per enabled schedule, guards each firing against overlapping runs of
the same schedule, and hands new runs to the executor without waiting for
them to finish.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from recipe_automation.models import AutomationSchedule, RunStatus, RunTrigger
from recipe_automation.services.activity_service import ActivityService
from recipe_automation.services.cron_translator import (
    cron_to_human,
    interval_minutes_from_cron,
    minutes_to_cron,
)
from recipe_automation.services.executor import (
    START_STAGE,
    ExecutionOutcome,
    PipelineExecutor,
    PipelineStartError,
    RunContext,
)
from recipe_automation.services.run_history import RunHistoryService
from recipe_automation.services.run_tracker import (
    RunSnapshot,
    RunStateError,
    RunTracker,
    SourceRef,
)
from recipe_automation.services.schedule_store import UNSET, ScheduleStore
from recipe_automation.services.scheduler import (
    InvalidCronExpressionError,
    SchedulerService,
    next_fire_time,
    parse_cron_expression,
)
from recipe_automation.utils.timestamps import as_utc, utc_now

SCHEDULE_JOB_PREFIX = "schedule-"
SHUTDOWN_STAGE = "shutdown"

_registry_logger = logging.getLogger("recipe_automation.registry")


class NoPendingWorkError(LookupError):
    """Raised when a manual run is requested but no source is waiting."""


def schedule_job_id(schedule_id: UUID) -> str:
    return f"{SCHEDULE_JOB_PREFIX}{schedule_id}"


@dataclass(slots=True, frozen=True)
class ArmedJob:
    schedule_id: UUID
    cron_expression: str
    name: str | None
    armed_at: datetime

    @property
    def job_id(self) -> str:
        return schedule_job_id(self.schedule_id)


@dataclass(slots=True)
class ScheduleJobMetrics:
    """In-memory runtime metrics for one armed schedule."""

    schedule_id: UUID
    fires: int = 0
    runs_started: int = 0
    overlap_skips: int = 0
    idle_skips: int = 0
    start_failures: int = 0
    succeeded_runs: int = 0
    failed_runs: int = 0
    last_fired_at: datetime | None = None
    last_finished_at: datetime | None = None
    last_error: str | None = None


@dataclass(slots=True)
class _ScheduleLock:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


@dataclass(slots=True, frozen=True)
class ReconcileResult:
    armed: tuple[UUID, ...] = ()
    disarmed: tuple[UUID, ...] = ()
    rearmed: tuple[UUID, ...] = ()
    failed: tuple[UUID, ...] = ()


class FireOutcome(str, Enum):
    STARTED = "started"
    START_FAILED = "start_failed"
    SKIPPED_OVERLAP = "skipped_overlap"
    SKIPPED_IDLE = "skipped_idle"
    SKIPPED_DISARMED = "skipped_disarmed"


@dataclass(slots=True, frozen=True)
class FireResult:
    outcome: FireOutcome
    run: RunSnapshot | None = None


@dataclass(slots=True, frozen=True)
class ScheduleView:
    """Schedule record enriched with live registry state for display."""

    id: UUID
    name: str | None
    enabled: bool
    cron_expression: str
    description: str
    interval_minutes: int | None
    executor_options: dict[str, Any] | None
    last_run: datetime | None
    run_count: int
    next_run: datetime | None
    armed: bool
    created_at: datetime
    updated_at: datetime


@dataclass(slots=True, frozen=True)
class ScheduleDeletion:
    deleted: bool
    deleted_run_count: int = 0


class JobRegistry:
    """Keep armed cron jobs in step with schedule records and launch runs."""

    def __init__(
        self,
        *,
        scheduler: SchedulerService,
        store: ScheduleStore,
        tracker: RunTracker,
        executor: PipelineExecutor,
        history: RunHistoryService | None = None,
        activity_service: ActivityService | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._scheduler = scheduler
        self._store = store
        self._tracker = tracker
        self._executor = executor
        self._history = history
        self._activity_service = activity_service or ActivityService()
        self._clock = clock
        self._armed: dict[UUID, ArmedJob] = {}
        self._locks: dict[UUID, _ScheduleLock] = {}
        self._reconcile_lock = asyncio.Lock()
        self._metrics: dict[UUID, ScheduleJobMetrics] = {}
        self._inflight: dict[UUID, asyncio.Task[None]] = {}
        self._tracker.add_terminal_listener(self._handle_run_finished)

    @property
    def executor(self) -> PipelineExecutor:
        return self._executor

    @property
    def armed_schedule_ids(self) -> list[UUID]:
        return list(self._armed)

    @property
    def inflight_run_ids(self) -> list[UUID]:
        return list(self._inflight)

    def is_armed(self, schedule_id: UUID) -> bool:
        return schedule_id in self._armed

    def armed_jobs(self) -> list[ArmedJob]:
        return list(self._armed.values())

    def metrics_snapshot(self) -> list[ScheduleJobMetrics]:
        return [replace(metrics) for metrics in self._metrics.values()]

    def next_fire_time(
        self,
        cron_expression: str,
        from_time: datetime | None = None,
    ) -> datetime | None:
        """Return the next time ``cron_expression`` fires at or after ``from_time``."""

        return next_fire_time(
            cron_expression,
            from_time or self._clock(),
            timezone=self._scheduler.timezone,
        )

    @asynccontextmanager
    async def _schedule_lock(self, schedule_id: UUID) -> AsyncIterator[None]:
        """Serialize work on one schedule; the lock is dropped once unused."""

        entry = self._locks.get(schedule_id)
        if entry is None:
            entry = self._locks[schedule_id] = _ScheduleLock()
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0:
                self._locks.pop(schedule_id, None)

    def _metrics_for(self, schedule_id: UUID) -> ScheduleJobMetrics:
        return self._metrics.setdefault(
            schedule_id, ScheduleJobMetrics(schedule_id=schedule_id)
        )

    def _resolve_cron(
        self,
        cron_expression: str | None,
        interval_minutes: int | None,
    ) -> str:
        if cron_expression is None:
            if interval_minutes is None:
                raise InvalidCronExpressionError(
                    "Either a cron expression or an interval is required"
                )
            cron_expression = minutes_to_cron(interval_minutes)
        cron_expression = " ".join(cron_expression.split())
        parse_cron_expression(cron_expression, timezone=self._scheduler.timezone)
        return cron_expression

    def _arm(self, schedule_id: UUID, cron_expression: str, name: str | None) -> None:
        self._scheduler.add_crontab_job(
            job_id=schedule_job_id(schedule_id),
            func=self._fire_job,
            cron_expression=cron_expression,
            args=[schedule_id],
            name=name or f"Schedule {schedule_id}",
            replace_existing=True,
        )
        self._armed[schedule_id] = ArmedJob(
            schedule_id=schedule_id,
            cron_expression=cron_expression,
            name=name,
            armed_at=self._clock(),
        )
        self._metrics_for(schedule_id)
        _registry_logger.info(
            "schedule_armed",
            extra={"schedule_id": str(schedule_id), "cron_expression": cron_expression},
        )

    def _disarm(self, schedule_id: UUID) -> bool:
        armed = self._armed.pop(schedule_id, None)
        removed = self._scheduler.remove_job(schedule_job_id(schedule_id))
        if armed is not None or removed:
            _registry_logger.info(
                "schedule_disarmed", extra={"schedule_id": str(schedule_id)}
            )
        return armed is not None

    def _apply(self, schedule: AutomationSchedule) -> None:
        if not schedule.enabled:
            self._disarm(schedule.id)
            return

        current = self._armed.get(schedule.id)
        if (
            current is not None
            and current.cron_expression == schedule.cron_expression
            and current.name == schedule.name
        ):
            return
        self._arm(schedule.id, schedule.cron_expression, schedule.name)

    def _restore(self, schedule_id: UUID, previous: ArmedJob | None) -> None:
        try:
            if previous is None:
                self._disarm(schedule_id)
            else:
                self._arm(schedule_id, previous.cron_expression, previous.name)
                self._armed[schedule_id] = previous
        except Exception:
            _registry_logger.exception(
                "schedule_registry_restore_failed",
                extra={"schedule_id": str(schedule_id)},
            )

    def _view(self, schedule: AutomationSchedule) -> ScheduleView:
        armed = schedule.id in self._armed
        next_run: datetime | None = None
        if schedule.enabled:
            try:
                next_run = self.next_fire_time(schedule.cron_expression)
            except InvalidCronExpressionError:
                next_run = None

        return ScheduleView(
            id=schedule.id,
            name=schedule.name,
            enabled=schedule.enabled,
            cron_expression=schedule.cron_expression,
            description=cron_to_human(schedule.cron_expression),
            interval_minutes=interval_minutes_from_cron(schedule.cron_expression),
            executor_options=schedule.executor_options,
            last_run=as_utc(schedule.last_run) if schedule.last_run else None,
            run_count=schedule.run_count,
            next_run=next_run,
            armed=armed,
            created_at=as_utc(schedule.created_at),
            updated_at=as_utc(schedule.updated_at),
        )

    async def reconcile(self) -> ReconcileResult:
        """Diff enabled schedules against armed jobs and converge."""

        if not self._scheduler.enabled:
            _registry_logger.info("schedule_reconcile_skipped_scheduler_disabled")
            return ReconcileResult()

        armed: list[UUID] = []
        disarmed: list[UUID] = []
        rearmed: list[UUID] = []
        failed: list[UUID] = []

        async with self._reconcile_lock:
            enabled = await self._store.list_schedules(enabled=True)
            # The listing only picks candidates; each row is re-read under its
            # schedule lock before arming or disarming.
            candidates = dict.fromkeys([*self._armed, *(row.id for row in enabled)])

            for schedule_id in candidates:
                async with self._schedule_lock(schedule_id):
                    schedule = await self._store.get_schedule(schedule_id)
                    current = self._armed.get(schedule_id)
                    if schedule is None or not schedule.enabled:
                        if self._disarm(schedule_id):
                            disarmed.append(schedule_id)
                        continue

                    if (
                        current is not None
                        and current.cron_expression == schedule.cron_expression
                    ):
                        continue
                    try:
                        self._arm(schedule_id, schedule.cron_expression, schedule.name)
                    except (InvalidCronExpressionError, RuntimeError):
                        _registry_logger.exception(
                            "schedule_arm_failed",
                            extra={
                                "schedule_id": str(schedule_id),
                                "cron_expression": schedule.cron_expression,
                            },
                        )
                        self._armed.pop(schedule_id, None)
                        failed.append(schedule_id)
                        continue
                    (armed if current is None else rearmed).append(schedule_id)

        result = ReconcileResult(
            armed=tuple(armed),
            disarmed=tuple(disarmed),
            rearmed=tuple(rearmed),
            failed=tuple(failed),
        )
        _registry_logger.info(
            "schedule_reconcile_completed",
            extra={
                "armed": len(result.armed),
                "disarmed": len(result.disarmed),
                "rearmed": len(result.rearmed),
                "failed": len(result.failed),
            },
        )
        return result

    async def _fire_job(self, schedule_id: UUID) -> None:
        """APScheduler entry point; a failing firing never escapes."""

        try:
            await self.on_fire(schedule_id)
        except Exception as error:
            self._metrics_for(schedule_id).last_error = str(error)
            _registry_logger.exception(
                "scheduler_fire_failed", extra={"schedule_id": str(schedule_id)}
            )

    async def on_fire(self, schedule_id: UUID) -> FireResult:
        """Handle one cron firing for ``schedule_id``."""

        async with self._schedule_lock(schedule_id):
            if schedule_id not in self._armed:
                _registry_logger.info(
                    "scheduler_fire_ignored", extra={"schedule_id": str(schedule_id)}
                )
                return FireResult(FireOutcome.SKIPPED_DISARMED)

            metrics = self._metrics_for(schedule_id)
            metrics.fires += 1
            metrics.last_fired_at = self._clock()

            schedule = await self._store.get_schedule(schedule_id)
            if schedule is None or not schedule.enabled:
                self._disarm(schedule_id)
                _registry_logger.warning(
                    "scheduler_fire_for_inactive_schedule",
                    extra={"schedule_id": str(schedule_id)},
                )
                return FireResult(FireOutcome.SKIPPED_DISARMED)

            if await self._tracker.has_active_run(schedule_id):
                metrics.overlap_skips += 1
                _registry_logger.warning(
                    "pipeline_run_skipped",
                    extra={"schedule_id": str(schedule_id), "reason": "overlap"},
                )
                await self._activity_service.record(
                    event_type="pipeline_run_skipped",
                    message="Scheduled run skipped: previous run still in progress",
                    schedule_id=schedule_id,
                    resource_type="schedule",
                    resource_id=schedule_id,
                    metadata={"reason": "overlap"},
                )
                return FireResult(FireOutcome.SKIPPED_OVERLAP)

            options = dict(schedule.executor_options or {})
            try:
                source = await self._executor.next_source(options)
            except Exception as error:
                run, _ = await self._begin_scheduled_run(schedule_id, None, metrics)
                failed = await self._record_start_failure(run.id, error, metrics)
                return FireResult(FireOutcome.START_FAILED, failed or run)

            if source is None:
                metrics.idle_skips += 1
                _registry_logger.info(
                    "pipeline_run_skipped",
                    extra={"schedule_id": str(schedule_id), "reason": "no_pending_work"},
                )
                return FireResult(FireOutcome.SKIPPED_IDLE)

            run, bookkeeping_error = await self._begin_scheduled_run(
                schedule_id, source, metrics
            )
            if bookkeeping_error is not None:
                failed = await self._record_start_failure(
                    run.id, bookkeeping_error, metrics
                )
                return FireResult(FireOutcome.START_FAILED, failed or run)

        return await self._launch(run, options, metrics)

    async def _begin_scheduled_run(
        self,
        schedule_id: UUID,
        source: SourceRef | None,
        metrics: ScheduleJobMetrics,
    ) -> tuple[RunSnapshot, Exception | None]:
        """Create the RUNNING row, then bump the schedule's run counters.

        A counter failure is handed back so the caller fails the run instead
        of leaving it RUNNING.
        """

        run = await self._tracker.create_run(
            triggered_by=RunTrigger.SCHEDULE,
            source=source,
            schedule_id=schedule_id,
        )
        metrics.runs_started += 1
        try:
            await self._store.record_run_started(schedule_id)
        except Exception as error:
            _registry_logger.exception(
                "schedule_run_count_update_failed",
                extra={"schedule_id": str(schedule_id), "run_id": str(run.id)},
            )
            return run, error
        return run, None

    async def start_manual_run(
        self,
        *,
        source_id: str | None = None,
        source_title: str | None = None,
        options: dict[str, Any] | None = None,
    ) -> RunSnapshot:
        """Start an on-demand run immediately, bypassing the overlap guard."""

        run_options = dict(options or {})
        if source_id:
            source: SourceRef | None = SourceRef(source_id=source_id, title=source_title)
        else:
            source = await self._executor.next_source(run_options)
            if source is None:
                raise NoPendingWorkError("No pending work items found")

        run = await self._tracker.create_run(
            triggered_by=RunTrigger.MANUAL,
            source=source,
        )
        result = await self._launch(run, run_options, None)
        return result.run or run

    async def _launch(
        self,
        run: RunSnapshot,
        options: dict[str, Any],
        metrics: ScheduleJobMetrics | None,
    ) -> FireResult:
        context = RunContext(
            run_id=run.id,
            schedule_id=run.schedule_id,
            source=(
                SourceRef(source_id=run.source_id, title=run.source_title)
                if run.source_id
                else None
            ),
            options=options,
        )

        try:
            execution = self._executor.execute(context)
        except Exception as error:
            failed = await self._record_start_failure(run.id, error, metrics)
            return FireResult(FireOutcome.START_FAILED, failed or run)

        task = asyncio.create_task(
            self._drive(context, execution, metrics),
            name=f"pipeline-run-{run.id}",
        )
        self._inflight[run.id] = task
        task.add_done_callback(lambda _: self._inflight.pop(run.id, None))

        _registry_logger.info(
            "pipeline_run_started",
            extra={
                "run_id": str(run.id),
                "schedule_id": str(run.schedule_id) if run.schedule_id else None,
                "triggered_by": run.triggered_by.value,
            },
        )
        await self._activity_service.record(
            event_type="pipeline_run_started",
            message=f"Pipeline run started ({run.triggered_by.value})",
            schedule_id=run.schedule_id,
            resource_type="pipeline_run",
            resource_id=run.id,
            metadata={"source_id": run.source_id},
        )
        return FireResult(FireOutcome.STARTED, run)

    async def _drive(
        self,
        context: RunContext,
        execution: Awaitable[ExecutionOutcome | None],
        metrics: ScheduleJobMetrics | None,
    ) -> None:
        consumer = asyncio.create_task(
            self._tracker.consume_events(context.run_id, context.channel)
        )
        try:
            try:
                outcome = await execution
            finally:
                context.channel.close()
                await asyncio.shield(consumer)
        except PipelineStartError as error:
            await self._record_start_failure(context.run_id, error, metrics)
            return
        except Exception as error:
            _registry_logger.exception(
                "pipeline_run_execution_failed",
                extra={"run_id": str(context.run_id), "stage": context.channel.stage},
            )
            await self._finalize(
                self._tracker.fail_run(
                    context.run_id,
                    error=str(error) or error.__class__.__name__,
                    error_stage=context.channel.stage,
                ),
                context.run_id,
            )
            return

        if outcome is None:
            return

        if outcome.success:
            await self._finalize(
                self._tracker.complete_run(
                    context.run_id,
                    result_ref=outcome.result_ref,
                    result_url=outcome.result_url,
                    messages=outcome.messages,
                ),
                context.run_id,
            )
            return

        await self._finalize(
            self._tracker.fail_run(
                context.run_id,
                error=outcome.error or "Pipeline reported failure",
                error_stage=outcome.error_stage or context.channel.stage,
                messages=outcome.messages,
            ),
            context.run_id,
        )

    async def _record_start_failure(
        self,
        run_id: UUID,
        error: BaseException,
        metrics: ScheduleJobMetrics | None,
    ) -> RunSnapshot | None:
        if metrics is not None:
            metrics.start_failures += 1
            metrics.last_error = str(error)
        _registry_logger.warning(
            "pipeline_run_start_failed",
            extra={"run_id": str(run_id), "error": str(error)},
        )
        return await self._finalize(
            self._tracker.fail_run(
                run_id,
                error=str(error) or error.__class__.__name__,
                error_stage=START_STAGE,
            ),
            run_id,
        )

    @staticmethod
    async def _finalize(
        transition: Awaitable[RunSnapshot],
        run_id: UUID,
    ) -> RunSnapshot | None:
        try:
            return await transition
        except RunStateError:
            # The executor already finished the run through the callback routes.
            _registry_logger.debug(
                "pipeline_run_already_terminal", extra={"run_id": str(run_id)}
            )
        except LookupError:
            _registry_logger.warning(
                "pipeline_run_missing_on_finish", extra={"run_id": str(run_id)}
            )
        except Exception:
            _registry_logger.exception(
                "pipeline_run_finalize_failed", extra={"run_id": str(run_id)}
            )
        return None

    async def _handle_run_finished(self, run: RunSnapshot) -> None:
        succeeded = run.status is RunStatus.SUCCESS
        if run.schedule_id is not None:
            await self._store.record_run_finished(
                run.schedule_id,
                finished_at=run.completed_at or self._clock(),
            )
            metrics = self._metrics.get(run.schedule_id)
            if metrics is not None:
                metrics.last_finished_at = run.completed_at
                if succeeded:
                    metrics.succeeded_runs += 1
                else:
                    metrics.failed_runs += 1
                    metrics.last_error = run.error

        await self._activity_service.record(
            event_type="pipeline_run_succeeded" if succeeded else "pipeline_run_failed",
            message=(
                "Pipeline run succeeded"
                if succeeded
                else f"Pipeline run failed: {run.error}"
            ),
            schedule_id=run.schedule_id,
            resource_type="pipeline_run",
            resource_id=run.id,
            metadata={
                "status": run.status.value,
                "error_stage": run.error_stage,
                "duration_ms": run.duration_ms,
            },
        )

    async def list_schedules(self) -> list[ScheduleView]:
        schedules = await self._store.list_schedules()
        return [self._view(schedule) for schedule in schedules]

    async def get_schedule(self, schedule_id: UUID) -> ScheduleView:
        schedule = await self._store.require_schedule(schedule_id)
        return self._view(schedule)

    async def create_schedule(
        self,
        *,
        enabled: bool,
        cron_expression: str | None = None,
        interval_minutes: int | None = None,
        name: str | None = None,
        executor_options: dict[str, Any] | None = None,
    ) -> ScheduleView:
        """Persist a schedule and arm it, atomically with respect to firings."""

        resolved = self._resolve_cron(cron_expression, interval_minutes)
        schedule_id = uuid4()

        async with self._schedule_lock(schedule_id):
            try:
                async with self._store.session() as session:
                    schedule = await self._store.create_schedule(
                        schedule_id=schedule_id,
                        cron_expression=resolved,
                        enabled=enabled,
                        name=name,
                        executor_options=executor_options,
                        session=session,
                    )
                    self._apply(schedule)
                    view = self._view(schedule)
            except BaseException:
                self._restore(schedule_id, None)
                raise

        _registry_logger.info(
            "schedule_created",
            extra={"schedule_id": str(schedule_id), "cron_expression": resolved},
        )
        await self._activity_service.record(
            event_type="schedule_created",
            message=f"Schedule created: {view.description}",
            schedule_id=schedule_id,
            resource_type="schedule",
            resource_id=schedule_id,
            metadata={"cron_expression": resolved, "enabled": enabled},
        )
        return view

    async def update_schedule(
        self,
        schedule_id: UUID,
        *,
        enabled: bool | None = None,
        cron_expression: str | None = None,
        interval_minutes: int | None = None,
        name: str | None = UNSET,
        executor_options: dict[str, Any] | None = UNSET,
    ) -> ScheduleView:
        """Apply a partial update; enabling or disabling takes effect at once."""

        resolved: str | None = None
        if cron_expression is not None or interval_minutes is not None:
            resolved = self._resolve_cron(cron_expression, interval_minutes)

        async with self._schedule_lock(schedule_id):
            previous = self._armed.get(schedule_id)
            try:
                async with self._store.session() as session:
                    schedule = await self._store.update_schedule(
                        schedule_id,
                        enabled=enabled,
                        cron_expression=resolved,
                        name=name,
                        executor_options=executor_options,
                        session=session,
                    )
                    self._apply(schedule)
                    view = self._view(schedule)
            except BaseException:
                self._restore(schedule_id, previous)
                raise

        _registry_logger.info(
            "schedule_updated",
            extra={
                "schedule_id": str(schedule_id),
                "enabled": view.enabled,
                "cron_expression": view.cron_expression,
            },
        )
        await self._activity_service.record(
            event_type="schedule_updated",
            message=f"Schedule updated: {view.description}",
            schedule_id=schedule_id,
            resource_type="schedule",
            resource_id=schedule_id,
            metadata={"cron_expression": view.cron_expression, "enabled": view.enabled},
        )
        return view

    async def set_enabled(self, schedule_id: UUID, enabled: bool) -> ScheduleView:
        return await self.update_schedule(schedule_id, enabled=enabled)

    async def delete_schedule(
        self,
        schedule_id: UUID,
        *,
        delete_runs: bool = False,
    ) -> ScheduleDeletion:
        """Remove a schedule and its job; deleting an unknown id is a no-op."""

        async with self._schedule_lock(schedule_id):
            previous = self._armed.get(schedule_id)
            try:
                async with self._store.session() as session:
                    deleted = await self._store.delete_schedule(
                        schedule_id, session=session
                    )
                    self._disarm(schedule_id)
            except BaseException:
                self._restore(schedule_id, previous)
                raise
            self._metrics.pop(schedule_id, None)

        deleted_run_count = 0
        if delete_runs and self._history is not None:
            deleted_run_count = await self._history.delete_schedule_runs(schedule_id)

        if deleted:
            _registry_logger.info(
                "schedule_deleted",
                extra={
                    "schedule_id": str(schedule_id),
                    "deleted_run_count": deleted_run_count,
                },
            )
            await self._activity_service.record(
                event_type="schedule_deleted",
                message="Schedule deleted",
                schedule_id=schedule_id,
                resource_type="schedule",
                resource_id=schedule_id,
                metadata={"deleted_run_count": deleted_run_count},
            )
        return ScheduleDeletion(deleted=deleted, deleted_run_count=deleted_run_count)

    async def wait_for_idle(self, timeout: float | None = None) -> bool:
        """Wait for in-flight run tasks; returns False if the timeout expired."""

        tasks = list(self._inflight.values())
        if not tasks:
            return True
        _, pending = await asyncio.wait(tasks, timeout=timeout)
        return not pending

    async def shutdown(self) -> int:
        """Cancel in-flight runs owned by this process; returns how many."""

        inflight = dict(self._inflight)
        for task in inflight.values():
            task.cancel()
        if not inflight:
            return 0

        await asyncio.gather(
            *inflight.values(), return_exceptions=True
        )
        for run_id in inflight:
            await self._finalize(
                self._tracker.fail_run(
                    run_id,
                    error="Run interrupted by application shutdown",
                    error_stage=SHUTDOWN_STAGE,
                ),
                run_id,
            )

        _registry_logger.warning(
            "pipeline_runs_interrupted", extra={"count": len(inflight)}
        )
        return len(inflight)


__all__ = [
    "SCHEDULE_JOB_PREFIX",
    "SHUTDOWN_STAGE",
    "ArmedJob",
    "FireOutcome",
    "FireResult",
    "JobRegistry",
    "NoPendingWorkError",
    "ReconcileResult",
    "ScheduleDeletion",
    "ScheduleJobMetrics",
    "ScheduleView",
    "schedule_job_id",
]
