"""Pipeline run state machine, structured run logs, and progress events."""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable, Iterable
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from recipe_automation.models import PipelineRun, RunStatus, RunTrigger
from recipe_automation.utils.timestamps import as_utc, utc_now

SessionScopeFactory = Callable[[], AbstractAsyncContextManager[AsyncSession]]
TerminalListener = Callable[["RunSnapshot"], Awaitable[None] | None]

_tracker_logger = logging.getLogger("recipe_automation.runs")


class RunNotFoundError(LookupError):
    """Raised when a run id does not exist."""

    def __init__(self, run_id: UUID) -> None:
        self.run_id = run_id
        super().__init__(f"Pipeline run '{run_id}' not found")


class RunStateError(RuntimeError):
    """Raised when a transition is not allowed from the run's current state."""


@dataclass(slots=True, frozen=True)
class SourceRef:
    """Opaque reference to the unit of work a run processes."""

    source_id: str
    title: str | None = None


@dataclass(slots=True, frozen=True)
class RunSnapshot:
    """Detached, immutable view of a run row."""

    id: UUID
    schedule_id: UUID | None
    source_id: str | None
    source_title: str | None
    status: RunStatus
    stage: str | None
    progress: int
    logs: tuple[dict[str, Any], ...]
    result_ref: str | None
    result_url: str | None
    error: str | None
    error_stage: str | None
    triggered_by: RunTrigger
    started_at: datetime
    completed_at: datetime | None
    duration_ms: int | None

    @classmethod
    def from_row(cls, row: PipelineRun) -> RunSnapshot:
        return cls(
            id=row.id,
            schedule_id=row.schedule_id,
            source_id=row.source_id,
            source_title=row.source_title,
            status=RunStatus(row.status),
            stage=row.stage,
            progress=int(row.progress),
            logs=tuple(dict(entry) for entry in (row.logs or [])),
            result_ref=row.result_ref,
            result_url=row.result_url,
            error=row.error,
            error_stage=row.error_stage,
            triggered_by=RunTrigger(row.triggered_by),
            started_at=as_utc(row.started_at),
            completed_at=as_utc(row.completed_at) if row.completed_at else None,
            duration_ms=row.duration_ms,
        )


@dataclass(slots=True, frozen=True)
class RunProgressEvent:
    """One progress report pushed by an executor."""

    progress: int | None = None
    stage: str | None = None
    message: str | None = None
    step: int | None = None
    total: int | None = None


_CHANNEL_CLOSED = object()


class RunEventChannel:
    """Queue that carries executor progress events to the single run writer."""

    def __init__(self) -> None:
        self._queue: asyncio.Queue[object] = asyncio.Queue()
        self._closed = False
        self._stage: str | None = None

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def stage(self) -> str | None:
        """Last stage reported through the channel."""

        return self._stage

    def report(
        self,
        *,
        progress: int | None = None,
        stage: str | None = None,
        message: str | None = None,
        step: int | None = None,
        total: int | None = None,
    ) -> None:
        if self._closed:
            raise RunStateError("Run event channel is closed")

        if progress is None and step is not None and total:
            progress = int(step * 100 / total)
        if stage is not None:
            self._stage = stage

        self._queue.put_nowait(
            RunProgressEvent(
                progress=progress,
                stage=stage,
                message=message,
                step=step,
                total=total,
            )
        )

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(_CHANNEL_CLOSED)

    async def next_event(self) -> RunProgressEvent | None:
        item = await self._queue.get()
        if item is _CHANNEL_CLOSED:
            return None
        assert isinstance(item, RunProgressEvent)
        return item


def _log_entry(
    *,
    message: str,
    previous: list[dict[str, Any]],
    step: int | None = None,
    total: int | None = None,
) -> dict[str, Any]:
    timestamp = utc_now()
    if previous:
        last_timestamp = datetime.fromisoformat(previous[-1]["timestamp"])
        if as_utc(last_timestamp) > timestamp:
            timestamp = as_utc(last_timestamp)

    entry: dict[str, Any] = {"timestamp": timestamp.isoformat(), "message": message}
    if step is not None:
        entry["step"] = step
    if total is not None:
        entry["total"] = total
    return entry


def _duration_ms(started_at: datetime, completed_at: datetime) -> int:
    return max(0, int((completed_at - as_utc(started_at)).total_seconds() * 1000))


class RunTracker:
    """Create, advance, finish, and query pipeline run records."""

    def __init__(self, *, session_factory: SessionScopeFactory | None = None) -> None:
        if session_factory is None:
            from recipe_automation.database import session_scope

            session_factory = session_scope

        self._session_factory = session_factory
        self._terminal_listeners: list[TerminalListener] = []

    def add_terminal_listener(self, listener: TerminalListener) -> None:
        self._terminal_listeners.append(listener)

    async def create_run(
        self,
        *,
        triggered_by: RunTrigger,
        source: SourceRef | None = None,
        schedule_id: UUID | None = None,
    ) -> RunSnapshot:
        async with self._session_factory() as session:
            run = PipelineRun(
                schedule_id=schedule_id,
                source_id=source.source_id if source else None,
                source_title=source.title if source else None,
                status=RunStatus.RUNNING,
                stage=None,
                progress=0,
                logs=[],
                triggered_by=triggered_by,
                started_at=utc_now(),
            )
            run.logs = [_log_entry(message="Pipeline started", previous=[])]
            session.add(run)
            await session.flush()
            snapshot = RunSnapshot.from_row(run)

        _tracker_logger.info(
            "pipeline_run_created",
            extra={
                "run_id": str(snapshot.id),
                "schedule_id": str(schedule_id) if schedule_id else None,
                "triggered_by": triggered_by.value,
                "source_id": snapshot.source_id,
            },
        )
        return snapshot

    async def get_run(self, run_id: UUID) -> RunSnapshot | None:
        async with self._session_factory() as session:
            run = await session.get(PipelineRun, run_id)
            if run is None:
                return None
            return RunSnapshot.from_row(run)

    async def has_active_run(self, schedule_id: UUID) -> bool:
        async with self._session_factory() as session:
            active_run_id = await session.scalar(
                select(PipelineRun.id)
                .where(
                    PipelineRun.schedule_id == schedule_id,
                    PipelineRun.status == RunStatus.RUNNING,
                )
                .limit(1)
            )
        return active_run_id is not None

    async def list_active_runs(self) -> list[RunSnapshot]:
        async with self._session_factory() as session:
            rows = (
                await session.scalars(
                    select(PipelineRun)
                    .where(PipelineRun.status == RunStatus.RUNNING)
                    .order_by(PipelineRun.started_at.asc())
                )
            ).all()
            return [RunSnapshot.from_row(row) for row in rows]

    async def record_progress(
        self,
        run_id: UUID,
        *,
        progress: int | None = None,
        stage: str | None = None,
        message: str | None = None,
        step: int | None = None,
        total: int | None = None,
    ) -> RunSnapshot:
        if progress is not None and not 0 <= progress <= 100:
            raise ValueError("Progress must be between 0 and 100")

        async with self._session_factory() as session:
            run = await self._require_running(session, run_id)
            if progress is not None:
                run.progress = progress
            if stage is not None:
                run.stage = stage
            if message is not None:
                previous = list(run.logs or [])
                run.logs = [
                    *previous,
                    _log_entry(
                        message=message, previous=previous, step=step, total=total
                    ),
                ]
            await session.flush()
            return RunSnapshot.from_row(run)

    async def append_log(
        self,
        run_id: UUID,
        message: str,
        *,
        step: int | None = None,
        total: int | None = None,
    ) -> RunSnapshot:
        return await self.record_progress(
            run_id, message=message, step=step, total=total
        )

    async def complete_run(
        self,
        run_id: UUID,
        *,
        result_ref: str | None = None,
        result_url: str | None = None,
        messages: Iterable[str] = (),
    ) -> RunSnapshot:
        async with self._session_factory() as session:
            run = await self._require_running(session, run_id)
            completed_at = utc_now()
            self._append_messages(run, messages)
            run.status = RunStatus.SUCCESS
            run.progress = 100
            run.result_ref = result_ref
            run.result_url = result_url
            run.completed_at = completed_at
            run.duration_ms = _duration_ms(run.started_at, completed_at)
            await session.flush()
            snapshot = RunSnapshot.from_row(run)

        _tracker_logger.info(
            "pipeline_run_succeeded",
            extra={
                "run_id": str(run_id),
                "duration_ms": snapshot.duration_ms,
                "result_ref": result_ref,
            },
        )
        await self._notify_terminal(snapshot)
        return snapshot

    async def fail_run(
        self,
        run_id: UUID,
        *,
        error: str,
        error_stage: str | None = None,
        messages: Iterable[str] = (),
    ) -> RunSnapshot:
        async with self._session_factory() as session:
            run = await self._require_running(session, run_id)
            completed_at = utc_now()
            self._append_messages(run, [*messages, f"Error: {error}"])
            run.status = RunStatus.FAILED
            run.error = error[:2048]
            run.error_stage = error_stage
            run.completed_at = completed_at
            run.duration_ms = _duration_ms(run.started_at, completed_at)
            await session.flush()
            snapshot = RunSnapshot.from_row(run)

        _tracker_logger.warning(
            "pipeline_run_failed",
            extra={
                "run_id": str(run_id),
                "error": error,
                "error_stage": error_stage,
                "duration_ms": snapshot.duration_ms,
            },
        )
        await self._notify_terminal(snapshot)
        return snapshot

    async def consume_events(self, run_id: UUID, channel: RunEventChannel) -> int:
        """Apply channel events in order until it is closed."""

        applied = 0
        while True:
            event = await channel.next_event()
            if event is None:
                return applied
            try:
                await self.record_progress(
                    run_id,
                    progress=(
                        None
                        if event.progress is None
                        else min(max(event.progress, 0), 100)
                    ),
                    stage=event.stage,
                    message=event.message,
                    step=event.step,
                    total=event.total,
                )
            except Exception:
                _tracker_logger.exception(
                    "pipeline_run_event_dropped",
                    extra={"run_id": str(run_id), "stage": event.stage},
                )
                continue
            applied += 1

    @staticmethod
    async def _require_running(session: AsyncSession, run_id: UUID) -> PipelineRun:
        run = await session.get(PipelineRun, run_id, with_for_update=True)
        if run is None:
            raise RunNotFoundError(run_id)
        if RunStatus(run.status).is_terminal:
            raise RunStateError(
                f"Pipeline run '{run_id}' is already {RunStatus(run.status).value}"
            )
        return run

    @staticmethod
    def _append_messages(run: PipelineRun, messages: Iterable[str]) -> None:
        entries = list(run.logs or [])
        for message in messages:
            entries.append(_log_entry(message=message, previous=entries))
        run.logs = entries

    async def _notify_terminal(self, snapshot: RunSnapshot) -> None:
        for listener in self._terminal_listeners:
            try:
                outcome = listener(snapshot)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception:
                _tracker_logger.exception(
                    "pipeline_run_terminal_listener_failed",
                    extra={"run_id": str(snapshot.id)},
                )


__all__ = [
    "RunEventChannel",
    "RunNotFoundError",
    "RunProgressEvent",
    "RunSnapshot",
    "RunStateError",
    "RunTracker",
    "SourceRef",
]
