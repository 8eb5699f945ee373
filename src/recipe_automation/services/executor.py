"""Executor contract for pipeline work and the built-in implementations.

The scheduler core never performs pipeline work itself. An executor picks
the next unit of work, runs it, and reports progress through the run's
event channel. ``execute`` may raise synchronously, or raise
``PipelineStartError`` from the returned awaitable, when work cannot begin;
both are recorded as failures of the ``start`` stage. Any other exception
is an in-flight failure attributed to the last reported stage.

Returning ``None`` from the awaitable means the executor finishes the run
on its own later, through the run callback routes.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Sequence
from dataclasses import dataclass, field
from typing import Any, Final, Protocol
from uuid import UUID

import httpx

from recipe_automation.config import Settings
from recipe_automation.services.run_tracker import RunEventChannel, SourceRef

START_STAGE: Final[str] = "start"

_executor_logger = logging.getLogger("recipe_automation.executor")


class PipelineStartError(RuntimeError):
    """Raised by executors that cannot begin the requested work."""


@dataclass(slots=True, frozen=True)
class ExecutionOutcome:
    """Terminal result reported by an executor."""

    success: bool
    result_ref: str | None = None
    result_url: str | None = None
    error: str | None = None
    error_stage: str | None = None
    messages: Sequence[str] = ()


@dataclass(slots=True)
class RunContext:
    """Everything an executor needs to carry out one run."""

    run_id: UUID
    schedule_id: UUID | None
    source: SourceRef | None
    options: dict[str, Any] = field(default_factory=dict)
    channel: RunEventChannel = field(default_factory=RunEventChannel)

    def report(
        self,
        *,
        progress: int | None = None,
        stage: str | None = None,
        message: str | None = None,
        step: int | None = None,
        total: int | None = None,
    ) -> None:
        self.channel.report(
            progress=progress,
            stage=stage,
            message=message,
            step=step,
            total=total,
        )


class PipelineExecutor(Protocol):
    async def next_source(self, options: dict[str, Any]) -> SourceRef | None: ...

    def execute(self, context: RunContext) -> Awaitable[ExecutionOutcome | None]: ...


class UnconfiguredPipelineExecutor:
    """Placeholder used when no executor endpoint is configured."""

    async def next_source(self, options: dict[str, Any]) -> SourceRef | None:
        del options
        return None

    def execute(self, context: RunContext) -> Awaitable[ExecutionOutcome | None]:
        raise PipelineStartError(
            f"No pipeline executor configured for run {context.run_id}"
        )


class WebhookPipelineExecutor:
    """Delegate pipeline work to an external worker over HTTP.

    The worker exposes ``GET /sources/next`` (204 when idle) and
    ``POST /runs``; it reports progress back to the run callback routes.
    """

    def __init__(
        self,
        *,
        base_url: str,
        callback_base_url: str,
        timeout_seconds: float = 30.0,
        user_agent: str = "RecipeAutomationScheduler",
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._callback_base_url = callback_base_url.rstrip("/")
        self._timeout = httpx.Timeout(timeout_seconds)
        self._headers = {"User-Agent": user_agent, "Accept": "application/json"}
        self._transport = transport

    @classmethod
    def from_settings(cls, settings: Settings) -> WebhookPipelineExecutor:
        if not settings.PIPELINE_EXECUTOR_URL:
            raise ValueError("PIPELINE_EXECUTOR_URL is not configured")
        return cls(
            base_url=settings.PIPELINE_EXECUTOR_URL,
            callback_base_url=settings.PIPELINE_CALLBACK_BASE_URL,
            timeout_seconds=settings.PIPELINE_EXECUTOR_TIMEOUT_SECONDS,
            user_agent=settings.OUTBOUND_HTTP_USER_AGENT,
        )

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self._base_url,
            timeout=self._timeout,
            headers=self._headers,
            transport=self._transport,
        )

    async def next_source(self, options: dict[str, Any]) -> SourceRef | None:
        params = {
            key: str(value)
            for key, value in options.items()
            if isinstance(value, str | int | float)
        }
        async with self._client() as client:
            response = await client.get("/sources/next", params=params)

        if response.status_code == httpx.codes.NO_CONTENT:
            return None
        response.raise_for_status()

        payload = response.json()
        source_id = payload.get("id") if isinstance(payload, dict) else None
        if not source_id:
            return None
        return SourceRef(source_id=str(source_id), title=payload.get("title"))

    def execute(self, context: RunContext) -> Awaitable[ExecutionOutcome | None]:
        return self._dispatch(context)

    async def _dispatch(self, context: RunContext) -> ExecutionOutcome | None:
        callback_url = (
            f"{self._callback_base_url}/api/automation/pipeline/runs/{context.run_id}"
        )
        payload = {
            "runId": str(context.run_id),
            "scheduleId": str(context.schedule_id) if context.schedule_id else None,
            "sourceId": context.source.source_id if context.source else None,
            "sourceTitle": context.source.title if context.source else None,
            "options": context.options,
            "callbackUrl": callback_url,
        }
        try:
            async with self._client() as client:
                response = await client.post("/runs", json=payload)
                response.raise_for_status()
        except httpx.HTTPError as error:
            raise PipelineStartError(
                f"Executor rejected run {context.run_id}: {error}"
            ) from error

        _executor_logger.info(
            "pipeline_run_dispatched",
            extra={"run_id": str(context.run_id), "status_code": response.status_code},
        )
        context.report(stage="dispatched", message="Run dispatched to executor")
        return None


def build_executor(settings: Settings) -> PipelineExecutor:
    if settings.PIPELINE_EXECUTOR_URL:
        return WebhookPipelineExecutor.from_settings(settings)

    _executor_logger.warning("pipeline_executor_not_configured")
    return UnconfiguredPipelineExecutor()


__all__ = [
    "START_STAGE",
    "ExecutionOutcome",
    "PipelineExecutor",
    "PipelineStartError",
    "RunContext",
    "UnconfiguredPipelineExecutor",
    "WebhookPipelineExecutor",
    "build_executor",
]
