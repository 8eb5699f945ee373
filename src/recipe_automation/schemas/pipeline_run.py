"""Pydantic schemas for pipeline runs, history pages, and executor callbacks."""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import Field

from recipe_automation.models import RunStatus, RunTrigger
from recipe_automation.schemas.base import ApiModel


class RunLogEntry(ApiModel):
    timestamp: datetime
    message: str
    step: int | None = None
    total: int | None = None


class PipelineRunRead(ApiModel):
    """Serialized pipeline run record."""

    id: UUID
    schedule_id: UUID | None
    source_id: str | None
    source_title: str | None
    status: RunStatus
    stage: str | None
    progress: int
    logs: list[RunLogEntry] = Field(default_factory=list)
    result_ref: str | None
    result_url: str | None
    error: str | None
    error_stage: str | None
    triggered_by: RunTrigger
    started_at: datetime
    completed_at: datetime | None
    duration_ms: int | None


class PaginationRead(ApiModel):
    page: int
    limit: int
    total: int
    total_pages: int
    has_more: bool


class PipelineRunPage(ApiModel):
    logs: list[PipelineRunRead] = Field(default_factory=list)
    pagination: PaginationRead


class RunDeleteRequest(ApiModel):
    log_ids: list[UUID] = Field(default_factory=list)


class RunDeleteResponse(ApiModel):
    success: bool = True
    deleted_count: int
    message: str | None = None


class ManualRunRequest(ApiModel):
    """Start a run for a named source, or let the executor pick one."""

    auto_select: bool = False
    source_id: str | None = Field(default=None, min_length=1, max_length=255)
    source_title: str | None = Field(default=None, max_length=512)
    options: dict[str, Any] | None = None


class RunEventPayload(ApiModel):
    """Progress report posted by an out-of-process executor."""

    progress: int | None = Field(default=None, ge=0, le=100)
    stage: str | None = Field(default=None, max_length=255)
    message: str | None = None
    step: int | None = Field(default=None, ge=0)
    total: int | None = Field(default=None, ge=1)


class RunCompletePayload(ApiModel):
    result_ref: str | None = Field(default=None, max_length=255)
    result_url: str | None = Field(default=None, max_length=2048)
    messages: list[str] = Field(default_factory=list)


class RunFailPayload(ApiModel):
    error: str = Field(min_length=1)
    error_stage: str | None = Field(default=None, max_length=255)
    messages: list[str] = Field(default_factory=list)


__all__ = [
    "ManualRunRequest",
    "PaginationRead",
    "PipelineRunPage",
    "PipelineRunRead",
    "RunCompletePayload",
    "RunDeleteRequest",
    "RunDeleteResponse",
    "RunEventPayload",
    "RunFailPayload",
    "RunLogEntry",
]
