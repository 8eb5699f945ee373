"""Pydantic schemas for automation schedule resources."""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import Field, model_validator

from recipe_automation.schemas.base import ApiModel

# Thirty days; larger day steps are not valid cron day-of-month steps.
MAX_INTERVAL_MINUTES = 43_200


class ScheduleCreate(ApiModel):
    """Payload used to create a schedule from a cron string or an interval."""

    cron_expression: str | None = Field(default=None, min_length=1, max_length=128)
    interval_minutes: int | None = Field(default=None, ge=1, le=MAX_INTERVAL_MINUTES)
    enabled: bool = True
    name: str | None = Field(default=None, max_length=255)
    executor_options: dict[str, Any] | None = None

    @model_validator(mode="after")
    def require_one_timing_field(self) -> ScheduleCreate:
        if (self.cron_expression is None) == (self.interval_minutes is None):
            raise ValueError("Provide exactly one of cronExpression or intervalMinutes")
        return self


class ScheduleUpdate(ApiModel):
    """Partial update; omitted fields keep their stored values."""

    id: UUID
    enabled: bool | None = None
    cron_expression: str | None = Field(default=None, min_length=1, max_length=128)
    interval_minutes: int | None = Field(default=None, ge=1, le=MAX_INTERVAL_MINUTES)
    name: str | None = Field(default=None, max_length=255)
    executor_options: dict[str, Any] | None = None

    @model_validator(mode="after")
    def reject_conflicting_timing(self) -> ScheduleUpdate:
        if self.cron_expression is not None and self.interval_minutes is not None:
            raise ValueError("Provide at most one of cronExpression or intervalMinutes")
        return self


class ScheduleRead(ApiModel):
    """Serialized schedule with live registry state."""

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


class ScheduleListResponse(ApiModel):
    schedules: list[ScheduleRead] = Field(default_factory=list)


class ScheduleDeleteResponse(ApiModel):
    deleted: bool
    deleted_run_count: int = 0


__all__ = [
    "MAX_INTERVAL_MINUTES",
    "ScheduleCreate",
    "ScheduleDeleteResponse",
    "ScheduleListResponse",
    "ScheduleRead",
    "ScheduleUpdate",
]
