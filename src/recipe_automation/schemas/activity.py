"""Pydantic schemas for the activity feed."""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import Field

from recipe_automation.models import ActivityLog
from recipe_automation.schemas.base import ApiModel
from recipe_automation.schemas.pipeline_run import PaginationRead
from recipe_automation.utils.timestamps import as_utc


class ActivityRead(ApiModel):
    id: UUID
    event_type: str
    schedule_id: UUID | None
    resource_type: str | None
    resource_id: UUID | None
    message: str
    metadata: dict[str, Any] | None
    created_at: datetime

    @classmethod
    def from_row(cls, row: ActivityLog) -> ActivityRead:
        return cls(
            id=row.id,
            event_type=row.event_type,
            schedule_id=row.schedule_id,
            resource_type=row.resource_type,
            resource_id=row.resource_id,
            message=row.message,
            metadata=row.metadata_json,
            created_at=as_utc(row.created_at),
        )


class ActivityPage(ApiModel):
    items: list[ActivityRead] = Field(default_factory=list)
    pagination: PaginationRead


__all__ = ["ActivityPage", "ActivityRead"]
