"""Activity log entries for schedule lifecycle events."""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import JSON, DateTime, Index, String, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column

from recipe_automation.models.base import Base
from recipe_automation.utils.timestamps import utc_now


class ActivityLog(Base):
    """Append-only audit row; ``schedule_id`` is kept after the schedule is gone."""

    __tablename__ = "activity_logs"
    __table_args__ = (
        Index("ix_activity_logs_created_at", "created_at"),
        Index("ix_activity_logs_event_type", "event_type"),
        Index("ix_activity_logs_schedule_created_at", "schedule_id", "created_at"),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    event_type: Mapped[str] = mapped_column(String(64))
    schedule_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True)
    resource_type: Mapped[str | None] = mapped_column(String(64), nullable=True)
    resource_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True)
    message: Mapped[str] = mapped_column(String(512))
    # ``metadata`` is reserved on declarative classes.
    metadata_json: Mapped[dict[str, Any] | None] = mapped_column(
        "metadata", JSON, nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        server_default=text("(CURRENT_TIMESTAMP)"),
    )


__all__ = ["ActivityLog"]
