"""Pipeline run ORM model for execution history and progress tracking."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    DateTime,
    Enum as SqlEnum,
    Index,
    Integer,
    String,
    Uuid,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from recipe_automation.models.base import Base
from recipe_automation.utils.timestamps import utc_now


class RunStatus(str, Enum):
    """Run lifecycle states. SUCCESS and FAILED are terminal."""

    RUNNING = "RUNNING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self is not RunStatus.RUNNING


class RunTrigger(str, Enum):
    """What started a run."""

    SCHEDULE = "schedule"
    MANUAL = "manual"


class PipelineRun(Base):
    """One execution attempt of the content pipeline."""

    __tablename__ = "pipeline_runs"
    __table_args__ = (
        Index("ix_pipeline_runs_started_at", "started_at"),
        Index("ix_pipeline_runs_schedule_id_status", "schedule_id", "status"),
        Index("ix_pipeline_runs_status_triggered_by", "status", "triggered_by"),
    )

    id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True), primary_key=True, default=uuid4
    )
    # No foreign key: history outlives the schedule that produced it.
    schedule_id: Mapped[UUID | None] = mapped_column(Uuid(as_uuid=True))
    source_id: Mapped[str | None] = mapped_column(String(255))
    source_title: Mapped[str | None] = mapped_column(String(512))
    status: Mapped[RunStatus] = mapped_column(
        SqlEnum(
            RunStatus,
            name="pipeline_run_status",
            values_callable=lambda enum: [member.value for member in enum],
        ),
        nullable=False,
        default=RunStatus.RUNNING,
    )
    stage: Mapped[str | None] = mapped_column(String(255))
    progress: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        server_default=text("0"),
    )
    logs: Mapped[list[dict[str, Any]]] = mapped_column(
        JSON, nullable=False, default=list
    )
    result_ref: Mapped[str | None] = mapped_column(String(255))
    result_url: Mapped[str | None] = mapped_column(String(2048))
    error: Mapped[str | None] = mapped_column(String(2048))
    error_stage: Mapped[str | None] = mapped_column(String(255))
    triggered_by: Mapped[RunTrigger] = mapped_column(
        SqlEnum(
            RunTrigger,
            name="pipeline_run_trigger",
            values_callable=lambda enum: [member.value for member in enum],
        ),
        nullable=False,
    )
    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utc_now,
    )
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    duration_ms: Mapped[int | None] = mapped_column(Integer)


__all__ = ["PipelineRun", "RunStatus", "RunTrigger"]
