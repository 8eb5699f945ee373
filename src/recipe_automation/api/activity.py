"""Activity feed routes for schedule lifecycle events."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy import Select, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from recipe_automation.database import get_db_session
from recipe_automation.models import ActivityLog
from recipe_automation.schemas.activity import ActivityPage, ActivityRead
from recipe_automation.schemas.pipeline_run import PaginationRead
from recipe_automation.services.run_history import Pagination

router = APIRouter(prefix="/api", tags=["activity"])

MAX_ACTIVITY_PAGE_SIZE = 100


def _filtered(
    *,
    event_type: str | None,
    schedule_id: UUID | None,
    date_from: datetime | None,
    date_to: datetime | None,
) -> Select[tuple[ActivityLog]]:
    conditions = []
    if event_type and event_type.strip():
        conditions.append(ActivityLog.event_type == event_type.strip())
    if schedule_id is not None:
        conditions.append(ActivityLog.schedule_id == schedule_id)
    if date_from is not None:
        conditions.append(ActivityLog.created_at >= date_from)
    if date_to is not None:
        conditions.append(ActivityLog.created_at <= date_to)
    return select(ActivityLog).where(*conditions)


@router.get("/activity", response_model=ActivityPage)
async def list_activity(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=MAX_ACTIVITY_PAGE_SIZE),
    event_type: str | None = Query(default=None, alias="eventType"),
    schedule_id: UUID | None = Query(default=None, alias="scheduleId"),
    date_from: datetime | None = Query(default=None, alias="dateFrom"),
    date_to: datetime | None = Query(default=None, alias="dateTo"),
    session: AsyncSession = Depends(get_db_session),
) -> ActivityPage:
    statement = _filtered(
        event_type=event_type,
        schedule_id=schedule_id,
        date_from=date_from,
        date_to=date_to,
    )
    total = int(
        await session.scalar(select(func.count()).select_from(statement.subquery()))
        or 0
    )
    rows = (
        await session.scalars(
            statement.order_by(ActivityLog.created_at.desc(), ActivityLog.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
    ).all()

    return ActivityPage(
        items=[ActivityRead.from_row(row) for row in rows],
        pagination=PaginationRead.model_validate(
            Pagination.build(page=page, limit=limit, total=total)
        ),
    )
