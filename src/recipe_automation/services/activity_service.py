"""Audit trail of schedule and pipeline run events for the activity feed."""

from __future__ import annotations

import logging
from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from typing import Any
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from recipe_automation.models import ActivityLog

SessionScopeFactory = Callable[[], AbstractAsyncContextManager[AsyncSession]]

_activity_logger = logging.getLogger("recipe_automation.activity")


class ActivityService:
    """Write activity rows, each in its own short transaction."""

    def __init__(self, *, session_factory: SessionScopeFactory | None = None) -> None:
        if session_factory is None:
            from recipe_automation.database import session_scope

            session_factory = session_scope

        self._session_factory = session_factory

    async def record(
        self,
        *,
        event_type: str,
        message: str,
        schedule_id: UUID | None = None,
        resource_type: str | None = None,
        resource_id: UUID | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> bool:
        """Store one event; a failed write is logged and reported as ``False``.

        The audit trail is secondary to scheduling, so callers never see the
        storage error.
        """

        try:
            async with self._session_factory() as session:
                session.add(
                    ActivityLog(
                        event_type=event_type,
                        schedule_id=schedule_id,
                        resource_type=resource_type,
                        resource_id=resource_id,
                        message=message,
                        metadata_json=metadata,
                    )
                )
        except Exception:
            _activity_logger.exception(
                "activity_log_write_failed",
                extra={
                    "event_type": event_type,
                    "schedule_id": str(schedule_id) if schedule_id else None,
                },
            )
            return False
        return True


__all__ = ["ActivityService"]
