"""Schema exports for API serialization."""

from recipe_automation import __version__
from recipe_automation.schemas.activity import ActivityPage, ActivityRead
from recipe_automation.schemas.base import ApiModel
from recipe_automation.schemas.pipeline_run import (
    ManualRunRequest,
    PaginationRead,
    PipelineRunPage,
    PipelineRunRead,
    RunCompletePayload,
    RunDeleteRequest,
    RunDeleteResponse,
    RunEventPayload,
    RunFailPayload,
    RunLogEntry,
)
from recipe_automation.schemas.schedule import (
    MAX_INTERVAL_MINUTES,
    ScheduleCreate,
    ScheduleDeleteResponse,
    ScheduleListResponse,
    ScheduleRead,
    ScheduleUpdate,
)

__all__ = [
    "__version__",
    "MAX_INTERVAL_MINUTES",
    "ActivityPage",
    "ActivityRead",
    "ApiModel",
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
    "ScheduleCreate",
    "ScheduleDeleteResponse",
    "ScheduleListResponse",
    "ScheduleRead",
    "ScheduleUpdate",
]
