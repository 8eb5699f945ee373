"""ORM model exports."""

from recipe_automation import __version__
from recipe_automation.models.activity_log import ActivityLog
from recipe_automation.models.base import Base
from recipe_automation.models.pipeline_run import PipelineRun, RunStatus, RunTrigger
from recipe_automation.models.schedule import AutomationSchedule

__all__ = [
    "__version__",
    "ActivityLog",
    "AutomationSchedule",
    "Base",
    "PipelineRun",
    "RunStatus",
    "RunTrigger",
]
