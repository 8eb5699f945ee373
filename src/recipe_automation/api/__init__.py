"""API package exports."""

from recipe_automation import __version__
from recipe_automation.api.activity import router as activity_router
from recipe_automation.api.pipeline import router as pipeline_router
from recipe_automation.api.scheduler import router as scheduler_router
from recipe_automation.api.schedules import router as schedules_router

__all__ = [
    "__version__",
    "activity_router",
    "pipeline_router",
    "scheduler_router",
    "schedules_router",
]
