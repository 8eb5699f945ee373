"""Service layer for the automation pipeline scheduler."""

from recipe_automation import __version__
from recipe_automation.services.activity_service import ActivityService
from recipe_automation.services.cron_translator import (
    CUSTOM_SCHEDULE_LABEL,
    InvalidIntervalError,
    cron_to_human,
    interval_minutes_from_cron,
    minutes_to_cron,
)
from recipe_automation.services.scheduler import (
    InvalidCronExpressionError,
    SchedulerJobState,
    SchedulerService,
    next_fire_time,
    parse_cron_expression,
)
from recipe_automation.services.schedule_store import (
    ScheduleNotFoundError,
    ScheduleStore,
)
from recipe_automation.services.run_tracker import (
    RunEventChannel,
    RunNotFoundError,
    RunProgressEvent,
    RunSnapshot,
    RunStateError,
    RunTracker,
    SourceRef,
)
from recipe_automation.services.executor import (
    START_STAGE,
    ExecutionOutcome,
    PipelineExecutor,
    PipelineStartError,
    RunContext,
    UnconfiguredPipelineExecutor,
    WebhookPipelineExecutor,
    build_executor,
)
from recipe_automation.services.run_history import (
    Pagination,
    RunHistoryFilters,
    RunHistoryPage,
    RunHistoryService,
)
from recipe_automation.services.job_registry import (
    FireOutcome,
    FireResult,
    JobRegistry,
    NoPendingWorkError,
    ReconcileResult,
    ScheduleDeletion,
    ScheduleJobMetrics,
    ScheduleView,
)
from recipe_automation.services.run_recovery_service import (
    RunRecoveryService,
    ShutdownRunSummary,
    StartupRecoveryResult,
)

__all__ = [
    "__version__",
    "CUSTOM_SCHEDULE_LABEL",
    "START_STAGE",
    "ActivityService",
    "ExecutionOutcome",
    "FireOutcome",
    "FireResult",
    "InvalidCronExpressionError",
    "InvalidIntervalError",
    "JobRegistry",
    "NoPendingWorkError",
    "Pagination",
    "PipelineExecutor",
    "PipelineStartError",
    "ReconcileResult",
    "RunContext",
    "RunEventChannel",
    "RunHistoryFilters",
    "RunHistoryPage",
    "RunHistoryService",
    "RunNotFoundError",
    "RunProgressEvent",
    "RunRecoveryService",
    "RunSnapshot",
    "RunStateError",
    "RunTracker",
    "ScheduleDeletion",
    "ScheduleJobMetrics",
    "ScheduleNotFoundError",
    "ScheduleStore",
    "ScheduleView",
    "SchedulerJobState",
    "SchedulerService",
    "ShutdownRunSummary",
    "SourceRef",
    "StartupRecoveryResult",
    "UnconfiguredPipelineExecutor",
    "WebhookPipelineExecutor",
    "build_executor",
    "cron_to_human",
    "interval_minutes_from_cron",
    "minutes_to_cron",
    "next_fire_time",
    "parse_cron_expression",
]
