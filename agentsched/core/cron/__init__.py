"""Cron scheduling — APScheduler + key/value bridge."""

from agentsched.core.cron.scheduler import TaskScheduler
from agentsched.core.cron.types import (
    AgentTaskConfig,
    ExecutionResult,
    ScheduleConfig,
    ScheduledTask,
    SchedulerStats,
)

__all__ = [
    "AgentTaskConfig",
    "ExecutionResult",
    "ScheduleConfig",
    "ScheduledTask",
    "SchedulerStats",
    "TaskScheduler",
]
