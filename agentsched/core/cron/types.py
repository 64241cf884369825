"""Scheduled task types."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from agentsched.agent.types import InferenceConfig


class AgentTaskConfig(BaseModel):
    """Which agent a task runs and with what model settings."""

    agent_id: str
    model_id: str | None = None  # None = agent / config default
    project_directory: str | None = None
    inference_config: InferenceConfig | None = None


class ScheduleConfig(BaseModel):
    """Input of schedule_task / update_task."""

    task_id: str | None = None
    name: str
    cron_expression: str
    agent_config: AgentTaskConfig
    wake_word: str
    enabled: bool = True
    continue_session: bool = False
    continue_session_prompt: str | None = None


class ScheduledTask(BaseModel):
    """Persisted task definition plus run statistics."""

    id: str
    name: str
    cron_expression: str
    agent_id: str
    model_id: str | None = None
    project_directory: str | None = None
    inference_config: InferenceConfig | None = None
    wake_word: str
    enabled: bool = True
    created_at: datetime = Field(default_factory=datetime.now)
    last_run: datetime | None = None
    next_run: datetime | None = None
    run_count: int = 0
    last_error: str | None = None

    continue_session: bool = False
    continue_session_prompt: str | None = None  # used instead of wake_word on continuation
    last_session_id: str | None = None


class ExecutionResult(BaseModel):
    """Outcome of one firing. Immutable once recorded."""

    model_config = ConfigDict(frozen=True)

    task_id: str
    executed_at: datetime
    success: bool
    error: str | None = None
    session_id: str
    message_count: int = 0


class SchedulerStats(BaseModel):
    total_tasks: int
    enabled_tasks: int
    disabled_tasks: int
    total_executions: int
    tasks_with_errors: int
    active_cron_jobs: int
