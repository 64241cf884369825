"""TaskScheduler — APScheduler + key/value bridge for recurring agent runs."""

from __future__ import annotations

import asyncio
import time
import uuid
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from loguru import logger
from pydantic import ValidationError

from agentsched.agent.types import RunConfig, RunOptions
from agentsched.core.config.schema import OrchestratorConfig, SchedulerConfig
from agentsched.core.cron.types import (
    ExecutionResult,
    ScheduleConfig,
    ScheduledTask,
    SchedulerStats,
)
from agentsched.core.errors import InvalidCronError, SchedulerError, TaskNotFoundError
from agentsched.core.events import EventBus, TaskExecutionComplete, TaskExecutionStart
from agentsched.memory.base import SessionStore
from agentsched.memory.kv import KeyValueStore

if TYPE_CHECKING:
    from agentsched.agent.orchestrator import ConversationOrchestrator
    from agentsched.core.config.schema import Config

TASKS_KEY = "scheduled_tasks"
HISTORY_KEY = "execution_history"
AI_MESSAGE_EXCERPT = 200


def _excerpt(text: str, limit: int = AI_MESSAGE_EXCERPT) -> str:
    return text[:limit] + "..." if len(text) > limit else text


# Index is the standard cron weekday number (0 and 7 are both Sunday)
_CRON_WEEKDAYS = ("sun", "mon", "tue", "wed", "thu", "fri", "sat", "sun")


def cron_day_of_week(field: str) -> str:
    """Translate a crontab day-of-week field into APScheduler weekday names.

    APScheduler numbers weekdays from Monday = 0, crontab from Sunday = 0.
    Numeric values, ranges, lists and steps are expanded to explicit names;
    name tokens (``mon-fri``) pass through unchanged.
    """
    if field == "*":
        return field
    names: list[str] = []
    for token in field.split(","):
        if any(c.isalpha() for c in token):
            names.append(token.lower())
            continue
        span, _, step_text = token.partition("/")
        step = int(step_text) if step_text else 1
        if span == "*":
            first, last = 0, 6
        elif "-" in span:
            first_text, _, last_text = span.partition("-")
            first, last = int(first_text), int(last_text)
        else:
            first = int(span)
            last = 6 if step_text else first
        if step < 1 or not 0 <= first <= last <= 7:
            raise ValueError(f"Invalid day-of-week value: {token!r}")
        for value in range(first, last + 1, step):
            name = _CRON_WEEKDAYS[value]
            if name not in names:
                names.append(name)
    return ",".join(names)


class TaskScheduler:
    """Bridge between the persisted task table and APScheduler.

    Tasks live in the key/value store (source of truth) and enabled ones
    are registered with APScheduler as cron jobs. On trigger, the task's
    wake word is run through the orchestrator and an ExecutionResult is
    recorded. Writes to a task and its history are serialized per task.
    """

    def __init__(
        self,
        orchestrator: ConversationOrchestrator,
        sessions: SessionStore,
        kv: KeyValueStore,
        events: EventBus | None = None,
        config: Config | None = None,
    ):
        self.orchestrator = orchestrator
        self.sessions = sessions
        self.kv = kv
        self.events = events
        self.settings: SchedulerConfig = config.scheduler if config else SchedulerConfig()
        self.run_defaults: OrchestratorConfig = (
            config.orchestrator if config else OrchestratorConfig()
        )

        options: dict[str, Any] = {"job_defaults": {"coalesce": True, "max_instances": 1}}
        if self.settings.timezone:
            options["timezone"] = self.settings.timezone
        self._scheduler = AsyncIOScheduler(**options)
        self._tz = self._scheduler.timezone
        self._locks: dict[str, asyncio.Lock] = {}
        self._tasks: dict[str, ScheduledTask] = self._load_tasks()

    # ── Lifecycle ────────────────────────────────────────────

    async def start(self) -> None:
        """Reload tasks, recompute next runs, arm enabled tasks and start APScheduler."""
        self._tasks = self._load_tasks()
        now = self._now()
        armed = 0
        for task in self._tasks.values():
            try:
                task.next_run = self._next_run(task.cron_expression, now)
            except InvalidCronError as e:
                logger.error(f"Stored task {task.id} has invalid cron, not armed: {e}")
                continue
            if task.enabled:
                self._arm(task)
                armed += 1
        self._persist_tasks()

        if not self._scheduler.running:
            self._scheduler.start()
        logger.info(f"TaskScheduler started with {len(self._tasks)} tasks ({armed} armed)")

    async def shutdown(self) -> None:
        """Disarm every timer, stop APScheduler and persist final state."""
        logger.info(f"Shutting down scheduler: {len(self._tasks)} tasks")
        for task_id in list(self._tasks):
            self._disarm(task_id)
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
        self._persist_tasks()
        if self.events:
            await self.events.drain()
        logger.info("TaskScheduler stopped")

    # ── Task CRUD ────────────────────────────────────────────

    def schedule_task(self, config: ScheduleConfig) -> str:
        """Create a task and arm it if enabled. Returns the task id.

        Raises ``InvalidCronError`` before anything is persisted.
        """
        self._validate_cron(config.cron_expression)

        task_id = config.task_id or str(uuid.uuid4())
        if task_id in self._tasks:
            logger.warning(f"Task {task_id} already exists, replacing")
            self._disarm(task_id)

        now = self._now()
        agent = config.agent_config
        task = ScheduledTask(
            id=task_id,
            name=config.name,
            cron_expression=config.cron_expression,
            agent_id=agent.agent_id,
            model_id=agent.model_id,
            project_directory=agent.project_directory,
            inference_config=agent.inference_config,
            wake_word=config.wake_word,
            enabled=config.enabled,
            created_at=now,
            next_run=self._next_run(config.cron_expression, now),
            continue_session=config.continue_session,
            continue_session_prompt=config.continue_session_prompt,
        )
        self._tasks[task_id] = task
        if task.enabled:
            self._arm(task)
        self._persist_tasks()
        logger.info(f"Task scheduled: {task_id} '{task.name}' ({task.cron_expression})")
        return task_id

    def update_task(self, task_id: str, config: ScheduleConfig) -> bool:
        """Replace a task's definition, keeping id, created_at and run statistics."""
        task = self._tasks.get(task_id)
        if task is None:
            logger.warning(f"Update requested for unknown task: {task_id}")
            return False
        try:
            self._validate_cron(config.cron_expression)
        except InvalidCronError as e:
            logger.error(f"Failed to update task {task_id}: {e}")
            return False

        self._disarm(task_id)
        agent = config.agent_config
        updated = task.model_copy(
            update={
                "name": config.name,
                "cron_expression": config.cron_expression,
                "agent_id": agent.agent_id,
                "model_id": agent.model_id,
                "project_directory": agent.project_directory,
                "inference_config": agent.inference_config,
                "wake_word": config.wake_word,
                "enabled": config.enabled,
                "continue_session": config.continue_session,
                "continue_session_prompt": config.continue_session_prompt,
                "next_run": self._next_run(config.cron_expression),
                "last_error": None,
            }
        )
        self._tasks[task_id] = updated
        if updated.enabled:
            self._arm(updated)
        self._persist_tasks()
        logger.info(f"Task updated: {task_id} ({updated.cron_expression}, enabled={updated.enabled})")
        return True

    def toggle_task(self, task_id: str, enabled: bool) -> bool:
        """Enable or disable a task. False if unknown; idempotent otherwise."""
        task = self._tasks.get(task_id)
        if task is None:
            return False
        task.enabled = enabled
        task.next_run = self._next_run(task.cron_expression)
        if enabled:
            self._arm(task)
        else:
            self._disarm(task_id)
        self._persist_tasks()
        logger.info(f"Task {task_id} {'enabled' if enabled else 'disabled'}")
        return True

    def cancel_task(self, task_id: str) -> bool:
        """Disarm, then delete the task and its execution history."""
        task = self._tasks.pop(task_id, None)
        if task is None:
            return False
        self._disarm(task_id)

        history = self.kv.get(HISTORY_KEY, {})
        if history.pop(task_id, None) is not None:
            self.kv.set(HISTORY_KEY, history)
        self._locks.pop(task_id, None)
        self._persist_tasks()
        logger.info(f"Task cancelled: {task_id} '{task.name}'")
        return True

    def list_tasks(self) -> list[ScheduledTask]:
        return [t.model_copy() for t in self._tasks.values()]

    def get_task(self, task_id: str) -> ScheduledTask | None:
        task = self._tasks.get(task_id)
        return task.model_copy() if task else None

    def get_task_execution_history(self, task_id: str) -> list[ExecutionResult]:
        raw = self.kv.get(HISTORY_KEY, {}).get(task_id, [])
        return [ExecutionResult.model_validate(r) for r in raw]

    def get_stats(self) -> SchedulerStats:
        tasks = list(self._tasks.values())
        enabled = sum(1 for t in tasks if t.enabled)
        return SchedulerStats(
            total_tasks=len(tasks),
            enabled_tasks=enabled,
            disabled_tasks=len(tasks) - enabled,
            total_executions=sum(t.run_count for t in tasks),
            tasks_with_errors=sum(1 for t in tasks if t.last_error),
            active_cron_jobs=sum(1 for t in tasks if self.is_armed(t.id)),
        )

    def is_armed(self, task_id: str) -> bool:
        return self._scheduler.get_job(task_id) is not None

    async def execute_task_manually(self, task_id: str) -> ExecutionResult:
        """Fire a task now, even if disabled, and return its ExecutionResult."""
        task = self._tasks.get(task_id)
        if task is None:
            raise TaskNotFoundError(f"Task not found: {task_id}")
        logger.info(f"Manual execution requested: {task_id} '{task.name}'")
        result = await self._fire(task_id)
        if result is None:
            raise SchedulerError(f"No execution result recorded for task: {task_id}")
        return result

    # ── Execution ────────────────────────────────────────────

    async def _on_timer(self, task_id: str) -> None:
        """APScheduler entry point."""
        task = self._tasks.get(task_id)
        if task is None or not task.enabled:
            logger.debug(f"Timer fired for inactive task {task_id}, ignoring")
            return
        logger.info(f"Cron trigger: {task_id} '{task.name}'")
        await self._fire(task_id)

    async def _fire(self, task_id: str) -> ExecutionResult | None:
        """Run one firing and record its outcome.

        Returns None when no result was recorded: the task is gone, or the
        history write failed.
        """
        task = self.get_task(task_id)
        if task is None:
            return None

        prompt = task.wake_word
        if task.continue_session and task.last_session_id:
            session_id = task.last_session_id
            if task.continue_session_prompt and task.continue_session_prompt.strip():
                prompt = task.continue_session_prompt
            logger.info(f"Continuing session {session_id} for task {task_id}")
        else:
            session_id = f"scheduled-{task_id}-{int(time.time() * 1000)}"

        self._emit(
            TaskExecutionStart(task_id=task_id, task_name=task.name, executed_at=self._now())
        )

        run_config = RunConfig(
            agent_id=task.agent_id,
            model_id=task.model_id,
            project_directory=task.project_directory,
            task_id=task_id,
            inference_config=task.inference_config,
        )
        options = RunOptions(
            enable_tool_execution=self.run_defaults.enable_tool_execution,
            max_tool_executions=self.run_defaults.max_tool_executions,
            timeout_s=self.run_defaults.timeout_s,
        )

        ai_message: str | None = None
        try:
            run = await self.orchestrator.run(session_id, run_config, prompt, options)
            result = ExecutionResult(
                task_id=task_id,
                executed_at=self._now(),
                success=True,
                session_id=session_id,
                message_count=len(self.sessions.history(session_id)),
            )
            ai_message = _excerpt(run.response.text)
            logger.info(
                f"Task {task_id} executed: session={session_id}, "
                f"tool_executions={len(run.tool_executions)}"
            )
        except Exception as e:
            logger.error(f"Task {task_id} execution failed: {e}")
            result = ExecutionResult(
                task_id=task_id,
                executed_at=self._now(),
                success=False,
                error=str(e) or type(e).__name__,
                session_id=session_id,
                message_count=0,
            )

        async with self._lock(task_id):
            current = self._tasks.get(task_id)
            if current is None:
                logger.warning(
                    f"Task {task_id} cancelled during execution, result not recorded "
                    f"(success={result.success})"
                )
                return None

            recorded = self._record_execution(task_id, result)
            current.run_count += 1
            current.last_run = result.executed_at
            current.next_run = self._next_run(current.cron_expression)
            current.last_error = result.error
            if result.success and current.continue_session:
                current.last_session_id = session_id
            self._persist_tasks()

        self._emit(
            TaskExecutionComplete(
                task_id=task_id,
                task_name=task.name,
                success=result.success,
                error=result.error,
                ai_message=ai_message,
                executed_at=result.executed_at,
            )
        )
        return result if recorded else None

    # ── Internals ────────────────────────────────────────────

    def _now(self) -> datetime:
        return datetime.now(self._tz)

    def _lock(self, task_id: str) -> asyncio.Lock:
        return self._locks.setdefault(task_id, asyncio.Lock())

    def _trigger(self, cron_expression: str) -> CronTrigger:
        fields = cron_expression.split()
        if len(fields) != 5:
            raise ValueError(f"Wrong number of fields; got {len(fields)}, expected 5")
        minute, hour, day, month, day_of_week = fields
        return CronTrigger(
            minute=minute,
            hour=hour,
            day=day,
            month=month,
            day_of_week=cron_day_of_week(day_of_week),
            timezone=self._tz,
        )

    def _validate_cron(self, cron_expression: str) -> None:
        try:
            trigger = self._trigger(cron_expression)
        except ValueError as e:
            raise InvalidCronError(f"Invalid cron expression '{cron_expression}': {e}") from e
        if trigger.get_next_fire_time(None, self._now()) is None:
            logger.warning(f"Cron expression never fires: {cron_expression}")
            raise InvalidCronError(f"Cron expression '{cron_expression}' never fires")

    def _next_run(self, cron_expression: str, after: datetime | None = None) -> datetime | None:
        """First fire time strictly after ``after`` (default: now)."""
        try:
            trigger = self._trigger(cron_expression)
        except ValueError as e:
            raise InvalidCronError(f"Invalid cron expression '{cron_expression}': {e}") from e
        after = after or self._now()
        return trigger.get_next_fire_time(None, after + timedelta(microseconds=1))

    def _arm(self, task: ScheduledTask) -> None:
        # Pending jobs (scheduler not started) are not replaced by id
        self._disarm(task.id)
        self._scheduler.add_job(
            self._on_timer,
            trigger=self._trigger(task.cron_expression),
            id=task.id,
            name=task.name,
            args=[task.id],
            replace_existing=True,
        )
        logger.debug(f"Task armed: {task.id} ({task.cron_expression})")

    def _disarm(self, task_id: str) -> None:
        try:
            self._scheduler.remove_job(task_id)
            logger.debug(f"Task disarmed: {task_id}")
        except JobLookupError:
            pass

    def _emit(self, event: TaskExecutionStart | TaskExecutionComplete) -> None:
        if self.events:
            self.events.emit(event)

    def _record_execution(self, task_id: str, result: ExecutionResult) -> bool:
        """Append to the task's history, evicting the oldest beyond the limit.

        Returns False if the history could not be written.
        """
        try:
            history = self.kv.get(HISTORY_KEY, {})
            entries = history.setdefault(task_id, [])
            entries.append(result.model_dump(mode="json"))
            overflow = len(entries) - self.settings.history_limit
            if overflow > 0:
                del entries[:overflow]
            self.kv.set(HISTORY_KEY, history)
        except Exception as e:
            logger.error(f"Failed to record execution history for {task_id}: {e}")
            return False
        return True

    def _load_tasks(self) -> dict[str, ScheduledTask]:
        tasks: dict[str, ScheduledTask] = {}
        for task_id, raw in self.kv.get(TASKS_KEY, {}).items():
            try:
                tasks[task_id] = ScheduledTask.model_validate(raw)
            except ValidationError as e:
                logger.error(f"Skipping corrupt stored task {task_id}: {e.error_count()} errors")
        return tasks

    def _persist_tasks(self) -> None:
        self.kv.set(TASKS_KEY, {tid: t.model_dump(mode="json") for tid, t in self._tasks.items()})
