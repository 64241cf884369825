"""Exception hierarchy shared by the gateway, orchestrator and scheduler."""

from __future__ import annotations


class AgentSchedError(Exception):
    """Root of all agentsched errors."""


# ── Model gateway ─────────────────────────────────────────────


class GatewayError(AgentSchedError):
    """Model API call failed with an uncategorized error."""


class ThrottledError(GatewayError):
    """Request rejected by rate limiting (transient)."""


class ServiceUnavailableError(GatewayError):
    """Model endpoint temporarily unavailable (transient)."""


class ModelValidationError(GatewayError):
    """Request rejected as invalid by the model API.

    ``token_limit`` is set by gateways that can tell a context-size
    rejection apart from other validation failures.
    """

    def __init__(self, message: str, token_limit: bool = False):
        super().__init__(message)
        self.token_limit = token_limit


class MaxTokenExceededError(GatewayError):
    """Token-limit rejection that payload shrinking could not resolve."""

    def __init__(self, message: str, original: Exception | None = None):
        super().__init__(message)
        self.original = original


# ── Orchestrator ──────────────────────────────────────────────


class AgentNotFoundError(AgentSchedError):
    """No agent is registered under the requested id."""


class RunTimeoutError(AgentSchedError, TimeoutError):
    """An orchestrator run exceeded its deadline."""


# ── Scheduler ─────────────────────────────────────────────────


class SchedulerError(AgentSchedError):
    """Scheduler invariant violated."""


class TaskNotFoundError(SchedulerError, KeyError):
    """No scheduled task with the given id."""

    def __str__(self) -> str:
        # KeyError quotes its argument; keep the plain message
        return str(self.args[0]) if self.args else ""


class InvalidCronError(SchedulerError, ValueError):
    """Cron expression rejected at schedule time."""
