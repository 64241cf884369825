"""Model gateway — strategy interface for one remote inference call."""

from __future__ import annotations

import abc

from agentsched.agent.types import ModelRequest, ModelResponse


class ModelGateway(abc.ABC):
    """Abstract base for model API gateways.

    Implementations raise ``ThrottledError``, ``ServiceUnavailableError``,
    ``ModelValidationError`` or ``GatewayError`` and never retry themselves.
    """

    @abc.abstractmethod
    async def invoke(self, request: ModelRequest, region: str | None = None) -> ModelResponse:
        """Send ``request`` (optionally to ``region``) and return the response."""
        ...
