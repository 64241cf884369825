"""ResilientGateway — retry, regional failover and payload shrinking.

Wraps a ModelGateway and raises only once the retry policy is exhausted:

- throttled / unavailable: optional one-shot failover to an alternate
  region (throttling only), then a fixed delay and another attempt;
- token-limit rejection: shrink tool results, notify, short delay, retry;
- anything else: surfaced immediately.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable

from loguru import logger

from agentsched.agent.types import ModelRequest, ModelResponse
from agentsched.core.config.schema import ResilienceConfig
from agentsched.core.errors import (
    GatewayError,
    MaxTokenExceededError,
    ModelValidationError,
    ServiceUnavailableError,
    ThrottledError,
)
from agentsched.core.events import ContentSizeReduced, EventBus
from agentsched.core.providers.base import ModelGateway
from agentsched.core.providers.shrink import shrink_request

TOKEN_LIMIT_PHRASES = ("max token", "maximum token", "token limit", "exceeds token")


def is_token_limit_error(error: ModelValidationError) -> bool:
    if error.token_limit:
        return True
    message = str(error).lower()
    return any(phrase in message for phrase in TOKEN_LIMIT_PHRASES)


class ResilientGateway:
    """Retrying front for a ModelGateway. One instance per engine."""

    def __init__(
        self,
        gateway: ModelGateway,
        config: ResilienceConfig | None = None,
        events: EventBus | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.gateway = gateway
        self.config = config or ResilienceConfig()
        self.events = events
        self._sleep = sleep

    async def send(self, request: ModelRequest, attempt: int = 0) -> ModelResponse:
        """Invoke the gateway under the retry policy."""
        cfg = self.config
        while True:
            try:
                return await self.gateway.invoke(request, cfg.region)

            except (ThrottledError, ServiceUnavailableError) as e:
                if attempt >= cfg.max_retries:
                    logger.error(f"Max retries ({cfg.max_retries}) exceeded: {e}")
                    raise

                if isinstance(e, ThrottledError) and cfg.enable_region_failover:
                    response = await self._try_alternate_region(request)
                    if response is not None:
                        return response

                logger.warning(
                    f"{type(e).__name__}, retrying in {cfg.retry_delay_s}s "
                    f"(attempt {attempt + 1}/{cfg.max_retries})"
                )
                await self._sleep(cfg.retry_delay_s)
                attempt += 1

            except ModelValidationError as e:
                if not is_token_limit_error(e):
                    logger.error(f"Model rejected request: {e}")
                    raise
                if attempt >= cfg.max_retries:
                    logger.error(f"Token limit still exceeded after {attempt} reductions")
                    raise MaxTokenExceededError(
                        f"Max token limit exceeded after {attempt} retries: {e}", original=e
                    ) from e

                request = shrink_request(request, cfg.shrink_ratio)
                logger.warning(
                    f"Token limit exceeded, tool results shrunk to {cfg.shrink_ratio:.0%} "
                    f"(attempt {attempt + 1}/{cfg.max_retries})"
                )
                if self.events:
                    self.events.emit(
                        ContentSizeReduced(retry_count=attempt + 1, model_id=request.model_id)
                    )
                await self._sleep(cfg.token_retry_delay_s)
                attempt += 1

            except GatewayError as e:
                logger.error(f"Model call failed: {e}")
                raise

    async def _try_alternate_region(self, request: ModelRequest) -> ModelResponse | None:
        region = self.alternate_region()
        if region is None:
            logger.debug("Region failover enabled but no alternate region configured")
            return None
        logger.info(f"Throttled in {self.config.region or 'default region'}, trying {region}")
        try:
            return await self.gateway.invoke(request, region)
        except Exception as e:
            logger.warning(f"Alternate region {region} failed: {e}")
            return None

    def alternate_region(self) -> str | None:
        """Next configured region after the current one (cyclic), if any differs."""
        regions = self.config.failover_regions
        current = self.config.region
        if not regions:
            return None
        start = regions.index(current) + 1 if current in regions else 0
        for offset in range(len(regions)):
            candidate = regions[(start + offset) % len(regions)]
            if candidate != current:
                return candidate
        return None
