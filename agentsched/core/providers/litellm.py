"""LiteLLM gateway — ModelRequest in, ModelResponse out."""

from __future__ import annotations

import json
import os
from typing import Any

import litellm
from loguru import logger

from agentsched.agent.types import (
    Message,
    ModelRequest,
    ModelResponse,
    StopReason,
    TextPart,
    ToolResultPart,
    ToolUsePart,
    Usage,
)
from agentsched.core.config.schema import Config
from agentsched.core.errors import (
    GatewayError,
    ModelValidationError,
    ServiceUnavailableError,
    ThrottledError,
)
from agentsched.core.providers.base import ModelGateway

# Suppress litellm noise
litellm.suppress_debug_info = True

_FINISH_REASONS = {
    "stop": StopReason.END_TURN,
    "end_turn": StopReason.END_TURN,
    "tool_calls": StopReason.TOOL_USE,
    "tool_use": StopReason.TOOL_USE,
    "function_call": StopReason.TOOL_USE,
    "length": StopReason.MAX_TOKENS,
    "max_tokens": StopReason.MAX_TOKENS,
    "stop_sequence": StopReason.STOP_SEQUENCE,
}


def setup_provider(config: Config) -> None:
    """Set env vars for LiteLLM from config. Call once at startup."""
    _set_key("ANTHROPIC_API_KEY", config.providers.anthropic.api_key)
    _set_key("OPENAI_API_KEY", config.providers.openai.api_key)
    _set_key("OPENROUTER_API_KEY", config.providers.openrouter.api_key)
    _set_key("GEMINI_API_KEY", config.providers.gemini.api_key)
    _set_key("AWS_ACCESS_KEY_ID", config.providers.aws.access_key_id)
    _set_key("AWS_SECRET_ACCESS_KEY", config.providers.aws.secret_access_key)
    _set_key("AWS_SESSION_TOKEN", config.providers.aws.session_token)


class LiteLLMGateway(ModelGateway):
    """litellm.acompletion-backed gateway.

    The region, when given, is forwarded as ``aws_region_name`` so Bedrock
    deployments can fail over between regions.
    """

    def __init__(self, config: Config) -> None:
        self.config = config
        setup_provider(config)

    async def invoke(self, request: ModelRequest, region: str | None = None) -> ModelResponse:
        kwargs = self._build_kwargs(request)
        if region:
            kwargs["aws_region_name"] = region

        logger.debug(
            f"LLM call: model={request.model_id}, messages={len(kwargs['messages'])}, "
            f"region={region or 'default'}"
        )
        try:
            response = await litellm.acompletion(**kwargs)
        except Exception as e:
            raise _map_error(e) from e
        return _to_model_response(response)

    def _build_kwargs(self, request: ModelRequest) -> dict[str, Any]:
        inference = request.inference
        kwargs: dict[str, Any] = {
            "model": request.model_id,
            "messages": to_openai_messages(request),
            "temperature": self.config.model.temperature,
            "max_tokens": self.config.model.max_tokens,
        }
        if inference:
            if inference.max_tokens is not None:
                kwargs["max_tokens"] = inference.max_tokens
            if inference.temperature is not None:
                kwargs["temperature"] = inference.temperature
            if inference.top_p is not None:
                kwargs["top_p"] = inference.top_p
            if inference.stop_sequences:
                kwargs["stop"] = inference.stop_sequences
        if request.tools:
            kwargs["tools"] = [
                {
                    "type": "function",
                    "function": {
                        "name": t.name,
                        "description": t.description,
                        "parameters": t.input_schema,
                    },
                }
                for t in request.tools
            ]
            kwargs["tool_choice"] = "auto"
        api_base = self.config.get_api_base(request.model_id)
        if api_base:
            kwargs["api_base"] = api_base
        return kwargs


# ════════════════════════════════════════════════════════════
# CONVERSION
# ════════════════════════════════════════════════════════════


def to_openai_messages(request: ModelRequest) -> list[dict[str, Any]]:
    """Convert a ModelRequest to OpenAI-format chat messages.

    Tool results become ``role="tool"`` messages, one per result.
    """
    out: list[dict[str, Any]] = []
    if request.system:
        out.append({"role": "system", "content": "\n\n".join(request.system)})
    for msg in request.messages:
        out.extend(_convert_message(msg))
    return out


def _convert_message(msg: Message) -> list[dict[str, Any]]:
    if msg.role == "assistant":
        entry: dict[str, Any] = {"role": "assistant", "content": msg.text or None}
        if msg.tool_uses:
            entry["tool_calls"] = [
                {
                    "id": tu.tool_use_id,
                    "type": "function",
                    "function": {"name": tu.name, "arguments": json.dumps(tu.input)},
                }
                for tu in msg.tool_uses
            ]
        return [entry]

    out: list[dict[str, Any]] = []
    for result in msg.tool_results:
        content = result.content
        if not isinstance(content, str):
            content = json.dumps(content, ensure_ascii=False)
        if result.status == "error":
            content = f"Error: {content}"
        out.append({"role": "tool", "tool_call_id": result.tool_use_id, "content": content})
    if msg.text:
        out.append({"role": "user", "content": msg.text})
    return out


def _to_model_response(response: Any) -> ModelResponse:
    """Convert litellm response → ModelResponse."""
    choice = response.choices[0]
    msg = choice.message

    content: list[TextPart | ToolUsePart | ToolResultPart] = []
    if msg.content:
        content.append(TextPart(text=msg.content))
    if getattr(msg, "tool_calls", None):
        for tc in msg.tool_calls:
            args = tc.function.arguments
            if isinstance(args, str):
                try:
                    args = json.loads(args) if args else {}
                except json.JSONDecodeError:
                    args = {"raw": args}
            content.append(ToolUsePart(tool_use_id=tc.id, name=tc.function.name, input=args))

    stop_reason = _FINISH_REASONS.get(choice.finish_reason or "stop", StopReason.END_TURN)
    if any(isinstance(p, ToolUsePart) for p in content):
        stop_reason = StopReason.TOOL_USE

    usage = getattr(response, "usage", None)
    return ModelResponse(
        content=content,
        stop_reason=stop_reason,
        usage=Usage(
            input_tokens=getattr(usage, "prompt_tokens", 0) or 0,
            output_tokens=getattr(usage, "completion_tokens", 0) or 0,
            cache_read_tokens=getattr(usage, "cache_read_input_tokens", 0) or 0,
            cache_write_tokens=getattr(usage, "cache_creation_input_tokens", 0) or 0,
        ),
    )


def _map_error(e: Exception) -> GatewayError:
    """Map a litellm exception onto the gateway error categories."""
    message = str(e)
    if isinstance(e, litellm.RateLimitError):
        return ThrottledError(message)
    if isinstance(
        e,
        (litellm.ServiceUnavailableError, litellm.InternalServerError, litellm.APIConnectionError),
    ):
        return ServiceUnavailableError(message)
    # ContextWindowExceededError subclasses BadRequestError; check it first
    if isinstance(e, litellm.ContextWindowExceededError):
        return ModelValidationError(message, token_limit=True)
    if isinstance(e, litellm.BadRequestError):
        return ModelValidationError(message)
    logger.error(f"LLM error: {e}")
    return GatewayError(message)


def _set_key(env_name: str, value: str) -> None:
    if value:
        os.environ.setdefault(env_name, value)
