"""Conversation data model — messages, content parts, model request/response."""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field


# ════════════════════════════════════════════════════════════
# CONTENT PARTS (tagged union on ``type``)
# ════════════════════════════════════════════════════════════


class TextPart(BaseModel):
    type: Literal["text"] = "text"
    text: str


class ToolUsePart(BaseModel):
    """Model asks to run a tool. ``tool_use_id`` is issued by the provider."""

    type: Literal["tool_use"] = "tool_use"
    tool_use_id: str
    name: str
    input: dict[str, Any] = Field(default_factory=dict)


class ToolResultPart(BaseModel):
    """Result fed back to the model, correlated by ``tool_use_id``.

    ``content`` is either plain text or JSON-like structured data.
    """

    type: Literal["tool_result"] = "tool_result"
    tool_use_id: str
    content: Any = None
    status: Literal["success", "error"] = "success"


ContentPart = Annotated[
    TextPart | ToolUsePart | ToolResultPart, Field(discriminator="type")
]


class Message(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    role: Literal["user", "assistant"]
    content: list[ContentPart] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=datetime.now)

    @classmethod
    def user(cls, text: str) -> Message:
        return cls(role="user", content=[TextPart(text=text)])

    @property
    def text(self) -> str:
        """Concatenated text parts."""
        return " ".join(p.text for p in self.content if isinstance(p, TextPart))

    @property
    def tool_uses(self) -> list[ToolUsePart]:
        return [p for p in self.content if isinstance(p, ToolUsePart)]

    @property
    def tool_results(self) -> list[ToolResultPart]:
        return [p for p in self.content if isinstance(p, ToolResultPart)]


# ════════════════════════════════════════════════════════════
# MODEL REQUEST / RESPONSE
# ════════════════════════════════════════════════════════════


class StopReason(str, Enum):
    END_TURN = "end_turn"
    TOOL_USE = "tool_use"
    MAX_TOKENS = "max_tokens"
    STOP_SEQUENCE = "stop_sequence"


class InferenceConfig(BaseModel):
    max_tokens: int | None = None
    temperature: float | None = None
    top_p: float | None = None
    stop_sequences: list[str] | None = None


class ToolSpec(BaseModel):
    """Tool schema advertised to the model."""

    name: str
    description: str = ""
    input_schema: dict[str, Any] = Field(
        default_factory=lambda: {"type": "object", "properties": {}, "required": []}
    )


class ModelRequest(BaseModel):
    model_id: str
    messages: list[Message]
    system: list[str] = Field(default_factory=list)
    tools: list[ToolSpec] | None = None
    inference: InferenceConfig | None = None


class Usage(BaseModel):
    input_tokens: int = 0
    output_tokens: int = 0
    cache_read_tokens: int = 0
    cache_write_tokens: int = 0

    def __add__(self, other: Usage) -> Usage:
        return Usage(
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
            cache_read_tokens=self.cache_read_tokens + other.cache_read_tokens,
            cache_write_tokens=self.cache_write_tokens + other.cache_write_tokens,
        )


class ModelResponse(BaseModel):
    content: list[ContentPart] = Field(default_factory=list)
    stop_reason: StopReason = StopReason.END_TURN
    usage: Usage = Field(default_factory=Usage)

    def to_message(self) -> Message:
        return Message(role="assistant", content=list(self.content))


# ════════════════════════════════════════════════════════════
# TOOLS + RUNS
# ════════════════════════════════════════════════════════════


class ToolOutcome(BaseModel):
    """What a ToolExecutor returns. Failures are data, never exceptions."""

    success: bool
    output: Any = None
    error: str | None = None


class ToolExecution(BaseModel):
    tool_use_id: str
    tool_name: str
    input: dict[str, Any] = Field(default_factory=dict)
    output: Any = None
    success: bool
    error: str | None = None


class RunState(str, Enum):
    IDLE = "idle"
    REQUEST_SENT = "request_sent"
    AWAITING_TOOL_RESULTS = "awaiting_tool_results"
    DONE = "done"
    FAILED = "failed"
    TRUNCATED = "truncated"


class RunConfig(BaseModel):
    """Which agent/model a run targets."""

    agent_id: str
    model_id: str | None = None
    system_prompt: str | None = None  # overrides the agent's prompt
    project_directory: str | None = None
    task_id: str | None = None
    inference_config: InferenceConfig | None = None


class RunOptions(BaseModel):
    enable_tool_execution: bool = True
    max_tool_executions: int = 5
    timeout_s: float = 3000.0


class RunResult(BaseModel):
    response: Message
    tool_executions: list[ToolExecution] = Field(default_factory=list)
    state: RunState = RunState.DONE
    iterations: int = 0
    usage: Usage = Field(default_factory=Usage)
