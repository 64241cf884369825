"""Tests for agentsched.agent.orchestrator — the tool loop."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from agentsched.agent.agents import AgentConfig, AgentRegistry
from agentsched.agent.orchestrator import (
    EMPTY_PLACEHOLDER,
    ConversationOrchestrator,
    sanitize_history,
)
from agentsched.agent.tools.executor import ToolExecutor, basic_spec
from agentsched.agent.types import (
    Message,
    ModelResponse,
    RunConfig,
    RunOptions,
    RunState,
    StopReason,
    TextPart,
    ToolOutcome,
    ToolResultPart,
    ToolUsePart,
    Usage,
)
from agentsched.core.config.schema import ResilienceConfig
from agentsched.core.errors import AgentNotFoundError, RunTimeoutError
from agentsched.core.providers.base import ModelGateway
from agentsched.core.providers.resilience import ResilientGateway
from agentsched.memory.inmemory import InMemorySessionStore


class ScriptedGateway(ModelGateway):
    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []

    async def invoke(self, request, region=None):
        self.requests.append(request)
        return self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]


class SlowGateway(ModelGateway):
    async def invoke(self, request, region=None):
        await asyncio.sleep(10)
        return _text("too late")


class RecordingExecutor(ToolExecutor):
    def __init__(self, fail: set[str] | None = None, raise_on: set[str] | None = None):
        self.calls: list[tuple[str, dict]] = []
        self.fail = fail or set()
        self.raise_on = raise_on or set()

    async def execute(self, tool_name, tool_input):
        self.calls.append((tool_name, tool_input))
        if tool_name in self.raise_on:
            raise RuntimeError("executor crashed")
        if tool_name in self.fail:
            return ToolOutcome(success=False, error=f"{tool_name} failed")
        return ToolOutcome(success=True, output={"tool": tool_name, "echo": tool_input})

    def specs(self, names):
        return [basic_spec(n) for n in names]


def _text(text: str, input_tokens: int = 0) -> ModelResponse:
    return ModelResponse(
        content=[TextPart(text=text)],
        stop_reason=StopReason.END_TURN,
        usage=Usage(input_tokens=input_tokens, output_tokens=1),
    )


def _tool_use(*calls: tuple[str, str]) -> ModelResponse:
    return ModelResponse(
        content=[TextPart(text="working")]
        + [ToolUsePart(tool_use_id=tid, name=name, input={"n": tid}) for tid, name in calls],
        stop_reason=StopReason.TOOL_USE,
        usage=Usage(input_tokens=10, output_tokens=2),
    )


def _orchestrator(gateway, executor=None, sessions=None, agents=None):
    resilient = ResilientGateway(gateway, ResilienceConfig(), sleep=AsyncMock())
    return ConversationOrchestrator(
        gateway=resilient,
        sessions=sessions or InMemorySessionStore(),
        tools=executor or RecordingExecutor(),
        agents=agents
        or AgentRegistry([
            AgentConfig(id="helper", system_prompt="You help.", tools=["search", "fetch"]),
            AgentConfig(id="plain", system_prompt="No tools.", model="openai/gpt-4o-mini"),
        ]),
        default_model="bedrock/default-model",
    )


RUN = RunConfig(agent_id="helper")


# ── Happy paths ─────────────────────────────────────────────


@pytest.mark.asyncio
async def test_plain_answer_persists_seed_and_final():
    gateway = ScriptedGateway(_text("pong"))
    orch = _orchestrator(gateway)

    result = await orch.run("s1", RUN, "ping")

    assert result.state == RunState.DONE
    assert result.response.text == "pong"
    assert result.iterations == 1
    assert result.tool_executions == []
    history = orch.sessions.history("s1")
    assert [(m.role, m.text) for m in history] == [("user", "ping"), ("assistant", "pong")]


@pytest.mark.asyncio
async def test_two_tool_rounds():
    gateway = ScriptedGateway(
        _tool_use(("tu1", "search")),
        _tool_use(("tu2", "fetch")),
        _text("final answer"),
    )
    executor = RecordingExecutor()
    orch = _orchestrator(gateway, executor)

    result = await orch.run("s1", RUN, "research this")

    assert result.state == RunState.DONE
    assert len(result.tool_executions) == 2
    assert [e.tool_name for e in result.tool_executions] == ["search", "fetch"]
    assert executor.calls == [("search", {"n": "tu1"}), ("fetch", {"n": "tu2"})]
    assert result.iterations == 3

    # Third request carries the full in-memory tool exchange
    last = gateway.requests[2]
    assert len(last.messages) == 5
    assert last.messages[2].tool_results[0].tool_use_id == "tu1"
    assert last.messages[4].tool_results[0].content == {"tool": "fetch", "echo": {"n": "tu2"}}

    # Only seed + final are persisted
    assert [m.text for m in orch.sessions.history("s1")] == ["research this", "final answer"]


@pytest.mark.asyncio
async def test_request_carries_system_prompt_tools_and_model():
    gateway = ScriptedGateway(_text("ok"))
    orch = _orchestrator(gateway)

    await orch.run("s1", RunConfig(agent_id="helper", project_directory="/work/repo"), "hi")

    request = gateway.requests[0]
    assert request.model_id == "bedrock/default-model"
    assert request.system == ["You help.", "Project directory: /work/repo"]
    assert [t.name for t in request.tools] == ["search", "fetch"]


@pytest.mark.asyncio
async def test_model_resolution_order():
    gateway = ScriptedGateway(_text("ok"))
    orch = _orchestrator(gateway)

    await orch.run("a", RunConfig(agent_id="plain"), "hi")
    await orch.run("b", RunConfig(agent_id="plain", model_id="override/model"), "hi")

    assert gateway.requests[0].model_id == "openai/gpt-4o-mini"
    assert gateway.requests[1].model_id == "override/model"
    assert gateway.requests[0].tools is None


@pytest.mark.asyncio
async def test_usage_is_summed():
    gateway = ScriptedGateway(_tool_use(("tu1", "search")), _text("done", input_tokens=5))
    orch = _orchestrator(gateway)

    result = await orch.run("s1", RUN, "go")

    assert result.usage.input_tokens == 15
    assert result.usage.output_tokens == 3


# ── Tool failures ───────────────────────────────────────────


@pytest.mark.asyncio
async def test_tool_failure_becomes_error_result():
    gateway = ScriptedGateway(
        _tool_use(("tu1", "search"), ("tu2", "fetch"), ("tu3", "search")),
        _text("handled"),
    )
    orch = _orchestrator(gateway, RecordingExecutor(fail={"fetch"}))

    result = await orch.run("s1", RUN, "go")

    assert result.state == RunState.DONE
    results = gateway.requests[1].messages[-1].tool_results
    assert [r.tool_use_id for r in results] == ["tu1", "tu2", "tu3"]
    assert [r.status for r in results] == ["success", "error", "success"]
    assert results[1].content == "fetch failed"
    assert [e.success for e in result.tool_executions] == [True, False, True]


@pytest.mark.asyncio
async def test_executor_exception_is_contained():
    gateway = ScriptedGateway(_tool_use(("tu1", "search"), ("tu2", "fetch")), _text("ok"))
    orch = _orchestrator(gateway, RecordingExecutor(raise_on={"search"}))

    result = await orch.run("s1", RUN, "go")

    assert result.state == RunState.DONE
    first, second = result.tool_executions
    assert not first.success and first.error == "executor crashed"
    assert second.success


# ── Termination ─────────────────────────────────────────────


@pytest.mark.asyncio
async def test_always_tool_use_truncates_after_max_rounds():
    gateway = ScriptedGateway(_tool_use(("tu", "search")))
    orch = _orchestrator(gateway)

    result = await orch.run("s1", RUN, "loop forever", RunOptions(max_tool_executions=3))

    assert result.state == RunState.TRUNCATED
    assert len(result.tool_executions) == 3
    assert len(gateway.requests) == 4
    assert result.response.tool_uses  # last response returned as-is


@pytest.mark.asyncio
async def test_tool_execution_disabled():
    gateway = ScriptedGateway(_tool_use(("tu1", "search")))
    executor = RecordingExecutor()
    orch = _orchestrator(gateway, executor)

    result = await orch.run("s1", RUN, "go", RunOptions(enable_tool_execution=False))

    assert result.state == RunState.DONE
    assert executor.calls == []
    assert gateway.requests[0].tools is None


@pytest.mark.asyncio
async def test_timeout_raises_and_keeps_only_seed():
    orch = _orchestrator(SlowGateway())

    with pytest.raises(RunTimeoutError):
        await orch.run("s1", RUN, "hurry", RunOptions(timeout_s=0.05))

    assert [m.text for m in orch.sessions.history("s1")] == ["hurry"]


@pytest.mark.asyncio
async def test_unknown_agent():
    orch = _orchestrator(ScriptedGateway(_text("x")))

    with pytest.raises(AgentNotFoundError):
        await orch.run("s1", RunConfig(agent_id="ghost"), "hi")

    assert not orch.sessions.has("s1")


@pytest.mark.asyncio
async def test_session_metadata_recorded_on_create():
    orch = _orchestrator(ScriptedGateway(_text("ok")))

    await orch.run("s1", RunConfig(agent_id="helper", task_id="t1", project_directory="/p"), "hi")

    meta = orch.sessions.get_metadata("s1")
    assert meta.agent_id == "helper"
    assert meta.task_id == "t1"
    assert meta.project_directory == "/p"
    assert meta.model_id == "bedrock/default-model"


# ── History sanitizing ──────────────────────────────────────


def test_sanitize_strips_orphan_tool_use():
    history = [
        Message.user("go"),
        Message(role="assistant", content=[
            TextPart(text="let me check"),
            ToolUsePart(tool_use_id="orphan", name="search"),
        ]),
    ]
    cleaned = sanitize_history(history)
    assert cleaned[1].tool_uses == []
    assert cleaned[1].text == "let me check"
    assert history[1].tool_uses  # input untouched


def test_sanitize_keeps_paired_and_drops_unmatched_results():
    history = [
        Message.user("go"),
        Message(role="assistant", content=[
            ToolUsePart(tool_use_id="a", name="search"),
            ToolUsePart(tool_use_id="b", name="fetch"),
        ]),
        Message(role="user", content=[
            ToolResultPart(tool_use_id="a", content="ok"),
            ToolResultPart(tool_use_id="zzz", content="stray"),
        ]),
    ]
    cleaned = sanitize_history(history)
    assert [u.tool_use_id for u in cleaned[1].tool_uses] == ["a"]
    assert [r.tool_use_id for r in cleaned[2].tool_results] == ["a"]


def test_sanitize_gives_empty_message_a_placeholder():
    history = [
        Message.user("go"),
        Message(role="assistant", content=[ToolUsePart(tool_use_id="x", name="search")]),
        Message.user("again"),
    ]
    cleaned = sanitize_history(history)
    assert cleaned[1].content == [TextPart(text=EMPTY_PLACEHOLDER)]


@pytest.mark.asyncio
async def test_continuation_after_truncation_resubmits_clean_history():
    gateway = ScriptedGateway(_tool_use(("tu", "search")))
    sessions = InMemorySessionStore()
    orch = _orchestrator(gateway, sessions=sessions)
    await orch.run("s1", RUN, "first", RunOptions(max_tool_executions=0))

    gateway.responses = [_text("second answer")]
    gateway.requests.clear()
    result = await orch.run("s1", RUN, "second")

    assert result.response.text == "second answer"
    sent = gateway.requests[0].messages
    assert all(not m.tool_uses for m in sent)
    assert [m.role for m in sent] == ["user", "assistant", "user"]
    assert len(sessions.history("s1")) == 4
