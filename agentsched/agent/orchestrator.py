"""ConversationOrchestrator — drives one agent run through the tool loop.

    seed → request → (tool_use → execute tools → request)* → final response

The loop is explicit: a round counter bounds tool rounds and ``RunState``
tracks where the run is. Only the seed message and the final assistant
message are written to the session; intermediate tool traffic lives in
memory for the duration of the run.
"""

from __future__ import annotations

import asyncio

from loguru import logger

from agentsched.agent.agents import AgentConfig, AgentRegistry
from agentsched.agent.tools.executor import ToolExecutor
from agentsched.agent.types import (
    Message,
    ModelRequest,
    ModelResponse,
    RunConfig,
    RunOptions,
    RunResult,
    RunState,
    StopReason,
    TextPart,
    ToolExecution,
    ToolResultPart,
    ToolSpec,
    ToolUsePart,
    Usage,
)
from agentsched.core.errors import RunTimeoutError
from agentsched.core.providers.resilience import ResilientGateway
from agentsched.memory.base import SessionMetadata, SessionStore

EMPTY_PLACEHOLDER = "[no content]"


# ════════════════════════════════════════════════════════════
# HISTORY SANITIZING
# ════════════════════════════════════════════════════════════


def sanitize_history(messages: list[Message]) -> list[Message]:
    """Return a copy of ``messages`` safe to resubmit to the model.

    A tool use is kept only if the next message carries its result, and a
    tool result only if the previous message carries its use. Messages left
    without content get a placeholder text part.
    """
    paired: list[set[str]] = []
    for i, msg in enumerate(messages):
        ids: set[str] = set()
        if msg.role == "assistant" and i + 1 < len(messages):
            nxt = messages[i + 1]
            if nxt.role == "user":
                used = {p.tool_use_id for p in msg.tool_uses}
                answered = {p.tool_use_id for p in nxt.tool_results}
                ids = used & answered
        paired.append(ids)

    cleaned: list[Message] = []
    for i, msg in enumerate(messages):
        keep_uses = paired[i]
        keep_results = paired[i - 1] if i > 0 else set()
        parts = [
            p
            for p in msg.content
            if not (isinstance(p, ToolUsePart) and p.tool_use_id not in keep_uses)
            and not (isinstance(p, ToolResultPart) and p.tool_use_id not in keep_results)
        ]
        dropped = len(msg.content) - len(parts)
        if dropped:
            logger.debug(f"Dropped {dropped} unpaired tool parts from message {msg.id}")
        if not parts:
            parts = [TextPart(text=EMPTY_PLACEHOLDER)]
        cleaned.append(msg.model_copy(update={"content": parts}, deep=True))
    return cleaned


# ════════════════════════════════════════════════════════════
# ORCHESTRATOR
# ════════════════════════════════════════════════════════════


class ConversationOrchestrator:
    """Runs agent conversations against a session store and the resilient gateway.

    Parameters
    ----------
    gateway : ResilientGateway
        Model calls, with retry / failover / shrink applied.
    sessions : SessionStore
        Where seed and final messages are persisted.
    tools : ToolExecutor
        Dispatches tool calls requested by the model.
    agents : AgentRegistry
        Agent definitions (system prompt, tools, default model).
    default_model : str
        Used when neither the run nor the agent names a model.
    """

    def __init__(
        self,
        gateway: ResilientGateway,
        sessions: SessionStore,
        tools: ToolExecutor,
        agents: AgentRegistry,
        default_model: str,
    ):
        self.gateway = gateway
        self.sessions = sessions
        self.tools = tools
        self.agents = agents
        self.default_model = default_model

    async def run(
        self,
        session_id: str,
        agent_config: RunConfig,
        seed_message: str | Message,
        options: RunOptions | None = None,
    ) -> RunResult:
        """Run one conversation turn to completion.

        Raises ``AgentNotFoundError`` for an unknown agent, ``RunTimeoutError``
        when ``options.timeout_s`` expires, and whatever the gateway raises
        once its retry policy is exhausted.
        """
        options = options or RunOptions()
        agent = self.agents.get(agent_config.agent_id)
        model_id = agent_config.model_id or agent.model or self.default_model

        tool_specs: list[ToolSpec] | None = None
        if options.enable_tool_execution and agent.tools:
            tool_specs = self.tools.specs(agent.tools)

        seed = Message.user(seed_message) if isinstance(seed_message, str) else seed_message
        if not self.sessions.has(session_id):
            self.sessions.create(
                session_id,
                SessionMetadata(
                    session_id=session_id,
                    task_id=agent_config.task_id,
                    agent_id=agent.id,
                    model_id=model_id,
                    project_directory=agent_config.project_directory,
                ),
            )
        self.sessions.append(session_id, seed)

        logger.info(
            f"Run started: session={session_id}, agent={agent.id}, model={model_id}, "
            f"tools={len(tool_specs or [])}"
        )
        try:
            result = await asyncio.wait_for(
                self._loop(session_id, agent, agent_config, model_id, tool_specs, options),
                timeout=options.timeout_s,
            )
        except asyncio.TimeoutError:
            logger.error(f"Run timed out after {options.timeout_s}s: session={session_id}")
            raise RunTimeoutError(
                f"Run exceeded {options.timeout_s}s timeout (session {session_id})"
            ) from None

        self.sessions.append(session_id, result.response)
        logger.info(
            f"Run finished: session={session_id}, state={result.state.value}, "
            f"iterations={result.iterations}, tool_executions={len(result.tool_executions)}"
        )
        return result

    async def _loop(
        self,
        session_id: str,
        agent: AgentConfig,
        run: RunConfig,
        model_id: str,
        tool_specs: list[ToolSpec] | None,
        options: RunOptions,
    ) -> RunResult:
        conversation = self.sessions.history(session_id)
        system = self._system_prompt(agent, run)
        executions: list[ToolExecution] = []
        usage = Usage()
        rounds = 0
        iterations = 0
        state = RunState.IDLE

        while True:
            request = ModelRequest(
                model_id=model_id,
                messages=sanitize_history(conversation),
                system=system,
                tools=tool_specs,
                inference=run.inference_config,
            )
            state = RunState.REQUEST_SENT
            response: ModelResponse = await self.gateway.send(request)
            iterations += 1
            usage = usage + response.usage
            assistant = response.to_message()

            wants_tools = response.stop_reason == StopReason.TOOL_USE and bool(assistant.tool_uses)
            if not wants_tools or not options.enable_tool_execution:
                state = RunState.DONE
                break
            if rounds >= options.max_tool_executions:
                logger.warning(
                    f"Tool round limit ({options.max_tool_executions}) reached, "
                    f"returning last response: session={session_id}"
                )
                state = RunState.TRUNCATED
                break

            state = RunState.AWAITING_TOOL_RESULTS
            results: list[ToolResultPart] = []
            for use in assistant.tool_uses:
                execution = await self._execute_tool(use)
                executions.append(execution)
                results.append(
                    ToolResultPart(
                        tool_use_id=use.tool_use_id,
                        content=execution.output if execution.success else execution.error,
                        status="success" if execution.success else "error",
                    )
                )
            conversation.append(assistant)
            conversation.append(Message(role="user", content=results))
            rounds += 1
            logger.debug(f"Tool round {rounds} done: {len(results)} results")

        return RunResult(
            response=assistant,
            tool_executions=executions,
            state=state,
            iterations=iterations,
            usage=usage,
        )

    async def _execute_tool(self, use: ToolUsePart) -> ToolExecution:
        """Run one tool call. Failures become error executions."""
        try:
            outcome = await self.tools.execute(use.name, use.input)
        except Exception as e:
            logger.error(f"Tool executor raised for {use.name}: {e}")
            return ToolExecution(
                tool_use_id=use.tool_use_id,
                tool_name=use.name,
                input=use.input,
                success=False,
                error=str(e),
            )
        return ToolExecution(
            tool_use_id=use.tool_use_id,
            tool_name=use.name,
            input=use.input,
            output=outcome.output,
            success=outcome.success,
            error=outcome.error,
        )

    @staticmethod
    def _system_prompt(agent: AgentConfig, run: RunConfig) -> list[str]:
        system = []
        prompt = run.system_prompt or agent.system_prompt
        if prompt:
            system.append(prompt)
        if run.project_directory:
            system.append(f"Project directory: {run.project_directory}")
        return system
