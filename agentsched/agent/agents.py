"""Agent definitions — system prompt, tool names and default model per agent id."""

from __future__ import annotations

from loguru import logger

from agentsched.core.config.schema import AgentDefinition, Config
from agentsched.core.errors import AgentNotFoundError

DEFAULT_AGENT_ID = "default"
DEFAULT_SYSTEM_PROMPT = (
    "You are a helpful assistant running as an autonomous agent. "
    "Use the available tools when they help complete the task, "
    "then answer concisely."
)

# Agent definitions share the config schema
AgentConfig = AgentDefinition


class AgentRegistry:
    """Lookup of agent definitions by id."""

    def __init__(self, agents: list[AgentConfig] | None = None):
        self._agents: dict[str, AgentConfig] = {}
        for agent in agents or []:
            self.register(agent)

    @classmethod
    def from_config(cls, config: Config) -> AgentRegistry:
        """Agents from ``config.agents``; a default agent when none are declared."""
        agents = list(config.agents)
        if not agents:
            agents.append(
                AgentConfig(
                    id=DEFAULT_AGENT_ID,
                    name="Default agent",
                    system_prompt=DEFAULT_SYSTEM_PROMPT,
                )
            )
        return cls(agents)

    def register(self, agent: AgentConfig) -> None:
        if agent.id in self._agents:
            logger.warning(f"Agent '{agent.id}' redefined")
        self._agents[agent.id] = agent

    def get(self, agent_id: str) -> AgentConfig:
        agent = self._agents.get(agent_id)
        if agent is None:
            raise AgentNotFoundError(f"Agent not found: {agent_id}")
        return agent

    def list(self) -> list[AgentConfig]:
        return list(self._agents.values())

    def __contains__(self, agent_id: str) -> bool:
        return agent_id in self._agents
