"""Engine factory — wires config, stores, gateway, orchestrator and scheduler."""

from __future__ import annotations

from dataclasses import dataclass

from loguru import logger

from agentsched.agent.agents import AgentRegistry
from agentsched.agent.orchestrator import ConversationOrchestrator
from agentsched.agent.tools import LocalToolExecutor, ToolRegistry
from agentsched.core.config.schema import Config
from agentsched.core.cron.scheduler import TaskScheduler
from agentsched.core.events import EventBus
from agentsched.core.providers.base import ModelGateway
from agentsched.core.providers.resilience import ResilientGateway
from agentsched.memory.base import SessionStore
from agentsched.memory.file_store import FileSessionStore
from agentsched.memory.inmemory import InMemorySessionStore
from agentsched.memory.kv import SQLiteKVStore


@dataclass
class Engine:
    config: Config
    kv: SQLiteKVStore
    sessions: SessionStore
    events: EventBus
    gateway: ResilientGateway
    tools: ToolRegistry
    agents: AgentRegistry
    orchestrator: ConversationOrchestrator
    scheduler: TaskScheduler


def build_engine(
    config: Config,
    model_gateway: ModelGateway | None = None,
    tools: ToolRegistry | None = None,
) -> Engine:
    """Build every component from ``config``.

    ``model_gateway`` defaults to the LiteLLM gateway; ``tools`` to an empty
    registry that callers populate with their own LangChain tools.
    """
    if model_gateway is None:
        from agentsched.core.providers.litellm import LiteLLMGateway

        model_gateway = LiteLLMGateway(config)

    kv = SQLiteKVStore(str(config.db_path))
    if config.sessions.backend == "memory":
        sessions: SessionStore = InMemorySessionStore()
    else:
        sessions = FileSessionStore(config.sessions_path, kv)

    events = EventBus()
    gateway = ResilientGateway(model_gateway, config.resilience, events=events)
    registry = tools if tools is not None else ToolRegistry()
    agents = AgentRegistry.from_config(config)
    orchestrator = ConversationOrchestrator(
        gateway=gateway,
        sessions=sessions,
        tools=LocalToolExecutor(registry, timeout_s=config.orchestrator.tool_timeout_s),
        agents=agents,
        default_model=config.model.default,
    )
    scheduler = TaskScheduler(orchestrator, sessions, kv, events=events, config=config)

    logger.debug(
        f"Engine built: sessions={config.sessions.backend}, agents={len(agents.list())}, "
        f"tools={len(registry)}"
    )
    return Engine(
        config=config,
        kv=kv,
        sessions=sessions,
        events=events,
        gateway=gateway,
        tools=registry,
        agents=agents,
        orchestrator=orchestrator,
        scheduler=scheduler,
    )
