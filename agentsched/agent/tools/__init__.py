"""Tool system — ToolRegistry and the executors that dispatch from it."""

from agentsched.agent.tools.executor import LocalToolExecutor, ToolExecutor
from agentsched.agent.tools.registry import ToolInfo, ToolRegistry

__all__ = ["ToolRegistry", "ToolInfo", "ToolExecutor", "LocalToolExecutor"]
