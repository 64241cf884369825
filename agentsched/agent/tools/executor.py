"""Tool execution — dispatch a named tool call and report the outcome as data."""

from __future__ import annotations

import abc
import asyncio
from typing import TYPE_CHECKING, Any

from langchain_core.utils.function_calling import convert_to_openai_tool
from loguru import logger
from pydantic import BaseModel, ValidationError

from agentsched.agent.types import ToolOutcome, ToolSpec

if TYPE_CHECKING:
    from agentsched.agent.tools.registry import ToolRegistry


class ToolExecutor(abc.ABC):
    """Runs tools on behalf of the orchestrator. ``execute`` never raises."""

    @abc.abstractmethod
    async def execute(self, tool_name: str, tool_input: dict[str, Any]) -> ToolOutcome:
        ...

    @abc.abstractmethod
    def specs(self, names: list[str]) -> list[ToolSpec]:
        """Schemas for ``names``; unknown names get a basic empty-object schema."""
        ...


def basic_spec(name: str) -> ToolSpec:
    return ToolSpec(name=name, description=f"Tool: {name}")


class LocalToolExecutor(ToolExecutor):
    """In-process executor over a ToolRegistry of LangChain tools.

    Input is validated against the tool's ``args_schema`` before dispatch,
    and every call is bounded by ``timeout_s``.
    """

    def __init__(self, registry: ToolRegistry, timeout_s: float = 30.0):
        self.registry = registry
        self.timeout_s = timeout_s

    def specs(self, names: list[str]) -> list[ToolSpec]:
        result = []
        for name in self.registry.resolve(names):
            tool = self.registry.get(name)
            if tool is None:
                logger.warning(f"Tool '{name}' not found in registry, using basic schema")
                result.append(basic_spec(name))
                continue
            fn = convert_to_openai_tool(tool)["function"]
            result.append(
                ToolSpec(
                    name=fn["name"],
                    description=fn.get("description", ""),
                    input_schema=fn.get("parameters") or basic_spec(name).input_schema,
                )
            )
        return result

    async def execute(self, tool_name: str, tool_input: dict[str, Any]) -> ToolOutcome:
        tool = self.registry.get(tool_name)
        if tool is None:
            logger.warning(f"Unknown tool requested: {tool_name}")
            return ToolOutcome(success=False, error=f"Unknown tool: {tool_name}")

        schema = tool.args_schema
        if isinstance(schema, type) and issubclass(schema, BaseModel):
            try:
                schema.model_validate(tool_input)
            except ValidationError as e:
                logger.warning(f"Invalid input for {tool_name}: {e.error_count()} errors")
                return ToolOutcome(success=False, error=f"Invalid input for {tool_name}: {e}")

        logger.debug(f"Tool call: {tool_name}({tool_input})")
        try:
            output = await asyncio.wait_for(tool.ainvoke(tool_input), timeout=self.timeout_s)
        except asyncio.TimeoutError:
            logger.error(f"Tool {tool_name} timed out after {self.timeout_s}s")
            return ToolOutcome(success=False, error=f"Tool {tool_name} timed out after {self.timeout_s}s")
        except Exception as e:
            logger.error(f"Tool {tool_name} failed: {e}")
            return ToolOutcome(success=False, error=str(e))

        return ToolOutcome(success=True, output=_jsonable(output))


def _jsonable(value: Any) -> Any:
    if value is None or isinstance(value, (str, int, float, bool, list, dict)):
        return value
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    return str(value)
