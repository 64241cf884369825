"""ToolRegistry — name → LangChain tool, grouped."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from langchain_core.tools import BaseTool
from loguru import logger


@dataclass
class ToolInfo:
    """Metadata for a registered tool."""

    tool: BaseTool
    group: str


class ToolRegistry:
    """Central tool registry — name → LangChain tool, grouped.

    Agents list tool names or group names; ``resolve`` expands groups into
    the tool names they contain.
    """

    def __init__(self) -> None:
        self._tools: dict[str, ToolInfo] = {}
        self._groups: dict[str, list[str]] = {}

    def register_group(self, group: str, tools: list[BaseTool]) -> None:
        """Register a list of tools under a group name, replacing the group."""
        self._groups[group] = []
        for t in tools:
            self._tools[t.name] = ToolInfo(tool=t, group=group)
            self._groups[group].append(t.name)
        logger.debug(f"Tool group registered: {group} ({len(tools)} tools)")

    def register(self, tool: BaseTool, group: str = "default") -> None:
        self._tools[tool.name] = ToolInfo(tool=tool, group=group)
        names = self._groups.setdefault(group, [])
        if tool.name not in names:
            names.append(tool.name)

    def get(self, name: str) -> BaseTool | None:
        info = self._tools.get(name)
        return info.tool if info else None

    def get_all_tools(self) -> list[BaseTool]:
        return [info.tool for info in self._tools.values()]

    def resolve(self, names: list[str]) -> list[str]:
        """Expand group names to tool names. Unknown names pass through unchanged."""
        resolved: list[str] = []
        for name in names:
            expanded = self._groups.get(name) if name not in self._tools else None
            for n in expanded or [name]:
                if n not in resolved:
                    resolved.append(n)
        return resolved

    def get_catalog(self) -> list[dict[str, Any]]:
        """Name, group and first description line of every tool."""
        result = []
        for name in sorted(self._tools):
            info = self._tools[name]
            result.append({
                "name": name,
                "group": info.group,
                "description": (info.tool.description or "").split("\n")[0],
            })
        return result

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: str) -> bool:
        return name in self._tools

