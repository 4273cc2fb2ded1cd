"""Tool registry for dynamic tool management."""

from typing import Any

from loguru import logger

from relaybot.agent.tools.base import Tool


class ToolRegistry:
    """
    Registry for agent tools.

    The set of tools is fixed when a run starts; the model can only reach a
    registered tool, and only with arguments that pass its schema.
    """

    def __init__(self):
        self._tools: dict[str, Tool] = {}

    def register(self, tool: Tool) -> None:
        """Register a tool."""
        if tool.name in self._tools:
            raise ValueError(f"Tool '{tool.name}' is already registered")
        self._tools[tool.name] = tool

    def get(self, name: str) -> Tool | None:
        """Get a tool by name."""
        return self._tools.get(name)

    def get_definitions(self) -> list[dict[str, Any]]:
        """Get all tool definitions in OpenAI format."""
        return [tool.to_schema() for tool in self._tools.values()]

    async def execute(self, name: str, params: dict[str, Any]) -> str:
        """
        Execute a tool by name with given parameters.

        Failures never propagate: they come back as "Error: ..." text so the
        model can read them and adjust its next call.
        """
        tool = self._tools.get(name)
        if not tool:
            return f"Error: Tool '{name}' not found. Available tools: {', '.join(self.tool_names)}"

        try:
            errors = tool.validate_params(params)
            if errors:
                return f"Error: Invalid parameters for tool '{name}': " + "; ".join(errors)
            return await tool.execute(**params)
        except Exception as e:
            logger.warning(f"Tool {name} failed: {e}")
            return f"Error executing {name}: {e}"

    @property
    def tool_names(self) -> list[str]:
        """Get list of registered tool names."""
        return list(self._tools.keys())

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: str) -> bool:
        return name in self._tools
