import logging
from typing import TYPE_CHECKING, Any

from .tool_base import BaseTool

if TYPE_CHECKING:
    from coding_agent_core.config.config import Config

logger = logging.getLogger(__name__)


class ToolRegistry:
    """A central repository for managing all available tools."""

    def __init__(self, config: "Config | None" = None):
        self.config = config
        self._tools: dict[str, BaseTool] = {}

    def register_tool(self, tool: BaseTool):
        if tool.name in self._tools:
            logger.warning(
                f"Tool '{tool.name}' is already registered. Overwriting."
            )
        self._tools[tool.name] = tool

    def get_function_declarations(self) -> list[dict[str, Any]]:
        return [tool.schema for tool in self._tools.values()]

    def get_all_tools(self) -> list[BaseTool]:
        return list(self._tools.values())

    def get_tool(self, name: str) -> BaseTool | None:
        return self._tools.get(name)
