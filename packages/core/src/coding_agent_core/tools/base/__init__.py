from .registry import ToolRegistry
from .tool_base import (
    BaseTool,
    FileDiff,
    ToolError,
    ToolInvocation,
    ToolResult,
    ToolResultDisplay,
)

__all__ = [
    "BaseTool",
    "FileDiff",
    "ToolError",
    "ToolInvocation",
    "ToolRegistry",
    "ToolResult",
    "ToolResultDisplay",
]
