"""
The tools sub-package provides the framework for defining and executing the
tools a model can call, plus the built-in tools themselves.

- `BaseTool`: The abstract base class that all tools inherit from.
- `ToolInvocation`: A tool bound to validated parameters.
- `ToolResult`: The standardized return type for all tool executions.
- `ToolRegistry`: Holds and provides access to all available tools.
"""

from .base.registry import ToolRegistry
from .base.tool_base import BaseTool, ToolInvocation, ToolResult

__all__ = [
    "BaseTool",
    "ToolInvocation",
    "ToolRegistry",
    "ToolResult",
]
