from enum import Enum
from typing import Any


class ApprovalMode(str, Enum):
    """How much the session trusts tool calls without asking the user."""

    DEFAULT = "default"
    AUTO_EDIT = "autoEdit"
    YOLO = "yolo"


class ToolErrorType(str, Enum):
    """Classification attached to errored tool calls."""

    INVALID_TOOL_PARAMS = "invalid_tool_params"
    EXECUTION_FAILED = "execution_failed"
    ABORTED = "aborted"


# Status tags of the per-state tool call models that end a call's lifecycle.
TERMINAL_STATUSES = frozenset({"success", "error", "cancelled"})


# Error Types
class AgentCoreError(Exception):
    """Base class for errors raised by the agent core."""

    def __init__(
        self,
        message: str,
        error_type: str = "unknown",
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.error_type = error_type
        self.details = details or {}


class ToolParamsError(AgentCoreError):
    """Raised when tool arguments fail schema or semantic validation."""

    def __init__(self, message: str, tool_name: str):
        super().__init__(message, ToolErrorType.INVALID_TOOL_PARAMS.value)
        self.tool_name = tool_name


class ToolExecutionError(AgentCoreError):
    """Raised by tools that want a specific error classification."""

    def __init__(
        self,
        message: str,
        tool_name: str,
        error_type: ToolErrorType = ToolErrorType.EXECUTION_FAILED,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, error_type.value, details)
        self.tool_name = tool_name
        self.tool_error_type = error_type
