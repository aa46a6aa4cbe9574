from .cancellation import CancelSignal
from .types import (
    AgentCoreError,
    ApprovalMode,
    ToolErrorType,
    ToolExecutionError,
    ToolParamsError,
)

__all__ = [
    "AgentCoreError",
    "ApprovalMode",
    "CancelSignal",
    "ToolErrorType",
    "ToolExecutionError",
    "ToolParamsError",
]
