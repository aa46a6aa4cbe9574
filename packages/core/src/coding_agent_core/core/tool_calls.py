from typing import Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

from coding_agent_core.core.types import TERMINAL_STATUSES, ToolErrorType
from coding_agent_core.tools.base.tool_base import FileDiff, ToolResultDisplay
from coding_agent_core.tools.common import (
    ToolCallConfirmationDetails,
    ToolConfirmationOutcome,
)


class ToolCallRequestInfo(BaseModel):
    """A single tool invocation requested by the model or the user."""

    model_config = ConfigDict(frozen=True)

    call_id: str
    name: str
    args: dict[str, Any] = Field(default_factory=dict)
    is_client_initiated: bool = False
    prompt_id: str = ""


class ToolCallResponseInfo(BaseModel):
    """What a settled call hands back to the model and to the UI."""

    call_id: str
    response_parts: list[dict[str, Any]]
    result_display: ToolResultDisplay | None = None
    error: str | None = None
    error_type: ToolErrorType | None = None


class BaseToolCall(BaseModel):
    """Base model for a tool call, containing common fields."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    request: ToolCallRequestInfo
    # Tools and invocations are plain classes; the scheduler owns them.
    tool: Any = None
    start_time: float | None = None
    outcome: ToolConfirmationOutcome | None = None

    @property
    def call_id(self) -> str:
        return self.request.call_id


class ValidatingToolCall(BaseToolCall):
    """Status: validating. Arguments are being checked."""

    status: Literal["validating"] = "validating"


class ScheduledToolCall(BaseToolCall):
    """Status: scheduled. Validated and approved, waiting for its turn."""

    status: Literal["scheduled"] = "scheduled"
    invocation: Any


class WaitingToolCall(BaseToolCall):
    """Status: awaiting_approval. Waiting for user confirmation."""

    status: Literal["awaiting_approval"] = "awaiting_approval"
    invocation: Any
    confirmation_details: ToolCallConfirmationDetails


class ExecutingToolCall(BaseToolCall):
    """Status: executing. The tool is running."""

    status: Literal["executing"] = "executing"
    invocation: Any
    live_output: str | None = None
    signal: Any = Field(default=None, exclude=True, repr=False)


class SuccessfulToolCall(BaseToolCall):
    """Status: success. A terminal state."""

    status: Literal["success"] = "success"
    response: ToolCallResponseInfo
    duration_ms: float | None = None


class ErroredToolCall(BaseToolCall):
    """Status: error. A terminal state."""

    status: Literal["error"] = "error"
    response: ToolCallResponseInfo
    duration_ms: float | None = None


class CancelledToolCall(BaseToolCall):
    """Status: cancelled. A terminal state."""

    status: Literal["cancelled"] = "cancelled"
    response: ToolCallResponseInfo
    duration_ms: float | None = None


ToolCall = Union[
    ValidatingToolCall,
    ScheduledToolCall,
    WaitingToolCall,
    ExecutingToolCall,
    SuccessfulToolCall,
    ErroredToolCall,
    CancelledToolCall,
]

CompletedToolCall = Union[
    SuccessfulToolCall, ErroredToolCall, CancelledToolCall
]


def is_completed(call: ToolCall) -> bool:
    return call.status in TERMINAL_STATUSES


def get_display_payload(call: ToolCall) -> ToolResultDisplay | None:
    """The last diff or text a call showed the user, if any."""
    if isinstance(call, WaitingToolCall):
        details = call.confirmation_details
        if details.type == "edit":
            return FileDiff(
                file_diff=details.file_diff,
                file_name=details.file_name,
                original_content=details.original_content,
                new_content=details.new_content,
            )
        return None
    if isinstance(call, ExecutingToolCall):
        return call.live_output
    return None
