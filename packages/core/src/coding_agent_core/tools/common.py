"""
Common data models and enums for the tool system: confirmation outcomes and
the payloads a tool hands to the user before it is allowed to run.
"""

from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Literal, Union

from pydantic import BaseModel, Field


class ToolConfirmationOutcome(str, Enum):
    """Defines the possible outcomes of a user confirmation for a tool call."""

    PROCEED_ONCE = "proceed_once"
    PROCEED_ALWAYS = "proceed_always"
    PROCEED_ALWAYS_SERVER = "proceed_always_server"
    PROCEED_ALWAYS_TOOL = "proceed_always_tool"
    MODIFY_WITH_EDITOR = "modify_with_editor"
    CANCEL = "cancel"


class ToolConfirmationPayload(BaseModel):
    """Content the user edited inline while confirming."""

    new_content: str


OnConfirm = Callable[
    [ToolConfirmationOutcome, ToolConfirmationPayload | None], Awaitable[None]
]


class _ConfirmationDetailsBase(BaseModel):
    title: str
    # Set by tools that need to react to the decision; the scheduler
    # replaces it with a continuation that routes back into the batch.
    on_confirm: Callable[..., Awaitable[None]] | None = Field(
        default=None, exclude=True, repr=False
    )


class ToolEditConfirmationDetails(_ConfirmationDetailsBase):
    """Confirmation details for 'edit' or 'write' type tools."""

    type: Literal["edit"] = "edit"
    file_name: str
    file_path: str
    file_diff: str
    original_content: str | None = None
    new_content: str
    is_modifying: bool = False


class ToolExecuteConfirmationDetails(_ConfirmationDetailsBase):
    """Confirmation details for 'execute command' type tools."""

    type: Literal["exec"] = "exec"
    command: str
    root_command: str
    root_commands: list[str] = Field(default_factory=list)


class ToolMcpConfirmationDetails(_ConfirmationDetailsBase):
    """Confirmation details for tools served by an MCP server."""

    type: Literal["mcp"] = "mcp"
    server_name: str
    tool_name: str
    tool_display_name: str


class ToolInfoConfirmationDetails(_ConfirmationDetailsBase):
    """Confirmation details for displaying general information."""

    type: Literal["info"] = "info"
    prompt: str
    urls: list[str] | None = None


ToolCallConfirmationDetails = Union[
    ToolEditConfirmationDetails,
    ToolExecuteConfirmationDetails,
    ToolMcpConfirmationDetails,
    ToolInfoConfirmationDetails,
]
