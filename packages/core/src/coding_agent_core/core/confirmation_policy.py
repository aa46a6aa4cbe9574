"""
Decides whether a validated tool invocation needs the user's approval, and
remembers the "always allow" answers given during a session.
"""

import logging
from dataclasses import dataclass, field

from coding_agent_core.core.cancellation import CancelSignal
from coding_agent_core.core.types import ApprovalMode
from coding_agent_core.tools.base.tool_base import ToolInvocation
from coding_agent_core.tools.common import (
    ToolCallConfirmationDetails,
    ToolConfirmationOutcome,
    ToolMcpConfirmationDetails,
)

logger = logging.getLogger(__name__)


@dataclass
class ApprovalSession:
    """Per-session approval state. Lives as long as the interactive session."""

    approval_mode: ApprovalMode = ApprovalMode.DEFAULT
    allowed_commands: set[str] = field(default_factory=set)
    allowed_tools: set[str] = field(default_factory=set)
    allowed_servers: set[str] = field(default_factory=set)


def _mcp_tool_key(details: ToolMcpConfirmationDetails) -> str:
    return f"{details.server_name}.{details.tool_name}"


class ConfirmationPolicy:
    def __init__(self, session: ApprovalSession | None = None):
        self.session = session or ApprovalSession()

    def is_allowlisted(
        self, details: ToolCallConfirmationDetails, tool_name: str
    ) -> bool:
        session = self.session
        if tool_name in session.allowed_tools:
            return True
        if details.type == "edit":
            return session.approval_mode == ApprovalMode.AUTO_EDIT
        if details.type == "exec":
            roots = details.root_commands or [details.root_command]
            return all(root in session.allowed_commands for root in roots)
        if details.type == "mcp":
            return (
                details.server_name in session.allowed_servers
                or _mcp_tool_key(details) in session.allowed_tools
            )
        return False

    async def decide(
        self, invocation: ToolInvocation, signal: CancelSignal | None = None
    ) -> ToolCallConfirmationDetails | None:
        """
        Returns the confirmation payload to show the user, or None when the
        call may run without asking.
        """
        if self.session.approval_mode == ApprovalMode.YOLO:
            return None

        details = await invocation.should_confirm_execute(signal)
        if not details:
            return None

        if self.is_allowlisted(details, invocation.tool.name):
            logger.debug(
                f"'{invocation.tool.name}' approved by session allow-list"
            )
            return None
        return details

    def record(
        self,
        details: ToolCallConfirmationDetails,
        outcome: ToolConfirmationOutcome,
        tool_name: str,
    ) -> None:
        """Persists the allow-list change implied by an "always" answer."""
        session = self.session

        if outcome == ToolConfirmationOutcome.PROCEED_ALWAYS_SERVER:
            if details.type == "mcp":
                session.allowed_servers.add(details.server_name)
            else:
                session.allowed_tools.add(tool_name)
        elif outcome == ToolConfirmationOutcome.PROCEED_ALWAYS_TOOL:
            if details.type == "mcp":
                session.allowed_tools.add(_mcp_tool_key(details))
            else:
                session.allowed_tools.add(tool_name)
        elif outcome == ToolConfirmationOutcome.PROCEED_ALWAYS:
            if details.type == "exec":
                session.allowed_commands.update(
                    details.root_commands or [details.root_command]
                )
            elif details.type == "edit":
                session.approval_mode = ApprovalMode.AUTO_EDIT
            elif details.type == "mcp":
                session.allowed_tools.add(_mcp_tool_key(details))
            else:
                session.allowed_tools.add(tool_name)
        else:
            return

        logger.debug(f"Recorded {outcome.value} for '{tool_name}'")
