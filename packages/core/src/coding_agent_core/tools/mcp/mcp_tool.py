"""
Adapter exposing a tool served by an MCP (Model Context Protocol) server
through the local tool interface.

A caller that holds an initialized `ClientSession` registers the server's
tools with `register_session_tools(session, server_name, registry)`.
"""

import json
import logging
import re
from datetime import timedelta
from typing import Any

from mcp import ClientSession, types
from pydantic import BaseModel, ConfigDict

from coding_agent_core.core.cancellation import CancelSignal
from coding_agent_core.tools.base.registry import ToolRegistry
from coding_agent_core.tools.base.tool_base import (
    BaseTool,
    OutputUpdateCallback,
    ToolError,
    ToolResult,
)
from coding_agent_core.tools.common import ToolMcpConfirmationDetails

logger = logging.getLogger(__name__)


class DiscoveredMCPToolParams(BaseModel):
    # Arguments are validated by the server against its own schema.
    model_config = ConfigDict(extra="allow")


def _content_to_part(block: Any) -> dict[str, Any] | None:
    if isinstance(block, types.TextContent):
        return {"text": block.text}
    if isinstance(block, (types.ImageContent, types.AudioContent)):
        return {"inlineData": {"mimeType": block.mimeType, "data": block.data}}
    if isinstance(block, types.EmbeddedResource):
        resource = block.resource
        if isinstance(resource, types.TextResourceContents):
            return {"text": resource.text}
        if isinstance(resource, types.BlobResourceContents):
            return {
                "inlineData": {
                    "mimeType": resource.mimeType or "application/octet-stream",
                    "data": resource.blob,
                }
            }
    if isinstance(block, types.ResourceLink):
        return {"text": f"Resource Link: {block.title or block.name} at {block.uri}"}
    logger.debug(f"Ignoring unsupported MCP content block: {type(block).__name__}")
    return None


def _display_for(parts: list[dict[str, Any]]) -> str:
    lines = []
    for part in parts:
        if "text" in part:
            lines.append(part["text"])
        else:
            lines.append(f"[{part['inlineData']['mimeType']}]")
    return "\n".join(lines)


class DiscoveredMCPTool(BaseTool[DiscoveredMCPToolParams, ToolResult]):
    """
    A remote tool discovered on an MCP server. Calls are confirmed per server
    or per tool unless the server is trusted.
    """

    params_model = DiscoveredMCPToolParams

    def __init__(
        self,
        mcp_session: ClientSession,
        server_name: str,
        name: str,
        description: str,
        parameter_schema: dict[str, Any],
        server_tool_name: str,
        timeout: float | None = None,
        trust: bool = False,
    ):
        super().__init__(
            name=name,
            display_name=f"{server_tool_name} ({server_name} MCP Server)",
            description=description,
            parameter_schema=parameter_schema,
            is_output_markdown=True,
            can_update_output=False,
        )
        self.mcp_session = mcp_session
        self.server_name = server_name
        self.server_tool_name = server_tool_name
        self.timeout = timeout
        self.trust = trust

    def get_description(self, params: DiscoveredMCPToolParams) -> str:
        return json.dumps(params.model_dump())

    async def should_confirm_execute(
        self,
        params: DiscoveredMCPToolParams,
        abort_signal: CancelSignal | None = None,
    ) -> ToolMcpConfirmationDetails | bool:
        if self.trust:
            return False
        return ToolMcpConfirmationDetails(
            title="Confirm MCP Tool Execution",
            server_name=self.server_name,
            tool_name=self.server_tool_name,
            tool_display_name=self.name,
        )

    async def execute(
        self,
        params: DiscoveredMCPToolParams,
        signal: CancelSignal | None = None,
        update_output: OutputUpdateCallback | None = None,
    ) -> ToolResult:
        result = await self.mcp_session.call_tool(
            self.server_tool_name,
            arguments=params.model_dump(),
            read_timeout_seconds=(
                timedelta(seconds=self.timeout) if self.timeout else None
            ),
        )

        parts = [
            part
            for part in (_content_to_part(block) for block in result.content)
            if part is not None
        ]
        display = _display_for(parts)

        if result.isError:
            message = (
                f"MCP tool '{self.server_tool_name}' reported an error: "
                f"{display or 'no details'}"
            )
            return ToolResult(
                llm_content=message,
                return_display=message,
                error=ToolError(message=message),
            )

        return ToolResult(
            llm_content=parts or "Tool returned no content.",
            return_display=display or "```json\n[]\n```",
        )


def _sanitize_parameters(schema: dict[str, Any] | None) -> None:
    if not schema:
        return
    if "anyOf" in schema:
        schema.pop("default", None)
        for item in schema["anyOf"]:
            _sanitize_parameters(item)
    if "items" in schema:
        _sanitize_parameters(schema["items"])
    if "properties" in schema:
        for item in schema["properties"].values():
            _sanitize_parameters(item)


def _name_for_model(
    tool_name: str, server_name: str, tool_registry: ToolRegistry
) -> str:
    name = re.sub(r"[^a-zA-Z0-9_.-]", "_", tool_name)
    if tool_registry.get_tool(name):
        name = f"{server_name}__{name}"
    if len(name) > 63:
        name = name[:28] + "___" + name[-32:]
    return name


async def register_session_tools(
    mcp_session: ClientSession,
    server_name: str,
    tool_registry: ToolRegistry,
    timeout: float | None = None,
    trust: bool = False,
) -> list[DiscoveredMCPTool]:
    """
    Lists the tools of an initialized MCP session and registers each one.
    Names that clash with an already registered tool are prefixed with the
    server name.
    """
    tools_response = await mcp_session.list_tools()
    registered = []
    for tool_def in tools_response.tools:
        parameter_schema = dict(
            tool_def.inputSchema or {"type": "object", "properties": {}}
        )
        _sanitize_parameters(parameter_schema)

        tool = DiscoveredMCPTool(
            mcp_session,
            server_name=server_name,
            name=_name_for_model(tool_def.name, server_name, tool_registry),
            description=tool_def.description or "",
            parameter_schema=parameter_schema,
            server_tool_name=tool_def.name,
            timeout=timeout,
            trust=trust,
        )
        tool_registry.register_tool(tool)
        registered.append(tool)

    logger.debug(
        f"Registered {len(registered)} tool(s) from MCP server '{server_name}'"
    )
    return registered
