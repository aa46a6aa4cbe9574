"""
Conversion of tool results into the function-response parts sent back to
the model.
"""

from typing import Any

from coding_agent_core.core.tool_calls import (
    ToolCallRequestInfo,
    ToolCallResponseInfo,
)
from coding_agent_core.core.types import ToolErrorType
from coding_agent_core.utils.errors import get_error_message

SUCCESS_MESSAGE = "Tool execution succeeded."


def create_function_response_part(
    call_id: str, tool_name: str, output: str
) -> dict[str, Any]:
    return {
        "functionResponse": {
            "id": call_id,
            "name": tool_name,
            "response": {"output": output},
        }
    }


def convert_to_function_response(
    tool_name: str, call_id: str, llm_content: Any
) -> list[dict[str, Any]]:
    """
    Normalises whatever a tool returned into a list of parts whose first
    element is always a function response for `call_id`.

    Binary parts (``inlineData``/``fileData``) and multi-part results are
    kept after a short status message; a part that already is a function
    response is passed through.
    """
    content = llm_content
    if isinstance(content, list) and len(content) == 1:
        content = content[0]

    if isinstance(content, str):
        return [create_function_response_part(call_id, tool_name, content)]

    if isinstance(content, list):
        return [
            create_function_response_part(call_id, tool_name, SUCCESS_MESSAGE),
            *(
                {"text": part} if isinstance(part, str) else part
                for part in content
            ),
        ]

    if isinstance(content, dict):
        if "functionResponse" in content:
            return [content]

        binary = content.get("inlineData") or content.get("fileData")
        if binary is not None:
            mime_type = binary.get("mimeType") or "unknown"
            return [
                create_function_response_part(
                    call_id,
                    tool_name,
                    f"Binary content of type {mime_type} was processed.",
                ),
                content,
            ]

        if "text" in content:
            return [
                create_function_response_part(
                    call_id, tool_name, content["text"]
                )
            ]

    return [create_function_response_part(call_id, tool_name, SUCCESS_MESSAGE)]


def create_error_response(
    request: ToolCallRequestInfo,
    error: BaseException | str,
    error_type: ToolErrorType | None = None,
) -> ToolCallResponseInfo:
    """Creates a ToolCallResponseInfo for a failed call."""
    message = get_error_message(error)
    return ToolCallResponseInfo(
        call_id=request.call_id,
        error=message,
        error_type=error_type,
        response_parts=[
            {
                "functionResponse": {
                    "id": request.call_id,
                    "name": request.name,
                    "response": {"error": message},
                }
            }
        ],
        result_display=message,
    )
