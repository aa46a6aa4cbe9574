from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

from coding_agent_core.config.config import Config
from coding_agent_core.core.cancellation import CancelSignal
from coding_agent_core.tools.base.tool_base import (
    BaseTool,
    OutputUpdateCallback,
    ToolError,
    ToolResult,
)
from coding_agent_core.utils.file_utils import (
    detect_file_type,
    read_inline_data,
    read_text_file,
    slice_text_lines,
)
from coding_agent_core.utils.paths import (
    is_within_root,
    make_relative,
    shorten_path,
)


class ReadFileToolParams(BaseModel):
    absolute_path: str = Field(
        ..., description="The absolute path to the file to read."
    )
    offset: int | None = Field(
        None,
        description="Optional: For text files, the 0-based line number to start reading from.",
    )
    limit: int | None = Field(
        None,
        description="Optional: For text files, maximum number of lines to read.",
    )


def _error_result(message: str) -> ToolResult:
    return ToolResult(
        llm_content=message,
        return_display=f"Error: {message}",
        error=ToolError(message=message),
    )


class ReadFileTool(BaseTool[ReadFileToolParams, ToolResult]):
    """Reads text files (optionally a line range) and images or PDFs as data."""

    NAME = "read_file"
    params_model = ReadFileToolParams

    def __init__(self, config: Config):
        super().__init__(
            name=self.NAME,
            display_name="ReadFile",
            description="Reads and returns the content of a specified file. Handles text, images and PDF files.",
            parameter_schema=ReadFileToolParams.model_json_schema(),
        )
        self.config = config
        self.root_directory = config.get_target_dir()

    def validate_tool_params(self, params: ReadFileToolParams) -> str | None:
        p = Path(params.absolute_path)
        if not p.is_absolute():
            return f"File path must be absolute: {params.absolute_path}"
        if not is_within_root(p, self.root_directory):
            return f"File path must be within the root directory ({self.root_directory}): {params.absolute_path}"
        if params.offset is not None and params.offset < 0:
            return "Offset must be a non-negative number"
        if params.limit is not None and params.limit <= 0:
            return "Limit must be a positive number"

        relative_path = make_relative(p, self.root_directory)
        if self.config.get_file_service().should_agent_ignore_file(relative_path):
            return f"File path '{shorten_path(relative_path)}' is ignored by .agentignore."
        return None

    def get_description(self, params: ReadFileToolParams) -> str:
        return shorten_path(
            make_relative(Path(params.absolute_path), self.root_directory)
        )

    async def execute(
        self,
        params: ReadFileToolParams,
        signal: CancelSignal | None = None,
        update_output: OutputUpdateCallback | None = None,
    ) -> ToolResult:
        file_path = Path(params.absolute_path)
        if not file_path.exists():
            return _error_result(f"File not found: {params.absolute_path}")
        if file_path.is_dir():
            return _error_result(
                f"Path is a directory, not a file: {params.absolute_path}"
            )

        short_path = self.get_description(params)
        file_type = detect_file_type(file_path)

        if file_type in ("image", "pdf"):
            part = await read_inline_data(file_path)
            return ToolResult(
                llm_content=part,
                return_display=f"Read {file_type} file: {short_path}",
            )
        if file_type == "binary":
            return ToolResult(
                llm_content=f"Cannot display content of binary file: {short_path}",
                return_display=f"Skipped binary file: {short_path}",
            )

        try:
            content = await read_text_file(file_path)
        except UnicodeDecodeError:
            return ToolResult(
                llm_content=f"Cannot display content of binary file: {short_path}",
                return_display=f"Skipped binary file: {short_path}",
            )
        text, first, last, total, truncated = slice_text_lines(
            content or "", params.offset, params.limit
        )

        llm_content: Any = text
        display = f"Read {total} lines from {short_path}"
        if truncated:
            llm_content = (
                f"[File content truncated: showing lines {first}-{last} of "
                f"{total} total lines. Use offset/limit parameters to view "
                f"more.]\n{text}"
            )
            display = f"Read lines {first}-{last} of {total} from {short_path}"
        return ToolResult(llm_content=llm_content, return_display=display)
