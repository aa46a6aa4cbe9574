import logging
from pathlib import Path

from pydantic import BaseModel, Field

from coding_agent_core.config.config import Config
from coding_agent_core.core.cancellation import CancelSignal
from coding_agent_core.tools import BaseTool, ToolResult
from coding_agent_core.tools.base.tool_base import OutputUpdateCallback, ToolError
from coding_agent_core.utils.paths import (
    is_within_root,
    make_relative,
    shorten_path,
)

logger = logging.getLogger(__name__)


class LSToolParams(BaseModel):
    path: str = Field(
        ..., description="The absolute path to the directory to list."
    )
    respect_git_ignore: bool = Field(
        True,
        description="Optional: Whether to respect .gitignore patterns. Defaults to true.",
    )


class FileEntry(BaseModel):
    name: str
    is_directory: bool
    size: int


class LSTool(BaseTool[LSToolParams, ToolResult]):
    """A tool for listing files in a directory."""

    NAME = "list_directory"
    params_model = LSToolParams

    def __init__(self, config: Config):
        super().__init__(
            name=self.NAME,
            display_name="ReadFolder",
            description="Lists the names of files and subdirectories directly within a specified directory path.",
            parameter_schema=LSToolParams.model_json_schema(),
        )
        self.config = config
        self.root_directory = config.get_target_dir()

    def validate_tool_params(self, params: LSToolParams) -> str | None:
        p = Path(params.path)
        if not p.is_absolute():
            return f"Path must be absolute: {params.path}"
        if not is_within_root(p, self.root_directory):
            return f"Path must be within the root directory ({self.root_directory}): {params.path}"
        return None

    def get_description(self, params: LSToolParams) -> str:
        return shorten_path(make_relative(Path(params.path), self.root_directory))

    async def execute(
        self,
        params: LSToolParams,
        signal: CancelSignal | None = None,
        update_output: OutputUpdateCallback | None = None,
    ) -> ToolResult:
        target_path = Path(params.path).resolve()
        if not target_path.is_dir():
            message = f"Directory not found: {params.path}"
            return ToolResult(
                llm_content=message,
                return_display="Error: Directory not found.",
                error=ToolError(message=message),
            )

        file_discovery = self.config.get_file_service()
        entries: list[FileEntry] = []
        ignored_count = 0

        for child in target_path.iterdir():
            relative = make_relative(child, self.root_directory)
            if (
                params.respect_git_ignore
                and file_discovery.should_git_ignore_file(relative)
            ) or file_discovery.should_agent_ignore_file(relative):
                ignored_count += 1
                continue
            try:
                stat = child.stat()
            except OSError as e:
                logger.debug(f"Skipping {child}: {e}")
                continue
            entries.append(
                FileEntry(
                    name=child.name,
                    is_directory=child.is_dir(),
                    size=stat.st_size,
                )
            )

        entries.sort(key=lambda e: (not e.is_directory, e.name))

        if not entries:
            llm_content = f"Directory {params.path} is empty."
        else:
            listing = "\n".join(
                f"{'[DIR] ' if e.is_directory else ''}{e.name}" for e in entries
            )
            llm_content = f"Directory listing for {params.path}:\n{listing}"
        display_message = f"Listed {len(entries)} item(s)."

        if ignored_count > 0:
            llm_content += f"\n\n({ignored_count} items were ignored)"
            display_message += f" ({ignored_count} ignored)"

        return ToolResult(llm_content=llm_content, return_display=display_message)
