from pathlib import Path

from pydantic import BaseModel, Field

from coding_agent_core.config.config import Config
from coding_agent_core.core.cancellation import CancelSignal
from coding_agent_core.tools import BaseTool, ToolResult
from coding_agent_core.tools.base.modifiable_tool import (
    ModifyContext,
    create_patch,
)
from coding_agent_core.tools.base.tool_base import (
    FileDiff,
    OutputUpdateCallback,
    ToolError,
)
from coding_agent_core.tools.common import ToolEditConfirmationDetails
from coding_agent_core.utils.file_utils import read_text_file, write_text_file
from coding_agent_core.utils.paths import (
    is_within_root,
    make_relative,
    shorten_path,
)


class WriteFileToolParams(BaseModel):
    file_path: str = Field(
        ..., description="The absolute path to the file to write."
    )
    content: str = Field(..., description="The content to write to the file.")
    modified_by_user: bool = Field(False, description="Internal flag.")


class WriteFileTool(BaseTool[WriteFileToolParams, ToolResult]):
    """A tool for writing content to files."""

    NAME = "write_file"
    params_model = WriteFileToolParams

    def __init__(self, config: Config):
        super().__init__(
            name=self.NAME,
            display_name="WriteFile",
            description="Writes content to a specified file in the local filesystem.",
            parameter_schema=WriteFileToolParams.model_json_schema(),
        )
        self.config = config
        self.root_directory = config.get_target_dir()

    def validate_tool_params(self, params: WriteFileToolParams) -> str | None:
        p = Path(params.file_path)
        if not p.is_absolute():
            return f"File path must be absolute: {params.file_path}"
        if not is_within_root(p, self.root_directory):
            return f"Path must be within the root directory ({self.root_directory}): {params.file_path}"
        if p.is_dir():
            return f"Path is a directory, not a file: {params.file_path}"
        return None

    def get_description(self, params: WriteFileToolParams) -> str:
        relative_path = make_relative(Path(params.file_path), self.root_directory)
        return f"Writing to {shorten_path(relative_path)}"

    async def should_confirm_execute(
        self,
        params: WriteFileToolParams,
        abort_signal: CancelSignal | None = None,
    ) -> ToolEditConfirmationDetails | bool:
        file_path = Path(params.file_path)
        original_content = await read_text_file(file_path)
        relative_path = make_relative(file_path, self.root_directory)

        return ToolEditConfirmationDetails(
            title=f"Confirm Write: {shorten_path(relative_path)}",
            file_name=file_path.name,
            file_path=params.file_path,
            file_diff=create_patch(
                file_path.name, original_content or "", params.content
            ),
            original_content=original_content,
            new_content=params.content,
        )

    async def execute(
        self,
        params: WriteFileToolParams,
        signal: CancelSignal | None = None,
        update_output: OutputUpdateCallback | None = None,
    ) -> ToolResult:
        file_path = Path(params.file_path)
        try:
            original_content = await read_text_file(file_path)
            await write_text_file(file_path, params.content)
        except OSError as e:
            error = ToolError(message=f"Error writing to file: {e}")
            return ToolResult(
                llm_content=error.message,
                return_display=f"Error: {error.message}",
                error=error,
            )

        if original_content is None:
            llm_content = (
                f"Successfully created and wrote to new file: {params.file_path}."
            )
        else:
            llm_content = f"Successfully overwrote file: {params.file_path}."
        if params.modified_by_user:
            llm_content += (
                f" User modified the `content` to be: {params.content}"
            )

        return ToolResult(
            llm_content=llm_content,
            return_display=FileDiff(
                file_diff=create_patch(
                    file_path.name, original_content or "", params.content
                ),
                file_name=file_path.name,
                original_content=original_content,
                new_content=params.content,
            ),
        )

    def get_modify_context(
        self, abort_signal: CancelSignal | None
    ) -> ModifyContext[WriteFileToolParams]:
        async def get_current(params: WriteFileToolParams) -> str:
            return await read_text_file(Path(params.file_path)) or ""

        async def get_proposed(params: WriteFileToolParams) -> str:
            return params.content

        return ModifyContext(
            get_file_path=lambda params: params.file_path,
            get_current_content=get_current,
            get_proposed_content=get_proposed,
            create_updated_params=lambda _, modified, original: original.model_copy(
                update={"content": modified, "modified_by_user": True}
            ),
        )
