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


class EditToolParams(BaseModel):
    file_path: str = Field(
        ..., description="The absolute path to the file to modify."
    )
    old_string: str = Field(
        ...,
        description="The exact text to replace. Empty to create a new file.",
    )
    new_string: str = Field(..., description="The text to replace it with.")
    expected_replacements: int = Field(
        1, ge=1, description="Number of occurrences to replace."
    )
    modified_by_user: bool = Field(False, description="Internal flag.")


class CalculatedEdit(BaseModel):
    current_content: str | None
    new_content: str
    occurrences: int
    is_new_file: bool
    error: ToolError | None = None


class EditTool(BaseTool[EditToolParams, ToolResult]):
    """Replaces text within a file, or creates a file from an empty old_string."""

    NAME = "replace"
    params_model = EditToolParams

    def __init__(self, config: Config):
        super().__init__(
            name=self.NAME,
            display_name="Edit",
            description=(
                "Replaces text within a file. By default replaces a single "
                "occurrence; set expected_replacements to replace more. "
                "old_string must match the file exactly."
            ),
            parameter_schema=EditToolParams.model_json_schema(),
        )
        self.config = config
        self.root_directory = config.get_target_dir()

    def validate_tool_params(self, params: EditToolParams) -> str | None:
        p = Path(params.file_path)
        if not p.is_absolute():
            return f"File path must be absolute: {params.file_path}"
        if not is_within_root(p, self.root_directory):
            return f"File path must be within the root directory ({self.root_directory}): {params.file_path}"
        return None

    def get_description(self, params: EditToolParams) -> str:
        relative_path = make_relative(Path(params.file_path), self.root_directory)
        if params.old_string == "":
            return f"Create {shorten_path(relative_path)}"
        old_snippet = params.old_string.split("\n")[0][:30]
        new_snippet = params.new_string.split("\n")[0][:30]
        return f"{shorten_path(relative_path)}: {old_snippet} => {new_snippet}"

    async def calculate_edit(self, params: EditToolParams) -> CalculatedEdit:
        current_content = await read_text_file(Path(params.file_path))
        is_new_file = current_content is None and params.old_string == ""

        def failed(message: str) -> CalculatedEdit:
            return CalculatedEdit(
                current_content=current_content,
                new_content=current_content or "",
                occurrences=0,
                is_new_file=False,
                error=ToolError(message=message),
            )

        if is_new_file:
            return CalculatedEdit(
                current_content=None,
                new_content=params.new_string,
                occurrences=0,
                is_new_file=True,
            )
        if current_content is None:
            return failed(
                "File not found. Cannot apply edit. "
                "Use an empty old_string to create a new file."
            )
        if params.old_string == "":
            return failed(
                "Failed to edit. Attempted to create a file that already exists."
            )

        occurrences = current_content.count(params.old_string)
        if occurrences == 0:
            return failed(
                "Failed to edit, could not find the string to replace."
            )
        if occurrences != params.expected_replacements:
            return failed(
                f"Failed to edit, expected {params.expected_replacements} "
                f"occurrence(s) but found {occurrences}."
            )
        if params.old_string == params.new_string:
            return failed(
                "No changes to apply. The old_string and new_string are identical."
            )

        return CalculatedEdit(
            current_content=current_content,
            new_content=current_content.replace(
                params.old_string, params.new_string
            ),
            occurrences=occurrences,
            is_new_file=False,
        )

    async def should_confirm_execute(
        self, params: EditToolParams, abort_signal: CancelSignal | None = None
    ) -> ToolEditConfirmationDetails | bool:
        edit = await self.calculate_edit(params)
        # The error is reported when the call executes.
        if edit.error:
            return False

        file_name = Path(params.file_path).name
        relative_path = make_relative(Path(params.file_path), self.root_directory)
        return ToolEditConfirmationDetails(
            title=f"Confirm Edit: {shorten_path(relative_path)}",
            file_name=file_name,
            file_path=params.file_path,
            file_diff=create_patch(
                file_name, edit.current_content or "", edit.new_content
            ),
            original_content=edit.current_content,
            new_content=edit.new_content,
        )

    async def execute(
        self,
        params: EditToolParams,
        signal: CancelSignal | None = None,
        update_output: OutputUpdateCallback | None = None,
    ) -> ToolResult:
        edit = await self.calculate_edit(params)
        if edit.error:
            return ToolResult(
                llm_content=edit.error.message,
                return_display=f"Error: {edit.error.message}",
                error=edit.error,
            )

        file_path = Path(params.file_path)
        try:
            await write_text_file(file_path, edit.new_content)
        except OSError as e:
            error = ToolError(message=f"Error executing edit: {e}")
            return ToolResult(
                llm_content=error.message,
                return_display=f"Error: {error.message}",
                error=error,
            )

        if edit.is_new_file:
            llm_content = f"Created new file: {params.file_path} with provided content."
        else:
            llm_content = (
                f"Successfully modified file: {params.file_path} "
                f"({edit.occurrences} replacements)."
            )
        if params.modified_by_user:
            llm_content += (
                f" User modified the `new_string` content to be: {params.new_string}."
            )

        return ToolResult(
            llm_content=llm_content,
            return_display=FileDiff(
                file_diff=create_patch(
                    file_path.name, edit.current_content or "", edit.new_content
                ),
                file_name=file_path.name,
                original_content=edit.current_content,
                new_content=edit.new_content,
            ),
        )

    def get_modify_context(
        self, abort_signal: CancelSignal | None
    ) -> ModifyContext[EditToolParams]:
        async def get_current(params: EditToolParams) -> str:
            return await read_text_file(Path(params.file_path)) or ""

        async def get_proposed(params: EditToolParams) -> str:
            edit = await self.calculate_edit(params)
            return edit.new_content

        # The edited file replaces the whole current content.
        return ModifyContext(
            get_file_path=lambda params: params.file_path,
            get_current_content=get_current,
            get_proposed_content=get_proposed,
            create_updated_params=lambda old, modified, original: original.model_copy(
                update={
                    "old_string": old,
                    "new_string": modified,
                    "expected_replacements": 1,
                    "modified_by_user": True,
                }
            ),
        )
