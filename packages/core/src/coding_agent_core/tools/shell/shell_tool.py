import logging
from pathlib import Path

from pydantic import BaseModel, Field

from coding_agent_core.config.config import Config
from coding_agent_core.core.cancellation import CancelSignal
from coding_agent_core.core.types import ToolErrorType
from coding_agent_core.services.shell_execution import (
    ShellExecutionResult,
    ShellExecutionService,
    ShellOutputEvent,
)
from coding_agent_core.tools import BaseTool, ToolResult
from coding_agent_core.tools.base.tool_base import OutputUpdateCallback, ToolError
from coding_agent_core.tools.common import ToolExecuteConfirmationDetails
from coding_agent_core.utils.errors import get_error_message
from coding_agent_core.utils.shell_utils import (
    get_command_root,
    get_command_roots,
    is_command_allowed,
    strip_shell_wrapper,
)
from coding_agent_core.utils.text_utils import format_byte_count
from coding_agent_core.utils.throttle import OutputThrottle

logger = logging.getLogger(__name__)

BINARY_DETECTED_MESSAGE = "[Binary output detected. Halting stream...]"
BINARY_OUTPUT_PLACEHOLDER = "[Command produced binary output, which is not shown.]"


class ShellToolParams(BaseModel):
    command: str = Field(..., description="Exact bash command to execute.")
    description: str | None = Field(
        None, description="Brief description of the command for the user."
    )
    directory: str | None = Field(
        None,
        description="Directory to run the command in, relative to the project root.",
    )


class ShellTool(BaseTool[ShellToolParams, ToolResult]):
    """
    Runs a command under ``bash -c`` (``cmd.exe /c`` on Windows) in the
    project root. Output is streamed to the caller while the command runs,
    and any background processes it leaves behind are reported.
    """

    NAME = "run_shell_command"
    params_model = ShellToolParams

    def __init__(self, config: Config):
        super().__init__(
            name=self.NAME,
            display_name="Shell",
            description=(
                "Executes a shell command. Returns Command, Directory, Stdout, "
                "Stderr, Error, Exit Code, Signal, Background PIDs and "
                "Process Group PGID."
            ),
            parameter_schema=ShellToolParams.model_json_schema(),
            is_output_markdown=False,
            can_update_output=True,
        )
        self.config = config

    def validate_tool_params(self, params: ShellToolParams) -> str | None:
        check = is_command_allowed(
            params.command,
            self.config.get_core_tools(),
            self.config.get_exclude_tools(),
        )
        if not check.allowed:
            return check.reason
        if not params.command.strip():
            return "Command cannot be empty."
        if not get_command_root(params.command):
            return "Could not identify command root to obtain permission from user."
        if params.directory:
            if Path(params.directory).is_absolute():
                return (
                    "Directory cannot be absolute. "
                    "Must be relative to the project root directory."
                )
            if not (self.config.get_target_dir() / params.directory).is_dir():
                return "Directory must exist."
        return None

    def get_description(self, params: ShellToolParams) -> str:
        description = params.command
        if params.directory:
            description += f" [in {params.directory}]"
        if params.description:
            description += f" ({params.description.replace(chr(10), ' ')})"
        return description

    async def should_confirm_execute(
        self, params: ShellToolParams, abort_signal: CancelSignal | None = None
    ) -> ToolExecuteConfirmationDetails | bool:
        root_commands = get_command_roots(strip_shell_wrapper(params.command))
        return ToolExecuteConfirmationDetails(
            title="Confirm Shell Command",
            command=params.command,
            root_command=", ".join(root_commands),
            root_commands=root_commands,
        )

    async def execute(
        self,
        params: ShellToolParams,
        signal: CancelSignal | None = None,
        update_output: OutputUpdateCallback | None = None,
    ) -> ToolResult:
        if signal is not None and signal.is_set():
            return ToolResult(
                llm_content="Command was cancelled by user before it could start.",
                return_display="Command cancelled by user.",
            )
        signal = signal or CancelSignal()

        cwd = self.config.get_target_dir()
        if params.directory:
            cwd = cwd / params.directory

        throttle = (
            OutputThrottle(
                update_output, self.config.get_output_update_interval()
            )
            if update_output
            else None
        )
        cumulative_output = ""
        is_binary_stream = False

        def on_output_event(event: ShellOutputEvent) -> None:
            nonlocal cumulative_output, is_binary_stream
            if event.type == "data":
                if is_binary_stream:
                    return
                cumulative_output += event.chunk
                display = cumulative_output
            elif event.type == "binary_detected":
                is_binary_stream = True
                display = BINARY_DETECTED_MESSAGE
            else:
                display = (
                    "[Receiving binary output... "
                    f"{format_byte_count(event.bytes_received)} received]"
                )
            if throttle is not None:
                throttle.push(display)
                if event.type == "binary_detected":
                    throttle.flush()

        handle = await ShellExecutionService.execute(
            params.command, cwd, on_output_event, signal
        )
        try:
            result = await handle.result
        finally:
            if throttle is not None:
                throttle.close()

        llm_content = self._format_llm_content(params, result, is_binary_stream)
        return_display = self._format_display(result, llm_content, is_binary_stream)

        if result.error is not None:
            logger.debug(f"Shell command failed to start: {result.error}")
            return ToolResult(
                llm_content=llm_content,
                return_display=return_display,
                error=ToolError(
                    message=f"Command failed: {get_error_message(result.error)}",
                    type=ToolErrorType.EXECUTION_FAILED,
                ),
            )
        return ToolResult(llm_content=llm_content, return_display=return_display)

    def _format_llm_content(
        self,
        params: ShellToolParams,
        result: ShellExecutionResult,
        is_binary_stream: bool,
    ) -> str:
        output = BINARY_OUTPUT_PLACEHOLDER if is_binary_stream else result.output
        if result.aborted:
            message = "Command was cancelled by user before it could complete."
            if output.strip():
                return (
                    f"{message} Below is the output before it was cancelled:\n"
                    f"{output}"
                )
            return f"{message} There was no output before it was cancelled."

        stdout = BINARY_OUTPUT_PLACEHOLDER if is_binary_stream else result.stdout
        stderr = "" if is_binary_stream else result.stderr
        error = get_error_message(result.error) if result.error else None
        return "\n".join(
            [
                f"Command: {params.command}",
                f"Directory: {params.directory or '(root)'}",
                f"Stdout: {stdout or '(empty)'}",
                f"Stderr: {stderr or '(empty)'}",
                f"Error: {error or '(none)'}",
                f"Exit Code: {'(none)' if result.exit_code is None else result.exit_code}",
                f"Signal: {result.signal or '(none)'}",
                "Background PIDs: "
                + (", ".join(map(str, result.background_pids)) or "(none)"),
                f"Process Group PGID: {result.pid or '(none)'}",
            ]
        )

    def _format_display(
        self,
        result: ShellExecutionResult,
        llm_content: str,
        is_binary_stream: bool,
    ) -> str:
        if self.config.get_debug_mode():
            return llm_content
        if is_binary_stream:
            return BINARY_OUTPUT_PLACEHOLDER
        if result.output.strip():
            return result.output
        if result.aborted:
            return "Command cancelled by user."
        if result.signal:
            return f"Command terminated by signal: {result.signal}"
        if result.error:
            return f"Command failed: {get_error_message(result.error)}"
        if result.exit_code not in (None, 0):
            return f"Command exited with code: {result.exit_code}"
        return ""
