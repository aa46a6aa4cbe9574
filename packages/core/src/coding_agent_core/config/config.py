import logging
import uuid
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from coding_agent_core.core.confirmation_policy import ApprovalSession
from coding_agent_core.core.types import ApprovalMode
from coding_agent_core.services.file_discovery import FileDiscoveryService
from coding_agent_core.tools.base.registry import ToolRegistry
from coding_agent_core.utils.editor import EditorType, is_editor_available
from coding_agent_core.utils.throttle import DEFAULT_OUTPUT_UPDATE_INTERVAL

logger = logging.getLogger(__name__)


class Config(BaseSettings):
    """Session configuration, overridable through CODING_AGENT_* variables."""

    model_config = SettingsConfigDict(
        env_prefix="CODING_AGENT_", case_sensitive=False
    )

    session_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    target_dir: Path = Field(default_factory=Path.cwd)
    debug_mode: bool = False
    approval_mode: ApprovalMode = ApprovalMode.DEFAULT

    # Tool configurations
    core_tools: list[str] | None = None
    exclude_tools: list[str] | None = None
    preferred_editor: str | None = None
    output_update_interval: float = DEFAULT_OUTPUT_UPDATE_INTERVAL
    web_fetch_timeout: float = 10.0

    # Lazy-loaded services
    _file_service: FileDiscoveryService | None = None

    def get_session_id(self) -> str:
        return self.session_id

    def get_target_dir(self) -> Path:
        return Path(self.target_dir).resolve()

    def get_debug_mode(self) -> bool:
        return self.debug_mode

    def get_approval_mode(self) -> ApprovalMode:
        return self.approval_mode

    def get_core_tools(self) -> list[str] | None:
        return self.core_tools

    def get_exclude_tools(self) -> list[str] | None:
        return self.exclude_tools

    def get_output_update_interval(self) -> float:
        return self.output_update_interval

    def get_preferred_editor(self) -> EditorType | None:
        """The configured editor, or None if it cannot be launched here."""
        if not self.preferred_editor:
            return None
        if not is_editor_available(self.preferred_editor):
            logger.warning(
                f"Preferred editor '{self.preferred_editor}' is not available."
            )
            return None
        return self.preferred_editor

    def get_file_service(self) -> FileDiscoveryService:
        if not self._file_service:
            self._file_service = FileDiscoveryService(str(self.get_target_dir()))
        return self._file_service

    def create_session(self) -> ApprovalSession:
        """A fresh per-session allow-list, starting in the configured mode."""
        return ApprovalSession(approval_mode=self.approval_mode)


def create_tool_registry(config: Config) -> ToolRegistry:
    """Creates and populates the tool registry with the built-in tools."""
    from coding_agent_core.tools.file.edit_file import EditTool
    from coding_agent_core.tools.file.grep import GrepTool
    from coding_agent_core.tools.file.list_files import LSTool
    from coding_agent_core.tools.file.read_file import ReadFileTool
    from coding_agent_core.tools.file.write_file import WriteFileTool
    from coding_agent_core.tools.shell.shell_tool import ShellTool
    from coding_agent_core.tools.web.web_fetch import WebFetchTool

    registry = ToolRegistry(config)

    for tool_cls in (
        LSTool,
        ReadFileTool,
        GrepTool,
        EditTool,
        WriteFileTool,
        ShellTool,
        WebFetchTool,
    ):
        tool = tool_cls(config)
        if config.exclude_tools and tool.name in config.exclude_tools:
            logger.debug(f"Tool '{tool.name}' excluded by configuration")
            continue
        registry.register_tool(tool)

    return registry
