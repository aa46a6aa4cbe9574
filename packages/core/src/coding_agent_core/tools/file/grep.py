import asyncio
import logging
import re
import shutil
from pathlib import Path

from pydantic import BaseModel, Field

from coding_agent_core.config.config import Config
from coding_agent_core.core.cancellation import CancelSignal
from coding_agent_core.tools import BaseTool, ToolResult
from coding_agent_core.tools.base.tool_base import OutputUpdateCallback
from coding_agent_core.utils.git_utils import is_git_repository
from coding_agent_core.utils.paths import is_within_root, make_relative

logger = logging.getLogger(__name__)


class GrepToolParams(BaseModel):
    pattern: str = Field(..., description="The regex pattern to search for.")
    path: str | None = Field(
        None,
        description="Directory to search in, relative to the project root. Defaults to the root.",
    )
    include: str | None = Field(
        None, description="Glob of files to include, e.g. '*.py'."
    )


class GrepMatch(BaseModel):
    file_path: str
    line_number: int
    line: str


class GrepCommandError(Exception):
    pass


async def _run_grep_command(cmd_args: list[str], cwd: Path) -> str:
    proc = await asyncio.create_subprocess_exec(
        *cmd_args,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        cwd=cwd,
    )
    stdout, stderr = await proc.communicate()
    # 1 means no matches
    if proc.returncode not in (0, 1):
        raise GrepCommandError(
            stderr.decode("utf-8", errors="replace").strip()
        )
    return stdout.decode("utf-8", errors="replace")


def _parse_grep_output(output: str) -> list[GrepMatch]:
    matches = []
    for line in output.splitlines():
        parts = line.split(":", 2)
        if len(parts) < 3 or not parts[1].isdigit():
            continue
        file_path, line_number, content = parts
        matches.append(
            GrepMatch(
                file_path=file_path.removeprefix("./"),
                line_number=int(line_number),
                line=content,
            )
        )
    return matches


class GrepTool(BaseTool[GrepToolParams, ToolResult]):
    """
    Searches file contents with ``git grep`` when available, then system
    ``grep``, then a pure Python scan.
    """

    NAME = "search_file_content"
    params_model = GrepToolParams

    def __init__(self, config: Config):
        super().__init__(
            name=self.NAME,
            display_name="SearchText",
            description="Searches for a regular expression pattern within files.",
            parameter_schema=GrepToolParams.model_json_schema(),
        )
        self.config = config
        self.root_directory = config.get_target_dir()

    def _search_path(self, params: GrepToolParams) -> Path:
        return (self.root_directory / (params.path or "")).resolve()

    def validate_tool_params(self, params: GrepToolParams) -> str | None:
        try:
            re.compile(params.pattern)
        except re.error as e:
            return f"Invalid regular expression pattern: {params.pattern}. Error: {e}"
        search_path = self._search_path(params)
        if not is_within_root(search_path, self.root_directory):
            return f"Path must be within the root directory ({self.root_directory}): {params.path}"
        if not search_path.is_dir():
            return f"Path is not a directory: {search_path}"
        return None

    def get_description(self, params: GrepToolParams) -> str:
        description = f"'{params.pattern}'"
        if params.include:
            description += f" in {params.include}"
        if params.path:
            description += f" within {params.path}"
        return description

    async def _grep_with_git(
        self, params: GrepToolParams, search_path: Path
    ) -> list[GrepMatch] | None:
        if not is_git_repository(search_path) or not shutil.which("git"):
            return None
        cmd = ["git", "grep", "--untracked", "-n", "-E", "--ignore-case", params.pattern]
        if params.include:
            cmd.extend(["--", params.include])
        try:
            return _parse_grep_output(await _run_grep_command(cmd, search_path))
        except GrepCommandError as e:
            logger.debug(f"git grep failed, falling back: {e}")
            return None

    async def _grep_with_system(
        self, params: GrepToolParams, search_path: Path
    ) -> list[GrepMatch] | None:
        if not shutil.which("grep"):
            return None
        cmd = ["grep", "-r", "-n", "-H", "-E", "-i", "-I", "--exclude-dir=.git"]
        if params.include:
            cmd.append(f"--include={params.include}")
        cmd.extend([params.pattern, "."])
        try:
            return _parse_grep_output(await _run_grep_command(cmd, search_path))
        except GrepCommandError as e:
            logger.debug(f"grep failed, falling back: {e}")
            return None

    def _grep_with_python(
        self, params: GrepToolParams, search_path: Path
    ) -> list[GrepMatch]:
        regex = re.compile(params.pattern, re.IGNORECASE)
        file_discovery = self.config.get_file_service()
        matches = []
        for file_path in search_path.glob(f"**/{params.include or '*'}"):
            if not file_path.is_file() or ".git" in file_path.parts:
                continue
            if file_discovery.should_git_ignore_file(
                make_relative(file_path, self.root_directory)
            ):
                continue
            try:
                with file_path.open("r", encoding="utf-8") as f:
                    for i, line in enumerate(f, 1):
                        if regex.search(line):
                            matches.append(
                                GrepMatch(
                                    file_path=str(file_path.relative_to(search_path)),
                                    line_number=i,
                                    line=line.rstrip("\n"),
                                )
                            )
            except (OSError, UnicodeDecodeError) as e:
                logger.debug(f"Skipping {file_path}: {e}")
        return matches

    async def execute(
        self,
        params: GrepToolParams,
        signal: CancelSignal | None = None,
        update_output: OutputUpdateCallback | None = None,
    ) -> ToolResult:
        search_path = self._search_path(params)
        try:
            matches = await self._grep_with_git(params, search_path)
            if matches is None:
                matches = await self._grep_with_system(params, search_path)
        except OSError as e:
            logger.debug(f"External grep unavailable: {e}")
            matches = None
        if matches is None:
            matches = self._grep_with_python(params, search_path)

        file_discovery = self.config.get_file_service()
        matches = [
            m
            for m in matches
            if not file_discovery.should_agent_ignore_file(
                make_relative(search_path / m.file_path, self.root_directory)
            )
        ]

        location = f'in path "{params.path or "."}"'
        if not matches:
            return ToolResult(
                llm_content=f'No matches found for pattern "{params.pattern}" {location}.',
                return_display="No matches found",
            )

        by_file: dict[str, list[GrepMatch]] = {}
        for match in matches:
            by_file.setdefault(match.file_path, []).append(match)

        lines = [
            f'Found {len(matches)} match(es) for pattern "{params.pattern}" {location}:',
            "---",
        ]
        for file_path, file_matches in by_file.items():
            lines.append(f"File: {file_path}")
            lines.extend(f"L{m.line_number}: {m.line.strip()}" for m in file_matches)
            lines.append("---")

        return ToolResult(
            llm_content="\n".join(lines),
            return_display=f"Found {len(matches)} match(es)",
        )
