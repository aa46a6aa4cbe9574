"""
Filtering of workspace paths against .gitignore and .agentignore rules.
"""

import logging
from pathlib import Path

import pathspec

from coding_agent_core.utils.git_utils import is_git_repository

logger = logging.getLogger(__name__)

AGENT_IGNORE_FILE_NAME = ".agentignore"


def _load_spec(file_path: Path) -> pathspec.PathSpec | None:
    if not file_path.is_file():
        return None
    with file_path.open("r", encoding="utf-8") as f:
        patterns = [
            line.rstrip("\n")
            for line in f
            if line.strip() and not line.startswith("#")
        ]
    if not patterns:
        return None
    return pathspec.PathSpec.from_lines("gitwildmatch", patterns)


class FileDiscoveryService:
    """Answers whether a workspace path should be hidden from tools."""

    def __init__(self, project_root: str):
        self.project_root = Path(project_root).resolve()
        self.git_ignore_spec: pathspec.PathSpec | None = None
        if is_git_repository(self.project_root):
            self.git_ignore_spec = _load_spec(self.project_root / ".gitignore")
        self.agent_ignore_spec = _load_spec(
            self.project_root / AGENT_IGNORE_FILE_NAME
        )

    def _relative(self, file_path: str) -> str:
        p = Path(file_path)
        if not p.is_absolute():
            return file_path
        try:
            return str(p.relative_to(self.project_root))
        except ValueError:
            return file_path

    def should_git_ignore_file(self, file_path: str) -> bool:
        relative = self._relative(file_path)
        if Path(relative).parts[:1] == (".git",):
            return True
        if self.git_ignore_spec:
            return self.git_ignore_spec.match_file(relative)
        return False

    def should_agent_ignore_file(self, file_path: str) -> bool:
        if self.agent_ignore_spec:
            return self.agent_ignore_spec.match_file(self._relative(file_path))
        return False
