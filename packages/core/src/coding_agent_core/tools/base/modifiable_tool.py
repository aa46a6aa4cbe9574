from __future__ import annotations

import difflib
import logging
import shutil
import tempfile
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ConfigDict

from coding_agent_core.core.cancellation import CancelSignal
from coding_agent_core.tools.file.diff_options import DEFAULT_DIFF_CONTEXT_LINES
from coding_agent_core.utils.editor import EditorType, open_diff

logger = logging.getLogger(__name__)

TParams = TypeVar("TParams", bound=BaseModel)


class ModifyContext(BaseModel, Generic[TParams]):
    """
    Context required to allow a tool's parameters to be modified by the user,
    either in an external editor or inline while confirming.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    get_file_path: Callable[[Any], str]
    get_current_content: Callable[[Any], Awaitable[str]]
    get_proposed_content: Callable[[Any], Awaitable[str]]
    # (old_content, new_content, original_params) -> updated params
    create_updated_params: Callable[[str, str, Any], Any]


class ModifyResult(BaseModel, Generic[TParams]):
    """The result of a modification operation."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    updated_params: Any
    updated_diff: str


def is_modifiable_tool(tool: Any) -> bool:
    """Type guard to check if a tool is modifiable."""
    return callable(getattr(tool, "get_modify_context", None))


def create_patch(
    file_name: str, old_content: str, new_content: str
) -> str:
    """Builds the unified diff shown to the user for a file change."""
    return "".join(
        difflib.unified_diff(
            old_content.splitlines(keepends=True),
            new_content.splitlines(keepends=True),
            fromfile=f"Current: {file_name}",
            tofile=f"Proposed: {file_name}",
            n=DEFAULT_DIFF_CONTEXT_LINES,
        )
    )


def _create_temp_files_for_modify(
    current_content: str, proposed_content: str, file_path: str
) -> tuple[Path, Path]:
    """Creates temporary files for the diff editor."""
    temp_dir = Path(tempfile.mkdtemp(prefix="coding-agent-modify-"))

    p = Path(file_path)
    old_path = temp_dir / f"{p.stem}-old{p.suffix}"
    new_path = temp_dir / f"{p.stem}-new{p.suffix}"

    old_path.write_text(current_content, encoding="utf-8")
    new_path.write_text(proposed_content, encoding="utf-8")

    return old_path, new_path


def _get_updated_params(
    tmp_old_path: Path,
    tmp_new_path: Path,
    original_params: TParams,
    modify_context: ModifyContext[TParams],
) -> ModifyResult[TParams]:
    """Reads the modified files and creates updated parameters and a new diff."""
    old_content = tmp_old_path.read_text(encoding="utf-8")
    new_content = tmp_new_path.read_text(encoding="utf-8")

    updated_params = modify_context.create_updated_params(
        old_content, new_content, original_params
    )
    file_name = Path(modify_context.get_file_path(original_params)).name

    return ModifyResult(
        updated_params=updated_params,
        updated_diff=create_patch(file_name, old_content, new_content),
    )


def _delete_temp_files(old_path: Path):
    try:
        shutil.rmtree(old_path.parent)
    except OSError as e:
        logger.warning(f"Error deleting temp diff files: {e}")


async def modify_with_editor(
    original_params: TParams,
    modify_context: ModifyContext[TParams],
    editor_type: EditorType,
    abort_signal: CancelSignal | None = None,
) -> ModifyResult[TParams]:
    """
    Opens the proposed change in an external diff editor and returns the
    parameters rebuilt from whatever the user saved.
    """
    current_content = await modify_context.get_current_content(original_params)
    proposed_content = await modify_context.get_proposed_content(
        original_params
    )

    old_path, new_path = _create_temp_files_for_modify(
        current_content,
        proposed_content,
        modify_context.get_file_path(original_params),
    )

    try:
        await open_diff(str(old_path), str(new_path), editor_type)
        return _get_updated_params(
            old_path, new_path, original_params, modify_context
        )
    finally:
        _delete_temp_files(old_path)
