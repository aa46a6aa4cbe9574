"""
Detection of the user's preferred diff editor and a helper that opens it on
a pair of files, blocking until the user closes it.
"""

import asyncio
import logging
import os
import shutil
import sys
from typing import Literal, NamedTuple

logger = logging.getLogger(__name__)

EditorType = Literal[
    "vscode", "vscodium", "windsurf", "cursor", "vim", "neovim", "zed"
]

# editor -> (windows executable, posix executable)
EDITOR_COMMANDS: dict[str, tuple[str, str]] = {
    "vscode": ("code.cmd", "code"),
    "vscodium": ("codium.cmd", "codium"),
    "windsurf": ("windsurf", "windsurf"),
    "cursor": ("cursor", "cursor"),
    "vim": ("vim", "vim"),
    "neovim": ("nvim", "nvim"),
    "zed": ("zed", "zed"),
}

GUI_EDITORS = frozenset({"vscode", "vscodium", "windsurf", "cursor", "zed"})


class DiffCommand(NamedTuple):
    command: str
    args: list[str]


def is_valid_editor_type(editor: str | None) -> bool:
    return editor in EDITOR_COMMANDS


def _executable_for(editor: str) -> str:
    windows_cmd, posix_cmd = EDITOR_COMMANDS[editor]
    return windows_cmd if sys.platform == "win32" else posix_cmd


def is_editor_available(editor: str | None) -> bool:
    """True when the editor is known, installed, and usable here."""
    if not is_valid_editor_type(editor):
        return False
    if editor in GUI_EDITORS and os.getenv("SANDBOX"):
        return False
    return shutil.which(_executable_for(editor)) is not None


def get_diff_command(
    old_path: str, new_path: str, editor: EditorType
) -> DiffCommand | None:
    if not is_valid_editor_type(editor):
        return None
    command = _executable_for(editor)
    if editor in GUI_EDITORS:
        return DiffCommand(command, ["--wait", "--diff", old_path, new_path])
    return DiffCommand(
        command,
        [
            "-d",
            "-i",
            "NONE",
            "-c",
            "wincmd h | set readonly | wincmd l",
            "-c",
            "autocmd WinClosed * wqa",
            old_path,
            new_path,
        ],
    )


async def open_diff(old_path: str, new_path: str, editor: EditorType) -> None:
    """
    Opens a diff tool to compare two files, blocking until the editor exits.
    The editor inherits stdio so terminal editors can take over the screen.
    """
    diff_command = get_diff_command(old_path, new_path, editor)
    if not diff_command:
        logger.error(f"No diff command known for editor '{editor}'.")
        return

    try:
        process = await asyncio.create_subprocess_exec(
            diff_command.command, *diff_command.args
        )
        await process.wait()
    except OSError as e:
        logger.error(f"Failed to open diff with {editor}: {e}")
        return

    if process.returncode != 0:
        logger.error(f"{editor} exited with code {process.returncode}")
