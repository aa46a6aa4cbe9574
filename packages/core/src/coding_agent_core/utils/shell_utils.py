"""
Helpers for reasoning about shell command strings: splitting chained
commands, finding the root command of each, and deciding whether a command
is permitted by the configured allow and block lists.
"""

import re
from collections.abc import Iterable
from typing import NamedTuple

SHELL_TOOL_NAMES = ("run_shell_command", "ShellTool")

_COMMAND_ROOT_RE = re.compile(r"""^"([^"]+)"|^'([^']+)'|^(\S+)""")
_SHELL_WRAPPER_RE = re.compile(r"^\s*(?:sh|bash|zsh|cmd\.exe)\s+(?:/c|-c)\s+")


class CommandCheck(NamedTuple):
    allowed: bool
    reason: str | None = None


def split_commands(command: str) -> list[str]:
    """Splits on ``&&``, ``||``, ``;``, ``&`` and ``|`` outside of quotes."""
    commands: list[str] = []
    current: list[str] = []
    in_single = in_double = False
    i = 0
    n = len(command)

    while i < n:
        char = command[i]
        next_char = command[i + 1] if i + 1 < n else ""

        if char == "\\" and i < n - 1:
            current.append(char + next_char)
            i += 2
            continue

        if char == "'" and not in_double:
            in_single = not in_single
        elif char == '"' and not in_single:
            in_double = not in_double

        if in_single or in_double:
            current.append(char)
        elif (char == "&" and next_char == "&") or (
            char == "|" and next_char == "|"
        ):
            commands.append("".join(current).strip())
            current = []
            i += 1
        elif char in ";&|":
            commands.append("".join(current).strip())
            current = []
        else:
            current.append(char)
        i += 1

    commands.append("".join(current).strip())
    return [c for c in commands if c]


def get_command_root(command: str) -> str | None:
    """
    The executable name of a single command, without any leading path.

    >>> get_command_root("ls -la /tmp")
    'ls'
    >>> get_command_root('"/usr/bin/my tool" --flag')
    'my tool'
    """
    trimmed = command.strip()
    if not trimmed:
        return None
    match = _COMMAND_ROOT_RE.match(trimmed)
    if not match:
        return None
    root = match.group(1) or match.group(2) or match.group(3)
    if not root:
        return None
    return re.split(r"[\\/]", root)[-1] or None


def get_command_roots(command: str) -> list[str]:
    if not command:
        return []
    roots = (get_command_root(c) for c in split_commands(command))
    return [r for r in roots if r]


def strip_shell_wrapper(command: str) -> str:
    """``bash -c 'ls'`` -> ``ls``."""
    match = _SHELL_WRAPPER_RE.match(command)
    if not match:
        return command.strip()
    inner = command[match.end() :].strip()
    if len(inner) >= 2 and inner[0] == inner[-1] and inner[0] in "'\"":
        inner = inner[1:-1]
    return inner


def detect_command_substitution(command: str) -> bool:
    """
    True if bash would run a nested command: ``$(...)`` and backticks outside
    single quotes, ``<(...)`` only when unquoted.
    """
    in_single = in_double = False
    i = 0
    n = len(command)

    while i < n:
        char = command[i]
        next_char = command[i + 1] if i + 1 < n else ""

        if char == "\\" and not in_single:
            i += 2
            continue

        if char == "'" and not in_double:
            in_single = not in_single
        elif char == '"' and not in_single:
            in_double = not in_double
        elif not in_single:
            if char == "$" and next_char == "(":
                return True
            if char == "<" and next_char == "(" and not in_double:
                return True
            if char == "`":
                return True
        i += 1

    return False


def _normalize(command: str) -> str:
    return " ".join(command.split())


def _is_prefixed_by(command: str, prefix: str) -> bool:
    """Whole-word prefix match: 'npm install' starts with 'npm', 'npminstall' does not."""
    if not command.startswith(prefix):
        return False
    return len(command) == len(prefix) or command[len(prefix)] == " "


def _extract_commands(tools: Iterable[str]) -> list[str]:
    """``run_shell_command(ls -l)`` -> ``ls -l``."""
    commands = []
    for tool in tools:
        for tool_name in SHELL_TOOL_NAMES:
            if tool.startswith(f"{tool_name}(") and tool.endswith(")"):
                commands.append(_normalize(tool[len(tool_name) + 1 : -1]))
                break
    return commands


def is_command_allowed(
    command: str,
    core_tools: list[str] | None = None,
    exclude_tools: list[str] | None = None,
) -> CommandCheck:
    """
    Checks a command against the configured tool lists.

    ``exclude_tools`` entries of the form ``run_shell_command(git push)``
    block any chained sub-command starting with ``git push``. When
    ``core_tools`` names specific shell commands and does not also list the
    bare shell tool, every sub-command must match one of them.
    """
    if detect_command_substitution(command):
        return CommandCheck(
            False,
            "Command substitution using $(), <(), or backticks is not allowed for security reasons",
        )

    core_tools = core_tools or []
    exclude_tools = exclude_tools or []

    if any(name in exclude_tools for name in SHELL_TOOL_NAMES):
        return CommandCheck(
            False, "Shell tool is globally disabled in configuration"
        )

    blocked_commands = _extract_commands(exclude_tools)
    allowed_commands = _extract_commands(core_tools)
    is_wildcard_allowed = any(name in core_tools for name in SHELL_TOOL_NAMES)
    is_strict_allowlist = bool(allowed_commands) and not is_wildcard_allowed

    for cmd in map(_normalize, split_commands(command)):
        if any(_is_prefixed_by(cmd, blocked) for blocked in blocked_commands):
            return CommandCheck(
                False, f"Command '{cmd}' is blocked by configuration"
            )
        if is_strict_allowlist and not any(
            _is_prefixed_by(cmd, allowed) for allowed in allowed_commands
        ):
            return CommandCheck(
                False, f"Command '{cmd}' is not in the allowed commands list"
            )

    return CommandCheck(True)
