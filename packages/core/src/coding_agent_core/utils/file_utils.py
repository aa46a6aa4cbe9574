import base64
import mimetypes
from pathlib import Path
from typing import Literal

import aiofiles

DEFAULT_ENCODING = "utf-8"
MAX_LINE_LENGTH_TEXT_FILE = 2000
DEFAULT_MAX_LINES_TEXT_FILE = 2000

FileType = Literal["text", "image", "pdf", "binary"]

BINARY_EXTENSIONS = frozenset(
    {
        ".zip",
        ".tar",
        ".gz",
        ".7z",
        ".exe",
        ".dll",
        ".so",
        ".o",
        ".a",
        ".class",
        ".jar",
        ".wasm",
        ".pyc",
        ".bin",
        ".dat",
        ".docx",
        ".xlsx",
        ".pptx",
    }
)


async def read_text_file(file_path: Path) -> str | None:
    """File contents with newlines normalised to ``\\n``; None if missing."""
    if not file_path.is_file():
        return None
    async with aiofiles.open(file_path, "r", encoding=DEFAULT_ENCODING) as f:
        content = await f.read()
    return content.replace("\r\n", "\n")


async def write_text_file(file_path: Path, content: str) -> None:
    file_path.parent.mkdir(parents=True, exist_ok=True)
    async with aiofiles.open(file_path, "w", encoding=DEFAULT_ENCODING) as f:
        await f.write(content)


def is_binary_file(file_path: Path) -> bool:
    """Checks if a file is likely binary by inspecting its first few bytes."""
    with file_path.open("rb") as f:
        chunk = f.read(4096)
    if not chunk:
        return False
    if b"\0" in chunk:
        return True
    non_printable = sum(
        1 for byte in chunk if byte < 32 and byte not in (9, 10, 13)
    )
    return non_printable / len(chunk) > 0.3


def detect_file_type(file_path: Path) -> FileType:
    mime_type, _ = mimetypes.guess_type(file_path)
    if mime_type:
        if mime_type.startswith("image/"):
            return "image"
        if mime_type == "application/pdf":
            return "pdf"
    if file_path.suffix.lower() in BINARY_EXTENSIONS:
        return "binary"
    if is_binary_file(file_path):
        return "binary"
    return "text"


async def read_inline_data(file_path: Path) -> dict:
    """A part carrying the file as base64 ``inlineData``."""
    mime_type, _ = mimetypes.guess_type(file_path)
    async with aiofiles.open(file_path, "rb") as f:
        data = await f.read()
    return {
        "inlineData": {
            "mimeType": mime_type or "application/octet-stream",
            "data": base64.b64encode(data).decode("ascii"),
        }
    }


def slice_text_lines(
    content: str, offset: int | None, limit: int | None
) -> tuple[str, int, int, int, bool]:
    """
    Returns (text, first_line, last_line, total_lines, truncated) where the
    line numbers are 1-based. Over-long lines are cut at
    MAX_LINE_LENGTH_TEXT_FILE characters.
    """
    lines = content.splitlines()
    total = len(lines)
    start = offset or 0
    end = min(start + (limit or DEFAULT_MAX_LINES_TEXT_FILE), total)

    truncated = start > 0 or end < total
    selected = []
    for line in lines[start:end]:
        if len(line) > MAX_LINE_LENGTH_TEXT_FILE:
            line = line[:MAX_LINE_LENGTH_TEXT_FILE] + "... [truncated]"
            truncated = True
        selected.append(line)

    return "\n".join(selected), start + 1, end, total, truncated
