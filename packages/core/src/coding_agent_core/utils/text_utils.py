import re

# CSI and OSC sequences plus the lone two-byte escapes.
ANSI_ESCAPE_RE = re.compile(
    r"\x1b\][^\x07\x1b]*(?:\x07|\x1b\\)"
    r"|[\x1b\x9b][\[\]()#;?]*(?:\d{1,4}(?:[;:]\d{0,4})*)?[\dA-PR-TZcf-nq-uy=><~]"
)


def strip_ansi(text: str) -> str:
    """Removes terminal colour and cursor-control sequences."""
    return ANSI_ESCAPE_RE.sub("", text)


def is_binary(data: bytes | None, sample_size: int = 512) -> bool:
    """Heuristic: a NUL byte in the leading sample means binary content."""
    if not data:
        return False
    return b"\x00" in data[:sample_size]


def format_byte_count(num_bytes: int) -> str:
    """Human readable size, e.g. ``1.5 KB``."""
    if num_bytes < 1024 * 1024:
        return f"{num_bytes / 1024:.1f} KB"
    if num_bytes < 1024 * 1024 * 1024:
        return f"{num_bytes / (1024 * 1024):.2f} MB"
    return f"{num_bytes / (1024 * 1024 * 1024):.2f} GB"
