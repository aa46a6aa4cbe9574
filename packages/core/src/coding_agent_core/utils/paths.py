from pathlib import Path


def shorten_path(file_path: str, max_len: int = 35) -> str:
    """Shortens a path string if it exceeds max_len, keeping both ends."""
    if len(file_path) <= max_len:
        return file_path

    p = Path(file_path)
    parts = [part for part in p.parts if part not in (p.anchor, "\\")]

    if len(parts) <= 2:
        return f"...{file_path[-(max_len - 3) :]}"

    first_dir = parts[0]
    end_parts = [parts[-1]]
    # first_dir + "/.../" + filename
    current_len = len(first_dir) + len(parts[-1]) + 5

    for part in reversed(parts[1:-1]):
        if current_len + len(part) + 1 > max_len:
            break
        end_parts.insert(0, part)
        current_len += len(part) + 1

    return f"{first_dir}/.../{'/'.join(end_parts)}"


def make_relative(target_path: Path, root_directory: Path) -> str:
    """Calculates the relative path, returning '.' for the same path."""
    try:
        relative_path = target_path.relative_to(root_directory)
        return str(relative_path) or "."
    except ValueError:
        return str(target_path)


def is_within_root(path_to_check: Path, root_directory: Path) -> bool:
    """Checks if a path is within a given root directory."""
    try:
        path_to_check.resolve().relative_to(root_directory.resolve())
        return True
    except ValueError:
        return False
