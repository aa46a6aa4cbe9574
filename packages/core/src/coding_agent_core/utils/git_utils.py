from pathlib import Path


def find_git_root(start_dir: str | Path) -> Path | None:
    """Walks up from start_dir looking for a .git entry."""
    current_dir = Path(start_dir).resolve()
    for candidate in (current_dir, *current_dir.parents):
        if (candidate / ".git").exists():
            return candidate
    return None


def is_git_repository(directory: str | Path) -> bool:
    return find_git_root(directory) is not None
