import base64

import pytest

from coding_agent_core.core.types import ToolParamsError
from coding_agent_core.tools.base.tool_base import FileDiff
from coding_agent_core.tools.file.edit_file import EditTool
from coding_agent_core.tools.file.grep import GrepTool
from coding_agent_core.tools.file.list_files import LSTool
from coding_agent_core.tools.file.read_file import ReadFileTool
from coding_agent_core.tools.file.write_file import WriteFileTool

# --- replace ---


@pytest.mark.asyncio
async def test_edit_replaces_single_occurrence(config, tmp_path):
    target = tmp_path / "app.py"
    target.write_text("x = 1\ny = 2\n")
    tool = EditTool(config)

    invocation = tool.build(
        {"file_path": str(target), "old_string": "y = 2", "new_string": "y = 3"}
    )
    details = await invocation.should_confirm_execute()
    result = await invocation.execute()

    assert details.type == "edit"
    assert details.title == "Confirm Edit: app.py"
    assert "-y = 2" in details.file_diff and "+y = 3" in details.file_diff
    assert target.read_text() == "x = 1\ny = 3\n"
    assert result.error is None
    assert result.llm_content == (
        f"Successfully modified file: {target} (1 replacements)."
    )
    assert isinstance(result.return_display, FileDiff)
    assert result.return_display.original_content == "x = 1\ny = 2\n"


@pytest.mark.asyncio
async def test_edit_creates_new_file_from_empty_old_string(config, tmp_path):
    target = tmp_path / "pkg" / "new.txt"
    tool = EditTool(config)

    result = await tool.build(
        {"file_path": str(target), "old_string": "", "new_string": "hello"}
    ).execute()

    assert target.read_text() == "hello"
    assert result.llm_content.startswith("Created new file:")


@pytest.mark.parametrize(
    "content, args, message",
    [
        (
            None,
            {"old_string": "a", "new_string": "b"},
            "File not found. Cannot apply edit. Use an empty old_string to create a new file.",
        ),
        (
            "abc",
            {"old_string": "", "new_string": "b"},
            "Failed to edit. Attempted to create a file that already exists.",
        ),
        (
            "abc",
            {"old_string": "zzz", "new_string": "b"},
            "Failed to edit, could not find the string to replace.",
        ),
        (
            "a a a",
            {"old_string": "a", "new_string": "b", "expected_replacements": 2},
            "Failed to edit, expected 2 occurrence(s) but found 3.",
        ),
    ],
)
@pytest.mark.asyncio
async def test_edit_failures_are_reported_not_raised(
    config, tmp_path, content, args, message
):
    target = tmp_path / "f.txt"
    if content is not None:
        target.write_text(content)
    invocation = EditTool(config).build({"file_path": str(target), **args})

    assert await invocation.should_confirm_execute() is False
    result = await invocation.execute()

    assert result.error is not None
    assert result.error.message == message
    assert result.return_display == f"Error: {message}"


def test_edit_rejects_paths_outside_root(config, tmp_path):
    with pytest.raises(ToolParamsError, match="within the root directory"):
        EditTool(config).build(
            {"file_path": "/etc/passwd", "old_string": "a", "new_string": "b"}
        )
    with pytest.raises(ToolParamsError, match="must be absolute"):
        EditTool(config).build(
            {"file_path": "rel.txt", "old_string": "a", "new_string": "b"}
        )


@pytest.mark.asyncio
async def test_edit_modify_context_rewrites_whole_file(config, tmp_path):
    target = tmp_path / "f.txt"
    target.write_text("one\ntwo\n")
    tool = EditTool(config)
    params = tool.build(
        {"file_path": str(target), "old_string": "two", "new_string": "2"}
    ).params

    context = tool.get_modify_context(None)
    assert await context.get_proposed_content(params) == "one\n2\n"
    updated = context.create_updated_params("one\ntwo\n", "uno\n", params)

    result = await tool.build(updated.model_dump()).execute()

    assert target.read_text() == "uno\n"
    assert "User modified the `new_string` content" in result.llm_content


# --- write_file ---


@pytest.mark.asyncio
async def test_write_file_creates_and_overwrites(config, tmp_path):
    target = tmp_path / "out.txt"
    tool = WriteFileTool(config)

    created = await tool.build({"file_path": str(target), "content": "v1"}).execute()
    details = await tool.build(
        {"file_path": str(target), "content": "v2"}
    ).should_confirm_execute()
    overwritten = await tool.build(
        {"file_path": str(target), "content": "v2"}
    ).execute()

    assert created.llm_content == (
        f"Successfully created and wrote to new file: {target}."
    )
    assert details.title == "Confirm Write: out.txt"
    assert details.original_content == "v1"
    assert overwritten.llm_content == f"Successfully overwrote file: {target}."
    assert target.read_text() == "v2"


def test_write_file_rejects_directories(config, tmp_path):
    (tmp_path / "dir").mkdir()

    with pytest.raises(ToolParamsError, match="is a directory"):
        WriteFileTool(config).build(
            {"file_path": str(tmp_path / "dir"), "content": ""}
        )


# --- read_file ---


@pytest.mark.asyncio
async def test_read_file_returns_text(config, tmp_path):
    target = tmp_path / "notes.md"
    target.write_text("a\r\nb\nc\n")

    result = await ReadFileTool(config).build(
        {"absolute_path": str(target)}
    ).execute()

    assert result.llm_content == "a\nb\nc"
    assert result.return_display == "Read 3 lines from notes.md"


@pytest.mark.asyncio
async def test_read_file_with_range_is_marked_truncated(config, tmp_path):
    target = tmp_path / "long.txt"
    target.write_text("\n".join(f"line {i}" for i in range(1, 11)))

    result = await ReadFileTool(config).build(
        {"absolute_path": str(target), "offset": 2, "limit": 3}
    ).execute()

    assert result.llm_content.startswith(
        "[File content truncated: showing lines 3-5 of 10 total lines."
    )
    assert result.llm_content.endswith("line 3\nline 4\nline 5")


@pytest.mark.asyncio
async def test_read_file_returns_images_as_inline_data(config, tmp_path):
    target = tmp_path / "pixel.png"
    target.write_bytes(b"\x89PNG\r\n\x1a\n")

    result = await ReadFileTool(config).build(
        {"absolute_path": str(target)}
    ).execute()

    assert result.llm_content["inlineData"]["mimeType"] == "image/png"
    assert base64.b64decode(result.llm_content["inlineData"]["data"]) == (
        b"\x89PNG\r\n\x1a\n"
    )


@pytest.mark.asyncio
async def test_read_file_skips_binary(config, tmp_path):
    target = tmp_path / "blob.bin"
    target.write_bytes(b"\x00\x01\x02")

    result = await ReadFileTool(config).build(
        {"absolute_path": str(target)}
    ).execute()

    assert result.llm_content == "Cannot display content of binary file: blob.bin"


def test_read_file_honours_agentignore(tmp_path):
    from coding_agent_core.config import Config

    (tmp_path / ".agentignore").write_text("secrets/\n")
    (tmp_path / "secrets").mkdir()
    (tmp_path / "secrets" / "key.txt").write_text("k")
    tool = ReadFileTool(Config(target_dir=tmp_path))

    with pytest.raises(ToolParamsError, match="is ignored by .agentignore"):
        tool.build({"absolute_path": str(tmp_path / "secrets" / "key.txt")})


@pytest.mark.asyncio
async def test_read_file_missing(config, tmp_path):
    result = await ReadFileTool(config).build(
        {"absolute_path": str(tmp_path / "nope.txt")}
    ).execute()

    assert result.error is not None
    assert result.error.message.startswith("File not found")


# --- list_directory ---


@pytest.mark.asyncio
async def test_ls_lists_directories_first(config, tmp_path):
    (tmp_path / "b.txt").write_text("b")
    (tmp_path / "a.txt").write_text("a")
    (tmp_path / "src").mkdir()

    result = await LSTool(config).build({"path": str(tmp_path)}).execute()

    assert result.llm_content == (
        f"Directory listing for {tmp_path}:\n[DIR] src\na.txt\nb.txt"
    )
    assert result.return_display == "Listed 3 item(s)."


@pytest.mark.asyncio
async def test_ls_counts_ignored_entries(tmp_path):
    from coding_agent_core.config import Config

    (tmp_path / ".agentignore").write_text("*.log\n")
    (tmp_path / "keep.txt").write_text("")
    (tmp_path / "debug.log").write_text("")

    result = await LSTool(Config(target_dir=tmp_path)).build(
        {"path": str(tmp_path)}
    ).execute()

    assert "keep.txt" in result.llm_content
    assert "debug.log" not in result.llm_content
    assert result.llm_content.endswith("(1 items were ignored)")


@pytest.mark.asyncio
async def test_ls_empty_directory(config, tmp_path):
    empty = tmp_path / "empty"
    empty.mkdir()

    result = await LSTool(config).build({"path": str(empty)}).execute()

    assert result.llm_content == f"Directory {empty} is empty."


# --- search_file_content ---


@pytest.mark.asyncio
async def test_grep_groups_matches_by_file(config, tmp_path):
    (tmp_path / "a.txt").write_text("hello world\nbye\n")
    (tmp_path / "b.txt").write_text("nothing here\n")

    result = await GrepTool(config).build({"pattern": "hello"}).execute()

    assert result.llm_content.splitlines() == [
        'Found 1 match(es) for pattern "hello" in path ".":',
        "---",
        "File: a.txt",
        "L1: hello world",
        "---",
    ]
    assert result.return_display == "Found 1 match(es)"


@pytest.mark.asyncio
async def test_grep_python_fallback(config, tmp_path, monkeypatch):
    (tmp_path / "a.py").write_text("import os\n")
    (tmp_path / "b.txt").write_text("import nothing\n")
    monkeypatch.setattr(
        "coding_agent_core.tools.file.grep.shutil.which", lambda name: None
    )

    result = await GrepTool(config).build(
        {"pattern": "^import", "include": "*.py"}
    ).execute()

    assert "File: a.py" in result.llm_content
    assert "b.txt" not in result.llm_content


@pytest.mark.asyncio
async def test_grep_without_matches(config, tmp_path):
    (tmp_path / "a.txt").write_text("abc\n")

    result = await GrepTool(config).build({"pattern": "xyz"}).execute()

    assert result.llm_content == 'No matches found for pattern "xyz" in path ".".'


def test_grep_rejects_invalid_regex(config):
    with pytest.raises(ToolParamsError, match="Invalid regular expression"):
        GrepTool(config).build({"pattern": "("})
