"""Tests for the workspace-confined tool executor."""

import pytest

from taskpilot.tools.workspace_tools import WorkspaceToolExecutor


@pytest.fixture
def tools(tmp_path):
    return WorkspaceToolExecutor(tmp_path)


@pytest.mark.asyncio
async def test_write_then_read(tools, tmp_path):
    written = await tools.execute_tool("write_file", {"path": "notes/todo.md", "content": "- ship it"})
    assert written == {"success": True, "path": "notes/todo.md", "bytes_written": 9}
    assert (tmp_path / "notes" / "todo.md").read_text() == "- ship it"

    read = await tools.execute_tool("read_file", {"path": "notes/todo.md"})
    assert read["content"] == "- ship it"
    assert read["truncated"] is False


@pytest.mark.asyncio
async def test_list_directory_skips_excluded(tools, tmp_path):
    (tmp_path / ".git").mkdir()
    (tmp_path / "src").mkdir()
    (tmp_path / "README.md").write_text("readme")

    listing = await tools.execute_tool("list_directory", {"path": "."})

    assert listing["path"] == "."
    assert listing["files"] == [{"name": "src", "type": "dir"}, {"name": "README.md", "type": "file"}]


@pytest.mark.asyncio
async def test_paths_outside_workspace_are_rejected(tools):
    with pytest.raises(PermissionError):
        await tools.execute_tool("read_file", {"path": "../outside.txt"})
    with pytest.raises(PermissionError):
        await tools.execute_tool("write_file", {"path": "/etc/taskpilot.txt", "content": "x"})


@pytest.mark.asyncio
async def test_invalid_input(tools):
    with pytest.raises(FileNotFoundError):
        await tools.execute_tool("read_file", {"path": "missing.txt"})
    with pytest.raises(ValueError, match="path"):
        await tools.execute_tool("read_file", {})
    with pytest.raises(ValueError, match="Unknown tool"):
        await tools.execute_tool("delete_everything", {})


@pytest.mark.asyncio
async def test_run_command_reports_exit_code(tools, tmp_path):
    ok = await tools.execute_tool("run_command", {"command": "echo hello > out.txt"})
    assert ok["success"] is True
    assert ok["exitCode"] == 0
    assert (tmp_path / "out.txt").exists()

    failed = await tools.execute_tool("run_command", {"command": "echo nope >&2; exit 4"})
    assert failed["success"] is False
    assert failed["exitCode"] == 4
    assert failed["error"] == "nope"


def test_tool_definitions(tools):
    names = [tool["name"] for tool in tools.get_tools()]
    assert names == ["read_file", "write_file", "list_directory", "run_command"]
