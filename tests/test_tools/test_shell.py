import asyncio
import os
import time

import pytest

from openbird.cancellation import CancellationToken
from openbird.events import ToolOutputEvent
from openbird.tools import ErrorResult, ExecutionContext, ShellResult, ShellTool


def _pid_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    # An orphan killed with its group may linger as a zombie until reaped.
    try:
        with open(f"/proc/{pid}/stat") as f:
            return f.read().rsplit(")", 1)[1].split()[0] != "Z"
    except (OSError, IndexError):
        return True


async def _wait_gone(pid: int, timeout: float = 2.0) -> bool:
    deadline = time.monotonic() + timeout
    while _pid_alive(pid):
        if time.monotonic() > deadline:
            return False
        await asyncio.sleep(0.05)
    return True


@pytest.mark.asyncio
async def test_shell_tool_streams_and_collects_output(tmp_path):
    events: list[ToolOutputEvent] = []
    tool = ShellTool(cwd=tmp_path)
    context = ExecutionContext(emit=events.append, cancel=CancellationToken())

    result = await tool.execute({"command": "echo out; echo err >&2; exit 3"}, context)

    assert isinstance(result, ShellResult)
    assert result.stdout == "out\n"
    assert result.stderr == "err\n"
    assert result.exit_code == 3
    assert "".join(e.data for e in events if e.stream == "stdout") == "out\n"
    assert "".join(e.data for e in events if e.stream == "stderr") == "err\n"
    assert all(e.tool == "bash" for e in events)


@pytest.mark.asyncio
async def test_shell_tool_runs_in_configured_directory(tmp_path):
    tool = ShellTool(cwd=tmp_path)

    result = await tool.execute({"command": "pwd"}, ExecutionContext(emit=lambda e: None))

    assert os.path.realpath(result.stdout.strip()) == os.path.realpath(str(tmp_path))


@pytest.mark.asyncio
async def test_shell_tool_rejects_empty_command(tmp_path):
    result = await ShellTool(cwd=tmp_path).execute({"command": "  "}, ExecutionContext(emit=lambda e: None))

    assert isinstance(result, ErrorResult)


@pytest.mark.asyncio
async def test_shell_tool_spawn_failure_reports_exit_code_one(tmp_path):
    tool = ShellTool(executable=str(tmp_path / "no-such-shell"), cwd=tmp_path)

    result = await tool.execute({"command": "true"}, ExecutionContext(emit=lambda e: None))

    assert isinstance(result, ShellResult)
    assert result.exit_code == 1
    assert result.stderr


@pytest.mark.asyncio
async def test_cancel_terminates_running_command(tmp_path):
    token = CancellationToken()
    pid_file = tmp_path / "pid"
    tool = ShellTool(cwd=tmp_path, kill_grace_seconds=0.5)
    context = ExecutionContext(emit=lambda e: None, cancel=token)

    task = asyncio.create_task(tool.execute({"command": f"echo $$ > {pid_file}; sleep 30"}, context))
    for _ in range(100):
        if pid_file.exists() and pid_file.read_text().strip():
            break
        await asyncio.sleep(0.05)
    pid = int(pid_file.read_text().strip())

    started = time.monotonic()
    token.cancel()
    result = await asyncio.wait_for(task, timeout=5)

    assert time.monotonic() - started < 5
    assert isinstance(result, ShellResult)
    assert result.exit_code != 0
    assert not _pid_alive(pid)


@pytest.mark.asyncio
async def test_cancel_returns_when_a_child_ignores_sigterm(tmp_path):
    token = CancellationToken()
    pid_file = tmp_path / "pid"
    tool = ShellTool(cwd=tmp_path, kill_grace_seconds=0.5)
    context = ExecutionContext(emit=lambda e: None, cancel=token)
    command = f"sh -c 'trap \"\" TERM; echo $$ > {pid_file}; sleep 30'; true"

    task = asyncio.create_task(tool.execute({"command": command}, context))
    for _ in range(100):
        if pid_file.exists() and pid_file.read_text().strip():
            break
        await asyncio.sleep(0.05)
    pid = int(pid_file.read_text().strip())

    started = time.monotonic()
    token.cancel()
    result = await asyncio.wait_for(task, timeout=5)

    assert time.monotonic() - started < 5
    assert isinstance(result, ShellResult)
    assert await _wait_gone(pid)
