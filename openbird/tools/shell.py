"""Shell tool for executing commands."""

import asyncio
import codecs
import os
import signal
from pathlib import Path
from typing import Any

from openbird.cancellation import CancellationToken
from openbird.config import get_config
from openbird.events import ToolOutputEvent
from openbird.logging import get_logger
from openbird.tools.registry import ErrorResult, ExecutionContext, ShellResult, Tool

log = get_logger(__name__)

_READ_CHUNK = 4096
# Extra time past the kill grace period for the kernel to reap the group.
_REAP_MARGIN = 0.5


class ShellTool(Tool):
    """Execute shell commands, streaming their output."""

    name = "bash"
    description = "Execute a shell command on the system"
    parameters = {
        "command": {
            "type": "string",
            "required": True,
            "description": "The shell command to run",
        },
    }

    def __init__(
        self,
        executable: str | None = None,
        cwd: Path | str | None = None,
        kill_grace_seconds: float | None = None,
    ):
        shell_cfg = get_config().tools.shell
        self.executable = executable or shell_cfg.executable or "sh"
        self.cwd = Path(cwd).expanduser().resolve() if cwd else get_config().resolved_shell_cwd()
        grace = shell_cfg.kill_grace_seconds if kill_grace_seconds is None else kill_grace_seconds
        self.kill_grace_seconds = max(0.0, float(grace))

    @staticmethod
    def _signal_group(process: asyncio.subprocess.Process, sig: int) -> None:
        """Send a signal to the command's whole process group.

        The group is signalled even after the leader exited; descendants may
        still hold the output pipes open.
        """
        try:
            if hasattr(os, "killpg"):
                os.killpg(process.pid, sig)
            elif process.returncode is not None:
                return
            elif sig == signal.SIGTERM:
                process.terminate()
            else:
                process.kill()
        except ProcessLookupError:
            pass
        except OSError as e:
            log.warning("Failed to signal shell process", pid=process.pid, error=str(e))

    def _terminate(self, process: asyncio.subprocess.Process) -> None:
        """SIGTERM now, SIGKILL after the grace period if still alive."""
        log.info("Terminating shell process", pid=process.pid)
        self._signal_group(process, signal.SIGTERM)
        kill_sig = getattr(signal, "SIGKILL", signal.SIGTERM)
        asyncio.get_running_loop().call_later(
            self.kill_grace_seconds,
            self._signal_group,
            process,
            kill_sig,
        )

    async def _pump(
        self,
        stream: asyncio.StreamReader | None,
        stream_name: str,
        parts: list[str],
        context: ExecutionContext,
    ) -> None:
        """Forward one pipe chunk-by-chunk to the collected text and to subscribers."""
        if stream is None:
            return
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        while True:
            chunk = await stream.read(_READ_CHUNK)
            text = decoder.decode(chunk, final=not chunk)
            if text:
                parts.append(text)
                context.emit(ToolOutputEvent(tool=self.name, stream=stream_name, data=text))
            if not chunk:
                break

    async def _settle(self, tasks: list[asyncio.Task], cancel: CancellationToken | None) -> None:
        """Wait for the process and its pipes, bounded once cancel fires.

        A descendant that ignores SIGTERM or escaped the group can keep the
        pipes open indefinitely; after a cancel it gets the kill grace period
        plus a reaping margin, then the leftovers are abandoned.
        """
        if cancel is not None and not cancel.cancelled:
            everything = asyncio.gather(*tasks, return_exceptions=True)
            watcher = asyncio.create_task(cancel.wait())
            try:
                await asyncio.wait({everything, watcher}, return_when=asyncio.FIRST_COMPLETED)
            finally:
                watcher.cancel()
            if everything.done():
                return
        elif cancel is None:
            await asyncio.wait(tasks)
            return

        _, pending = await asyncio.wait(tasks, timeout=self.kill_grace_seconds + _REAP_MARGIN)
        if pending:
            log.warning("Shell process outlived its kill grace period", pending=len(pending))
        for task in pending:
            task.cancel()

    async def execute(self, arguments: dict[str, Any], context: ExecutionContext) -> ShellResult | ErrorResult:
        """Execute a shell command.

        Always settles: a spawn failure yields exit code 1, and after
        cancellation the result holds whatever output was collected.
        """
        command = str(arguments.get("command", "") or "").strip()
        if not command:
            return ErrorResult(message="command is required")

        cwd = context.cwd or self.cwd
        stdout_parts: list[str] = []
        stderr_parts: list[str] = []

        try:
            log.info("Executing shell command", command=command, cwd=str(cwd))
            process = await asyncio.create_subprocess_exec(
                self.executable,
                "-c",
                command,
                cwd=str(cwd),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                start_new_session=True,
            )
        except OSError as e:
            log.error("Shell command failed to start", command=command, error=str(e))
            return ShellResult(stdout="", stderr=str(e), exit_code=1)

        readers = [
            asyncio.create_task(self._pump(process.stdout, "stdout", stdout_parts, context)),
            asyncio.create_task(self._pump(process.stderr, "stderr", stderr_parts, context)),
        ]
        remove_listener = None
        if context.cancel is not None:
            remove_listener = context.cancel.add_listener(lambda: self._terminate(process))

        waiter = asyncio.create_task(process.wait())
        try:
            await self._settle([waiter, *readers], context.cancel)
        except asyncio.CancelledError:
            self._signal_group(process, getattr(signal, "SIGKILL", signal.SIGTERM))
            for task in (waiter, *readers):
                task.cancel()
            raise
        finally:
            if remove_listener is not None:
                remove_listener()

        log.info("Shell command finished", command=command, exit_code=process.returncode)
        return ShellResult(
            stdout="".join(stdout_parts),
            stderr="".join(stderr_parts),
            exit_code=process.returncode,
        )
