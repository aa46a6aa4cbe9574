"""
Runs shell commands as the leader of their own process group, streaming
decoded output as it arrives and recording every background process the
command leaves behind, so that an abort can take down the whole tree.
"""

import asyncio
import logging
import os
import secrets
import shlex
import signal
import subprocess
import sys
import tempfile
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal, Union

from pydantic import BaseModel

from coding_agent_core.core.cancellation import CancelSignal
from coding_agent_core.utils.system_encoding import get_incremental_decoder
from coding_agent_core.utils.text_utils import is_binary, strip_ansi

logger = logging.getLogger(__name__)

SIGKILL_TIMEOUT = 0.2
PIPE_DRAIN_TIMEOUT = 0.1
MAX_SNIFF_SIZE = 4096
MAX_SNIFF_CHUNKS = 20
CLI_ENV_MARKER = "CODING_AGENT_CLI"


class ShellDataEvent(BaseModel):
    """A decoded, ANSI-stripped chunk of output."""

    type: Literal["data"] = "data"
    stream: Literal["stdout", "stderr"]
    chunk: str


class ShellBinaryDetectedEvent(BaseModel):
    """Emitted once, when the output stream is recognised as binary."""

    type: Literal["binary_detected"] = "binary_detected"


class ShellBinaryProgressEvent(BaseModel):
    """Replaces data events once the stream is binary."""

    type: Literal["binary_progress"] = "binary_progress"
    bytes_received: int


ShellOutputEvent = Union[
    ShellDataEvent, ShellBinaryDetectedEvent, ShellBinaryProgressEvent
]
OutputEventCallback = Callable[[ShellOutputEvent], None]


@dataclass
class ShellExecutionResult:
    raw_output: bytes
    output: str
    stdout: str
    stderr: str
    exit_code: int | None
    signal: int | None
    error: BaseException | None
    aborted: bool
    pid: int | None
    background_pids: list[int] = field(default_factory=list)


@dataclass
class ShellExecutionHandle:
    pid: int | None
    result: "asyncio.Future[ShellExecutionResult]"


def _pgrep_temp_path() -> str:
    return os.path.join(
        tempfile.gettempdir(), f"shell_pgrep_{secrets.token_hex(6)}.tmp"
    )


def wrap_command_for_pgrep(command: str, pgrep_file: str) -> str:
    """
    Wraps a command so that, after it finishes, the shell writes the pids of
    every process still in its group to `pgrep_file`, then exits with the
    command's own status.
    """
    command = command.strip()
    if not command.endswith("&"):
        command += ";"
    return (
        f"{{ {command}\n}}; __code=$?; "
        f"pgrep -g 0 >{shlex.quote(pgrep_file)} 2>&1; exit $__code;"
    )


def _remove_file(path: str | None) -> None:
    if path is None:
        return
    try:
        Path(path).unlink(missing_ok=True)
    except OSError as e:
        logger.warning(f"Failed to remove temp file {path}: {e}")


class _OutputCollector:
    """Accumulates raw bytes and per-stream decoded text, emitting events."""

    def __init__(self, on_output_event: OutputEventCallback | None):
        self._on_output_event = on_output_event
        self._decoders = {
            "stdout": get_incremental_decoder(),
            "stderr": get_incremental_decoder(),
        }
        self._text: dict[str, list[str]] = {"stdout": [], "stderr": []}
        self.chunks: list[bytes] = []
        self.bytes_received = 0
        self.sniffed_bytes = 0
        self.is_streaming_raw = True
        self.finished = False

    def _emit(self, event: ShellOutputEvent) -> None:
        if self._on_output_event is not None:
            self._on_output_event(event)

    def feed(self, data: bytes, stream: Literal["stdout", "stderr"]) -> None:
        # Background children may keep writing after the result is settled.
        if self.finished:
            return
        self.chunks.append(data)
        self.bytes_received += len(data)

        if self.is_streaming_raw and self.sniffed_bytes < MAX_SNIFF_SIZE:
            sniff = b"".join(self.chunks[:MAX_SNIFF_CHUNKS])[:MAX_SNIFF_SIZE]
            self.sniffed_bytes = len(sniff)
            if is_binary(sniff):
                self.is_streaming_raw = False
                self._emit(ShellBinaryDetectedEvent())

        chunk = strip_ansi(self._decoders[stream].decode(data))
        self._text[stream].append(chunk)

        if self.is_streaming_raw:
            if chunk:
                self._emit(ShellDataEvent(stream=stream, chunk=chunk))
        else:
            self._emit(
                ShellBinaryProgressEvent(bytes_received=self.bytes_received)
            )

    def finish(self) -> tuple[str, str]:
        self.finished = True
        for stream, decoder in self._decoders.items():
            tail = decoder.decode(b"", final=True)
            if tail:
                self._text[stream].append(strip_ansi(tail))
        return "".join(self._text["stdout"]), "".join(self._text["stderr"])


class _ShellProtocol(asyncio.SubprocessProtocol):
    def __init__(
        self, collector: _OutputCollector, loop: asyncio.AbstractEventLoop
    ):
        self._collector = collector
        self._open_pipes = {1, 2}
        self.exited: asyncio.Future[None] = loop.create_future()
        self.pipes_closed: asyncio.Future[None] = loop.create_future()

    def pipe_data_received(self, fd: int, data: bytes) -> None:
        self._collector.feed(data, "stdout" if fd == 1 else "stderr")

    def pipe_connection_lost(self, fd: int, exc: Exception | None) -> None:
        self._open_pipes.discard(fd)
        if not self._open_pipes and not self.pipes_closed.done():
            self.pipes_closed.set_result(None)

    def process_exited(self) -> None:
        if not self.exited.done():
            self.exited.set_result(None)


class _ShellRun:
    """State of one spawned command, from spawn until its result settles."""

    def __init__(
        self,
        transport: asyncio.SubprocessTransport,
        protocol: _ShellProtocol,
        collector: _OutputCollector,
        abort_signal: CancelSignal,
        pgrep_file: str | None,
        is_windows: bool,
    ):
        self.transport = transport
        self.protocol = protocol
        self.collector = collector
        self.abort_signal = abort_signal
        self.pgrep_file = pgrep_file
        self.is_windows = is_windows
        self.pid: int = transport.get_pid()
        self._loop = asyncio.get_running_loop()
        self._kill_task: asyncio.Task | None = None

    def on_abort(self) -> None:
        if self._kill_task is None or self._kill_task.done():
            self._kill_task = self._loop.create_task(self._terminate())

    def _kill_child(self) -> None:
        if self.protocol.exited.done():
            return
        try:
            self.transport.kill()
        except ProcessLookupError:
            return
        except OSError as e:
            logger.error(f"Failed to kill shell process {self.pid}: {e}")

    async def _terminate(self) -> None:
        if self.is_windows:
            if self.protocol.exited.done():
                return
            try:
                killer = await asyncio.create_subprocess_exec(
                    "taskkill",
                    "/pid",
                    str(self.pid),
                    "/f",
                    "/t",
                    stdout=subprocess.DEVNULL,
                    stderr=subprocess.DEVNULL,
                )
                await killer.wait()
            except OSError as e:
                logger.warning(f"taskkill failed for {self.pid}: {e}")
                self._kill_child()
            return

        # The group id equals the leader's pid and outlives the leader while
        # background members remain.
        try:
            os.killpg(self.pid, signal.SIGTERM)
        except ProcessLookupError:
            return
        except OSError as e:
            logger.warning(f"Failed to signal process group {self.pid}: {e}")
            self._kill_child()
            return

        await asyncio.sleep(SIGKILL_TIMEOUT)

        try:
            os.killpg(self.pid, signal.SIGKILL)
        except ProcessLookupError:
            return
        except OSError as e:
            logger.warning(f"Failed to kill process group {self.pid}: {e}")
            self._kill_child()

    def _read_background_pids(self) -> list[int]:
        if self.pgrep_file is None:
            return []
        try:
            content = Path(self.pgrep_file).read_text(encoding="utf-8")
        except FileNotFoundError:
            if not self.abort_signal.is_set():
                logger.warning(f"Missing pgrep output for process {self.pid}")
            return []
        except OSError as e:
            logger.warning(f"Could not read pgrep output: {e}")
            return []

        background_pids = []
        for line in content.splitlines():
            line = line.strip()
            if not line:
                continue
            if not line.isdigit():
                logger.warning(f"pgrep: {line}")
                continue
            pid = int(line)
            if pid != self.pid:
                background_pids.append(pid)
        return background_pids

    def _close_transport(self) -> None:
        # Closing while a background child still holds the pipes would hit
        # it with SIGPIPE, so wait for the pipes to close on their own.
        if self.protocol.pipes_closed.done():
            self.transport.close()
        else:
            self.protocol.pipes_closed.add_done_callback(
                lambda _: self.transport.close()
            )

    async def wait(self) -> ShellExecutionResult:
        try:
            await self.protocol.exited
            try:
                await asyncio.wait_for(
                    asyncio.shield(self.protocol.pipes_closed),
                    PIPE_DRAIN_TIMEOUT,
                )
            except asyncio.TimeoutError:
                logger.debug(
                    f"Pipes of {self.pid} still open after exit, "
                    "held by background processes"
                )
            if self._kill_task is not None:
                await self._kill_task
            stdout, stderr = self.collector.finish()
            background_pids = self._read_background_pids()
        finally:
            _remove_file(self.pgrep_file)

        aborted = self.abort_signal.is_set()
        # A later abort must still be able to reach surviving background
        # processes through the group.
        if aborted or not background_pids:
            self.abort_signal.remove_listener(self.on_abort)
        self._close_transport()

        returncode = self.transport.get_returncode()
        exit_code: int | None = returncode
        exit_signal: int | None = None
        if returncode is not None and returncode < 0:
            exit_code, exit_signal = None, -returncode

        return ShellExecutionResult(
            raw_output=b"".join(self.collector.chunks),
            output=stdout + (f"\n{stderr}" if stderr else ""),
            stdout=stdout,
            stderr=stderr,
            exit_code=exit_code,
            signal=exit_signal,
            error=None,
            aborted=aborted,
            pid=self.pid,
            background_pids=background_pids,
        )


class ShellExecutionService:
    """
    Spawns shell commands with process-group management and streaming
    output. On POSIX the command runs under ``bash -c`` in a new session;
    on Windows under ``cmd.exe /c`` where only the direct child is tracked.
    """

    @staticmethod
    async def execute(
        command: str,
        cwd: str | os.PathLike,
        on_output_event: OutputEventCallback | None,
        abort_signal: CancelSignal,
    ) -> ShellExecutionHandle:
        """
        Starts `command` and returns immediately with its pid and a future
        for the final result. The future never raises: spawn failures are
        reported through `ShellExecutionResult.error`.
        """
        loop = asyncio.get_running_loop()
        is_windows = sys.platform == "win32"

        pgrep_file: str | None = None
        if is_windows:
            argv = ["cmd.exe", "/c", command]
        else:
            pgrep_file = _pgrep_temp_path()
            argv = ["bash", "-c", wrap_command_for_pgrep(command, pgrep_file)]

        collector = _OutputCollector(on_output_event)
        protocol = _ShellProtocol(collector, loop)

        try:
            transport, _ = await loop.subprocess_exec(
                lambda: protocol,
                *argv,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                cwd=cwd,
                env={**os.environ, CLI_ENV_MARKER: "1"},
                start_new_session=not is_windows,
            )
        except OSError as e:
            _remove_file(pgrep_file)
            logger.debug(f"Failed to spawn '{command}': {e}")
            failed: asyncio.Future[ShellExecutionResult] = loop.create_future()
            failed.set_result(
                ShellExecutionResult(
                    raw_output=b"",
                    output="",
                    stdout="",
                    stderr="",
                    exit_code=None,
                    signal=None,
                    error=e,
                    aborted=abort_signal.is_set(),
                    pid=None,
                )
            )
            return ShellExecutionHandle(pid=None, result=failed)

        run = _ShellRun(
            transport, protocol, collector, abort_signal, pgrep_file, is_windows
        )
        logger.debug(f"Spawned shell process {run.pid} for '{command}'")

        abort_signal.add_listener(run.on_abort)
        if abort_signal.is_set():
            run.on_abort()

        return ShellExecutionHandle(
            pid=run.pid, result=loop.create_task(run.wait())
        )
