"""
Runs approved commands as child processes.

Each command gets its own session (process group) so a timeout can stop
the whole tree, not just the shell. Output is captured per stream up to a
byte limit; anything beyond it is drained and dropped.
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import time
from collections.abc import Sequence
from pathlib import Path

from little_helper.models.command import CommandRequest, ExecutionResult, FailureReason

logger = logging.getLogger(__name__)

SHELL = "/bin/sh"
READ_CHUNK_BYTES = 64 * 1024
DRAIN_AFTER_KILL_SECONDS = 2.0


async def _read_bounded(stream: asyncio.StreamReader | None, limit: int) -> tuple[bytes, bool]:
    """Read a stream to EOF, keeping at most `limit` bytes."""
    if stream is None:
        return b"", False
    kept = bytearray()
    truncated = False
    while True:
        chunk = await stream.read(READ_CHUNK_BYTES)
        if not chunk:
            break
        room = limit - len(kept)
        if room > 0:
            kept.extend(chunk[:room])
        if len(chunk) > room:
            truncated = True
    return bytes(kept), truncated


async def _feed_stdin(process: asyncio.subprocess.Process, data: bytes | bytearray | None) -> None:
    if process.stdin is None:
        return
    try:
        if data:
            process.stdin.write(data)
            await process.stdin.drain()
    except (BrokenPipeError, ConnectionResetError):
        logger.debug("Child closed stdin early", extra={"pid": process.pid})
    finally:
        process.stdin.close()


def _signal_group(pid: int, sig: signal.Signals) -> None:
    try:
        os.killpg(pid, sig)
    except ProcessLookupError:
        pass
    except PermissionError:
        # privileged children; sudo relays the signal to them
        logger.debug("Not permitted to signal process group", extra={"pid": pid})


class CommandExecutor:
    """
    Spawns commands with a wall-clock limit and bounded output capture.

    Args:
        timeout_seconds: Default wall-clock limit per command
        kill_grace_seconds: Time between SIGTERM and SIGKILL on timeout
        max_output_bytes: Capture limit per stream
    """

    def __init__(
        self,
        timeout_seconds: float = 60.0,
        kill_grace_seconds: float = 1.0,
        max_output_bytes: int = 1024 * 1024,
    ):
        self.timeout_seconds = timeout_seconds
        self.kill_grace_seconds = kill_grace_seconds
        self.max_output_bytes = max_output_bytes

    async def run(
        self,
        request: CommandRequest,
        timeout_seconds: float | None = None,
        argv: Sequence[str] | None = None,
        stdin: bytes | bytearray | None = None,
    ) -> ExecutionResult:
        """
        Run a command and capture its result. Never raises for command failures.

        Args:
            request: The approved request (command text and working directory)
            timeout_seconds: Override for the default wall-clock limit
            argv: Exact argv to exec instead of `/bin/sh -c <command>`
            stdin: Bytes written to the child's stdin before it is closed
        """
        timeout = timeout_seconds if timeout_seconds is not None else self.timeout_seconds
        args = list(argv) if argv is not None else [SHELL, "-c", request.command]
        elevated = argv is not None
        started = time.monotonic()

        cwd = Path(request.working_directory).expanduser()
        if not cwd.is_dir():
            return self._spawn_failed(request, started, f"Working directory not found: {cwd}", elevated)

        try:
            process = await asyncio.create_subprocess_exec(
                *args,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(cwd),
                start_new_session=True,
            )
        except OSError as e:
            return self._spawn_failed(request, started, e.strerror or str(e), elevated)

        logger.info(
            "Command started",
            extra={"request_id": request.request_id, "pid": process.pid, "timeout_seconds": timeout},
        )

        stdin_task = asyncio.create_task(_feed_stdin(process, stdin))
        stdout_task = asyncio.create_task(_read_bounded(process.stdout, self.max_output_bytes))
        stderr_task = asyncio.create_task(_read_bounded(process.stderr, self.max_output_bytes))

        wait_task = asyncio.create_task(process.wait())
        done, _ = await asyncio.wait({stdout_task, stderr_task, wait_task}, timeout=timeout)
        # A descendant holding the pipes open counts as still running
        timed_out = len(done) < 3
        if timed_out:
            await self._terminate(process)
        await wait_task

        await stdin_task
        (stdout, stdout_truncated), (stderr, stderr_truncated) = await self._collect(
            stdout_task, stderr_task
        )
        duration_ms = int((time.monotonic() - started) * 1000)

        result = ExecutionResult(
            command=request.command,
            stdout=stdout,
            stderr=stderr,
            exit_status=None if timed_out else process.returncode,
            duration_ms=duration_ms,
            failure_reason=FailureReason.TIMED_OUT if timed_out else None,
            failure_detail=f"Timed out after {timeout:g}s" if timed_out else None,
            stdout_truncated=stdout_truncated,
            stderr_truncated=stderr_truncated,
            elevated=elevated,
            pid=process.pid,
        )

        logger.info(
            "Command finished",
            extra={
                "request_id": request.request_id,
                "exit_status": result.exit_status,
                "timed_out": timed_out,
                "duration_ms": duration_ms,
            },
        )
        return result

    async def _terminate(self, process: asyncio.subprocess.Process) -> None:
        """SIGTERM the process group, then SIGKILL it after the grace period."""
        logger.warning("Command timed out; terminating", extra={"pid": process.pid})
        _signal_group(process.pid, signal.SIGTERM)
        try:
            await asyncio.wait_for(process.wait(), timeout=self.kill_grace_seconds)
        except TimeoutError:
            pass
        # Children may ignore SIGTERM or outlive the shell
        _signal_group(process.pid, signal.SIGKILL)
        await process.wait()

    @staticmethod
    async def _collect(
        stdout_task: asyncio.Task[tuple[bytes, bool]],
        stderr_task: asyncio.Task[tuple[bytes, bool]],
    ) -> tuple[tuple[bytes, bool], tuple[bytes, bool]]:
        """Finish reading both streams; a descendant holding a pipe open is cut off."""
        done, pending = await asyncio.wait(
            {stdout_task, stderr_task}, timeout=DRAIN_AFTER_KILL_SECONDS
        )
        for task in pending:
            task.cancel()
        results = []
        for task in (stdout_task, stderr_task):
            if task in done and not task.cancelled():
                results.append(task.result())
            else:
                results.append((b"", True))
        return results[0], results[1]

    @staticmethod
    def _spawn_failed(
        request: CommandRequest, started: float, detail: str, elevated: bool
    ) -> ExecutionResult:
        logger.warning(
            "Command could not be started",
            extra={"request_id": request.request_id, "detail": detail},
        )
        return ExecutionResult(
            command=request.command,
            stdout=b"",
            stderr=b"",
            exit_status=None,
            duration_ms=int((time.monotonic() - started) * 1000),
            failure_reason=FailureReason.SPAWN_FAILED,
            failure_detail=detail,
            elevated=elevated,
        )
