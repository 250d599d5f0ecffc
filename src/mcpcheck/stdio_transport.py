"""Process binding: a server spawned as a child, one JSON message per line.

stdin carries requests, stdout carries responses and notifications, and
stderr is forwarded line by line as DIAGNOSTIC events.
"""

from __future__ import annotations

import asyncio
import logging
import os
import shlex
import signal
from typing import Any

from mcpcheck.config import ProcessTarget, TargetKind
from mcpcheck.error import (
    ConnectionTimeoutError,
    NotConnectedError,
    TransportConnectionError,
)
from mcpcheck.transport import LineFramedTransport, TransportEvent

logger = logging.getLogger(__name__)

PROCESS_STARTUP_TIMEOUT_SECONDS = 5.0


def _describe_signal(returncode: int) -> str:
    try:
        return signal.Signals(-returncode).name
    except ValueError:
        return str(-returncode)


class StdioTransport(LineFramedTransport):
    """Talks to a server over the stdio pipes of a child process."""

    kind = TargetKind.PROCESS

    def __init__(self, *, startup_timeout: float = PROCESS_STARTUP_TIMEOUT_SECONDS, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self._startup_timeout = startup_timeout
        self._process: asyncio.subprocess.Process | None = None

    @property
    def pid(self) -> int | None:
        return self._process.pid if self._process else None

    async def _open(self, target: ProcessTarget) -> None:
        try:
            self._process = await asyncio.wait_for(
                self._spawn_process(target), timeout=self._startup_timeout
            )
        except asyncio.TimeoutError as e:
            raise ConnectionTimeoutError(
                "Process startup timeout", data={"command": target.command}
            ) from e
        except OSError as e:
            raise TransportConnectionError(
                f"Failed to start process {target.command!r}: {e}",
                data={"command": target.command},
            ) from e
        logger.debug("Started %s (pid %s)", target.command, self._process.pid)

    async def _spawn_process(self, target: ProcessTarget) -> asyncio.subprocess.Process:
        env = {**os.environ, **target.env}
        pipes: dict[str, Any] = {
            "stdin": asyncio.subprocess.PIPE,
            "stdout": asyncio.subprocess.PIPE,
            "stderr": asyncio.subprocess.PIPE,
        }
        if target.shell:
            command_line = " ".join([target.command, *(shlex.quote(a) for a in target.args)])
            return await asyncio.create_subprocess_shell(
                command_line, env=env, cwd=target.cwd, **pipes
            )
        return await asyncio.create_subprocess_exec(
            target.command, *target.args, env=env, cwd=target.cwd, **pipes
        )

    def _on_connected(self) -> None:
        process = self._process
        if process is None:
            return
        if process.stdout is not None:
            self._spawn(self._read_stream(process.stdout))
        if process.stderr is not None:
            self._spawn(self._read_diagnostics(process.stderr))

    async def _read_diagnostics(self, stream: asyncio.StreamReader) -> None:
        try:
            async for raw in stream:
                line = raw.decode("utf-8", errors="replace").strip()
                if line:
                    self._emit(TransportEvent.DIAGNOSTIC, line)
        except (OSError, ValueError):
            logger.debug("stderr reader stopped", exc_info=True)

    async def _on_eof(self) -> None:
        process = self._process
        if process is None or self._closing:
            return
        returncode = await process.wait()
        if self._closing:
            return
        if returncode > 0:
            self._handle_error(
                TransportConnectionError(
                    f"Process exited with code {returncode}", data={"returncode": returncode}
                )
            )
        elif returncode < 0:
            self._handle_error(
                TransportConnectionError(
                    f"Process terminated with signal {_describe_signal(returncode)}",
                    data={"returncode": returncode},
                )
            )
        else:
            self._handle_close()

    async def _write(self, text: str) -> None:
        process = self._process
        if process is None or process.stdin is None or process.stdin.is_closing():
            raise NotConnectedError("Process stdin is closed")
        process.stdin.write(text.encode("utf-8"))
        await process.stdin.drain()

    async def _shutdown(self, grace: float) -> None:
        process, self._process = self._process, None
        if process is None or process.returncode is not None:
            return
        if process.stdin is not None and not process.stdin.is_closing():
            process.stdin.close()
        try:
            process.terminate()
        except ProcessLookupError:
            return
        try:
            await asyncio.wait_for(process.wait(), timeout=grace)
        except asyncio.TimeoutError:
            logger.warning("Process %d did not exit after %.1fs, killing it", process.pid, grace)
            try:
                process.kill()
            except ProcessLookupError:
                return
            await process.wait()
