"""Subprocess execution with a timeout and an output ceiling."""

from __future__ import annotations

import asyncio
import contextlib
import sys

from loguru import logger

from threadpal.agents.base import shell_quote
from threadpal.errors import AgentTimeoutError, ExecutionError

DEFAULT_MAX_BUFFER = 10 * 1024 * 1024
MAX_BUFFER_CODE = "max_buffer"
READ_CHUNK_SIZE = 64 * 1024
REAP_TIMEOUT_SECONDS = 1


class _OutputOverflow(Exception):
    pass


def wrap_command_with_pty(command: str) -> str:
    """Run ``command`` under ``script`` so the child sees a terminal."""
    if sys.platform == "darwin":
        return f"script -q /dev/null bash -lc {shell_quote(command)}"
    return f"script -qfec {shell_quote(command)} /dev/null"


def _decode(data: bytes | bytearray) -> str:
    return bytes(data).decode("utf-8", errors="replace")


async def _collect(stream: asyncio.StreamReader | None, sink: bytearray, max_buffer: int) -> None:
    if stream is None:
        return
    while chunk := await stream.read(READ_CHUNK_SIZE):
        sink.extend(chunk)
        if len(sink) > max_buffer:
            raise _OutputOverflow


async def execute(
    program: str,
    args: list[str],
    *,
    timeout_seconds: float | None = None,
    max_buffer: int = DEFAULT_MAX_BUFFER,
) -> str:
    """Run one program to completion and return its stdout.

    Both streams are read as they arrive. The process is killed as soon as
    either one passes ``max_buffer`` bytes or ``timeout_seconds`` elapses.

    Raises:
        AgentTimeoutError: when the process outlives ``timeout_seconds``.
        ExecutionError: on a non-zero exit status or when either stream exceeds ``max_buffer``.
    """
    process = await asyncio.create_subprocess_exec(
        program,
        *args,
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    raw_stdout = bytearray()
    raw_stderr = bytearray()
    readers = [
        asyncio.create_task(_collect(process.stdout, raw_stdout, max_buffer)),
        asyncio.create_task(_collect(process.stderr, raw_stderr, max_buffer)),
    ]
    try:
        async with asyncio.timeout(timeout_seconds):
            await asyncio.gather(*readers)
            await process.wait()
    except TimeoutError as exc:
        await _abort(process, readers)
        logger.warning("invoker.timeout program={} timeout_seconds={}", program, timeout_seconds)
        raise AgentTimeoutError(
            f"{program} timed out after {timeout_seconds}s",
            stdout=_decode(raw_stdout),
            stderr=_decode(raw_stderr),
            exit_code=process.returncode,
        ) from exc
    except _OutputOverflow as exc:
        await _abort(process, readers)
        logger.warning("invoker.max_buffer program={} max_buffer={}", program, max_buffer)
        raise ExecutionError(
            f"{program} output exceeded {max_buffer} bytes",
            stdout=_decode(raw_stdout[:max_buffer]),
            stderr=_decode(raw_stderr[-max_buffer:]),
            exit_code=process.returncode,
            code=MAX_BUFFER_CODE,
        ) from exc

    stdout = _decode(raw_stdout)
    if process.returncode != 0:
        raise ExecutionError(
            f"{program} exited with status {process.returncode}",
            stdout=stdout,
            stderr=_decode(raw_stderr),
            exit_code=process.returncode,
        )
    return stdout


async def _abort(process: asyncio.subprocess.Process, readers: list[asyncio.Task[None]]) -> None:
    for reader in readers:
        reader.cancel()
    await asyncio.gather(*readers, return_exceptions=True)
    if process.returncode is None:
        process.kill()
    # A grandchild may keep the pipes open after the kill.
    with contextlib.suppress(TimeoutError):
        async with asyncio.timeout(REAP_TIMEOUT_SECONDS):
            await process.wait()
