"""Subprocess runtime: run an adapter's command line through ``bash -lc``."""

from __future__ import annotations

import base64
from collections.abc import Awaitable, Callable
from typing import TypeAlias

from loguru import logger

from threadpal.agents.base import AgentAdapter, InvocationRequest, shell_quote
from threadpal.errors import AgentTimeoutError, ExecutionError, error_code
from threadpal.runtimes.invoker import DEFAULT_MAX_BUFFER, execute, wrap_command_with_pty
from threadpal.runtimes.types import RunInput, RuntimeResult

PROMPT_EXPRESSION = '"$PROMPT"'
RUNTIME_NAME = "subprocess"

Executor: TypeAlias = Callable[..., Awaitable[str]]


def build_shell_command(adapter: AgentAdapter, run_input: RunInput) -> str:
    """Build the full shell line, decoding the prompt from base64 into ``$PROMPT``."""
    prompt_b64 = base64.b64encode(run_input.prompt.encode("utf-8")).decode("ascii")
    request = InvocationRequest(
        prompt=run_input.prompt,
        session_id=run_input.session_id,
        model=run_input.model,
        reasoning_effort=run_input.reasoning_effort,
    )
    agent_command = adapter.build_command(request, prompt_expression=PROMPT_EXPRESSION)
    command = " ".join([
        f"PROMPT_B64={shell_quote(prompt_b64)};",
        'PROMPT=$(printf %s "$PROMPT_B64" | base64 --decode);',
        agent_command,
    ])
    if adapter.descriptor.needs_pty:
        command = wrap_command_with_pty(command)
    if adapter.descriptor.merge_stderr:
        command = f"{command} 2>&1"
    return command


class SubprocessRuntime:
    """Runs any adapter as a child process."""

    def __init__(
        self,
        adapter: AgentAdapter,
        *,
        timeout_seconds: float | None = None,
        max_buffer: int = DEFAULT_MAX_BUFFER,
        executor: Executor = execute,
    ) -> None:
        self.adapter = adapter
        self._timeout_seconds = timeout_seconds
        self._max_buffer = max_buffer
        self._executor = executor

    async def run(self, run_input: RunInput) -> RuntimeResult:
        command = build_shell_command(self.adapter, run_input)
        logger.debug("runtime.subprocess.start agent={} resume={}", self.adapter.id, bool(run_input.session_id))

        exec_error: ExecutionError | None = None
        try:
            output = await self._executor(
                "bash",
                ["-lc", command],
                timeout_seconds=self._timeout_seconds,
                max_buffer=self._max_buffer,
            )
        except AgentTimeoutError:
            raise
        except ExecutionError as exc:
            if not exc.stdout.strip():
                raise
            exec_error = exc
            output = exc.stdout

        parsed = self.adapter.parse_output(output)
        if exec_error is not None:
            if not parsed.saw_structured and not parsed.text.strip():
                raise exec_error
            logger.warning(
                "runtime.subprocess.salvaged agent={} code={}",
                self.adapter.id,
                error_code(exec_error),
            )

        return RuntimeResult(
            text=parsed.text or output or "",
            session_id=parsed.session_id,
            saw_structured=parsed.saw_structured,
            raw_output=output or "",
            runtime=RUNTIME_NAME,
            resumed=bool(run_input.session_id),
        )
