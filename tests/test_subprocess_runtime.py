from __future__ import annotations

import base64
from typing import Any

import pytest

from threadpal.agents import ClaudeAgent, CodexAgent, GenericAgent, GenericAgentConfig
from threadpal.errors import AgentTimeoutError, ExecutionError
from threadpal.runtimes import RunInput, SubprocessRuntime
from threadpal.runtimes.subprocess_runtime import build_shell_command


class RecordingExecutor:
    def __init__(self, *, output: str = "", error: Exception | None = None) -> None:
        self.output = output
        self.error = error
        self.calls: list[dict[str, Any]] = []

    async def __call__(self, program: str, args: list[str], **kwargs: Any) -> str:
        self.calls.append({"program": program, "args": args, **kwargs})
        if self.error is not None:
            raise self.error
        return self.output


def test_shell_command_decodes_prompt_from_base64() -> None:
    command = build_shell_command(CodexAgent(), RunInput(prompt="it's $HOME"))
    encoded = base64.b64encode("it's $HOME".encode()).decode("ascii")

    assert command.startswith(f"PROMPT_B64='{encoded}'; PROMPT=$(printf %s \"$PROMPT_B64\" | base64 --decode); ")
    assert command.endswith('codex exec --json --skip-git-repo-check --yolo "$PROMPT"')


def test_shell_command_wraps_pty_and_merges_stderr() -> None:
    pty_command = build_shell_command(ClaudeAgent(), RunInput(prompt="hi"))
    merged = build_shell_command(
        GenericAgent("noisy", GenericAgentConfig(cmd="noisy", merge_stderr=True)),
        RunInput(prompt="hi"),
    )

    assert pty_command.startswith("script ")
    assert merged.endswith('noisy "$PROMPT" 2>&1')


@pytest.mark.asyncio
async def test_run_parses_structured_output() -> None:
    executor = RecordingExecutor(
        output='{"type":"thread.started","thread_id":"T1"}\n'
        '{"type":"item.completed","item":{"type":"agent_message","text":"ok"}}\n'
    )
    runtime = SubprocessRuntime(CodexAgent(), timeout_seconds=30, max_buffer=1024, executor=executor)

    result = await runtime.run(RunInput(prompt="hi", session_id="T0"))

    assert result.text == "ok"
    assert result.session_id == "T1"
    assert result.runtime == "subprocess"
    assert result.resumed is True
    assert executor.calls[0]["program"] == "bash"
    assert executor.calls[0]["args"][0] == "-lc"
    assert executor.calls[0]["timeout_seconds"] == 30
    assert executor.calls[0]["max_buffer"] == 1024


@pytest.mark.asyncio
async def test_run_salvages_stdout_from_failed_exit() -> None:
    error = ExecutionError("exit 1", stdout='{"type":"item.completed","item":{"type":"agent_message","text":"late"}}')
    runtime = SubprocessRuntime(CodexAgent(), executor=RecordingExecutor(error=error))

    result = await runtime.run(RunInput(prompt="hi"))

    assert result.text == "late"
    assert result.saw_structured is True


@pytest.mark.asyncio
async def test_run_reraises_when_nothing_salvageable() -> None:
    error = ExecutionError("exit 1", stdout="", stderr="fatal")
    runtime = SubprocessRuntime(CodexAgent(), executor=RecordingExecutor(error=error))

    with pytest.raises(ExecutionError):
        await runtime.run(RunInput(prompt="hi"))


@pytest.mark.asyncio
async def test_run_never_salvages_timeouts() -> None:
    error = AgentTimeoutError("timed out", stdout="partial output")
    runtime = SubprocessRuntime(CodexAgent(), executor=RecordingExecutor(error=error))

    with pytest.raises(AgentTimeoutError):
        await runtime.run(RunInput(prompt="hi"))
