from __future__ import annotations

import asyncio
import json
import threading
from typing import Any

import pytest

from threadpal.app.runtime import AppRuntime, TurnOverrides
from threadpal.config import Settings
from threadpal.errors import ExecutionError
from threadpal.runtimes import RunInput, RuntimeResult


class FakePrimaryRuntime:
    def __init__(self, *, session_id: str | None = "T1", text: str = "ok", error: Exception | None = None) -> None:
        self.session_id = session_id
        self.text = text
        self.error = error
        self.calls: list[RunInput] = []

    async def run(self, run_input: RunInput) -> RuntimeResult:
        self.calls.append(run_input)
        if self.error is not None:
            raise self.error
        return RuntimeResult(
            text=self.text,
            session_id=self.session_id or run_input.session_id,
            saw_structured=True,
            raw_output=None,
        )


class ScriptedExecutor:
    def __init__(self, listing: str = "") -> None:
        self.listing = listing
        self.commands: list[str] = []

    async def __call__(self, program: str, args: list[str], **kwargs: Any) -> str:
        command = args[-1]
        self.commands.append(command)
        if "session list" in command:
            return self.listing
        return "plain reply"


def _runtime(tmp_path, primary=None, executor=None, **settings: Any) -> AppRuntime:
    settings.setdefault("memory_enabled", False)
    kwargs: dict[str, Any] = {"primary_runtime": primary or FakePrimaryRuntime()}
    if executor is not None:
        kwargs["executor"] = executor
    return AppRuntime(Settings(home=tmp_path, **settings), **kwargs)


@pytest.mark.asyncio
async def test_run_turn_persists_new_session(tmp_path) -> None:
    primary = FakePrimaryRuntime(session_id="T1")
    runtime = _runtime(tmp_path, primary)

    reply = await runtime.run_turn("42", None, "hello")

    assert reply == "ok"
    assert primary.calls[0].session_id is None
    assert runtime.sessions == {"42:root:codex": "T1"}
    assert json.loads((tmp_path / "sessions.json").read_text(encoding="utf-8")) == {"42:root:codex": "T1"}


@pytest.mark.asyncio
async def test_run_turn_resumes_and_migrates_legacy_session(tmp_path) -> None:
    (tmp_path / "sessions.json").write_text(json.dumps({"42": "OLD"}), encoding="utf-8")
    primary = FakePrimaryRuntime(session_id=None)
    runtime = _runtime(tmp_path, primary)

    await runtime.run_turn("42", None, "again")

    assert primary.calls[0].session_id == "OLD"
    assert runtime.sessions == {"42:root:codex": "OLD"}
    assert json.loads((tmp_path / "sessions.json").read_text(encoding="utf-8")) == {"42:root:codex": "OLD"}


@pytest.mark.asyncio
async def test_topics_keep_separate_sessions(tmp_path) -> None:
    primary = FakePrimaryRuntime(session_id=None)
    runtime = _runtime(tmp_path, primary)
    runtime.sessions.update({"42:root:codex": "A", "42:7:codex": "B"})

    await runtime.run_turn("42", "7", "in topic")
    await runtime.run_turn("42", None, "in root")

    assert [call.session_id for call in primary.calls] == ["B", "A"]


@pytest.mark.asyncio
async def test_invocation_errors_leave_session_table_untouched(tmp_path) -> None:
    runtime = _runtime(tmp_path, FakePrimaryRuntime(error=ExecutionError("boom")))

    with pytest.raises(ExecutionError):
        await runtime.run_turn("42", None, "hello")

    assert runtime.sessions == {}
    assert not (tmp_path / "sessions.json").exists()


@pytest.mark.asyncio
async def test_persisted_model_and_thinking_apply_unless_overridden(tmp_path) -> None:
    primary = FakePrimaryRuntime()
    runtime = _runtime(tmp_path, primary)
    runtime.set_model("gpt-5")
    runtime.set_thinking("high")

    await runtime.run_turn("42", None, "one")
    await runtime.run_turn("42", None, "two", TurnOverrides(model="o3"))
    runtime.set_thinking(None)
    await runtime.run_turn("42", None, "three")

    assert [(call.model, call.reasoning_effort) for call in primary.calls] == [
        ("gpt-5", "high"),
        ("o3", "high"),
        ("gpt-5", None),
    ]


@pytest.mark.asyncio
async def test_topic_agent_override_routes_to_subprocess_backend(tmp_path) -> None:
    executor = ScriptedExecutor(listing='[{"id":"ses_9","time":{"created":5}}]')
    runtime = _runtime(tmp_path, executor=executor)

    assert runtime.set_topic_agent("42", "7", "OpenCode") == "opencode"
    reply = await runtime.run_turn("42", "7", "hi")

    assert reply == "plain reply"
    assert "opencode run" in executor.commands[0]
    assert "session list" in executor.commands[1]
    assert runtime.sessions == {"42:7:opencode": "ses_9"}
    assert runtime.resolve_agent("42", None).id == "codex"

    reloaded = _runtime(tmp_path)
    assert reloaded.overrides == {"42:7": "opencode"}
    assert reloaded.set_topic_agent("42", "7", None) == "codex"


@pytest.mark.asyncio
async def test_reset_session_removes_only_current_scope(tmp_path) -> None:
    runtime = _runtime(tmp_path)
    runtime.sessions.update({"42:root:codex": "A", "42:codex": "L", "42:7:codex": "B"})

    assert runtime.reset_session("42", None) is True
    assert runtime.sessions == {"42:7:codex": "B"}
    assert runtime.reset_session("42", None) is False


@pytest.mark.asyncio
async def test_memory_is_captured_and_recalled(tmp_path) -> None:
    primary = FakePrimaryRuntime(text="the cache bug lives in auth")
    runtime = _runtime(tmp_path, primary, memory_enabled=True)

    await runtime.run_turn("42", None, "where is the cache bug?")
    await runtime.run_turn("42", None, "remind me about the cache bug")

    second_prompt = primary.calls[1].prompt
    assert second_prompt.startswith("Relevant memory retrieved:")
    assert "the cache bug lives in auth" in second_prompt
    assert second_prompt.endswith("\n\nremind me about the cache bug")
    assert runtime.memory_store.thread_keys() == ["42:root:codex"]


@pytest.mark.asyncio
async def test_memory_files_are_read_and_written_off_the_event_loop(tmp_path, monkeypatch: pytest.MonkeyPatch) -> None:
    runtime = _runtime(tmp_path, memory_enabled=True)
    loop_thread = threading.get_ident()
    io_threads: list[int] = []
    read_recent = runtime.memory_store.read_recent
    append = runtime.memory_store.append

    def _read_recent(*args: Any) -> list:
        io_threads.append(threading.get_ident())
        return read_recent(*args)

    def _append(*args: Any) -> None:
        io_threads.append(threading.get_ident())
        append(*args)

    monkeypatch.setattr(runtime.memory_store, "read_recent", _read_recent)
    monkeypatch.setattr(runtime.memory_store, "append", _append)

    await runtime.run_turn("42", None, "hello")

    assert len(io_threads) == 2
    assert loop_thread not in io_threads


@pytest.mark.asyncio
async def test_corrupt_memory_does_not_fail_the_turn(tmp_path, monkeypatch: pytest.MonkeyPatch) -> None:
    primary = FakePrimaryRuntime(text="fine")
    runtime = _runtime(tmp_path, primary, memory_enabled=True)

    def _broken(*_args: Any) -> None:
        raise ValueError("bad memory record")

    monkeypatch.setattr(runtime.memory_store, "read_recent", _broken)
    monkeypatch.setattr(runtime.memory_store, "append", _broken)

    assert await runtime.run_turn("42", None, "hello") == "fine"
    assert primary.calls[0].prompt == "hello"


@pytest.mark.asyncio
async def test_enqueue_turn_serializes_per_topic(tmp_path) -> None:
    primary = FakePrimaryRuntime()
    runtime = _runtime(tmp_path, primary)

    first = runtime.enqueue_turn("42", None, "first")
    second = runtime.enqueue_turn("42", None, "second")
    results = await asyncio.gather(first, second)

    assert results == ["ok", "ok"]
    assert [call.prompt for call in primary.calls] == ["first", "second"]
    assert primary.calls[1].session_id == "T1"


@pytest.mark.asyncio
async def test_run_oneshot_skips_sessions(tmp_path) -> None:
    primary = FakePrimaryRuntime()
    runtime = _runtime(tmp_path, primary)

    assert await runtime.run_oneshot("quick") == "ok"
    assert runtime.sessions == {}
    assert primary.calls[0].session_id is None
