from __future__ import annotations

import asyncio
import sys
from types import ModuleType, SimpleNamespace
from typing import Any

import pytest

from threadpal.errors import ClientInvalidError, ClientUnavailableError, EmptyResponseError, LibraryTimeoutError
from threadpal.runtimes import LibraryRuntime, RunInput
from threadpal.runtimes.library_runtime import extract_final_from_events, normalize_text, normalize_thread_id


class FakeThread:
    def __init__(self, thread_id: str | None, result: Any = None, delay: float = 0.0) -> None:
        self.id = thread_id
        self.result = result if result is not None else {"output_text": f"reply from {thread_id}"}
        self.delay = delay
        self.calls: list[tuple[str, dict[str, Any]]] = []

    async def run(self, prompt: str, **options: Any) -> Any:
        self.calls.append((prompt, options))
        if self.delay:
            await asyncio.sleep(self.delay)
        return self.result


class FakeClient:
    def __init__(self, *, resumable: dict[str, FakeThread] | None = None, new_thread: FakeThread | None = None) -> None:
        self.resumable = resumable or {}
        self.new_thread = new_thread or FakeThread("new-1")
        self.started = 0
        self.resumed: list[str] = []

    def start_thread(self) -> FakeThread:
        self.started += 1
        return self.new_thread

    async def resume_thread(self, thread_id: str) -> FakeThread:
        self.resumed.append(thread_id)
        if thread_id not in self.resumable:
            raise LookupError(thread_id)
        return self.resumable[thread_id]


@pytest.mark.asyncio
async def test_run_starts_new_thread_and_passes_options() -> None:
    client = FakeClient()
    runtime = LibraryRuntime(client_factory=lambda: client)

    result = await runtime.run(RunInput(prompt="hi", model="gpt-5", reasoning_effort="high"))

    assert result.text == "reply from new-1"
    assert result.session_id == "new-1"
    assert result.runtime == "library"
    assert result.resumed is False
    assert client.new_thread.calls == [("hi", {"model": "gpt-5", "model_reasoning_effort": "high"})]
    assert runtime.thread_cache["new-1"] is client.new_thread


@pytest.mark.asyncio
async def test_run_resumes_known_thread_and_caches_it() -> None:
    existing = FakeThread("abc")
    client = FakeClient(resumable={"abc": existing})
    runtime = LibraryRuntime(client_factory=lambda: client)

    first = await runtime.run(RunInput(prompt="one", session_id="abc"))
    second = await runtime.run(RunInput(prompt="two", session_id="abc"))

    assert first.resumed is True
    assert second.resumed is True
    assert client.resumed == ["abc"]
    assert client.started == 0
    assert [call[0] for call in existing.calls] == ["one", "two"]


@pytest.mark.asyncio
async def test_run_starts_new_thread_when_resume_fails() -> None:
    client = FakeClient()
    runtime = LibraryRuntime(client_factory=lambda: client)

    result = await runtime.run(RunInput(prompt="hi", session_id="gone"))

    assert result.resumed is False
    assert result.session_id == "new-1"
    assert client.started == 1


@pytest.mark.asyncio
async def test_failed_resumed_run_is_not_cached() -> None:
    stalled = FakeThread("abc", delay=1.0)
    client = FakeClient(resumable={"abc": stalled})
    runtime = LibraryRuntime(timeout_seconds=0.05, client_factory=lambda: client)

    for _ in range(2):
        with pytest.raises(LibraryTimeoutError):
            await runtime.run(RunInput(prompt="hi", session_id="abc"))

    assert client.resumed == ["abc", "abc"]
    assert runtime.thread_cache == {}


@pytest.mark.asyncio
async def test_run_times_out() -> None:
    client = FakeClient(new_thread=FakeThread("slow", delay=1.0))
    runtime = LibraryRuntime(timeout_seconds=0.05, client_factory=lambda: client)

    with pytest.raises(LibraryTimeoutError) as exc_info:
        await runtime.run(RunInput(prompt="hi"))

    assert exc_info.value.code == "sdk_timeout"
    assert runtime.thread_cache == {}


@pytest.mark.asyncio
async def test_run_rejects_empty_response() -> None:
    client = FakeClient(new_thread=FakeThread("t", result={"output_text": "   "}))
    runtime = LibraryRuntime(client_factory=lambda: client)

    with pytest.raises(EmptyResponseError):
        await runtime.run(RunInput(prompt="hi"))

    assert runtime.thread_cache == {}


@pytest.mark.asyncio
async def test_client_without_thread_factory_is_invalid() -> None:
    runtime = LibraryRuntime(client_factory=lambda: SimpleNamespace())

    with pytest.raises(ClientInvalidError) as exc_info:
        await runtime.run(RunInput(prompt="hi"))

    assert exc_info.value.code == "sdk_invalid_client"


@pytest.mark.asyncio
async def test_thread_without_run_method_is_invalid() -> None:
    client = SimpleNamespace(start_thread=lambda: SimpleNamespace(id="t"))
    runtime = LibraryRuntime(client_factory=lambda: client)

    with pytest.raises(ClientInvalidError) as exc_info:
        await runtime.run(RunInput(prompt="hi"))

    assert exc_info.value.code == "sdk_invalid_thread"


@pytest.mark.asyncio
async def test_missing_module_is_unavailable() -> None:
    runtime = LibraryRuntime(module_name="threadpal_missing_sdk_module")

    with pytest.raises(ClientUnavailableError) as exc_info:
        await runtime.run(RunInput(prompt="hi"))

    assert exc_info.value.code == "sdk_unavailable"


@pytest.mark.asyncio
async def test_module_without_export_is_invalid(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setitem(sys.modules, "fake_codex_sdk", ModuleType("fake_codex_sdk"))
    runtime = LibraryRuntime(module_name="fake_codex_sdk")

    with pytest.raises(ClientInvalidError) as exc_info:
        await runtime.run(RunInput(prompt="hi"))

    assert exc_info.value.code == "sdk_invalid_export"


@pytest.mark.asyncio
async def test_module_export_is_instantiated(monkeypatch: pytest.MonkeyPatch) -> None:
    module = ModuleType("fake_codex_sdk")
    module.Codex = FakeClient  # type: ignore[attr-defined]
    monkeypatch.setitem(sys.modules, "fake_codex_sdk", module)
    runtime = LibraryRuntime(module_name="fake_codex_sdk")

    result = await runtime.run(RunInput(prompt="hi"))

    assert result.text == "reply from new-1"


def test_normalize_text_reads_nested_events() -> None:
    result = {
        "items": [
            {"type": "reasoning", "text": "internal"},
            {"type": "agent_message", "text": "answer"},
        ]
    }

    assert normalize_text(result) == "answer"
    assert normalize_text("  direct ") == "direct"
    assert normalize_text(SimpleNamespace(final_response="from attr")) == "from attr"


def test_extract_final_from_events_prefers_final_channel() -> None:
    events = [
        {"type": "item.completed", "item": {"text": "draft"}},
        {"type": "item.completed", "item": {"text": "A", "channel": "final"}},
        {"type": "item.completed", "item": {"text": "B", "metadata": {"channel": "final"}}},
        {"type": "delta", "delta": {"text": "stray"}},
    ]

    assert extract_final_from_events(events) == "A\nB"


def test_normalize_thread_id_order() -> None:
    thread = SimpleNamespace(id=lambda: "from-thread")

    assert normalize_thread_id({"thread_id": "from-result"}, thread) == "from-result"
    assert normalize_thread_id({}, thread) == "from-thread"
    assert normalize_thread_id(None, None) is None
