"""Library runtime: drive the primary backend through its Python client."""

from __future__ import annotations

import asyncio
import importlib
import inspect
from collections.abc import Callable
from typing import Any, TypeAlias

from loguru import logger

from threadpal.agents.base import MessageCollector, message_channel
from threadpal.errors import ClientInvalidError, ClientUnavailableError, EmptyResponseError, LibraryTimeoutError
from threadpal.runtimes.types import RunInput, RuntimeResult

DEFAULT_SDK_MODULE = "codex_sdk"
CLIENT_EXPORT = "Codex"
RUNTIME_NAME = "library"
DIRECT_TEXT_FIELDS = ("output_text", "final_response", "finalResponse", "text", "response", "result")
NESTED_EVENT_FIELDS = ("output", "items", "events", "messages")
THREAD_ID_FIELDS = ("thread_id", "threadId")
RESUME_METHODS = ("resume_thread", "resume")
START_METHODS = ("start_thread", "create_thread", "new_thread")
RUN_METHODS = ("run", "execute")

SDK_UNAVAILABLE_ERROR = "Unable to import library client module '{module}': {error}"
INVALID_EXPORT_ERROR = "Module '{module}' does not export a {export} client."
INVALID_CLIENT_ERROR = "Library client does not expose start_thread/create_thread."
INVALID_THREAD_ERROR = "Library thread does not expose run/execute."
TIMEOUT_ERROR = "Library run timed out after {seconds}s"
EMPTY_ERROR = "Library client returned an empty response."

ClientFactory: TypeAlias = Callable[[], Any]


def _field(source: Any, name: str) -> Any:
    if isinstance(source, dict):
        return source.get(name)
    return getattr(source, name, None)


def _first_text(source: Any, names: tuple[str, ...]) -> str:
    for name in names:
        value = _field(source, name)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return ""


def extract_final_from_events(events: Any) -> str:
    """Pick the user-facing text out of a list of events or items."""
    if not isinstance(events, list | tuple):
        return ""
    collector = MessageCollector()
    for event in events:
        if not isinstance(event, dict):
            continue
        item = event.get("item")
        if event.get("type") == "item.completed" and isinstance(item, dict):
            collector.add_item(item)
            continue
        channel = message_channel(event) or str(event.get("type") or "").lower()
        message = event.get("message")
        delta = event.get("delta")
        candidates = [
            _first_text(event, ("output_text", "text", "response", "result")),
            _first_text(delta, ("text",)) if isinstance(delta, dict) else "",
            _first_text(message, ("text",)) if isinstance(message, dict) else "",
            message if isinstance(message, str) else "",
        ]
        collector.add(next((value for value in candidates if value and value.strip()), ""), channel)
    return collector.result()


def normalize_text(result: Any) -> str:
    if isinstance(result, str):
        return result.strip()
    if result is None:
        return ""
    if direct := _first_text(result, DIRECT_TEXT_FIELDS):
        return direct
    for name in NESTED_EVENT_FIELDS:
        if parsed := extract_final_from_events(_field(result, name)):
            return parsed
    return ""


def normalize_thread_id(result: Any, thread: Any) -> str | None:
    if result is not None and not isinstance(result, str):
        for name in THREAD_ID_FIELDS:
            value = _field(result, name)
            if isinstance(value, str) and value:
                return value
    if thread is None:
        return None
    thread_id = _field(thread, "id")
    if callable(thread_id):
        thread_id = thread_id()
    if isinstance(thread_id, str) and thread_id:
        return thread_id
    return None


async def _call(method: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
    if inspect.iscoroutinefunction(method):
        return await method(*args, **kwargs)
    result = await asyncio.to_thread(method, *args, **kwargs)
    if inspect.isawaitable(result):
        return await result
    return result


class LibraryRuntime:
    """Runs prompts through an in-process client, caching thread objects by id."""

    def __init__(
        self,
        *,
        timeout_seconds: float | None = None,
        module_name: str = DEFAULT_SDK_MODULE,
        client_factory: ClientFactory | None = None,
    ) -> None:
        self._timeout_seconds = timeout_seconds
        self._module_name = module_name
        self._client_factory = client_factory
        self._client: Any = None
        self.thread_cache: dict[str, Any] = {}

    def _build_client(self) -> Any:
        if self._client_factory is not None:
            return self._client_factory()
        try:
            module = importlib.import_module(self._module_name)
        except ImportError as exc:
            raise ClientUnavailableError(SDK_UNAVAILABLE_ERROR.format(module=self._module_name, error=exc)) from exc
        client_cls = getattr(module, CLIENT_EXPORT, None)
        if not callable(client_cls):
            raise ClientInvalidError(
                INVALID_EXPORT_ERROR.format(module=self._module_name, export=CLIENT_EXPORT),
                code="sdk_invalid_export",
            )
        return client_cls()

    async def _get_client(self) -> Any:
        if self._client is None:
            client = self._build_client()
            if inspect.isawaitable(client):
                client = await client
            self._client = client
        return self._client

    async def _resume_thread(self, client: Any, session_id: str | None) -> Any:
        if not session_id:
            return None
        if session_id in self.thread_cache:
            return self.thread_cache[session_id]
        for name in RESUME_METHODS:
            method = getattr(client, name, None)
            if not callable(method):
                continue
            try:
                thread = await _call(method, session_id)
            except Exception as exc:
                logger.debug("runtime.library.resume_failed session_id={} error={}", session_id, exc)
                continue
            return thread
        return None

    async def _start_thread(self, client: Any) -> Any:
        for name in START_METHODS:
            method = getattr(client, name, None)
            if not callable(method):
                continue
            thread = await _call(method)
            if thread is None:
                raise ClientInvalidError(INVALID_CLIENT_ERROR, code="sdk_thread_start_failed")
            return thread
        raise ClientInvalidError(INVALID_CLIENT_ERROR)

    @staticmethod
    async def _invoke_run(thread: Any, prompt: str, options: dict[str, str]) -> Any:
        for name in RUN_METHODS:
            method = getattr(thread, name, None)
            if not callable(method):
                continue
            try:
                return await _call(method, prompt, **options)
            except TypeError:
                if not options:
                    raise
                logger.debug("runtime.library.run_retry method={} without_options=true", name)
                return await _call(method, prompt)
        raise ClientInvalidError(INVALID_THREAD_ERROR, code="sdk_invalid_thread")

    async def run(self, run_input: RunInput) -> RuntimeResult:
        client = await self._get_client()
        thread = await self._resume_thread(client, run_input.session_id)
        resumed = thread is not None
        if thread is None:
            thread = await self._start_thread(client)

        options: dict[str, str] = {}
        if run_input.model:
            options["model"] = run_input.model
        if run_input.reasoning_effort:
            options["model_reasoning_effort"] = run_input.reasoning_effort

        try:
            async with asyncio.timeout(self._timeout_seconds):
                result = await self._invoke_run(thread, run_input.prompt, options)
        except TimeoutError as exc:
            raise LibraryTimeoutError(TIMEOUT_ERROR.format(seconds=self._timeout_seconds)) from exc

        text = normalize_text(result)
        if not text:
            raise EmptyResponseError(EMPTY_ERROR)
        # Only threads that completed a run are reused.
        session_id = normalize_thread_id(result, thread) or run_input.session_id
        if session_id:
            self.thread_cache[session_id] = thread

        return RuntimeResult(
            text=text,
            session_id=session_id,
            saw_structured=True,
            raw_output=result,
            runtime=RUNTIME_NAME,
            resumed=resumed,
        )
