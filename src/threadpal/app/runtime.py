"""Application runtime: one turn in, one reply out."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import TYPE_CHECKING

from loguru import logger

from threadpal.agents import AGENT_CODEX, AgentAdapter, AgentRegistry, build_registry
from threadpal.config import Settings
from threadpal.errors import ExecutionError
from threadpal.memory import MemoryEvent, MemoryScope, MemoryStore, render_memory_context, search
from threadpal.queue import ConversationQueue
from threadpal.runtimes import LibraryRuntime, Runtime, RuntimeManager, RuntimeResult, RunInput, SubprocessRuntime
from threadpal.runtimes.invoker import execute
from threadpal.runtimes.subprocess_runtime import Executor
from threadpal.sessions import (
    JSONConfigStore,
    JSONSessionStore,
    build_topic_key,
    clear_agent_override,
    clear_thread,
    get_agent_override,
    resolve_thread_id,
    set_agent_override,
)

if TYPE_CHECKING:
    from threadpal.channels.bus import MessageBus

SESSIONS_FILE = "sessions.json"
CONFIG_FILE = "config.json"
MEMORY_DIR = "memory"


@dataclass(frozen=True)
class TurnOverrides:
    """Per-call choices that take precedence over persisted config."""

    agent: str | None = None
    model: str | None = None
    reasoning_effort: str | None = None


class AppRuntime:
    """Routes turns to backends while keeping one session per (chat, topic, agent).

    The session table, the override map and the queue are plain objects owned
    by this instance. The table is only written after a backend call returns.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        registry: AgentRegistry | None = None,
        session_store: JSONSessionStore | None = None,
        config_store: JSONConfigStore | None = None,
        memory_store: MemoryStore | None = None,
        queue: ConversationQueue | None = None,
        primary_runtime: Runtime | None = None,
        executor: Executor = execute,
    ) -> None:
        self.settings = settings
        home = settings.resolve_home()
        self.registry = registry or build_registry(settings.generic_agents, default=settings.default_agent)
        self.session_store = session_store or JSONSessionStore(home / SESSIONS_FILE)
        self.config_store = config_store or JSONConfigStore(home / CONFIG_FILE)
        self.memory_store = memory_store or MemoryStore(home / MEMORY_DIR)
        self.queue = queue or ConversationQueue()
        self.sessions: dict[str, str] = self.session_store.load_all()
        self.overrides: dict[str, str] = self._load_overrides()
        self.bus: MessageBus | None = None
        self._executor = executor
        self._runtimes: dict[str, Runtime] = {}
        if primary_runtime is not None:
            self._runtimes[AGENT_CODEX] = primary_runtime

    def _load_overrides(self) -> dict[str, str]:
        stored = self.config_store.read().get("agent_overrides")
        if not isinstance(stored, dict):
            return {}
        return {str(key): str(value) for key, value in stored.items() if value}

    def set_bus(self, bus: MessageBus) -> None:
        self.bus = bus

    def runtime_for(self, adapter: AgentAdapter) -> Runtime:
        """Return the runtime for a backend; the primary one gets the library/subprocess manager."""
        runtime = self._runtimes.get(adapter.id)
        if runtime is not None:
            return runtime
        subprocess_runtime = SubprocessRuntime(
            adapter,
            timeout_seconds=self.settings.agent_timeout_seconds,
            max_buffer=self.settings.agent_max_buffer,
            executor=self._executor,
        )
        if adapter.id == AGENT_CODEX:
            runtime = RuntimeManager(
                mode=self.settings.codex_runtime,
                fallback_enabled=self.settings.codex_sdk_fallback,
                subprocess_runtime=subprocess_runtime,
                library_runtime=LibraryRuntime(
                    timeout_seconds=self.settings.sdk_timeout_seconds,
                    module_name=self.settings.codex_sdk_module,
                ),
            )
        else:
            runtime = subprocess_runtime
        self._runtimes[adapter.id] = runtime
        return runtime

    def resolve_agent(self, chat_id: str, topic_id: str | None, requested: str | None = None) -> AgentAdapter:
        if requested and self.registry.is_known(requested):
            return self.registry.get(requested)
        override = get_agent_override(self.overrides, chat_id, topic_id)
        if override and self.registry.is_known(override):
            return self.registry.get(override)
        persisted = self.config_store.read().get("agent")
        if isinstance(persisted, str) and self.registry.is_known(persisted):
            return self.registry.get(persisted)
        return self.registry.get(None)

    def enqueue_turn(
        self,
        chat_id: str,
        topic_id: str | None,
        text: str,
        overrides: TurnOverrides | None = None,
    ) -> asyncio.Task[str | None]:
        """Queue a turn behind earlier turns of the same topic."""
        key = build_topic_key(chat_id, topic_id)
        return self.queue.enqueue(key, lambda: self.run_turn(chat_id, topic_id, text, overrides))

    async def run_turn(
        self,
        chat_id: str,
        topic_id: str | None,
        text: str,
        overrides: TurnOverrides | None = None,
    ) -> str:
        """Run one conversational turn and return the reply text.

        Callers serialize turns per topic through ``enqueue_turn``; invocation
        errors propagate so the caller can render them.
        """
        overrides = overrides or TurnOverrides()
        adapter = self.resolve_agent(chat_id, topic_id, overrides.agent)
        resolution = resolve_thread_id(self.sessions, chat_id, topic_id, adapter.id)
        if resolution.migrated:
            logger.info("session.migrated key={} agent={}", resolution.thread_key, adapter.id)
            self.session_store.save_all(self.sessions)

        persisted = self.config_store.read()
        run_input = RunInput(
            prompt=await self._build_prompt(chat_id, topic_id, adapter.id, text),
            session_id=resolution.thread_id,
            model=overrides.model or _optional_str(persisted.get("model")),
            reasoning_effort=overrides.reasoning_effort or _optional_str(persisted.get("thinking")),
        )
        result = await self.runtime_for(adapter).run(run_input)
        if result.fallback:
            logger.info("turn.fallback agent={} reason={}", adapter.id, result.fallback_reason)

        session_id = result.session_id
        if session_id is None and resolution.thread_id is None:
            session_id = await self._lookup_latest_session(adapter)
        if session_id and session_id != resolution.thread_id:
            self.sessions[resolution.thread_key] = session_id
            self.session_store.save_all(self.sessions)

        await self._capture(resolution.thread_key, chat_id, topic_id, adapter.id, text, result)
        return result.text

    async def run_oneshot(self, text: str, overrides: TurnOverrides | None = None) -> str:
        """Run a prompt outside any conversation: no queue, no session, no memory."""
        overrides = overrides or TurnOverrides()
        adapter = self.registry.get(overrides.agent)
        result = await self.runtime_for(adapter).run(
            RunInput(prompt=text, model=overrides.model, reasoning_effort=overrides.reasoning_effort)
        )
        return result.text

    def reset_session(self, chat_id: str, topic_id: str | None, agent_id: str | None = None) -> bool:
        adapter = self.resolve_agent(chat_id, topic_id, agent_id)
        removed = clear_thread(self.sessions, chat_id, topic_id, adapter.id)
        if removed:
            self.session_store.save_all(self.sessions)
        logger.info("session.reset chat_id={} topic_id={} agent={} removed={}", chat_id, topic_id, adapter.id, removed)
        return removed

    def set_topic_agent(self, chat_id: str, topic_id: str | None, agent_id: str | None) -> str:
        """Pin a backend for one topic, or clear the pin when ``agent_id`` is empty."""
        if not agent_id:
            clear_agent_override(self.overrides, chat_id, topic_id)
            self.config_store.update({"agent_overrides": dict(self.overrides)})
            return self.resolve_agent(chat_id, topic_id).id
        normalized = self.registry.normalize(agent_id)
        set_agent_override(self.overrides, chat_id, topic_id, normalized)
        self.config_store.update({"agent_overrides": dict(self.overrides)})
        return normalized

    def set_model(self, model: str | None) -> None:
        self.config_store.update({"model": model or None})

    def set_thinking(self, thinking: str | None) -> None:
        self.config_store.update({"thinking": thinking or None})

    def search_memory(
        self,
        chat_id: str,
        topic_id: str | None,
        agent_id: str,
        query: str,
        *,
        limit: int | None = None,
    ) -> str:
        events = self.memory_store.read_recent(self.settings.memory_max_files)
        hits = search(
            events,
            query,
            MemoryScope(chat_id=chat_id, topic_id=topic_id, agent_id=agent_id),
            limit=limit or self.settings.memory_limit,
        )
        return render_memory_context(hits)

    async def _build_prompt(self, chat_id: str, topic_id: str | None, agent_id: str, text: str) -> str:
        if not self.settings.memory_enabled:
            return text
        try:
            context = await asyncio.to_thread(self.search_memory, chat_id, topic_id, agent_id, text)
        except (OSError, ValueError):
            logger.exception("memory.retrieval.error chat_id={}", chat_id)
            return text
        if not context:
            return text
        return f"{context}\n\n{text}"

    async def _capture(
        self,
        thread_key: str,
        chat_id: str,
        topic_id: str | None,
        agent_id: str,
        text: str,
        result: RuntimeResult,
    ) -> None:
        if not self.settings.memory_enabled:
            return
        events = [MemoryEvent(text=text, role="user", chat_id=chat_id, topic_id=topic_id, agent_id=agent_id)]
        if result.text.strip():
            events.append(
                MemoryEvent(text=result.text, role="assistant", chat_id=chat_id, topic_id=topic_id, agent_id=agent_id)
            )
        try:
            await asyncio.to_thread(self.memory_store.append, thread_key, *events)
        except (OSError, ValueError):
            logger.exception("memory.capture.error key={}", thread_key)

    async def _lookup_latest_session(self, adapter: AgentAdapter) -> str | None:
        list_command = getattr(adapter, "list_sessions_command", None)
        parse_listing = getattr(adapter, "parse_session_list", None)
        if list_command is None or parse_listing is None:
            return None
        try:
            output = await self._executor(
                "bash",
                ["-lc", list_command()],
                timeout_seconds=self.settings.agent_timeout_seconds,
                max_buffer=self.settings.agent_max_buffer,
            )
        except ExecutionError as exc:
            logger.warning("session.lookup.failed agent={} code={}", adapter.id, exc.code)
            return None
        return parse_listing(output)


def _optional_str(value: object) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None
