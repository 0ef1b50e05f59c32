"""Session keys, per-topic overrides and their persistence."""

from threadpal.sessions.keys import (
    ROOT_TOPIC,
    ThreadResolution,
    build_thread_key,
    build_topic_key,
    clear_thread,
    normalize_topic_id,
    resolve_thread_id,
)
from threadpal.sessions.overrides import clear_agent_override, get_agent_override, set_agent_override
from threadpal.sessions.store import JSONConfigStore, JSONSessionStore

__all__ = [
    "ROOT_TOPIC",
    "JSONConfigStore",
    "JSONSessionStore",
    "ThreadResolution",
    "build_thread_key",
    "build_topic_key",
    "clear_agent_override",
    "clear_thread",
    "get_agent_override",
    "normalize_topic_id",
    "resolve_thread_id",
    "set_agent_override",
]
