"""Session key model with migration from older key layouts.

Canonical keys have the form ``chat:topic:agent``. Older deployments stored
sessions under ``chat:agent`` and, before that, under ``chat`` alone. Both
legacy forms only ever meant the default (``root``) topic, so they are
consulted only for that topic and moved to the canonical key on first read.
"""

from __future__ import annotations

from collections.abc import MutableMapping
from dataclasses import dataclass
from typing import TypeAlias

ROOT_TOPIC = "root"

SessionTable: TypeAlias = MutableMapping[str, str]


@dataclass(frozen=True)
class ThreadResolution:
    thread_key: str
    thread_id: str | None
    migrated: bool = False


def normalize_topic_id(topic_id: object) -> str:
    if topic_id is None or topic_id == "":
        return ROOT_TOPIC
    return str(topic_id)


def build_topic_key(chat_id: object, topic_id: object) -> str:
    return f"{chat_id}:{normalize_topic_id(topic_id)}"


def build_thread_key(chat_id: object, topic_id: object, agent_id: str) -> str:
    return f"{build_topic_key(chat_id, topic_id)}:{agent_id}"


def legacy_thread_key(chat_id: object, agent_id: str) -> str:
    return f"{chat_id}:{agent_id}"


def legacy_chat_key(chat_id: object) -> str:
    return str(chat_id)


def resolve_thread_id(table: SessionTable, chat_id: object, topic_id: object, agent_id: str) -> ThreadResolution:
    """Look up the session id for a scope, migrating a legacy entry if one is found."""
    topic = normalize_topic_id(topic_id)
    thread_key = build_thread_key(chat_id, topic, agent_id)
    direct = table.get(thread_key)
    if direct:
        return ThreadResolution(thread_key, direct)
    if topic != ROOT_TOPIC:
        return ThreadResolution(thread_key, None)

    for legacy_key in (legacy_thread_key(chat_id, agent_id), legacy_chat_key(chat_id)):
        legacy = table.get(legacy_key)
        if legacy:
            table[thread_key] = legacy
            del table[legacy_key]
            return ThreadResolution(thread_key, legacy, migrated=True)
    return ThreadResolution(thread_key, None)


def clear_thread(table: SessionTable, chat_id: object, topic_id: object, agent_id: str) -> bool:
    """Drop the session for a scope. The root topic also retires both legacy forms."""
    topic = normalize_topic_id(topic_id)
    removed = table.pop(build_thread_key(chat_id, topic, agent_id), None) is not None
    if topic != ROOT_TOPIC:
        return removed
    removed_legacy = table.pop(legacy_thread_key(chat_id, agent_id), None) is not None
    removed_chat = table.pop(legacy_chat_key(chat_id), None) is not None
    return removed or removed_legacy or removed_chat
