"""Per-topic agent overrides, keyed by topic key."""

from __future__ import annotations

from collections.abc import MutableMapping

from threadpal.sessions.keys import build_topic_key


def get_agent_override(overrides: MutableMapping[str, str], chat_id: object, topic_id: object) -> str | None:
    return overrides.get(build_topic_key(chat_id, topic_id))


def set_agent_override(overrides: MutableMapping[str, str], chat_id: object, topic_id: object, agent_id: str) -> str:
    key = build_topic_key(chat_id, topic_id)
    overrides[key] = agent_id
    return key


def clear_agent_override(overrides: MutableMapping[str, str], chat_id: object, topic_id: object) -> bool:
    return overrides.pop(build_topic_key(chat_id, topic_id), None) is not None
