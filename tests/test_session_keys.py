from __future__ import annotations

from threadpal.sessions import (
    build_thread_key,
    build_topic_key,
    clear_agent_override,
    clear_thread,
    get_agent_override,
    resolve_thread_id,
    set_agent_override,
)


def test_missing_topic_means_root() -> None:
    assert build_topic_key(42, None) == "42:root"
    assert build_topic_key(42, "") == "42:root"
    assert build_thread_key(42, 7, "codex") == "42:7:codex"


def test_canonical_key_is_used_directly() -> None:
    table = {"42:root:claude": "S1", "42:claude": "old"}

    resolution = resolve_thread_id(table, 42, None, "claude")

    assert resolution.thread_id == "S1"
    assert resolution.migrated is False
    assert table["42:claude"] == "old"


def test_agent_scoped_legacy_key_migrates_to_root_topic() -> None:
    table = {"42:claude": "S1"}

    resolution = resolve_thread_id(table, 42, None, "claude")

    assert resolution.thread_key == "42:root:claude"
    assert resolution.thread_id == "S1"
    assert resolution.migrated is True
    assert table == {"42:root:claude": "S1"}


def test_chat_scoped_legacy_key_migrates_to_root_topic() -> None:
    table = {"42": "S0"}

    resolution = resolve_thread_id(table, 42, None, "codex")

    assert resolution.thread_id == "S0"
    assert table == {"42:root:codex": "S0"}


def test_migration_is_idempotent() -> None:
    table = {"42:claude": "S1"}

    resolve_thread_id(table, 42, None, "claude")
    again = resolve_thread_id(table, 42, None, "claude")

    assert again.thread_id == "S1"
    assert again.migrated is False
    assert table == {"42:root:claude": "S1"}


def test_non_root_topics_never_read_legacy_keys() -> None:
    table = {"42:claude": "S1", "42": "S0"}

    resolution = resolve_thread_id(table, 42, 7, "claude")

    assert resolution.thread_key == "42:7:claude"
    assert resolution.thread_id is None
    assert table == {"42:claude": "S1", "42": "S0"}


def test_clear_root_topic_retires_legacy_forms() -> None:
    table = {"42:root:claude": "S1", "42:claude": "S2", "42": "S3", "42:7:claude": "S4"}

    assert clear_thread(table, 42, None, "claude") is True
    assert table == {"42:7:claude": "S4"}
    assert clear_thread(table, 42, None, "claude") is False


def test_clear_topic_only_touches_its_key() -> None:
    table = {"42:claude": "S2", "42:7:claude": "S4"}

    assert clear_thread(table, 42, 7, "claude") is True
    assert table == {"42:claude": "S2"}


def test_agent_overrides_are_keyed_by_topic() -> None:
    overrides: dict[str, str] = {}

    assert set_agent_override(overrides, 42, 7, "claude") == "42:7"
    assert get_agent_override(overrides, 42, 7) == "claude"
    assert get_agent_override(overrides, 42, None) is None
    assert clear_agent_override(overrides, 42, 7) is True
    assert clear_agent_override(overrides, 42, 7) is False
