from __future__ import annotations

import json

import pytest

from threadpal.sessions import JSONConfigStore, JSONSessionStore


def test_session_store_round_trips_table(tmp_path) -> None:
    store = JSONSessionStore(tmp_path / "nested" / "sessions.json")

    store.save_all({"42:root:codex": "T1"})

    assert store.load_all() == {"42:root:codex": "T1"}
    assert not (tmp_path / "nested" / "sessions.json.tmp").exists()


def test_session_store_tolerates_missing_and_corrupt_files(tmp_path) -> None:
    path = tmp_path / "sessions.json"
    store = JSONSessionStore(path)

    assert store.load_all() == {}

    path.write_text("{not json", encoding="utf-8")
    assert store.load_all() == {}

    path.write_text(json.dumps(["a", "b"]), encoding="utf-8")
    assert store.load_all() == {}


def test_session_store_drops_non_string_values(tmp_path) -> None:
    path = tmp_path / "sessions.json"
    path.write_text(json.dumps({"a": "T1", "b": 3, "c": ""}), encoding="utf-8")

    assert JSONSessionStore(path).load_all() == {"a": "T1"}


def test_session_store_logs_instead_of_raising_on_write_failure(tmp_path) -> None:
    blocker = tmp_path / "blocker"
    blocker.write_text("", encoding="utf-8")
    store = JSONSessionStore(blocker / "sessions.json")

    store.save_all({"a": "T1"})

    assert store.load_all() == {}


def test_config_store_merges_and_removes_none(tmp_path) -> None:
    store = JSONConfigStore(tmp_path / "config.json")

    store.update({"model": "gpt-5", "thinking": "high"})
    merged = store.update({"thinking": None, "agent": "claude"})

    assert merged == {"model": "gpt-5", "agent": "claude"}
    assert store.read() == merged


def test_config_store_update_raises_on_write_failure(tmp_path) -> None:
    blocker = tmp_path / "blocker"
    blocker.write_text("", encoding="utf-8")
    store = JSONConfigStore(blocker / "config.json")

    assert store.read() == {}
    with pytest.raises(OSError):
        store.update({"model": "x"})
