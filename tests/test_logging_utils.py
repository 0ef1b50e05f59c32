from __future__ import annotations

import pytest
from loguru import logger

from threadpal import logging_utils
from threadpal.queue import ConversationQueue


@pytest.mark.asyncio
async def test_records_carry_queue_scope(monkeypatch: pytest.MonkeyPatch) -> None:
    messages: list[str] = []
    monkeypatch.setattr(logging_utils, "_sink", lambda _profile: messages.append)
    monkeypatch.setattr(logging_utils, "_active_profile", None)

    logging_utils.configure_logging(profile="cli", level="debug")
    try:
        queue = ConversationQueue()

        async def unit() -> None:
            logger.info("inside")

        await queue.enqueue("42:7", unit)
        logger.info("outside")
    finally:
        logger.remove()

    assert "| 42:7 | inside" in messages[0]
    assert "| - | outside" in messages[1]


def test_same_profile_is_configured_once(monkeypatch: pytest.MonkeyPatch) -> None:
    sinks: list[str] = []

    def _sink(profile: str):
        sinks.append(profile)
        return lambda _message: None

    monkeypatch.setattr(logging_utils, "_sink", _sink)
    monkeypatch.setattr(logging_utils, "_active_profile", None)

    try:
        logging_utils.configure_logging(profile="serve")
        logging_utils.configure_logging(profile="serve")
        logging_utils.configure_logging(profile="cli")
    finally:
        logger.remove()

    assert sinks == ["serve", "cli"]
