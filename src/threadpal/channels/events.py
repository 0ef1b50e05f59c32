"""Channel bus event models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from threadpal.sessions.keys import build_topic_key


@dataclass(frozen=True)
class InboundMessage:
    """Message received from an external channel.

    ``command`` is set for control messages (``reset``, ``agent``, ``model``,
    ``thinking``); ``content`` then carries the command argument.
    """

    channel: str
    sender_id: str
    chat_id: str
    content: str
    topic_id: str | None = None
    command: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def topic_key(self) -> str:
        return build_topic_key(self.chat_id, self.topic_id)


@dataclass(frozen=True)
class OutboundMessage:
    """Message to be delivered to one external channel."""

    channel: str
    chat_id: str
    content: str
    topic_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    reply_to_message_id: int | None = None
