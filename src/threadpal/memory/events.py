"""Memory event models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Literal, TypeAlias

Role: TypeAlias = Literal["user", "assistant"]


def _parse_timestamp(value: object) -> datetime:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, int | float) and not isinstance(value, bool):
        try:
            parsed = datetime.fromtimestamp(value, UTC)
        except (ValueError, OverflowError, OSError):
            parsed = datetime.now(UTC)
    elif isinstance(value, str) and value:
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            parsed = datetime.now(UTC)
    else:
        parsed = datetime.now(UTC)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


@dataclass(frozen=True)
class MemoryEvent:
    """One captured conversation turn fragment."""

    text: str
    role: Role = "user"
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    chat_id: str = ""
    topic_id: str | None = None
    agent_id: str = ""

    def to_payload(self) -> dict[str, Any]:
        return {
            "text": self.text,
            "role": self.role,
            "created_at": self.created_at.isoformat(),
            "chat_id": self.chat_id,
            "topic_id": self.topic_id,
            "agent_id": self.agent_id,
        }

    @classmethod
    def from_payload(cls, payload: object) -> MemoryEvent | None:
        if not isinstance(payload, dict):
            return None
        text = payload.get("text")
        if not isinstance(text, str) or not text.strip():
            return None
        topic_id = payload.get("topic_id")
        return cls(
            text=text,
            role="assistant" if payload.get("role") == "assistant" else "user",
            created_at=_parse_timestamp(payload.get("created_at")),
            chat_id=str(payload.get("chat_id") or ""),
            topic_id=None if topic_id in (None, "") else str(topic_id),
            agent_id=str(payload.get("agent_id") or ""),
        )


@dataclass(frozen=True)
class ScoredHit:
    event: MemoryEvent
    scope: str
    score: float
