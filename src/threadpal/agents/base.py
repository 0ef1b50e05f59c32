"""Shared agent adapter types and parsing helpers."""

from __future__ import annotations

import json
import re
from abc import ABC, abstractmethod
from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import Any

ANSI_RE = re.compile(r"\x1B\[[0-9;?]*[ -/]*[@-~]")
FINAL_CHANNEL = "final"
INTERNAL_CHANNELS = frozenset({"commentary", "analysis", "reasoning"})
SESSION_ID_FIELDS = ("session_id", "sessionId", "sessionID", "thread_id", "threadId", "conversation_id", "conversationId")


@dataclass(frozen=True)
class AgentDescriptor:
    """Static description of one supported backend."""

    id: str
    label: str
    needs_pty: bool = False
    merge_stderr: bool = False
    default_model: str | None = None


@dataclass(frozen=True)
class InvocationRequest:
    """One logical request to a backend."""

    prompt: str
    session_id: str | None = None
    model: str | None = None
    reasoning_effort: str | None = None


@dataclass(frozen=True)
class InvocationResult:
    """Normalized backend output."""

    text: str
    session_id: str | None = None
    saw_structured: bool = False
    raw_output: str = ""


class AgentAdapter(ABC):
    """Builds backend invocations and parses their output. Never performs I/O."""

    descriptor: AgentDescriptor

    @property
    def id(self) -> str:
        return self.descriptor.id

    @property
    def label(self) -> str:
        return self.descriptor.label

    @abstractmethod
    def build_command(self, request: InvocationRequest, *, prompt_expression: str | None = None) -> str:
        """Build a shell command line for the request."""

    @abstractmethod
    def parse_output(self, output: str) -> InvocationResult:
        """Parse raw backend output. Must not raise on malformed output."""


def shell_quote(value: object) -> str:
    escaped = str(value).replace("'", "'\\''")
    return f"'{escaped}'"


def resolve_prompt_value(prompt: str, prompt_expression: str | None) -> str:
    if prompt_expression:
        return prompt_expression
    return shell_quote(prompt)


def append_optional_arg(args: str, flag: str | None, value: str | None) -> str:
    if not flag or not value:
        return args
    return f"{args} {flag} {shell_quote(value)}".strip()


def strip_ansi(value: str | None) -> str:
    return ANSI_RE.sub("", value or "")


def safe_json_loads(value: str) -> Any:
    try:
        return json.loads(value)
    except (TypeError, ValueError):
        return None


def iter_json_payloads(output: str | None) -> Iterator[dict[str, Any]]:
    """Yield JSON objects framed in noisy line-oriented output.

    A candidate buffer starts only on an unindented line beginning with ``{``
    and absorbs continuation lines, indented ones included, until it decodes.
    When another unindented ``{`` line arrives while the buffer still fails to
    decode, the stale attempt is dropped and a new one starts from that line.
    """
    buffer = ""
    for raw_line in (output or "").splitlines():
        line = raw_line.rstrip()
        opens = line.startswith("{")
        if buffer:
            candidate = f"{buffer}\n{line}"
            payload = safe_json_loads(candidate)
            if payload is not None:
                buffer = ""
                if isinstance(payload, dict):
                    yield payload
                continue
            if not opens:
                buffer = candidate
                continue
            buffer = ""

        if not opens:
            continue
        payload = safe_json_loads(line)
        if payload is None:
            buffer = line
            continue
        if isinstance(payload, dict):
            yield payload


def first_session_id(payload: dict[str, Any]) -> str | None:
    for name in SESSION_ID_FIELDS:
        value = payload.get(name)
        if isinstance(value, str) and value:
            return value
    return None


def message_channel(item: dict[str, Any]) -> str:
    candidates = [item.get("channel")]
    for nested in ("message", "metadata"):
        inner = item.get(nested)
        if isinstance(inner, dict):
            candidates.append(inner.get("channel"))
    for value in candidates:
        if value:
            return str(value).lower()
    return ""


@dataclass
class MessageCollector:
    """Single-pass aggregation of user-facing message fragments.

    Fragments on internal channels are skipped. If any fragment is on the
    ``final`` channel, the joined final fragments win; otherwise the last
    non-empty fragment does.
    """

    separator: str = "\n"
    fragments: list[str] = field(default_factory=list)
    final_fragments: list[str] = field(default_factory=list)

    def add(self, text: object, channel: str = "") -> None:
        if not isinstance(text, str) or not text.strip():
            return
        if channel in INTERNAL_CHANNELS:
            return
        self.fragments.append(text.strip())
        if channel == FINAL_CHANNEL:
            self.final_fragments.append(text.strip())

    def add_item(self, item: dict[str, Any]) -> None:
        self.add(item.get("text"), message_channel(item))

    def result(self) -> str:
        if self.final_fragments:
            return self.separator.join(self.final_fragments).strip()
        if self.fragments:
            return self.fragments[-1]
        return ""
