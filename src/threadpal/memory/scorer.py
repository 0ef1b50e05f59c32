"""Rank remembered snippets by scope, lexical overlap and recency.

There is no index and no embedding model: histories are small and the scope
signal dominates, so every candidate is scored on each query.
"""

from __future__ import annotations

import math
import re
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import UTC, datetime

from threadpal.memory.events import MemoryEvent, ScoredHit
from threadpal.sessions.keys import normalize_topic_id

DEFAULT_LIMIT = 8
MAX_LIMIT = 30
SNIPPET_LENGTH = 220
MIN_TOKEN_LENGTH = 2
PHRASE_MIN_LENGTH = 8
PHRASE_BONUS = 2.0
LEXICAL_WEIGHT = 5.0
RECENCY_WEIGHT = 2.0
RECENCY_DECAY_DAYS = 7.0
USER_ROLE_BOOST = 0.3
SECONDS_PER_DAY = 24 * 60 * 60
MEMORY_HEADER = "Relevant memory retrieved:"

STOPWORDS = frozenset({
    "a", "al", "algo", "and", "ante", "con", "como", "de", "del", "el",
    "en", "es", "esta", "este", "for", "from", "hay", "i", "la", "las",
    "lo", "los", "me", "mi", "my", "o", "para", "por", "que", "se",
    "si", "sin", "sobre", "su", "the", "to", "un", "una", "y", "yo",
})

_WHITESPACE_RE = re.compile(r"\s+")
_TOKEN_RE = re.compile(r"[^\W_]+")

SCOPE_SAME_THREAD = ("same-thread", 6.0)
SCOPE_SAME_TOPIC = ("same-topic", 4.0)
SCOPE_SAME_CHAT = ("same-chat", 2.0)
SCOPE_GLOBAL = ("global", 0.5)
RELEVANT_SCOPE_FLOOR = SCOPE_SAME_TOPIC[1]


@dataclass(frozen=True)
class MemoryScope:
    """The conversation a query is issued from."""

    chat_id: str
    topic_id: str | None = None
    agent_id: str = ""


def normalize_text(value: str | None) -> str:
    return _WHITESPACE_RE.sub(" ", value or "").strip()


def truncate(value: str | None, max_length: int = SNIPPET_LENGTH) -> str:
    clean = normalize_text(value)
    if len(clean) <= max_length:
        return clean
    return f"{clean[: max_length - 1]}…"


def tokenize(value: str | None) -> list[str]:
    """Lowercase word tokens, minus stop words and one-letter tokens, first-seen order."""
    tokens: list[str] = []
    seen: set[str] = set()
    for token in _TOKEN_RE.findall(normalize_text(value).lower()):
        if len(token) < MIN_TOKEN_LENGTH or token in STOPWORDS or token in seen:
            continue
        seen.add(token)
        tokens.append(token)
    return tokens


def score_scope(event: MemoryEvent, scope: MemoryScope) -> tuple[str, float]:
    same_chat = str(event.chat_id) == str(scope.chat_id)
    same_topic = same_chat and normalize_topic_id(event.topic_id) == normalize_topic_id(scope.topic_id)
    if same_topic and str(event.agent_id) == str(scope.agent_id):
        return SCOPE_SAME_THREAD
    if same_topic:
        return SCOPE_SAME_TOPIC
    if same_chat:
        return SCOPE_SAME_CHAT
    return SCOPE_GLOBAL


def score_lexical(text: str, query_tokens: list[str], query: str) -> float:
    if not query_tokens:
        return 0.0
    lower = (text or "").lower()
    if not lower:
        return 0.0
    matched = sum(1 for token in query_tokens if token in lower)
    score = (matched / len(query_tokens)) * LEXICAL_WEIGHT
    phrase = normalize_text(query).lower()
    if len(phrase) >= PHRASE_MIN_LENGTH and phrase in lower:
        score += PHRASE_BONUS
    return score


def score_recency(created_at: datetime, now: datetime) -> float:
    age_days = max(0.0, (now - created_at).total_seconds() / SECONDS_PER_DAY)
    return math.exp(-age_days / RECENCY_DECAY_DAYS) * RECENCY_WEIGHT


def clamp_limit(limit: int | None) -> int:
    if limit is None:
        return DEFAULT_LIMIT
    return max(1, min(MAX_LIMIT, int(limit)))


def search(
    events: Iterable[MemoryEvent],
    query: str,
    scope: MemoryScope,
    *,
    limit: int | None = DEFAULT_LIMIT,
    now: datetime | None = None,
) -> list[ScoredHit]:
    """Return the best-matching distinct snippets for ``query`` seen from ``scope``."""
    now = now or datetime.now(UTC)
    query_tokens = tokenize(query)
    scored: list[ScoredHit] = []
    for event in events:
        label, scope_score = score_scope(event, scope)
        lexical = score_lexical(event.text, query_tokens, query)
        if query_tokens and lexical == 0 and scope_score < RELEVANT_SCOPE_FLOOR:
            continue
        score = scope_score + lexical + score_recency(event.created_at, now)
        if event.role == "user":
            score += USER_ROLE_BOOST
        scored.append(ScoredHit(event=event, scope=label, score=score))

    scored.sort(key=lambda hit: (-hit.score, -hit.event.created_at.timestamp()))

    max_hits = clamp_limit(limit)
    hits: list[ScoredHit] = []
    seen: set[str] = set()
    for hit in scored:
        key = normalize_text(hit.event.text).lower()
        if not key or key in seen:
            continue
        seen.add(key)
        hits.append(hit)
        if len(hits) >= max_hits:
            break
    return hits


def render_memory_context(hits: list[ScoredHit]) -> str:
    if not hits:
        return ""
    lines = [MEMORY_HEADER]
    for hit in hits:
        stamp = hit.event.created_at.astimezone().strftime("%Y-%m-%d %H:%M")
        who = "assistant" if hit.event.role == "assistant" else "user"
        lines.append(f"- [{stamp}] ({hit.scope}, {who}) {truncate(hit.event.text)}")
    return "\n".join(lines)
