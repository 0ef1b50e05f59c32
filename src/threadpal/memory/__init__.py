"""Conversation memory capture and retrieval."""

from threadpal.memory.events import MemoryEvent, ScoredHit
from threadpal.memory.scorer import MemoryScope, render_memory_context, search, tokenize
from threadpal.memory.store import MemoryStore

__all__ = [
    "MemoryEvent",
    "MemoryScope",
    "MemoryStore",
    "ScoredHit",
    "render_memory_context",
    "search",
    "tokenize",
]
