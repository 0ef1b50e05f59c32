"""Agent adapters and their registry."""

from __future__ import annotations

from collections.abc import Iterator, Mapping

from loguru import logger

from threadpal.agents.base import (
    AgentAdapter,
    AgentDescriptor,
    InvocationRequest,
    InvocationResult,
    shell_quote,
)
from threadpal.agents.claude import ClaudeAgent
from threadpal.agents.codex import CodexAgent
from threadpal.agents.generic import GEMINI_CONFIG, GenericAgent, GenericAgentConfig
from threadpal.agents.opencode import OpenCodeAgent

AGENT_CODEX = "codex"
AGENT_CLAUDE = "claude"
AGENT_OPENCODE = "opencode"
AGENT_GEMINI = "gemini"
DEFAULT_AGENT = AGENT_CODEX


class AgentRegistry:
    """Closed map from backend id to adapter, resolved once at startup."""

    def __init__(self, agents: list[AgentAdapter], *, default: str = DEFAULT_AGENT) -> None:
        self._agents = {agent.id: agent for agent in agents}
        if default not in self._agents:
            raise KeyError(default)
        self._default = default

    @property
    def default(self) -> str:
        return self._default

    def __iter__(self) -> Iterator[AgentAdapter]:
        return iter(self._agents.values())

    def __contains__(self, agent_id: object) -> bool:
        return isinstance(agent_id, str) and self.is_known(agent_id)

    def ids(self) -> list[str]:
        return list(self._agents)

    def is_known(self, value: str | None) -> bool:
        if not value:
            return False
        return value.strip().lower() in self._agents

    def normalize(self, value: str | None) -> str:
        if not value:
            return self._default
        normalized = value.strip().lower()
        if normalized in self._agents:
            return normalized
        return self._default

    def get(self, value: str | None) -> AgentAdapter:
        return self._agents[self.normalize(value)]

    def label(self, value: str | None) -> str:
        return self.get(value).label


def build_registry(
    generic_agents: Mapping[str, GenericAgentConfig] | None = None,
    *,
    default: str = DEFAULT_AGENT,
) -> AgentRegistry:
    """Build the registry of built-in backends plus config-driven ones.

    Raises:
        ConstructionError: when a generic backend defines neither cmd nor template.
    """
    agents: list[AgentAdapter] = [
        CodexAgent(),
        ClaudeAgent(),
        OpenCodeAgent(),
        GenericAgent(AGENT_GEMINI, GEMINI_CONFIG),
    ]
    for agent_id, config in (generic_agents or {}).items():
        normalized = agent_id.strip().lower()
        agents = [agent for agent in agents if agent.id != normalized]
        agents.append(GenericAgent(normalized, config))
    default = default.strip().lower()
    if default not in {agent.id for agent in agents}:
        logger.warning("agents.default.unknown value={} fallback={}", default, DEFAULT_AGENT)
        default = DEFAULT_AGENT
    return AgentRegistry(agents, default=default)


__all__ = [
    "AGENT_CLAUDE",
    "AGENT_CODEX",
    "AGENT_GEMINI",
    "AGENT_OPENCODE",
    "DEFAULT_AGENT",
    "AgentAdapter",
    "AgentDescriptor",
    "AgentRegistry",
    "ClaudeAgent",
    "CodexAgent",
    "GenericAgent",
    "GenericAgentConfig",
    "InvocationRequest",
    "InvocationResult",
    "OpenCodeAgent",
    "build_registry",
    "shell_quote",
]
