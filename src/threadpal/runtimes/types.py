"""Runtime mode parsing and runtime-layer payloads."""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

TRUE_VALUES = frozenset({"1", "true", "yes", "on"})
FALSE_VALUES = frozenset({"0", "false", "no", "off"})


class RuntimeMode(StrEnum):
    AUTO = "auto"
    SUBPROCESS = "cli"
    LIBRARY = "sdk"


def parse_runtime_mode(value: object) -> RuntimeMode:
    normalized = str(value or "").strip().lower()
    if normalized == RuntimeMode.SUBPROCESS:
        return RuntimeMode.SUBPROCESS
    if normalized == RuntimeMode.LIBRARY:
        return RuntimeMode.LIBRARY
    return RuntimeMode.AUTO


def parse_bool(value: object, default: bool) -> bool:
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        return value
    normalized = str(value).strip().lower()
    if normalized in TRUE_VALUES:
        return True
    if normalized in FALSE_VALUES:
        return False
    return default


def parse_positive_number(value: object, default: float) -> float:
    if isinstance(value, bool):
        return default
    try:
        parsed = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return default
    if not math.isfinite(parsed) or parsed <= 0:
        return default
    return parsed


@dataclass(frozen=True)
class RunInput:
    """One logical request handed to the runtime layer."""

    prompt: str
    session_id: str | None = None
    model: str | None = None
    reasoning_effort: str | None = None


@dataclass(frozen=True)
class RuntimeResult:
    """Adapter-level result plus the runtime that produced it."""

    text: str
    session_id: str | None = None
    saw_structured: bool = False
    raw_output: Any = ""
    runtime: str = "subprocess"
    fallback: bool = False
    fallback_reason: str | None = None
    resumed: bool = False
