"""Runtime bootstrap helpers."""

from __future__ import annotations

from pathlib import Path

from threadpal.app.runtime import AppRuntime
from threadpal.config import load_settings

# Global singleton runtime instance
_runtime: AppRuntime | None = None


def get_runtime() -> AppRuntime:
    """Get the global app runtime."""
    if _runtime is None:
        raise RuntimeError("AppRuntime is not initialized. Call build_runtime() first.")
    return _runtime


def build_runtime(
    *,
    home: Path | None = None,
    default_agent: str | None = None,
    memory_enabled: bool | None = None,
) -> AppRuntime:
    """Build the app runtime from environment settings plus explicit overrides."""

    global _runtime
    settings = load_settings(home=home, default_agent=default_agent, memory_enabled=memory_enabled)
    _runtime = AppRuntime(settings)
    return _runtime
