"""Process-wide loguru setup.

Every record carries ``extra[scope]``: the queue key of the conversation
whose unit emitted it, or ``-`` outside any unit.
"""

from __future__ import annotations

import os
import sys
from logging import Handler
from typing import Any, Literal, TextIO, TypeAlias

import loguru
from loguru import logger
from rich import get_console
from rich.logging import RichHandler

LogProfile: TypeAlias = Literal["cli", "serve"]

LEVEL_ENV = "THREADPAL_LOG_LEVEL"
DEFAULT_LEVEL = "INFO"

_FORMATS: dict[LogProfile, str] = {
    "serve": "{extra[scope]} | {message}",
    "cli": "{time:HH:mm:ss.SSS} | {level:<7} | {name}:{line} | {extra[scope]} | {message}",
}
_active_profile: LogProfile | None = None


def _attach_scope(record: loguru.Record) -> None:
    from threadpal.queue import current_scope

    record["extra"]["scope"] = current_scope()


def _sink(profile: LogProfile) -> Handler | TextIO:
    if profile == "serve":
        # Rich renders level and time itself.
        return RichHandler(console=get_console(), show_path=False, markup=False, rich_tracebacks=False)
    return sys.stderr


def configure_logging(*, profile: LogProfile = "cli", level: str | None = None) -> None:
    """Install the single loguru sink for ``profile``. Repeat calls with the same profile are no-ops."""
    global _active_profile
    if profile == _active_profile:
        return

    options: dict[str, Any] = {
        "level": (level or os.getenv(LEVEL_ENV) or DEFAULT_LEVEL).upper(),
        "format": _FORMATS[profile],
        "backtrace": False,
        "diagnose": False,
    }
    logger.remove()
    logger.configure(patcher=_attach_scope)
    logger.add(_sink(profile), **options)
    _active_profile = profile
