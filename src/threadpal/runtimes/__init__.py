"""Execution runtimes for agent backends."""

from threadpal.runtimes.library_runtime import LibraryRuntime
from threadpal.runtimes.manager import Runtime, RuntimeManager
from threadpal.runtimes.subprocess_runtime import SubprocessRuntime
from threadpal.runtimes.types import RunInput, RuntimeMode, RuntimeResult, parse_runtime_mode

__all__ = [
    "LibraryRuntime",
    "RunInput",
    "Runtime",
    "RuntimeManager",
    "RuntimeMode",
    "RuntimeResult",
    "SubprocessRuntime",
    "parse_runtime_mode",
]
