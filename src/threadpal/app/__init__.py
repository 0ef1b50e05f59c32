"""Application runtime package."""

from threadpal.app.bootstrap import build_runtime, get_runtime
from threadpal.app.runtime import AppRuntime, TurnOverrides

__all__ = ["AppRuntime", "TurnOverrides", "build_runtime", "get_runtime"]
