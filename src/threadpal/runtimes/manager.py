"""Strategy selection between the library and subprocess runtimes."""

from __future__ import annotations

import dataclasses
from typing import Protocol

from loguru import logger

from threadpal.errors import error_code
from threadpal.runtimes.types import RunInput, RuntimeMode, RuntimeResult


class Runtime(Protocol):
    async def run(self, run_input: RunInput) -> RuntimeResult: ...


class RuntimeManager:
    """Runs the primary backend in the mode chosen at startup."""

    def __init__(
        self,
        *,
        mode: RuntimeMode,
        subprocess_runtime: Runtime,
        library_runtime: Runtime,
        fallback_enabled: bool = True,
    ) -> None:
        self.mode = mode
        self.fallback_enabled = fallback_enabled
        self.subprocess_runtime = subprocess_runtime
        self.library_runtime = library_runtime

    async def run(self, run_input: RunInput) -> RuntimeResult:
        if self.mode is RuntimeMode.SUBPROCESS:
            return await self.subprocess_runtime.run(run_input)
        if self.mode is RuntimeMode.LIBRARY:
            return await self.library_runtime.run(run_input)

        try:
            return await self.library_runtime.run(run_input)
        except Exception as exc:
            if not self.fallback_enabled:
                raise
            reason = error_code(exc)
            logger.warning("runtime.fallback reason={} message={}", reason, exc)
            result = await self.subprocess_runtime.run(run_input)
            return dataclasses.replace(result, fallback=True, fallback_reason=reason)
