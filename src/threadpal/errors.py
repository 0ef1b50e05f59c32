"""Application-level exception types for threadpal."""

from __future__ import annotations


class ThreadpalError(Exception):
    """Base exception for threadpal."""


class ConstructionError(ThreadpalError):
    """Raised when a backend or runtime is misconfigured before any call is made."""


class InvocationError(ThreadpalError):
    """Base exception for recoverable agent invocation failures."""

    code = "invocation_failed"

    def __init__(self, message: str, *, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class ExecutionError(InvocationError):
    """Raised when a subprocess exits non-zero or overflows its output ceiling."""

    code = "exec_failed"

    def __init__(
        self,
        message: str,
        *,
        stdout: str = "",
        stderr: str = "",
        exit_code: int | None = None,
        code: str | None = None,
    ) -> None:
        super().__init__(message, code=code)
        self.stdout = stdout
        self.stderr = stderr
        self.exit_code = exit_code


class AgentTimeoutError(ExecutionError):
    """Raised when a subprocess does not finish within its timeout."""

    code = "timeout"


class LibraryTimeoutError(InvocationError):
    """Raised when a library-mode run does not finish within its timeout."""

    code = "sdk_timeout"


class ClientInvalidError(InvocationError):
    """Raised when the library client or one of its threads has an unexpected shape."""

    code = "sdk_invalid_client"


class ClientUnavailableError(InvocationError):
    """Raised when the library client module cannot be imported."""

    code = "sdk_unavailable"


class EmptyResponseError(InvocationError):
    """Raised when the library client returns no usable text."""

    code = "sdk_empty"


def error_code(exc: BaseException) -> str:
    """Return the classification code carried by an exception, if any."""
    code = getattr(exc, "code", None)
    if isinstance(code, str) and code:
        return code
    if isinstance(code, int):
        return str(code)
    return "unknown"


def format_error(label: str, exc: BaseException | None) -> str:
    """Render a short user-facing error message without a traceback."""
    if exc is None:
        return f"{label}\nUnknown error".strip()
    parts = [label]
    message = getattr(exc, "message", None) or str(exc)
    if message:
        parts.append(message)
    code = getattr(exc, "code", None)
    if code:
        parts.append(f"code: {code}")
    stderr = getattr(exc, "stderr", "")
    if isinstance(stderr, str) and stderr.strip():
        parts.append(stderr.strip()[-500:])
    return "\n".join(parts).strip()
