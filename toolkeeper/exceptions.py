"""
Custom exception hierarchy for toolkeeper.

All exceptions inherit from :class:`ToolKeeperError` and carry optional
structured metadata via the ``details`` attribute for diagnostics and
logging. The upgrade orchestrator converts every one of them into an
``UpgradeResult`` at the backend boundary, so none of these ever terminate
an ``update`` run on their own.

Skips caused by protection or by the compatibility gate are *outcomes*,
not errors, and therefore have no exception type here.
"""

from __future__ import annotations

from typing import Any, Mapping, MutableMapping, Optional, Sequence


class ToolKeeperError(Exception):
    """Base exception for all toolkeeper errors.

    Args:
        message: Human-readable error message.
        details: Optional structured metadata describing the error.
    """

    #: Short machine-readable category reported in run summaries.
    kind: str = "error"

    def __init__(
        self,
        message: str,
        details: Optional[Mapping[str, Any]] = None,
    ) -> None:
        self.message: str = message
        self.details: MutableMapping[str, Any] = dict(details) if details else {}
        super().__init__(message)

    def __str__(self) -> str:
        if not self.details:
            return self.message
        formatted = ", ".join(f"{k}={v}" for k, v in self.details.items())
        return f"{self.message} ({formatted})"

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, details={dict(self.details)!r})"
        )


def _add_if(details: MutableMapping[str, Any], key: str, value: Any) -> None:
    """Add a key to ``details`` only if ``value`` is not ``None``."""
    if value is not None:
        details[key] = value


def _truncate(text: str, max_length: int = 200) -> str:
    """Truncate long text for safe logging or error reporting."""
    if len(text) <= max_length:
        return text
    return text[:max_length] + "..."


class ConfigError(ToolKeeperError):
    """Raised when a configuration file is missing, malformed or invalid.

    Args:
        message: Error description.
        config_path: Path of the offending configuration file.
        option: Name of the offending option, if any.
    """

    kind = "config"

    def __init__(
        self,
        message: str,
        *,
        config_path: Optional[str] = None,
        option: Optional[str] = None,
    ) -> None:
        details: MutableMapping[str, Any] = {}
        _add_if(details, "path", config_path)
        _add_if(details, "option", option)

        super().__init__(message, details)

        self.config_path = config_path
        self.option = option


class BackendUnavailableError(ToolKeeperError):
    """Raised when a toolchain or its version manager is not installed.

    The whole backend is skipped for the run.
    """

    kind = "backend-unavailable"

    def __init__(
        self,
        message: str,
        *,
        backend: Optional[str] = None,
        executable: Optional[str] = None,
    ) -> None:
        details: MutableMapping[str, Any] = {}
        _add_if(details, "backend", backend)
        _add_if(details, "executable", executable)

        super().__init__(message, details)

        self.backend = backend
        self.executable = executable


class TransientError(ToolKeeperError):
    """An individual external operation failed (network, build, permission)."""

    kind = "transient"


class CommandError(TransientError):
    """Raised when a subprocess exits unsuccessfully.

    Args:
        message: Error description.
        args: Command line that was executed.
        returncode: Process exit status.
        stderr: Captured standard error, truncated in ``details``.
    """

    def __init__(
        self,
        message: str,
        *,
        args: Optional[Sequence[str]] = None,
        returncode: Optional[int] = None,
        stderr: Optional[str] = None,
    ) -> None:
        details: MutableMapping[str, Any] = {}
        _add_if(details, "command", " ".join(args) if args else None)
        _add_if(details, "returncode", returncode)
        if stderr:
            details["stderr"] = _truncate(stderr.strip())

        super().__init__(message, details)

        self.args_list = list(args) if args else []
        self.returncode = returncode
        self.stderr = stderr


class CommandTimeoutError(CommandError):
    """Raised when a subprocess exceeds its timeout and is killed."""

    kind = "timeout"

    def __init__(
        self,
        message: str,
        *,
        args: Optional[Sequence[str]] = None,
        timeout: Optional[float] = None,
    ) -> None:
        super().__init__(message, args=args)
        _add_if(self.details, "timeout", timeout)
        self.timeout = timeout


class NetworkError(TransientError):
    """Raised when HTTP or network operations fail.

    Args:
        message: Error description.
        url: URL being accessed.
        status_code: HTTP status code, if available.
        response_body: Raw response body, truncated for safety.
    """

    kind = "network"

    def __init__(
        self,
        message: str,
        *,
        url: Optional[str] = None,
        status_code: Optional[int] = None,
        response_body: Optional[str] = None,
    ) -> None:
        details: MutableMapping[str, Any] = {}
        _add_if(details, "url", url)
        _add_if(details, "status_code", status_code)

        if response_body is not None:
            details["response"] = _truncate(response_body)

        super().__init__(message, details)

        self.url = url
        self.status_code = status_code
        self.response_body = response_body


class VerificationMismatchError(ToolKeeperError):
    """Install reported success but the re-detected version differs."""

    kind = "verification-mismatch"

    def __init__(
        self,
        message: str,
        *,
        expected: Optional[str] = None,
        detected: Optional[str] = None,
    ) -> None:
        details: MutableMapping[str, Any] = {}
        _add_if(details, "expected", expected)
        details["detected"] = detected if detected is not None else "<none>"

        super().__init__(message, details)

        self.expected = expected
        self.detected = detected


class OperationCancelledError(ToolKeeperError):
    """Raised when the run's cancellation token fires."""

    kind = "cancelled"


class FileOperationError(ToolKeeperError):
    """Raised when file system operations fail.

    Args:
        message: Error description.
        file_path: Path to the file involved.
        operation: Operation being performed (read/write/delete).
        original_error: Original exception that triggered this error.
    """

    kind = "filesystem"

    def __init__(
        self,
        message: str,
        *,
        file_path: Optional[str] = None,
        operation: Optional[str] = None,
        original_error: Optional[Exception] = None,
    ) -> None:
        details: MutableMapping[str, Any] = {}
        _add_if(details, "path", file_path)
        _add_if(details, "operation", operation)
        _add_if(
            details,
            "original_error",
            str(original_error) if original_error else None,
        )

        super().__init__(message, details)

        self.file_path = file_path
        self.operation = operation
        self.original_error = original_error
