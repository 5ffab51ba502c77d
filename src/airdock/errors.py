"""Runner failure taxonomy.

NotReady and AlreadyTerminated are raised before anything is spawned. Every
other error is raised only after the runner has been closed.
"""

from __future__ import annotations


class RunnerError(Exception):
    """Base for all runner failures. ``output`` holds captured connector output, if any."""

    def __init__(self, message: str = "", *, output: str = "") -> None:
        super().__init__(message)
        self.output = output


class NotReadyError(RunnerError):
    """The connector image is not available locally yet."""

    def __init__(self, message: str = "connector image is not pulled yet", **kwargs) -> None:
        super().__init__(message, **kwargs)


class AlreadyTerminatedError(RunnerError):
    """The runner was already used or closed."""

    def __init__(self, message: str = "connector runner already terminated", **kwargs) -> None:
        super().__init__(message, **kwargs)


class MaterializationError(RunnerError):
    """Config file could not be written for mounting."""


class ProtocolViolationError(RunnerError):
    """Malformed output line, or the expected message type was never emitted."""


class ConnectorReportedError(RunnerError):
    """The connector reported FAILED; the text is the connector's own message."""


class UnknownStatusError(RunnerError):
    def __init__(self, status: str = "", message: str = "", **kwargs) -> None:
        super().__init__(f"unknown connection status [{status}]: {message}", **kwargs)
        self.status = status
        self.connector_message = message


class ProcessError(RunnerError):
    """Spawn failure, non-zero exit, or I/O error from a killed process."""

    def __init__(self, message: str = "", *, exit_code: int | None = None, **kwargs) -> None:
        super().__init__(message, **kwargs)
        self.exit_code = exit_code


class ConnectorTimeoutError(RunnerError):
    def __init__(self, message: str = "", *, timeout: float | None = None, **kwargs) -> None:
        super().__init__(message or f"connector run timed out after {timeout}s", **kwargs)
        self.timeout = timeout


class InternalFaultError(RunnerError):
    """Unexpected defect while handling connector output. Always fatal for the task."""


def with_diagnostics(exc: RunnerError, message: str, output: str) -> RunnerError:
    """Return a copy of *exc* (same class) carrying a diagnostic message."""
    clone = exc.__class__.__new__(exc.__class__)
    RunnerError.__init__(clone, message, output=output)
    for attr in ("exit_code", "timeout", "status", "connector_message"):
        if hasattr(exc, attr):
            setattr(clone, attr, getattr(exc, attr))
    return clone
