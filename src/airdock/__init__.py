"""airdock: run containerized source connectors over their stdout protocol."""

from airdock.errors import (
    AlreadyTerminatedError,
    ConnectorReportedError,
    ConnectorTimeoutError,
    InternalFaultError,
    NotReadyError,
    ProcessError,
    ProtocolViolationError,
    RunnerError,
    UnknownStatusError,
)
from airdock.runner import Runner
from airdock.runtime import DockerImageRuntime, ImageRuntime

__version__ = "0.1.0"

__all__ = [
    "AlreadyTerminatedError",
    "ConnectorReportedError",
    "ConnectorTimeoutError",
    "DockerImageRuntime",
    "ImageRuntime",
    "InternalFaultError",
    "NotReadyError",
    "ProcessError",
    "ProtocolViolationError",
    "Runner",
    "RunnerError",
    "UnknownStatusError",
]
