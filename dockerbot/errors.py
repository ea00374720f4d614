"""Structured errors raised by the sandbox execution engine."""

from __future__ import annotations


class SandboxError(Exception):
    """Base class for sandbox execution failures."""


class DaemonUnavailable(SandboxError):
    """Raised when the Docker daemon cannot be reached."""


class ContainerCreateFailed(SandboxError):
    """Raised when the daemon refuses to create a sandbox container."""

    def __init__(self, image: str, reason: object) -> None:
        super().__init__(f"failed to create container from {image}: {reason}")
        self.image = image
        self.reason = reason


class UploadFailed(SandboxError):
    """Raised when an archive cannot be placed into a container."""


class ExecFailed(SandboxError):
    """Raised when an exec session cannot be created or started."""


class NotFound(SandboxError):
    """Raised when a requested file is absent or an archive holds no entry."""

    def __init__(self, path: str, reason: object | None = None) -> None:
        message = f"file not found: {path}"
        if reason is not None:
            message = f"{message} ({reason})"
        super().__init__(message)
        self.path = path


class TeardownFailed(SandboxError):
    """Raised when a container cannot be removed."""


__all__ = [
    "SandboxError",
    "DaemonUnavailable",
    "ContainerCreateFailed",
    "UploadFailed",
    "ExecFailed",
    "NotFound",
    "TeardownFailed",
]
