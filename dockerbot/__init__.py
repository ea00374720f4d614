"""Run untrusted code snippets inside disposable Docker containers."""

from .config import Config, get_config, load_config
from .errors import (
    ContainerCreateFailed,
    DaemonUnavailable,
    ExecFailed,
    NotFound,
    SandboxError,
    TeardownFailed,
    UploadFailed,
)
from .pipeline import (
    Artifact,
    ExecutionPipeline,
    ExecutionRequest,
    ExecutionResult,
    MissingFile,
    Report,
    render,
)
from .pool import ContainerPool
from .profile import CommandTemplate, ExecutionProfile, LanguageCatalog

__version__ = "0.1.0"

__all__ = [
    "Artifact",
    "CommandTemplate",
    "Config",
    "ContainerCreateFailed",
    "ContainerPool",
    "DaemonUnavailable",
    "ExecFailed",
    "ExecutionPipeline",
    "ExecutionProfile",
    "ExecutionRequest",
    "ExecutionResult",
    "LanguageCatalog",
    "MissingFile",
    "NotFound",
    "Report",
    "SandboxError",
    "TeardownFailed",
    "UploadFailed",
    "get_config",
    "load_config",
    "render",
]
