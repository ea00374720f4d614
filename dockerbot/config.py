"""Application configuration loader.

Loads settings from a YAML file (``DOCKERBOT_CONFIG`` or
``config/settings.yaml``), merges dotted ``key=value`` overrides and finally
applies environment variables.  Precedence: ``Environment variables`` >
``overrides`` > ``YAML``.

The schema is validated with Pydantic models so that a malformed language
catalog or an invalid limit fails at startup with a readable message.
"""

from __future__ import annotations

import argparse
import os
from pathlib import Path
from typing import Any, Dict, List

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator

from .logging_utils import get_logger
from .profile import ExecutionProfile, LanguageCatalog

logger = get_logger(__name__)

CONFIG_DIR = Path(os.getenv("DOCKERBOT_CONFIG_DIR", Path(__file__).resolve().parents[1] / "config"))
DEFAULT_SETTINGS_FILE = CONFIG_DIR / "settings.yaml"

GIB = 1024 * 1024 * 1024


class _StrictBaseModel(BaseModel):
    """Base model enforcing ``extra = forbid``."""

    model_config = ConfigDict(extra="forbid")


class DockerConfig(_StrictBaseModel):
    """How to reach the container daemon."""

    base_url: str | None = None
    client_timeout: float = Field(default=30.0, gt=0)


class SandboxConfig(_StrictBaseModel):
    """Resource limits requested for every sandbox container."""

    memory_limit: int = Field(default=GIB, gt=0)
    stop_timeout: int = Field(default=30, ge=0)
    sweep_stop_timeout: int = Field(default=5, ge=0)
    shell: str = "/bin/sh"


class PoolConfig(_StrictBaseModel):
    """Container pool sizing."""

    max_idle_per_image: int = Field(default=1, ge=0)
    prewarm: List[str] = Field(default_factory=list)


class PipelineConfig(_StrictBaseModel):
    """Execution pipeline behaviour and result rendering."""

    run_timeout: float = Field(default=10.0, gt=0)
    display_budget: int = Field(default=1000, gt=0)
    escape_mentions: bool = True


class LoggingConfig(_StrictBaseModel):
    """Logging configuration."""

    verbosity: str = Field(default="INFO", pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$")


def _commands(profile: ExecutionProfile) -> tuple:
    return (profile.path, profile.compile, profile.run, profile.workdir)


class Config(_StrictBaseModel):
    """Canonical configuration for the sandbox runner."""

    docker: DockerConfig = Field(default_factory=DockerConfig)
    sandbox: SandboxConfig = Field(default_factory=SandboxConfig)
    pool: PoolConfig = Field(default_factory=PoolConfig)
    pipeline: PipelineConfig = Field(default_factory=PipelineConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    languages: List[ExecutionProfile] = Field(default_factory=list)

    @field_validator("languages")
    @classmethod
    def _unique_names(cls, value: List[ExecutionProfile]) -> List[ExecutionProfile]:
        names = [p.name.lower() for p in value]
        dupes = sorted({n for n in names if names.count(n) > 1})
        if dupes:
            raise ValueError(f"duplicate language names: {', '.join(dupes)}")
        return value

    @field_validator("languages")
    @classmethod
    def _consistent_images(cls, value: List[ExecutionProfile]) -> List[ExecutionProfile]:
        # pooled containers are matched by image alone and keep the commands
        # of the profile they were created for
        by_image: Dict[str, ExecutionProfile] = {}
        for profile in value:
            first = by_image.setdefault(profile.image, profile)
            if _commands(first) != _commands(profile):
                raise ValueError(
                    f"languages {first.name} and {profile.name} share image "
                    f"{profile.image} but differ in path, compile, run or workdir"
                )
        return value

    def catalog(self) -> LanguageCatalog:
        return LanguageCatalog(self.languages)


CONFIG: Config | None = None
_CONFIG_PATH: Path | None = None
_OVERRIDES: Dict[str, Any] = {}


def _load_yaml(path: Path) -> Dict[str, Any]:
    with path.open("r", encoding="utf-8") as fh:
        return yaml.safe_load(fh) or {}


def _merge_dict(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively merge *override* into *base*."""
    for key, value in override.items():
        if (
            isinstance(value, dict)
            and key in base
            and isinstance(base[key], dict)
        ):
            base[key] = _merge_dict(base[key], value)
        else:
            base[key] = value
    return base


def _parse_float(value: str, *, field: str) -> float:
    try:
        return float(value)
    except ValueError as exc:
        raise ValueError(f"{field} must be a number") from exc


def _parse_int(value: str, *, field: str) -> int:
    try:
        return int(value)
    except ValueError as exc:
        raise ValueError(f"{field} must be an integer") from exc


def _env_overrides() -> Dict[str, Any]:
    data: Dict[str, Any] = {}
    base_url = os.getenv("DOCKER_HOST")
    if base_url:
        data.setdefault("docker", {})["base_url"] = base_url
    timeout = os.getenv("DOCKERBOT_DOCKER_TIMEOUT")
    if timeout:
        data.setdefault("docker", {})["client_timeout"] = _parse_float(
            timeout, field="DOCKERBOT_DOCKER_TIMEOUT"
        )
    run_timeout = os.getenv("DOCKERBOT_RUN_TIMEOUT")
    if run_timeout:
        data.setdefault("pipeline", {})["run_timeout"] = _parse_float(
            run_timeout, field="DOCKERBOT_RUN_TIMEOUT"
        )
    pool_size = os.getenv("DOCKERBOT_POOL_SIZE")
    if pool_size:
        data.setdefault("pool", {})["max_idle_per_image"] = _parse_int(
            pool_size, field="DOCKERBOT_POOL_SIZE"
        )
    level = os.getenv("DOCKERBOT_LOG_LEVEL")
    if level:
        data.setdefault("logging", {})["verbosity"] = level.upper()
    return data


def load_config(
    config_file: str | Path | None = None,
    overrides: Dict[str, Any] | None = None,
) -> Config:
    """Load and validate the configuration.

    Parameters
    ----------
    config_file:
        Optional YAML file.  When ``None`` the ``DOCKERBOT_CONFIG`` environment
        variable is consulted before falling back to
        :data:`DEFAULT_SETTINGS_FILE`.  Only the implicit default may be
        missing; an explicit path that does not exist raises
        :class:`FileNotFoundError`.
    overrides:
        Nested mapping merged on top of the file contents, typically built by
        :func:`build_overrides`.
    """

    explicit = config_file or os.getenv("DOCKERBOT_CONFIG")
    path = Path(explicit) if explicit else DEFAULT_SETTINGS_FILE
    data: Dict[str, Any] = {}
    if path.is_file():
        data = _load_yaml(path)
    elif explicit:
        raise FileNotFoundError(f"configuration file not found: {path}")
    else:
        logger.debug("no configuration file at %s; using defaults", path)

    if overrides:
        data = _merge_dict(data, overrides)
    data = _merge_dict(data, _env_overrides())

    cfg = Config.model_validate(data)
    logger.debug(
        "configuration loaded from %s with %d language(s)", path, len(cfg.languages)
    )
    return cfg


def get_config() -> Config:
    """Return the canonical :class:`Config` instance, loading it lazily."""

    global CONFIG
    if CONFIG is None:
        CONFIG = load_config(_CONFIG_PATH, _OVERRIDES)
    return CONFIG


def configure(config_file: str | Path | None = None, overrides: Dict[str, Any] | None = None) -> Config:
    """Set the parameters used by :func:`get_config` and reload."""

    global _CONFIG_PATH, _OVERRIDES
    _CONFIG_PATH = Path(config_file) if config_file else None
    _OVERRIDES = dict(overrides or {})
    return reload()


def reload() -> Config:
    """Reload configuration from disk using stored parameters."""

    global CONFIG
    CONFIG = load_config(_CONFIG_PATH, _OVERRIDES)
    return CONFIG


def build_overrides(pairs: List[str]) -> Dict[str, Any]:
    """Turn ``a.b=value`` strings into a nested mapping of YAML values."""

    result: Dict[str, Any] = {}
    for pair in pairs:
        if "=" not in pair:
            raise ValueError(f"Invalid override '{pair}', expected key=value")
        key, value = pair.split("=", 1)
        value_data = yaml.safe_load(value)
        current = result
        parts = key.split(".")
        for part in parts[:-1]:
            current = current.setdefault(part, {})
        current[parts[-1]] = value_data
    return result


def add_config_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--config", help="Configuration YAML file", dest="config_file"
    )
    parser.add_argument(
        "--config-override",
        action="append",
        dest="config_override",
        default=[],
        metavar="KEY=VALUE",
        help="Override configuration values (can be specified multiple times)",
    )


__all__ = [
    "Config",
    "DockerConfig",
    "SandboxConfig",
    "PoolConfig",
    "PipelineConfig",
    "LoggingConfig",
    "load_config",
    "get_config",
    "configure",
    "reload",
    "build_overrides",
    "add_config_arguments",
]
