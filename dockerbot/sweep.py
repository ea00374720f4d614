"""Startup cleanup of leftover sandbox containers and the ``ps`` listing."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, List

from docker.errors import DockerException, NotFound

from . import metrics
from .config import SandboxConfig
from .container import SANDBOX_PREFIX
from .errors import DaemonUnavailable
from .logging_utils import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class SandboxSummary:
    name: str
    image: str
    status: str


def _is_sandbox(container: Any) -> bool:
    return str(getattr(container, "name", "")).startswith(SANDBOX_PREFIX)


def _image_of(container: Any) -> str:
    attrs = getattr(container, "attrs", None) or {}
    image = (attrs.get("Config") or {}).get("Image")
    if image:
        return str(image)
    tags = getattr(getattr(container, "image", None), "tags", None) or []
    return str(tags[0]) if tags else "<unknown>"


def _list(client: Any, *, all: bool) -> List[Any]:
    try:
        return list(client.containers.list(all=all, ignore_removed=True))
    except (DockerException, OSError) as exc:
        raise DaemonUnavailable(f"failed to list containers: {exc}") from exc


def sweep_orphans(client: Any, settings: SandboxConfig | None = None) -> int:
    """Stop and remove every container whose name carries the sandbox prefix.

    Containers owned by anything else are never touched.  Failures on single
    containers are logged and skipped; the number actually removed is
    returned.
    """

    settings = settings or SandboxConfig()
    removed = 0
    for container in _list(client, all=True):
        if not _is_sandbox(container):
            continue
        name = container.name
        try:
            if getattr(container, "status", "") == "running":
                container.stop(timeout=settings.sweep_stop_timeout)
            container.remove(force=True)
        except NotFound:
            logger.debug("orphan %s disappeared before removal", name)
            continue
        except (DockerException, OSError) as exc:
            logger.warning("failed to remove orphan container %s: %s", name, exc)
            continue
        removed += 1
        logger.info("removed orphan container %s", name)
    if removed:
        metrics.orphans_removed_total.inc(removed)
    return removed


def list_sandboxes(client: Any, running_only: bool = True) -> List[SandboxSummary]:
    """Describe the sandbox containers the daemon currently knows about."""

    summaries = []
    for container in _list(client, all=not running_only):
        if not _is_sandbox(container):
            continue
        summaries.append(
            SandboxSummary(
                name=container.name,
                image=_image_of(container),
                status=str(getattr(container, "status", "unknown")),
            )
        )
    return summaries


__all__ = ["SandboxSummary", "sweep_orphans", "list_sandboxes"]
