"""Docker client construction and health checks."""

from __future__ import annotations

from typing import Any

import docker
from docker.errors import DockerException

from .config import DockerConfig
from .errors import DaemonUnavailable
from .logging_utils import get_logger

logger = get_logger(__name__)


def close_docker_client(client: Any | None) -> None:
    """Best effort close for Docker client instances."""

    if client is None:
        return
    close = getattr(client, "close", None)
    if callable(close):
        try:
            close()
        except (DockerException, OSError):
            logger.debug("failed to close docker client", exc_info=True)


def ping_docker(client: Any) -> tuple[bool, Exception | None]:
    """Return ``(healthy, error)`` after pinging the daemon."""

    try:
        client.ping()
    except (DockerException, OSError) as exc:
        return False, exc
    return True, None


def create_docker_client(settings: DockerConfig | None = None) -> docker.DockerClient:
    """Connect to the daemon and verify it answers.

    Raises :class:`DaemonUnavailable` when the daemon cannot be reached so the
    caller can abort before any container exists.
    """

    settings = settings or DockerConfig()
    try:
        if settings.base_url:
            client = docker.DockerClient(
                base_url=settings.base_url, timeout=int(settings.client_timeout)
            )
        else:
            client = docker.from_env(timeout=int(settings.client_timeout))
    except DockerException as exc:
        raise DaemonUnavailable(f"docker client unavailable: {exc}") from exc

    healthy, error = ping_docker(client)
    if not healthy:
        close_docker_client(client)
        raise DaemonUnavailable(f"docker daemon did not answer ping: {error}") from error
    logger.debug("docker client connected")
    return client


__all__ = ["create_docker_client", "ping_docker", "close_docker_client"]
