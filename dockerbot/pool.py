"""Cache of idle sandbox containers keyed by image.

The idle list is guarded by a single :class:`asyncio.Lock` that is only held
while scanning, splicing or inserting.  Daemon round trips (synchronous
creation on a miss and replenishment after a hit) always happen outside the
lock so concurrent :meth:`ContainerPool.acquire` calls never queue behind a
container creation.
"""

from __future__ import annotations

import asyncio
from typing import Any, List, Set

from . import metrics
from .config import PoolConfig, SandboxConfig
from .container import ContainerState, SandboxContainer
from .errors import SandboxError
from .logging_utils import get_logger
from .profile import ExecutionProfile

logger = get_logger(__name__)


class ContainerPool:
    """Idle :class:`SandboxContainer` instances ready to be claimed."""

    def __init__(
        self,
        client: Any,
        *,
        sandbox: SandboxConfig | None = None,
        settings: PoolConfig | None = None,
    ) -> None:
        self.client = client
        self.sandbox = sandbox or SandboxConfig()
        self.settings = settings or PoolConfig()
        self._idle: List[SandboxContainer] = []
        self._lock = asyncio.Lock()
        self._tasks: Set["asyncio.Task[None]"] = set()
        self._closed = False

    def __len__(self) -> int:
        return len(self._idle)

    def idle(self) -> List[SandboxContainer]:
        """Snapshot of the idle list."""
        return list(self._idle)

    def _idle_count(self, image: str) -> int:
        return sum(1 for c in self._idle if c.image == image)

    def _update_idle_gauge(self, image: str) -> None:
        metrics.pool_idle.labels(image=image).set(self._idle_count(image))

    async def _create(self, profile: ExecutionProfile) -> SandboxContainer:
        return await SandboxContainer.create(self.client, profile, self.sandbox)

    async def acquire(self, profile: ExecutionProfile) -> SandboxContainer:
        """Return a container whose image matches ``profile.image``.

        A pooled container is returned immediately and a replacement is
        created in the background.  On a miss a new container is created
        synchronously without touching the pool.
        """

        async with self._lock:
            match = None
            for idx, candidate in enumerate(self._idle):
                if candidate.image == profile.image:
                    match = self._idle.pop(idx)
                    break
            if match is not None:
                self._update_idle_gauge(profile.image)

        if match is None:
            metrics.pool_misses_total.labels(image=profile.image).inc()
            logger.debug("pool miss for %s; creating container", profile.image)
            return await self._create(profile)

        metrics.pool_hits_total.labels(image=profile.image).inc()
        logger.info("reusing pooled container %s for image %s", match.name, profile.image)
        self._schedule_replenish(profile)
        return match

    def _schedule_replenish(self, profile: ExecutionProfile) -> None:
        if self._closed:
            return
        task = asyncio.create_task(
            self._replenish(profile), name=f"pool-replenish-{profile.name}"
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _replenish(self, profile: ExecutionProfile) -> None:
        try:
            container = await self._create(profile)
        except SandboxError as exc:
            logger.warning("container warm up failed for %s: %s", profile.image, exc)
            return
        limit = self.settings.max_idle_per_image
        async with self._lock:
            accepted = not self._closed and (
                limit <= 0 or self._idle_count(profile.image) < limit
            )
            if accepted:
                container.state = ContainerState.POOLED_IDLE
                self._idle.append(container)
                self._update_idle_gauge(profile.image)
        if accepted:
            logger.debug("added container %s to pool", container.name)
            return
        logger.debug(
            "pool already holds %d idle container(s) for %s; discarding %s",
            limit,
            profile.image,
            container.name,
        )
        await self._discard(container)

    async def prewarm(self, profile: ExecutionProfile) -> SandboxContainer:
        """Create a container for ``profile`` and park it in the idle list."""
        logger.info("adding container to pool for %s", profile.image)
        container = await self._create(profile)
        async with self._lock:
            container.state = ContainerState.POOLED_IDLE
            self._idle.append(container)
            self._update_idle_gauge(profile.image)
        return container

    async def wait_idle(self) -> None:
        """Wait for in-flight replenishment tasks to settle."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _discard(self, container: SandboxContainer) -> None:
        try:
            await container.stop()
        except SandboxError as exc:
            logger.warning("failed to remove pooled container %s: %s", container.name, exc)

    async def close(self) -> None:
        """Cancel replenishment and remove every idle container."""
        self._closed = True
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        async with self._lock:
            idle, self._idle = self._idle, []
        for container in idle:
            await self._discard(container)
            self._update_idle_gauge(container.image)


__all__ = ["ContainerPool"]
