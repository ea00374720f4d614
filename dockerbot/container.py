"""Lifecycle of a single daemon-managed sandbox container.

A :class:`SandboxContainer` is created from an
:class:`~dockerbot.profile.ExecutionProfile`, populated through the tar codec,
asked to compile and run the uploaded source and finally force-removed.  All
blocking Docker SDK calls are pushed to worker threads with
:func:`asyncio.to_thread`.

Exec output is forwarded through an :class:`asyncio.Queue` that yields raw
byte chunks followed by :data:`END`.  The run step waits on "next chunk" and
"cancel requested" together so cancellation is observed as soon as it is
signalled without polling.
"""

from __future__ import annotations

import asyncio
import enum
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Iterable, Iterator, List

from docker import errors as docker_errors
from docker.errors import DockerException

from . import metrics
from .archive import pack_single, unpack_single
from .config import SandboxConfig
from .errors import (
    ContainerCreateFailed,
    ExecFailed,
    NotFound,
    SandboxError,
    TeardownFailed,
    UploadFailed,
)
from .logging_utils import get_logger
from .profile import ExecutionProfile

logger = get_logger(__name__)

# Orphan sweeps identify sandbox containers by this prefix alone; keep it stable.
SANDBOX_PREFIX = "dockerbot-"

_DAEMON_ERRORS = (DockerException, OSError)


class _EndOfStream:
    def __repr__(self) -> str:
        return "END"


END: Any = _EndOfStream()


class ContainerState(enum.Enum):
    CREATED = "created"
    POOLED_IDLE = "pooled_idle"
    POPULATED = "populated"
    COMPILING = "compiling"
    RUNNING = "running"
    STOPPED = "stopped"


def sandbox_name() -> str:
    """Return a fresh globally unique sandbox container name."""
    return f"{SANDBOX_PREFIX}{uuid.uuid4()}"


@dataclass
class ExecHandle:
    """Background exec session and the channel carrying its output."""

    exec_id: str
    command: List[str]
    output: "asyncio.Queue[Any]"
    task: "asyncio.Task[None] | None" = None
    cancel_event: asyncio.Event | None = field(default=None, repr=False)

    def cancel(self) -> None:
        """Ask the reader to stop forwarding output.  Only the first call counts."""
        if self.cancel_event is None:
            raise RuntimeError("exec session does not support cancellation")
        self.cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self.cancel_event is not None and self.cancel_event.is_set()

    async def drain_into(self, buffer: bytearray) -> None:
        """Append every chunk to ``buffer`` until :data:`END` arrives."""
        while True:
            chunk = await self.output.get()
            if chunk is END:
                return
            buffer.extend(chunk)

    async def wait(self) -> None:
        if self.task is not None:
            await self.task


def _discard_result(fut: "asyncio.Future[Any]") -> None:
    if not fut.cancelled():
        fut.exception()


async def _pump(
    stream: Iterable[bytes],
    output: "asyncio.Queue[Any]",
    cancel: asyncio.Event | None,
) -> None:
    """Forward chunks from a blocking exec stream into ``output``."""

    loop = asyncio.get_running_loop()
    chunks: Iterator[bytes] = iter(stream)
    cancelled = asyncio.ensure_future(cancel.wait()) if cancel is not None else None
    try:
        while True:
            fetch = loop.run_in_executor(None, next, chunks, END)
            if cancelled is None:
                chunk = await fetch
            else:
                done, _ = await asyncio.wait(
                    {fetch, cancelled}, return_when=asyncio.FIRST_COMPLETED
                )
                if cancelled in done:
                    fetch.add_done_callback(_discard_result)
                    logger.debug("exec output reader cancelled")
                    break
                chunk = fetch.result()
            if chunk is END:
                break
            if chunk:
                output.put_nowait(bytes(chunk))
    except Exception as exc:
        logger.warning("exec output stream failed: %s", exc)
    finally:
        if cancelled is not None:
            cancelled.cancel()
        output.put_nowait(END)


class SandboxContainer:
    """One ephemeral, network-disabled, memory-capped container."""

    def __init__(
        self,
        client: Any,
        container: Any,
        profile: ExecutionProfile,
        name: str,
    ) -> None:
        self.client = client
        self._container = container
        self.id: str = container.id
        self.name = name
        self.profile = profile
        self.state = ContainerState.CREATED

    def __repr__(self) -> str:
        return (
            f"SandboxContainer(name={self.name!r}, image={self.image!r}, "
            f"state={self.state.value})"
        )

    @property
    def image(self) -> str:
        return self.profile.image

    @classmethod
    async def create(
        cls,
        client: Any,
        profile: ExecutionProfile,
        settings: SandboxConfig | None = None,
    ) -> "SandboxContainer":
        """Create (but do not start) a container bound to ``profile``."""

        settings = settings or SandboxConfig()
        name = sandbox_name()
        start_time = time.monotonic()
        try:
            container = await asyncio.to_thread(
                client.containers.create,
                profile.image,
                settings.shell,
                name=name,
                tty=True,
                network_disabled=True,
                mem_limit=settings.memory_limit,
                stop_timeout=settings.stop_timeout,
            )
        except _DAEMON_ERRORS as exc:
            metrics.container_creation_failures_total.labels(image=profile.image).inc()
            logger.warning("container creation failed for %s: %s", profile.image, exc)
            raise ContainerCreateFailed(profile.image, exc) from exc
        metrics.container_creation_success_total.labels(image=profile.image).inc()
        metrics.container_creation_seconds.labels(image=profile.image).set(
            time.monotonic() - start_time
        )
        logger.info("created container %s (%s) from image %s", name, container.id, profile.image)
        return cls(client, container, profile, name)

    def _ensure_live(self) -> None:
        if self.state is ContainerState.STOPPED:
            raise SandboxError(f"container {self.name} is stopped")

    async def _upload(self, path: str, data: bytes) -> None:
        self._ensure_live()
        archive = pack_single(path, data)
        try:
            await asyncio.to_thread(self._container.start)
            ok = await asyncio.to_thread(self._container.put_archive, "/", archive)
        except _DAEMON_ERRORS as exc:
            raise UploadFailed(f"upload of {path} to {self.name} failed: {exc}") from exc
        if ok is False:
            raise UploadFailed(f"daemon rejected upload of {path} to {self.name}")
        if self.state in (ContainerState.CREATED, ContainerState.POOLED_IDLE):
            self.state = ContainerState.POPULATED
        logger.debug("uploaded %d bytes to %s:%s", len(data), self.name, path)

    async def upload_source(self, content: str | bytes, filename: str) -> str:
        """Place ``content`` at the profile's source path; returns that path."""
        path = self.profile.source_path(filename)
        data = content.encode("utf-8") if isinstance(content, str) else content
        await self._upload(path, data)
        return path

    async def upload_attachment(self, data: bytes, path: str) -> None:
        await self._upload(path, data)

    async def _exec(self, cmd: List[str], *, cancellable: bool) -> ExecHandle:
        self._ensure_live()
        try:
            created = await asyncio.to_thread(
                self.client.api.exec_create,
                self.id,
                cmd,
                stdout=True,
                stderr=True,
                workdir=self.profile.workdir,
            )
            exec_id = created["Id"]
            stream = await asyncio.to_thread(
                self.client.api.exec_start, exec_id, stream=True
            )
        except _DAEMON_ERRORS as exc:
            raise ExecFailed(f"exec {cmd!r} in {self.name} failed: {exc}") from exc
        handle = ExecHandle(
            exec_id=exec_id,
            command=cmd,
            output=asyncio.Queue(),
            cancel_event=asyncio.Event() if cancellable else None,
        )
        handle.task = asyncio.create_task(
            _pump(stream, handle.output, handle.cancel_event),
            name=f"{self.name}-exec-{exec_id[:12]}",
        )
        return handle

    async def compile(self, filename: str) -> ExecHandle | None:
        """Start the compile step, or return ``None`` when there is none."""
        cmd = self.profile.compile_command(filename)
        if cmd is None:
            return None
        self.state = ContainerState.COMPILING
        logger.debug("compiling in %s: %s", self.name, cmd)
        return await self._exec(cmd, cancellable=False)

    async def run(self, filename: str) -> ExecHandle:
        cmd = self.profile.run_command(filename)
        self.state = ContainerState.RUNNING
        logger.debug("running in %s: %s", self.name, cmd)
        return await self._exec(cmd, cancellable=True)

    async def exit_code(self, handle: ExecHandle) -> int | None:
        """Return the exit status of a finished exec, when the daemon knows it."""
        try:
            info = await asyncio.to_thread(self.client.api.exec_inspect, handle.exec_id)
        except _DAEMON_ERRORS as exc:
            logger.debug("exec inspect failed for %s: %s", handle.exec_id, exc)
            return None
        if info.get("Running"):
            return None
        return info.get("ExitCode")

    async def download(self, path: str) -> bytes:
        """Return the contents of ``path`` inside the container."""
        self._ensure_live()
        try:
            bits, _stat = await asyncio.to_thread(self._container.get_archive, path)
            data = await asyncio.to_thread(b"".join, bits)
        except docker_errors.NotFound as exc:
            raise NotFound(path) from exc
        except _DAEMON_ERRORS as exc:
            raise SandboxError(f"download of {path} from {self.name} failed: {exc}") from exc
        try:
            return unpack_single(data)
        except NotFound as exc:
            raise NotFound(path, "archive holds no file") from exc

    async def kill(self) -> None:
        """SIGKILL the container so every process started inside it ends."""
        try:
            await asyncio.to_thread(self._container.kill)
        except _DAEMON_ERRORS as exc:
            raise SandboxError(f"kill of {self.name} failed: {exc}") from exc

    async def stop(self) -> None:
        """Force-remove the container.  Raises :class:`TeardownFailed`."""
        try:
            await asyncio.to_thread(self._container.remove, force=True)
        except _DAEMON_ERRORS as exc:
            metrics.teardown_failures_total.labels(image=self.image).inc()
            raise TeardownFailed(f"removal of {self.name} failed: {exc}") from exc
        finally:
            self.state = ContainerState.STOPPED
        logger.info("removed container %s", self.name)


__all__ = [
    "SANDBOX_PREFIX",
    "END",
    "ContainerState",
    "ExecHandle",
    "SandboxContainer",
    "sandbox_name",
]
