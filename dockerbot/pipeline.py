"""Upload, compile, run and collect one submission inside a sandbox.

:class:`ExecutionPipeline` drives a :class:`~dockerbot.pool.ContainerPool`
through the whole sequence and always removes the container at the end.
:func:`render` turns the resulting :class:`ExecutionResult` into the text and
file attachments shown to the user.
"""

from __future__ import annotations

import asyncio
import posixpath
from dataclasses import dataclass, field
from typing import List, Protocol, Sequence, Tuple

from . import metrics
from .config import PipelineConfig
from .container import SandboxContainer
from .errors import NotFound, SandboxError
from .logging_utils import get_logger, log_record, reset_correlation_id, set_correlation_id
from .pool import ContainerPool
from .profile import ExecutionProfile

logger = get_logger(__name__)

TIMEOUT_TEXT = "Timeout"
OVERFLOW_TEXT = "Result log out of length."
RESULT_LOG_NAME = "result_log.txt"
COMPILE_LOG_NAME = "compile_log.txt"
FENCE = "```"


@dataclass(frozen=True)
class Artifact:
    """Named file payload returned to the caller."""

    path: str
    data: bytes

    @property
    def filename(self) -> str:
        return posixpath.basename(self.path.rstrip("/")) or self.path


@dataclass(frozen=True)
class MissingFile:
    path: str

    @property
    def note(self) -> str:
        return f"file not found: `{self.path}`"


@dataclass
class ExecutionRequest:
    """Everything the caller supplies for one execution."""

    profile: ExecutionProfile
    source: str
    attachments: Sequence[Tuple[str, bytes]] = ()
    requested_paths: Sequence[str] = ()
    timeout: float | None = None


@dataclass
class ExecutionResult:
    container_name: str
    compile_output: bytes = b""
    run_output: bytes = b""
    timed_out: bool = False
    compile_exit_code: int | None = None
    run_exit_code: int | None = None
    artifacts: List[Artifact] = field(default_factory=list)
    missing: List[MissingFile] = field(default_factory=list)

    @property
    def compile_log(self) -> str:
        return self.compile_output.decode("utf-8", errors="replace")

    @property
    def run_log(self) -> str:
        return self.run_output.decode("utf-8", errors="replace")


@dataclass
class Report:
    """Rendered result: message text plus file attachments."""

    content: str
    attachments: List[Artifact] = field(default_factory=list)

    @property
    def overflowed(self) -> bool:
        return self.content == OVERFLOW_TEXT


class ResultSink(Protocol):
    """Receives progress notices while a submission is processed."""

    async def notify(self, text: str) -> None:
        ...


def _escape(text: str, settings: PipelineConfig) -> str:
    return text.replace("@", "\\@") if settings.escape_mentions else text


def render(result: ExecutionResult, settings: PipelineConfig | None = None) -> Report:
    """Format ``result`` for display.

    A timed out run renders as exactly :data:`TIMEOUT_TEXT`.  When the text
    reaches ``settings.display_budget`` characters it is replaced by
    :data:`OVERFLOW_TEXT` and the raw buffers are attached instead.
    """

    settings = settings or PipelineConfig()
    attachments = list(result.artifacts)
    if result.timed_out:
        return Report(TIMEOUT_TEXT, attachments)

    run_log = _escape(result.run_log, settings)
    if not result.compile_output:
        content = f"Result\n{FENCE}\n{run_log}\n{FENCE}"
    else:
        compile_log = _escape(result.compile_log, settings)
        content = (
            f"Result\nCompilation log\n{FENCE}\n{compile_log}\n{FENCE}\n"
            f"Execution log\n{FENCE}\n{run_log}\n{FENCE}"
        )
    if result.missing:
        content += "\n" + "\n".join(m.note for m in result.missing)

    if len(content) >= settings.display_budget:
        content = OVERFLOW_TEXT
        attachments.append(Artifact(RESULT_LOG_NAME, result.run_output))
        if result.compile_output:
            attachments.append(Artifact(COMPILE_LOG_NAME, result.compile_output))
    return Report(content, attachments)


class ExecutionPipeline:
    """Run submissions through pooled sandbox containers."""

    def __init__(self, pool: ContainerPool, settings: PipelineConfig | None = None) -> None:
        self.pool = pool
        self.settings = settings or PipelineConfig()

    async def execute(
        self, request: ExecutionRequest, sink: ResultSink | None = None
    ) -> ExecutionResult:
        """Execute ``request`` and return the collected result.

        Errors raised while acquiring, uploading or compiling propagate to the
        caller; the container is removed in every case once it exists.
        """

        profile = request.profile
        timeout = self.settings.run_timeout if request.timeout is None else request.timeout
        if sink is not None:
            await sink.notify(f"Creating {profile.name} container.")
        container = await self.pool.acquire(profile)
        token = set_correlation_id(container.name)
        result = ExecutionResult(container_name=container.name)
        try:
            if sink is not None:
                await sink.notify(f"Created: {container.id}")
            filename = profile.filename(container.name)
            for name, data in request.attachments:
                await container.upload_attachment(data, name)
            await container.upload_source(request.source, filename)
            await self._compile(container, filename, result)
            await self._run(container, filename, timeout, result)
            await self._collect(container, request.requested_paths, result)
        finally:
            await self._teardown(container)
            reset_correlation_id(token)
        logger.info(
            "execution finished",
            extra=log_record(
                container=container.name,
                language=profile.name,
                timed_out=result.timed_out,
                exit_code=result.run_exit_code,
            ),
        )
        return result

    async def _compile(
        self, container: SandboxContainer, filename: str, result: ExecutionResult
    ) -> None:
        handle = await container.compile(filename)
        if handle is None:
            return
        buffer = bytearray()
        await asyncio.gather(handle.drain_into(buffer), handle.wait())
        result.compile_output = bytes(buffer)
        result.compile_exit_code = await container.exit_code(handle)
        logger.debug(
            "compile step exited with %s (%d bytes of output)",
            result.compile_exit_code,
            len(buffer),
        )

    async def _run(
        self,
        container: SandboxContainer,
        filename: str,
        timeout: float,
        result: ExecutionResult,
    ) -> None:
        handle = await container.run(filename)
        buffer = bytearray()
        drain = asyncio.create_task(handle.drain_into(buffer))
        try:
            await asyncio.wait_for(asyncio.shield(drain), timeout)
        except asyncio.TimeoutError:
            result.timed_out = True
            handle.cancel()
            metrics.execution_timeouts_total.labels(image=container.image).inc()
            logger.info("run in %s exceeded %.1fs; cancelling", container.name, timeout)
            try:
                await container.kill()
            except SandboxError as exc:
                logger.warning("failed to kill timed out container %s: %s", container.name, exc)
            await drain
        await handle.wait()
        result.run_output = bytes(buffer)
        if not result.timed_out:
            result.run_exit_code = await container.exit_code(handle)

    async def _collect(
        self,
        container: SandboxContainer,
        paths: Sequence[str],
        result: ExecutionResult,
    ) -> None:
        for path in paths:
            try:
                data = await container.download(path)
            except NotFound:
                result.missing.append(MissingFile(path))
            except SandboxError as exc:
                logger.warning("download of %s failed: %s", path, exc)
                result.missing.append(MissingFile(path))
            else:
                result.artifacts.append(Artifact(path, data))

    async def _teardown(self, container: SandboxContainer) -> None:
        try:
            await container.stop()
        except SandboxError as exc:
            logger.warning("teardown of %s failed: %s", container.name, exc)


__all__ = [
    "TIMEOUT_TEXT",
    "OVERFLOW_TEXT",
    "Artifact",
    "MissingFile",
    "ExecutionRequest",
    "ExecutionResult",
    "ExecutionPipeline",
    "Report",
    "ResultSink",
    "render",
]
