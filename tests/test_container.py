import asyncio

import pytest
from docker.errors import DockerException

from dockerbot.container import END, SANDBOX_PREFIX, ContainerState, SandboxContainer
from dockerbot.errors import (
    ContainerCreateFailed,
    ExecFailed,
    NotFound,
    SandboxError,
    TeardownFailed,
    UploadFailed,
)
from fakes import DummyClient, Exec


def test_create_requests_isolated_container(python_profile):
    client = DummyClient()
    sandbox = asyncio.run(SandboxContainer.create(client, python_profile))

    raw = client.containers.created[0]
    assert sandbox.id == raw.id
    assert sandbox.name == raw.name
    assert sandbox.name.startswith(SANDBOX_PREFIX)
    assert sandbox.state is ContainerState.CREATED
    assert raw.image == "python:3.12-slim"
    assert raw.kwargs["command"] == "/bin/sh"
    assert raw.kwargs["tty"] is True
    assert raw.kwargs["network_disabled"] is True
    assert raw.kwargs["mem_limit"] == 1024 ** 3
    assert raw.kwargs["stop_timeout"] == 30
    assert raw.start_calls == 0


def test_names_are_unique(python_profile):
    client = DummyClient()

    async def make():
        return [await SandboxContainer.create(client, python_profile) for _ in range(3)]

    names = {c.name for c in asyncio.run(make())}
    assert len(names) == 3


def test_create_failure_is_reported(python_profile):
    client = DummyClient()
    client.containers.missing_images.add(python_profile.image)
    with pytest.raises(ContainerCreateFailed) as info:
        asyncio.run(SandboxContainer.create(client, python_profile))
    assert info.value.image == python_profile.image
    assert client.containers.created == []


def test_upload_source_starts_and_populates(python_profile):
    client = DummyClient()

    async def scenario():
        sandbox = await SandboxContainer.create(client, python_profile)
        path = await sandbox.upload_source("print('hi')", "main.py")
        await sandbox.upload_attachment(b"\x00\x01", "/data/input.bin")
        return sandbox, path

    sandbox, path = asyncio.run(scenario())
    raw = client.containers.created[0]
    assert path == "/tmp/main.py"
    assert raw.files == {"/tmp/main.py": b"print('hi')", "/data/input.bin": b"\x00\x01"}
    assert raw.status == "running"
    assert sandbox.state is ContainerState.POPULATED


def test_upload_failure(python_profile):
    client = DummyClient()
    client.fail_upload = True

    async def scenario():
        sandbox = await SandboxContainer.create(client, python_profile)
        await sandbox.upload_source("x", "main.py")

    with pytest.raises(UploadFailed):
        asyncio.run(scenario())


def test_compile_absent_without_template(python_profile):
    client = DummyClient()

    async def scenario():
        sandbox = await SandboxContainer.create(client, python_profile)
        return await sandbox.compile("main.py")

    assert asyncio.run(scenario()) is None
    assert client.commands() == []


def test_run_streams_chunks_then_end(python_profile):
    client = DummyClient(lambda c, cmd: Exec([b"hel", b"lo\n"], exit_code=3))

    async def scenario():
        sandbox = await SandboxContainer.create(client, python_profile)
        handle = await sandbox.run("main.py")
        chunks = []
        while True:
            chunk = await handle.output.get()
            if chunk is END:
                break
            chunks.append(chunk)
        await handle.wait()
        return sandbox, chunks, await sandbox.exit_code(handle)

    sandbox, chunks, code = asyncio.run(scenario())
    assert b"".join(chunks) == b"hello\n"
    assert code == 3
    assert sandbox.state is ContainerState.RUNNING
    assert client.commands() == [["python3", "/tmp/main.py"]]


def test_compile_handle_is_not_cancellable(c_profile):
    client = DummyClient(lambda c, cmd: Exec([b"ok"]))

    async def scenario():
        sandbox = await SandboxContainer.create(client, c_profile)
        handle = await sandbox.compile("main.c")
        buf = bytearray()
        await handle.drain_into(buf)
        await handle.wait()
        with pytest.raises(RuntimeError):
            handle.cancel()
        return buf

    assert asyncio.run(scenario()) == bytearray(b"ok")
    assert client.commands() == [["gcc", "-o", "/tmp/a.out", "/tmp/main.c"]]


def test_cancel_ends_output_without_waiting_for_process(python_profile):
    client = DummyClient(lambda c, cmd: Exec([b"tick\n"], hang=True))

    async def scenario():
        sandbox = await SandboxContainer.create(client, python_profile)
        handle = await sandbox.run("loop.py")
        first = await handle.output.get()
        handle.cancel()
        handle.cancel()
        buf = bytearray()
        await asyncio.wait_for(handle.drain_into(buf), timeout=2)
        await asyncio.wait_for(handle.wait(), timeout=2)
        await sandbox.kill()
        return first, buf, handle.cancelled

    first, rest, cancelled = asyncio.run(scenario())
    assert first == b"tick\n"
    assert rest == bytearray()
    assert cancelled
    assert client.containers.created[0].killed


def test_stream_error_is_treated_as_end(python_profile):
    client = DummyClient(
        lambda c, cmd: Exec([b"partial"], error=DockerException("connection reset"))
    )

    async def scenario():
        sandbox = await SandboxContainer.create(client, python_profile)
        handle = await sandbox.run("main.py")
        buf = bytearray()
        await handle.drain_into(buf)
        await handle.wait()
        return buf

    assert asyncio.run(scenario()) == bytearray(b"partial")


def test_exec_failure(python_profile):
    client = DummyClient()

    def broken(*a, **k):
        raise DockerException("exec refused")

    client.api.exec_create = broken

    async def scenario():
        sandbox = await SandboxContainer.create(client, python_profile)
        await sandbox.run("main.py")

    with pytest.raises(ExecFailed):
        asyncio.run(scenario())


def test_download_existing_and_missing(python_profile):
    client = DummyClient()

    async def scenario():
        sandbox = await SandboxContainer.create(client, python_profile)
        client.containers.created[0].files["/tmp/out.bin"] = b"\xffdata"
        data = await sandbox.download("/tmp/out.bin")
        with pytest.raises(NotFound) as info:
            await sandbox.download("/tmp/missing.txt")
        return data, info.value.path

    data, missing = asyncio.run(scenario())
    assert data == b"\xffdata"
    assert missing == "/tmp/missing.txt"


def test_stop_is_not_idempotent(python_profile):
    client = DummyClient()

    async def scenario():
        sandbox = await SandboxContainer.create(client, python_profile)
        await sandbox.stop()
        assert sandbox.state is ContainerState.STOPPED
        with pytest.raises(TeardownFailed):
            await sandbox.stop()
        with pytest.raises(SandboxError):
            await sandbox.upload_source("x", "main.py")

    asyncio.run(scenario())
    assert client.containers.created[0].removed
