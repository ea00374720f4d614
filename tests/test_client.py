import pytest
from docker.errors import DockerException

import dockerbot.client as client_mod
from dockerbot.config import DockerConfig
from dockerbot.errors import DaemonUnavailable
from fakes import DummyClient


class DeadClient(DummyClient):
    def ping(self):
        raise DockerException("connection refused")


def test_from_env_used_without_base_url(monkeypatch):
    calls = {}
    dummy = DummyClient()

    def from_env(**kwargs):
        calls.update(kwargs)
        return dummy

    monkeypatch.setattr(client_mod.docker, "from_env", from_env)
    assert client_mod.create_docker_client(DockerConfig(client_timeout=12)) is dummy
    assert calls == {"timeout": 12}


def test_base_url_uses_explicit_client(monkeypatch):
    seen = {}

    def factory(**kwargs):
        seen.update(kwargs)
        return DummyClient()

    monkeypatch.setattr(client_mod.docker, "DockerClient", factory)
    client_mod.create_docker_client(DockerConfig(base_url="tcp://docker:2375"))
    assert seen == {"base_url": "tcp://docker:2375", "timeout": 30}


def test_unreachable_daemon(monkeypatch):
    dead = DeadClient()
    monkeypatch.setattr(client_mod.docker, "from_env", lambda **k: dead)
    with pytest.raises(DaemonUnavailable):
        client_mod.create_docker_client()
    assert dead.closed


def test_client_construction_failure(monkeypatch):
    def broken(**kwargs):
        raise DockerException("no DOCKER_HOST")

    monkeypatch.setattr(client_mod.docker, "from_env", broken)
    with pytest.raises(DaemonUnavailable):
        client_mod.create_docker_client()


def test_ping_and_close_helpers():
    healthy, err = client_mod.ping_docker(DummyClient())
    assert healthy and err is None
    healthy, err = client_mod.ping_docker(DeadClient())
    assert not healthy and isinstance(err, DockerException)
    client_mod.close_docker_client(None)
