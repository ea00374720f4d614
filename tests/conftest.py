# flake8: noqa
import logging
import sys
from pathlib import Path

import pytest

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

# Add project root and the tests directory to the import path
ROOT = Path(__file__).resolve().parents[1]
TESTS = Path(__file__).resolve().parent
for entry in (ROOT, TESTS):
    if str(entry) not in sys.path:
        sys.path.insert(0, str(entry))

import dockerbot.config as config  # noqa: E402
from dockerbot.profile import ExecutionProfile  # noqa: E402

_ENV_VARS = (
    "DOCKER_HOST",
    "DOCKERBOT_CONFIG",
    "DOCKERBOT_DOCKER_TIMEOUT",
    "DOCKERBOT_RUN_TIMEOUT",
    "DOCKERBOT_POOL_SIZE",
    "DOCKERBOT_LOG_LEVEL",
    "DOCKERBOT_JSON_LOGS",
    "DOCKERBOT_LOGGING_CONFIG",
)


@pytest.fixture(autouse=True)
def _isolated_config(monkeypatch):
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr(config, "CONFIG", None)
    monkeypatch.setattr(config, "_CONFIG_PATH", None)
    monkeypatch.setattr(config, "_OVERRIDES", {})
    yield


@pytest.fixture
def python_profile():
    return ExecutionProfile(
        name="Python",
        aliases=["py", "python"],
        extension="py",
        path="/tmp/{file}",
        run=["python3", "/tmp/{file}"],
        image="python:3.12-slim",
    )


@pytest.fixture
def c_profile():
    return ExecutionProfile(
        name="C",
        aliases=["c"],
        extension="c",
        path="/tmp/{file}",
        compile=["gcc", "-o", "/tmp/a.out", "/tmp/{file}"],
        run=["/tmp/a.out"],
        image="gcc:13",
    )
