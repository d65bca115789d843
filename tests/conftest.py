import os

import pytest
from helpers import GIT_IDENTITY, FakeRedis, ToolStubs

from agent_engine.config import Config
from agent_engine.services import Services


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def stubs(tmp_path, monkeypatch):
    """Stub tools on PATH and a git identity, inherited by every new shell session."""
    tools = ToolStubs(tmp_path)
    monkeypatch.setenv("PATH", f"{tools.bin}{os.pathsep}{os.environ.get('PATH', '')}")
    for key, value in GIT_IDENTITY.items():
        monkeypatch.setenv(key, value)
    return tools


@pytest.fixture
def config(tmp_path):
    return Config(
        db_path=tmp_path / "tasks.db",
        workspace_path=tmp_path / "workspace",
        command_timeout=30,
        concurrency=4,
        poll_interval=0.05,
        max_retry=1,
        retry_delay_seconds=0,
    )


@pytest.fixture
def services(config, fake_redis, stubs):
    svc = Services.from_config(config, redis_client=fake_redis)
    yield svc
    svc.close()
