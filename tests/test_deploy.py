"""Tests for the build-and-run pipeline with agent repair."""

import pytest
from helpers import clone_into, make_remote, remote_log

from agent_engine.core.deploy import DeployError, build_fix_prompt
from agent_engine.core.events import TaskReporter
from agent_engine.db.models import DeployRequest, ExecResult


@pytest.fixture
def remote(tmp_path):
    return make_remote(tmp_path, files={"Makefile": "build-dev:\n\ttrue\n"})


@pytest.fixture
def project(services, remote):
    return clone_into(remote, services.workspace.root, "g-001")


def reporter_for(services):
    return TaskReporter(services.publisher, "t-1", "g-001", "dev", "deploy")


class TestBuildFixPrompt:
    def test_uses_stderr(self):
        prompt = build_fix_prompt("make build-dev", ExecResult(False, "out", "undefined: Foo"))
        assert "`make build-dev`" in prompt
        assert "undefined: Foo" in prompt
        assert "out" not in prompt

    def test_falls_back_to_stdout_then_err(self):
        assert "compile log" in build_fix_prompt("make x", ExecResult(False, "compile log", ""))
        assert "timeout" in build_fix_prompt("make x", ExecResult(False, err="timeout"))


class TestDeployPipeline:
    def test_clean_deploy(self, services, stubs, project, fake_redis):
        message = services.deployer.run(DeployRequest("g-001"), reporter_for(services))

        assert stubs.calls() == ["make build-dev", "make run-dev"]
        assert stubs.claude_calls() == ""
        assert "make run-dev ok" in message
        assert [(m["status"], m["progress"]) for m in fake_redis.messages()] == [
            ("in_progress", 0), ("in_progress", 50), ("done", 100),
        ]

    def test_environment_selects_targets(self, services, stubs, project):
        services.deployer.run(DeployRequest("g-001", environment="prod"), reporter_for(services))
        assert stubs.calls() == ["make build-prod", "make run-prod"]

    def test_failed_build_is_repaired_by_dev_agent(
        self, services, stubs, project, remote, fake_redis
    ):
        stubs.flag("make_fail_build-dev")
        stubs.set_claude_output({"result": "fixed Foo", "session_id": "sid-dev"})

        services.deployer.run(DeployRequest("g-001"), reporter_for(services))

        prompt = stubs.claude_calls()
        assert "make build-dev" in prompt
        assert "undefined: Foo" in prompt
        assert stubs.calls() == ["make build-dev", "make run-dev"]
        assert remote_log(remote)[0] == "fixed Foo"
        assert services.sessions.get("g-001", "dev") == "sid-dev"
        assert fake_redis.messages()[-1]["status"] == "done"

    def test_failed_repair_fails_deploy(self, services, stubs, project, fake_redis):
        stubs.flag("make_fail_build-dev")
        stubs.set_claude_output({"is_error": True, "result": "quota exceeded"})

        with pytest.raises(DeployError, match="quota exceeded"):
            services.deployer.run(DeployRequest("g-001"), reporter_for(services))

        assert "make run-dev" not in stubs.calls()
        last = fake_redis.messages()[-1]
        assert last["status"] == "failed"
        assert last["progress"] == 0
