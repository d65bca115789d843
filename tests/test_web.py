"""Tests for the HTTP ingress."""

import asyncio

import pytest
from starlette.testclient import TestClient

from agent_engine.core import constants as c
from agent_engine.core.health import HealthProbe
from agent_engine.web.app import create_app


@pytest.fixture
def client(services):
    services.health = HealthProbe(tools={"git": ["--version"], "no-such-tool-xyz": ["-v"]})
    return TestClient(create_app(services))


def queued_payload(services, task_id):
    return services.queue.get_task(task_id).payload


class TestChat:
    def test_enqueues_chat(self, client, services):
        resp = client.post("/api/v1/agent/chat", json={
            "projectGuid": "g-001", "agentRole": "pm", "message": "写一份 PRD",
        })
        assert resp.status_code == 200
        body = resp.json()
        assert body["code"] == 0
        assert body["message"] == "success"
        assert body["timestamp"]

        task = services.queue.get_task(body["data"]["taskId"])
        assert task.kind == c.KIND_AGENT_CHAT
        assert task.state == "queued"
        assert task.payload == {
            "projectGuid": "g-001",
            "agentRole": "pm",
            "message": "写一份 PRD",
            "devStage": "generate_prd",
            "cliTool": "",
        }

    def test_missing_fields(self, client, services):
        resp = client.post("/api/v1/agent/chat", json={"projectGuid": "g-001"})
        body = resp.json()
        assert resp.status_code == 200
        assert body["code"] == 400
        assert "agentRole" in body["message"]
        assert services.queue.list_tasks() == []

    def test_unknown_role(self, client):
        resp = client.post("/api/v1/agent/chat", json={
            "projectGuid": "g-001", "agentRole": "janitor", "message": "hi",
        })
        assert resp.json()["code"] == 400

    def test_unknown_cli_tool(self, client):
        resp = client.post("/api/v1/agent/chat", json={
            "projectGuid": "g-001", "agentRole": "dev", "message": "hi", "cliTool": "cursor",
        })
        assert resp.json()["code"] == 400

    def test_bad_guid(self, client):
        resp = client.post("/api/v1/agent/chat", json={
            "projectGuid": "../etc", "agentRole": "dev", "message": "hi",
        })
        assert resp.json()["code"] == 400

    def test_invalid_json(self, client):
        resp = client.post(
            "/api/v1/agent/chat", content=b"{nope", headers={"content-type": "application/json"}
        )
        assert resp.json()["code"] == 400

    def test_non_object_body(self, client):
        resp = client.post("/api/v1/agent/chat", json=["g-001"])
        assert resp.json()["code"] == 400


class TestRoleEndpoints:
    def test_prd(self, client, services):
        resp = client.post("/api/v1/agent/pm/prd", json={
            "projectGuid": "g-001", "requirements": "一个待办应用", "cliTool": "k1",
        })
        task = services.queue.get_task(resp.json()["data"]["taskId"])
        assert task.kind == c.KIND_AGENT_EXECUTE
        assert task.payload["agentRole"] == "pm"
        assert task.payload["devStage"] == "generate_prd"
        assert task.payload["cliTool"] == "k1"
        assert task.payload["message"].startswith("@bmad/pm.mdc ")
        assert "一个待办应用" in task.payload["message"]

    def test_required_fields(self, client):
        resp = client.post("/api/v1/agent/ux-expert/ux-standard", json={
            "projectGuid": "g-001", "requirements": "x",
        })
        body = resp.json()
        assert body["code"] == 400
        assert "prdPath" in body["message"]

    def test_implement_story_optional_story(self, client, services):
        fields = {
            "projectGuid": "g-001", "prdPath": "docs/PRD.md", "archFolder": "docs/arch",
            "dbFolder": "docs/db", "apiFolder": "docs/api", "uxSpecPath": "docs/ux/ux-spec.md",
            "epicFile": "docs/epics/epic-1.md",
        }
        plain = client.post("/api/v1/agent/dev/implstory", json=fields).json()
        story = client.post(
            "/api/v1/agent/dev/implstory", json={**fields, "storyFile": "docs/stories/1.1.md"}
        ).json()

        assert "@docs/stories/1.1.md" not in queued_payload(services, plain["data"]["taskId"])["message"]
        assert "@docs/stories/1.1.md" in queued_payload(services, story["data"]["taskId"])["message"]

    def test_run_test_needs_only_guid(self, client, services):
        resp = client.post("/api/v1/agent/dev/runtest", json={"projectGuid": "g-001"})
        payload = queued_payload(services, resp.json()["data"]["taskId"])
        assert payload["devStage"] == "run_test"
        assert payload["agentRole"] == "dev"


class TestProjectEndpoints:
    def test_setup(self, client, services):
        resp = client.post("/api/v1/projects/setup", json={
            "projectGuid": "g-001", "repoUrl": "git@vc:team/app.git",
            "setupToolchain": True, "token": "secret",
        })
        task = services.queue.get_task(resp.json()["data"]["taskId"])
        assert task.kind == c.KIND_PROJECT_SETUP
        assert task.payload == {
            "projectGuid": "g-001",
            "repoUrl": "git@vc:team/app.git",
            "installToolchain": True,
            "toolchainKind": "claude-code",
            "token": "secret",
        }

    @pytest.mark.parametrize("flag,expected", [("false", False), ("true", True), (False, False)])
    def test_setup_toolchain_flag_strings(self, client, services, flag, expected):
        resp = client.post("/api/v1/projects/setup", json={
            "projectGuid": "g-001", "repoUrl": "u", "setupToolchain": flag,
        })
        assert queued_payload(services, resp.json()["data"]["taskId"])["installToolchain"] is expected

    def test_setup_requires_repo(self, client):
        resp = client.post("/api/v1/projects/setup", json={"projectGuid": "g-001"})
        assert resp.json()["code"] == 400

    def test_setup_unknown_toolchain(self, client):
        resp = client.post("/api/v1/projects/setup", json={
            "projectGuid": "g-001", "repoUrl": "u", "toolchainKind": "cursor",
        })
        assert resp.json()["code"] == 400

    def test_deploy(self, client, services):
        resp = client.post("/api/v1/agent/dev/deploy", json={"projectGuid": "g-001"})
        task = services.queue.get_task(resp.json()["data"]["taskId"])
        assert task.kind == c.KIND_PROJECT_DEPLOY
        assert task.payload == {"projectGuid": "g-001", "environment": "dev", "options": {}}

    @pytest.mark.parametrize("path,kind", [
        ("/api/v1/projects/download", c.KIND_PROJECT_DOWNLOAD),
        ("/api/v1/projects/backup", c.KIND_PROJECT_BACKUP),
    ])
    def test_archives(self, client, services, path, kind):
        resp = client.post(path, json={"projectGuid": "g-001"})
        assert services.queue.get_task(resp.json()["data"]["taskId"]).kind == kind


class TestTasksAndHealth:
    def test_get_task(self, client, services):
        info = services.enqueue(c.KIND_PROJECT_BACKUP, {"projectGuid": "g-001"})
        body = client.get(f"/api/v1/tasks/{info.id}").json()
        assert body["code"] == 0
        assert body["data"]["taskId"] == info.id
        assert body["data"]["state"] == "queued"
        assert body["data"]["result"]["status"] == "queued"

    def test_unknown_task(self, client):
        body = client.get("/api/v1/tasks/nope").json()
        assert body["code"] == 1
        assert "not found" in body["message"]

    def test_health(self, client, services):
        services.enqueue(c.KIND_PROJECT_BACKUP, {"projectGuid": "g-001"})
        data = client.get("/api/v1/health").json()["data"]
        assert data["status"] == "ok"
        assert data["tools"]["git"]["installed"] is True
        assert data["tools"]["git"]["version"].startswith("git version")
        assert data["tools"]["no-such-tool-xyz"] == {"installed": False, "version": ""}
        assert data["queue"]["queued"] == 1
        assert data["redis"] is True

    def test_health_check_runs_off_event_loop(self, client, services):
        seen = []

        class RecordingHealth:
            def check(self):
                try:
                    asyncio.get_running_loop()
                    seen.append("event loop")
                except RuntimeError:
                    seen.append("thread pool")
                return {"status": "ok", "tools": {}}

        services.health = RecordingHealth()
        assert client.get("/api/v1/health").json()["data"]["status"] == "ok"
        assert seen == ["thread pool"]
