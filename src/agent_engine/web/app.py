"""HTTP ingress: thin wrappers that validate a request and enqueue a task."""

import json
import logging
from datetime import datetime

import uvicorn
from starlette.applications import Starlette
from starlette.concurrency import run_in_threadpool
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route

from agent_engine.config import get_config
from agent_engine.core import constants as c
from agent_engine.core.cli_tools import get_cli_tool
from agent_engine.core.handlers import as_bool
from agent_engine.core.prompts import AGENT_ENDPOINTS, AgentEndpoint
from agent_engine.core.queue import EnqueueError
from agent_engine.core.workspace import validate_project_guid
from agent_engine.integrations.redis_client import ping
from agent_engine.services import Services

logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1"


class RequestError(Exception):
    """Invalid request body; reported with a 400 code in the envelope."""


# ── Envelopes ─────────────────────────────────────────────────────────────────


def _timestamp() -> str:
    return datetime.now().astimezone().isoformat(timespec="seconds")


def success(data: dict | None = None, message: str = "success") -> JSONResponse:
    return JSONResponse({
        "code": c.SUCCESS_CODE,
        "message": message,
        "data": data or {},
        "timestamp": _timestamp(),
    })


def failure(message: str, code: int = c.ERROR_CODE) -> JSONResponse:
    return JSONResponse({"code": code, "message": message, "timestamp": _timestamp()})


# ── Helpers ───────────────────────────────────────────────────────────────────


def _services(request: Request) -> Services:
    return request.app.state.services


async def _body(request: Request) -> dict:
    try:
        body = await request.json()
    except (json.JSONDecodeError, ValueError) as e:
        raise RequestError(f"invalid JSON body: {e}") from e
    if not isinstance(body, dict):
        raise RequestError("request body must be a JSON object")
    return body


def _check(body: dict, *required: str):
    missing = [name for name in required if not str(body.get(name) or "").strip()]
    if missing:
        raise RequestError(f"missing required field(s): {', '.join(missing)}")
    try:
        validate_project_guid(body["projectGuid"])
    except ValueError as e:
        raise RequestError(str(e)) from e
    if body.get("cliTool"):
        try:
            get_cli_tool(body["cliTool"])
        except ValueError as e:
            raise RequestError(str(e)) from e


def _enqueue(request: Request, kind: str, payload: dict) -> JSONResponse:
    try:
        info = _services(request).enqueue(kind, payload)
    except EnqueueError as e:
        logger.error("Enqueue of %s failed: %s", kind, e)
        return failure(f"failed to enqueue task: {e}")
    return success({"taskId": info.id})


# ── Handlers ──────────────────────────────────────────────────────────────────


def agent_route(endpoint: AgentEndpoint):
    async def handler(request: Request):
        try:
            body = await _body(request)
            _check(body, *endpoint.required)
        except RequestError as e:
            return failure(str(e), c.BAD_REQUEST_CODE)
        payload = {
            "projectGuid": body["projectGuid"],
            "agentRole": endpoint.role,
            "message": endpoint.message(body),
            "devStage": endpoint.dev_stage,
            "cliTool": body.get("cliTool") or "",
        }
        return _enqueue(request, c.KIND_AGENT_EXECUTE, payload)

    handler.__name__ = "agent_" + endpoint.path.strip("/").replace("/", "_").replace("-", "_")
    return handler


async def api_chat(request: Request):
    try:
        body = await _body(request)
        _check(body, "projectGuid", "agentRole", "message")
        if body["agentRole"] not in c.AGENT_ROLES:
            raise RequestError(f"unknown agent role: {body['agentRole']}")
    except RequestError as e:
        return failure(str(e), c.BAD_REQUEST_CODE)
    payload = {
        "projectGuid": body["projectGuid"],
        "agentRole": body["agentRole"],
        "message": body["message"],
        "devStage": body.get("devStage") or c.default_stage(body["agentRole"]),
        "cliTool": body.get("cliTool") or "",
    }
    return _enqueue(request, c.KIND_AGENT_CHAT, payload)


async def api_deploy(request: Request):
    try:
        body = await _body(request)
        _check(body, "projectGuid")
    except RequestError as e:
        return failure(str(e), c.BAD_REQUEST_CODE)
    payload = {
        "projectGuid": body["projectGuid"],
        "environment": body.get("environment") or "dev",
        "options": body.get("options") or {},
    }
    return _enqueue(request, c.KIND_PROJECT_DEPLOY, payload)


async def api_setup(request: Request):
    try:
        body = await _body(request)
        _check(body, "projectGuid", "repoUrl")
        kind = body.get("toolchainKind") or c.DEFAULT_TOOLCHAIN_KIND
        try:
            get_cli_tool(kind)
        except ValueError as e:
            raise RequestError(str(e)) from e
    except RequestError as e:
        return failure(str(e), c.BAD_REQUEST_CODE)
    install = body.get("installToolchain", body.get("setupToolchain", False))
    payload = {
        "projectGuid": body["projectGuid"],
        "repoUrl": body["repoUrl"],
        "installToolchain": as_bool(install),
        "toolchainKind": kind,
    }
    for optional in ("model", "provider", "token"):
        if body.get(optional):
            payload[optional] = body[optional]
    return _enqueue(request, c.KIND_PROJECT_SETUP, payload)


def archive_route(kind: str):
    async def handler(request: Request):
        try:
            body = await _body(request)
            _check(body, "projectGuid")
        except RequestError as e:
            return failure(str(e), c.BAD_REQUEST_CODE)
        return _enqueue(request, kind, {"projectGuid": body["projectGuid"]})

    return handler


async def api_get_task(request: Request):
    task_id = request.path_params["task_id"]
    task = _services(request).queue.get_task(task_id)
    if not task:
        return failure(f"task not found: {task_id}")
    return success({
        "taskId": task.id,
        "kind": task.kind,
        "queue": task.queue,
        "state": task.state,
        "retried": task.retried,
        "maxRetry": task.max_retry,
        "lastError": task.last_error,
        "result": task.result,
    })


def _health_report(services: Services) -> dict:
    return {
        **services.health.check(),
        "redis": ping(services.publisher.client),
        "queue": services.queue.counts(),
    }


async def api_health(request: Request):
    # Version checks spawn subprocesses; keep them off the event loop.
    return success(await run_in_threadpool(_health_report, _services(request)))


# ── App ───────────────────────────────────────────────────────────────────────


def create_app(services: Services | None = None) -> Starlette:
    routes = [
        Route(API_PREFIX + ep.path, agent_route(ep), methods=["POST"]) for ep in AGENT_ENDPOINTS
    ]
    routes += [
        Route(f"{API_PREFIX}/agent/chat", api_chat, methods=["POST"]),
        Route(f"{API_PREFIX}/agent/dev/deploy", api_deploy, methods=["POST"]),
        Route(f"{API_PREFIX}/projects/setup", api_setup, methods=["POST"]),
        Route(f"{API_PREFIX}/projects/download",
              archive_route(c.KIND_PROJECT_DOWNLOAD), methods=["POST"]),
        Route(f"{API_PREFIX}/projects/backup",
              archive_route(c.KIND_PROJECT_BACKUP), methods=["POST"]),
        Route(f"{API_PREFIX}/tasks/{{task_id}}", api_get_task),
        Route(f"{API_PREFIX}/health", api_health),
    ]
    app = Starlette(routes=routes)
    app.state.services = services or Services.from_config(get_config())
    return app


def run_server(services: Services, host: str = "127.0.0.1", port: int = 8088):
    app = create_app(services)
    uvicorn.run(app, host=host, port=port)
