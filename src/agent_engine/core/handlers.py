"""Task handlers: decode payloads and run the matching pipeline."""

import logging
from typing import Any

from agent_engine.core import constants as c
from agent_engine.core.agents import AgentPipeline
from agent_engine.core.archive import ProjectArchiver
from agent_engine.core.cli_tools import get_cli_tool
from agent_engine.core.deploy import DeployPipeline
from agent_engine.core.events import EventPublisher
from agent_engine.core.setup import EnvironmentBootstrapper
from agent_engine.core.worker import SkipRetry, TaskContext, TaskMux
from agent_engine.core.workspace import validate_project_guid
from agent_engine.db.models import AgentRequest, DeployRequest, SetupRequest

logger = logging.getLogger(__name__)


def _require(payload: Any, *names: str) -> dict:
    if not isinstance(payload, dict):
        raise SkipRetry(f"invalid payload: expected an object, got {type(payload).__name__}")
    missing = [n for n in names if not str(payload.get(n) or "").strip()]
    if missing:
        raise SkipRetry(f"invalid payload: missing {', '.join(missing)}")
    try:
        validate_project_guid(payload["projectGuid"])
    except ValueError as e:
        raise SkipRetry(f"invalid payload: {e}") from e
    return payload


def as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


def decode_agent_request(payload: Any) -> AgentRequest:
    data = _require(payload, "projectGuid", "agentRole", "message")
    role = data["agentRole"]
    if role not in c.AGENT_ROLES:
        raise SkipRetry(f"invalid payload: unknown agent role {role!r}")
    cli_tool = data.get("cliTool") or None
    if cli_tool:
        try:
            cli_tool = get_cli_tool(cli_tool).name
        except ValueError as e:
            raise SkipRetry(f"invalid payload: {e}") from e
    return AgentRequest(
        project_guid=data["projectGuid"],
        agent_role=role,
        message=data["message"],
        dev_stage=data.get("devStage") or c.default_stage(role),
        cli_tool=cli_tool,
    )


def decode_setup_request(payload: Any) -> SetupRequest:
    data = _require(payload, "projectGuid")
    install = data.get("installToolchain", data.get("setupToolchain", False))
    kind = data.get("toolchainKind") or c.DEFAULT_TOOLCHAIN_KIND
    try:
        get_cli_tool(kind)
    except ValueError as e:
        raise SkipRetry(f"invalid payload: {e}") from e
    return SetupRequest(
        project_guid=data["projectGuid"],
        repo_url=data.get("repoUrl") or "",
        install_toolchain=as_bool(install),
        toolchain_kind=kind,
        model=data.get("model"),
        provider=data.get("provider"),
        token=data.get("token"),
    )


def decode_deploy_request(payload: Any) -> DeployRequest:
    data = _require(payload, "projectGuid")
    options = data.get("options") or data.get("deployOptions") or {}
    if not isinstance(options, dict):
        raise SkipRetry("invalid payload: options must be an object")
    return DeployRequest(
        project_guid=data["projectGuid"],
        environment=data.get("environment") or "dev",
        options=options,
    )


class TaskHandlers:
    """Binds each task kind to the pipeline that performs it."""

    def __init__(
        self,
        agents: AgentPipeline,
        bootstrapper: EnvironmentBootstrapper,
        deployer: DeployPipeline,
        archiver: ProjectArchiver,
        publisher: EventPublisher,
    ):
        self.agents = agents
        self.bootstrapper = bootstrapper
        self.deployer = deployer
        self.archiver = archiver
        self.publisher = publisher

    def register(self, mux: TaskMux) -> TaskMux:
        mux.handle(c.KIND_AGENT_EXECUTE, self.handle_agent)
        mux.handle(c.KIND_AGENT_CHAT, self.handle_agent)
        mux.handle(c.KIND_PROJECT_SETUP, self.handle_setup)
        mux.handle(c.KIND_PROJECT_DEPLOY, self.handle_deploy)
        mux.handle(c.KIND_PROJECT_DOWNLOAD, self.handle_download)
        mux.handle(c.KIND_PROJECT_BACKUP, self.handle_backup)
        mux.handle(c.KIND_WEBSOCKET_BROADCAST, self.handle_broadcast)
        return mux

    def handle_agent(self, ctx: TaskContext):
        request = decode_agent_request(ctx.payload)
        reporter = ctx.reporter(request.agent_role, request.dev_stage)
        try:
            self.agents.run(request, reporter)
        except ValueError as e:
            raise SkipRetry(str(e)) from e

    def handle_setup(self, ctx: TaskContext):
        request = decode_setup_request(ctx.payload)
        reporter = ctx.reporter(dev_stage=c.STAGE_SETUP_ENVIRONMENT)
        try:
            self.bootstrapper.run(request, reporter)
        except ValueError as e:
            raise SkipRetry(str(e)) from e

    def handle_deploy(self, ctx: TaskContext):
        request = decode_deploy_request(ctx.payload)
        reporter = ctx.reporter(c.ROLE_DEV, c.STAGE_DEPLOY)
        try:
            self.deployer.run(request, reporter)
        except ValueError as e:
            raise SkipRetry(str(e)) from e

    def handle_download(self, ctx: TaskContext):
        data = _require(ctx.payload, "projectGuid")
        self.archiver.run(data["projectGuid"], ctx.reporter())

    def handle_backup(self, ctx: TaskContext):
        data = _require(ctx.payload, "projectGuid")
        self.archiver.run(data["projectGuid"], ctx.reporter(), backup=True)

    def handle_broadcast(self, ctx: TaskContext):
        payload = ctx.payload
        if not isinstance(payload, dict) or not payload.get("projectGuid"):
            raise SkipRetry("invalid payload: projectGuid is required")
        self.publisher.broadcast(payload)
        logger.debug("Broadcast %s for project %s", payload.get("messageType"), payload["projectGuid"])
