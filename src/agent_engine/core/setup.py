"""Idempotent preparation of a project working tree."""

import logging

from agent_engine.core.cli_tools import get_cli_tool
from agent_engine.core.events import TaskReporter
from agent_engine.core.workspace import Workspace, validate_project_guid
from agent_engine.db.models import SetupRequest
from agent_engine.integrations.executor import CommandExecutor
from agent_engine.integrations.git import GitError, GitHelper, rewrite_repo_url

logger = logging.getLogger(__name__)

FRONTEND_DIR = "frontend"
BACKEND_DIR = "backend"
BACKEND_BINARY = "server"


class SetupError(Exception):
    """Raised when a setup step fails; later steps are not run."""


class EnvironmentBootstrapper:
    """Clone or update a project, install the assistant toolchain, install dependencies.

    Every step checks the tree first and skips work that is already done,
    so running setup twice on an unchanged tree only pulls from the remote.
    """

    def __init__(
        self,
        executor: CommandExecutor,
        workspace: Workspace,
        git: GitHelper,
        repo_url_rewrites: list[tuple[str, str]] | None = None,
        timeout: float | None = None,
    ):
        self.executor = executor
        self.workspace = workspace
        self.git = git
        self.repo_url_rewrites = repo_url_rewrites or []
        self.timeout = timeout

    def run(self, request: SetupRequest, reporter: TaskReporter) -> str:
        """Run all steps, reporting 30/60/80/95 and the summary on completion."""
        validate_project_guid(request.project_guid)
        tool = get_cli_tool(request.toolchain_kind)

        reporter.start("setting up project environment")
        lines: list[str] = []
        steps = [
            (30, lambda: self.sync_tree(request)),
            (60, lambda: self.install_toolchain(request, tool)),
            (80, lambda: self.install_frontend(request.project_guid)),
            (95, lambda: self.build_backend(request.project_guid)),
        ]
        try:
            for percent, step in steps:
                lines.append(step())
                reporter.progress(percent, "\n".join(lines))
        except SetupError as e:
            logger.error("[%s] setup failed: %s", request.project_guid, e)
            reporter.fail(str(e))
            raise

        summary = "\n".join(lines)
        reporter.done(summary)
        return summary

    def sync_tree(self, request: SetupRequest) -> str:
        guid = request.project_guid
        self.workspace.ensure()
        try:
            if not self.workspace.project_exists(guid):
                url = rewrite_repo_url(request.repo_url, self.repo_url_rewrites)
                if not url:
                    raise SetupError("repository URL is required to clone a new project")
                logger.info("[%s] cloning %s", guid, url)
                self.git.clone(url, guid)
                line = "* git clone 成功"
            else:
                logger.info("[%s] project exists, pulling", guid)
                self.git.pull(guid)
                line = "* 项目已存在，git pull 成功"
            self.git.configure(guid)
        except GitError as e:
            raise SetupError(str(e)) from e
        return line

    def install_toolchain(self, request: SetupRequest, tool) -> str:
        guid = request.project_guid
        # installToolchain asks for the toolchain; an existing marker directory satisfies it.
        if self.workspace.exists(guid, tool.marker_dir):
            logger.info("[%s] %s already installed (requested: %s)",
                        guid, tool.marker_dir, request.install_toolchain)
            return f"* agent ({request.toolchain_kind}) 已安装"

        result = self.executor.simple_execute(
            guid, "npx", "bmad-method", "install", "-f", "-i", tool.name, "-d", ".",
            timeout=self.timeout,
        )
        if not result.success:
            raise SetupError(f"agent ({request.toolchain_kind}) 安装失败: {result.error_text}")
        return f"* agent ({request.toolchain_kind}) 安装成功"

    def install_frontend(self, project_guid: str) -> str:
        if not self.workspace.exists(project_guid, FRONTEND_DIR):
            return "* 未找到前端目录，跳过依赖安装"
        if self.workspace.exists(project_guid, FRONTEND_DIR, "node_modules"):
            return "* 前端依赖已存在"

        result = self.executor.simple_execute(
            project_guid, "npm", "install", subdir=FRONTEND_DIR, timeout=self.timeout
        )
        if not result.success:
            raise SetupError(f"前端依赖安装失败: {result.error_text}")
        return "* 前端依赖安装成功"

    def build_backend(self, project_guid: str) -> str:
        if not self.workspace.exists(project_guid, BACKEND_DIR):
            return "* 未找到后端目录，跳过编译"
        if self.workspace.exists(project_guid, BACKEND_DIR, BACKEND_BINARY):
            return "* 后端程序已存在"

        for args in (
            ("go", "mod", "download"),
            ("go", "build", "-o", BACKEND_BINARY, "./cmd/server"),
        ):
            result = self.executor.simple_execute(
                project_guid, *args, subdir=BACKEND_DIR, timeout=self.timeout
            )
            if not result.success:
                raise SetupError(f"后端编译失败 ({' '.join(args)}): {result.error_text}")
        return "* 后端编译成功"
