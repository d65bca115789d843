"""Agent turns: run an assistant CLI in a project, keep its session, commit its work."""

import logging
import time

from agent_engine.core.cli_tools import CliTool, get_cli_tool
from agent_engine.core.constants import AGENT_ROLES
from agent_engine.core.events import TaskReporter
from agent_engine.core.sessions import SessionIdStore
from agent_engine.core.workspace import Workspace, validate_project_guid
from agent_engine.db.models import AgentRequest, AgentResponse
from agent_engine.integrations.executor import CommandExecutor
from agent_engine.integrations.git import GitError, GitHelper

logger = logging.getLogger(__name__)


class AgentError(Exception):
    """Raised when an agent turn fails (command, assistant, or commit)."""


class AgentPipeline:
    def __init__(
        self,
        executor: CommandExecutor,
        workspace: Workspace,
        sessions: SessionIdStore,
        git: GitHelper,
        timeout: float | None = None,
    ):
        self.executor = executor
        self.workspace = workspace
        self.sessions = sessions
        self.git = git
        self.timeout = timeout

    def resolve_tool(self, request: AgentRequest) -> CliTool:
        if request.cli_tool:
            return get_cli_tool(request.cli_tool)
        return get_cli_tool(self.workspace.detect_cli_tool(request.project_guid))

    def build_argv(self, tool: CliTool, request: AgentRequest) -> tuple[list[str], str]:
        """Return the tool's arguments and the session id they resume."""
        session_id = self.sessions.get(request.project_guid, request.agent_role)
        return tool.argv(session_id, request.message), session_id

    def execute_turn(self, request: AgentRequest) -> AgentResponse:
        """Run one turn without publishing anything. Raises AgentError."""
        validate_project_guid(request.project_guid)
        if request.agent_role not in AGENT_ROLES:
            raise ValueError(f"Unknown agent role: {request.agent_role!r}")
        if not request.message.strip():
            raise ValueError("message is required")

        tool = self.resolve_tool(request)
        args, session_id = self.build_argv(tool, request)
        logger.info(
            "[%s] %s turn via %s (resume=%s)",
            request.project_guid, request.agent_role, tool.name, session_id or "-",
        )

        started = time.monotonic()
        result = self.executor.simple_execute(
            request.project_guid, tool.program, *args, timeout=self.timeout
        )
        duration_ms = int((time.monotonic() - started) * 1000)

        if not result.success:
            raise AgentError(result.error_text)

        response = tool.parse_result(result.stdout, duration_ms)
        if response.is_error:
            raise AgentError(response.result or "assistant reported an error")

        if response.session_id:
            self.sessions.save(request.project_guid, request.agent_role, response.session_id)

        try:
            self.git.commit_and_push(request.project_guid, response.result)
        except GitError as e:
            raise AgentError(str(e)) from e

        logger.info(
            "[%s] %s turn finished in %dms", request.project_guid, request.agent_role, duration_ms
        )
        return response

    def run(self, request: AgentRequest, reporter: TaskReporter) -> AgentResponse:
        """Run one turn, publishing start and the terminal status."""
        reporter.start("task started")
        try:
            response = self.execute_turn(request)
        except AgentError as e:
            reporter.fail(str(e))
            raise
        except ValueError as e:
            reporter.fail(str(e), final=True)
            raise
        reporter.done(response.result)
        return response
