"""Build and run a project, asking the dev agent to repair failures."""

import logging

from agent_engine.core.agents import AgentError, AgentPipeline
from agent_engine.core.constants import ROLE_DEV, STAGE_DEPLOY
from agent_engine.core.events import TaskReporter
from agent_engine.core.workspace import validate_project_guid
from agent_engine.db.models import AgentRequest, DeployRequest, ExecResult
from agent_engine.integrations.executor import CommandExecutor

logger = logging.getLogger(__name__)


class DeployError(Exception):
    """Raised when a deploy step fails and could not be repaired."""


def build_fix_prompt(command: str, result: ExecResult) -> str:
    output = result.stderr.strip() or result.stdout.strip() or result.err or ""
    return (
        f"执行命令 `{command}` 失败，错误输出如下：\n"
        f"```\n{output}\n```\n"
        f"请修复上述问题，并重新执行 `{command}` 确认成功。"
    )


class DeployPipeline:
    def __init__(
        self,
        executor: CommandExecutor,
        agents: AgentPipeline,
        timeout: float | None = None,
    ):
        self.executor = executor
        self.agents = agents
        self.timeout = timeout

    def steps(self, environment: str) -> list[tuple[list[str], int]]:
        env = environment or "dev"
        return [(["make", f"build-{env}"], 50), (["make", f"run-{env}"], 100)]

    def run(self, request: DeployRequest, reporter: TaskReporter) -> str:
        validate_project_guid(request.project_guid)
        reporter.start("deploy started")
        outputs = []
        try:
            for argv, percent in self.steps(request.environment):
                outputs.append(self.run_step(request.project_guid, argv))
                if percent < 100:
                    reporter.progress(percent, f"{' '.join(argv)} 成功")
        except DeployError as e:
            reporter.fail(str(e))
            raise

        message = "\n".join(o for o in outputs if o) or "deploy finished"
        reporter.done(message)
        return message

    def run_step(self, project_guid: str, argv: list[str]) -> str:
        """Run one make target; on failure hand it to the dev agent."""
        command = " ".join(argv)
        result = self.executor.simple_execute(project_guid, *argv, timeout=self.timeout)
        if result.success:
            return result.stdout

        logger.warning("[%s] %s failed, asking dev agent to fix: %s",
                       project_guid, command, result.error_text)
        request = AgentRequest(
            project_guid=project_guid,
            agent_role=ROLE_DEV,
            message=build_fix_prompt(command, result),
            dev_stage=STAGE_DEPLOY,
        )
        try:
            response = self.agents.execute_turn(request)
        except AgentError as e:
            raise DeployError(f"{command} failed and repair failed: {e}") from e
        return response.result
