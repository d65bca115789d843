"""Wires the engine's components together from a Config."""

import logging
from dataclasses import dataclass

import redis

from agent_engine.config import Config
from agent_engine.core.agents import AgentError, AgentPipeline
from agent_engine.core.archive import ArchiveError, ProjectArchiver
from agent_engine.core.deploy import DeployError, DeployPipeline
from agent_engine.core.events import EventPublisher
from agent_engine.core.handlers import TaskHandlers
from agent_engine.core.health import HealthProbe
from agent_engine.core.queue import TaskQueue
from agent_engine.core.sessions import SessionIdStore
from agent_engine.core.setup import EnvironmentBootstrapper, SetupError
from agent_engine.core.worker import TaskMux, WorkerPool
from agent_engine.core.workspace import Workspace
from agent_engine.integrations.executor import CommandExecutor
from agent_engine.integrations.git import GitHelper
from agent_engine.integrations.redis_client import get_client

logger = logging.getLogger(__name__)

EXPECTED_TASK_ERRORS = (AgentError, SetupError, DeployError, ArchiveError)


@dataclass
class Services:
    config: Config
    queue: TaskQueue
    executor: CommandExecutor
    workspace: Workspace
    sessions: SessionIdStore
    publisher: EventPublisher
    git: GitHelper
    agents: AgentPipeline
    bootstrapper: EnvironmentBootstrapper
    deployer: DeployPipeline
    archiver: ProjectArchiver
    health: HealthProbe
    mux: TaskMux

    @classmethod
    def from_config(
        cls,
        config: Config,
        redis_client: redis.Redis | None = None,
        executor: CommandExecutor | None = None,
    ) -> "Services":
        client = redis_client if redis_client is not None else get_client(config)
        workspace = Workspace(config.workspace_path, config.default_cli_tool)
        workspace.ensure()
        executor = executor or CommandExecutor(
            workspace.root, default_timeout=config.command_timeout
        )
        queue = TaskQueue(
            config.db_path,
            retry_delay_seconds=config.retry_delay_seconds,
            stale_after_seconds=config.stale_after_seconds,
        )
        sessions = SessionIdStore(client)
        publisher = EventPublisher(client)
        git = GitHelper(executor)
        agents = AgentPipeline(executor, workspace, sessions, git, timeout=config.command_timeout)
        bootstrapper = EnvironmentBootstrapper(
            executor, workspace, git,
            repo_url_rewrites=config.repo_url_rewrites,
            timeout=config.command_timeout,
        )
        deployer = DeployPipeline(executor, agents, timeout=config.command_timeout)
        archiver = ProjectArchiver(workspace, config.archive_path)
        mux = TaskHandlers(agents, bootstrapper, deployer, archiver, publisher).register(TaskMux())
        return cls(
            config=config,
            queue=queue,
            executor=executor,
            workspace=workspace,
            sessions=sessions,
            publisher=publisher,
            git=git,
            agents=agents,
            bootstrapper=bootstrapper,
            deployer=deployer,
            archiver=archiver,
            health=HealthProbe(),
            mux=mux,
        )

    def enqueue(self, kind: str, payload: dict, queue: str = "default"):
        """Enqueue with the configured retry and retention defaults."""
        return self.queue.enqueue(
            kind,
            payload,
            queue=queue,
            max_retry=self.config.max_retry,
            retention_seconds=self.config.retention_seconds,
        )

    def worker_pool(self, concurrency: int | None = None) -> WorkerPool:
        return WorkerPool(
            self.queue,
            self.mux,
            self.publisher,
            concurrency=concurrency or self.config.concurrency,
            poll_interval=self.config.poll_interval,
            heartbeat_interval=self.config.heartbeat_interval,
            expected_errors=EXPECTED_TASK_ERRORS,
        )

    def close(self):
        self.executor.close_all()
