"""Data models for the agent execution engine."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


@dataclass
class QueuedTask:
    id: str
    kind: str
    payload: dict[str, Any] = field(default_factory=dict)
    queue: str = "default"
    project_guid: str | None = None
    state: str = "queued"
    max_retry: int = 1
    retried: int = 0
    retention_seconds: int = 3600
    result: dict[str, Any] | None = None
    last_error: str | None = None
    worker_id: str | None = None
    enqueued_at: datetime | None = None
    process_after: datetime | None = None
    started_at: datetime | None = None
    heartbeat_at: datetime | None = None
    completed_at: datetime | None = None
    expires_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.state in ("done", "failed")


@dataclass
class TaskInfo:
    id: str
    kind: str
    queue: str


@dataclass
class TaskEvent:
    id: int | None = None
    task_id: str = ""
    event_type: str = ""
    old_value: str | None = None
    new_value: str | None = None
    created_at: datetime | None = None


@dataclass
class TaskResult:
    """Polling record written by handlers while a task runs."""

    task_id: str
    status: str = "queued"
    progress: int = 0
    message: str = ""
    updated_at: str = ""

    def to_dict(self) -> dict:
        return {
            "task_id": self.task_id,
            "status": self.status,
            "progress": self.progress,
            "message": self.message,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "TaskResult":
        return cls(
            task_id=data.get("task_id", ""),
            status=data.get("status", "queued"),
            progress=int(data.get("progress", 0)),
            message=data.get("message", ""),
            updated_at=data.get("updated_at", ""),
        )


@dataclass
class ExecResult:
    success: bool
    stdout: str = ""
    stderr: str = ""
    err: str | None = None
    exit_code: int | None = None

    @property
    def error_text(self) -> str:
        """Best human-readable reason for a failed command."""
        if self.stderr.strip():
            return self.stderr.strip()
        if self.err:
            return self.err
        if self.exit_code is not None:
            return f"exit status {self.exit_code}"
        return "command failed"


@dataclass
class AgentResponse:
    type: str = "result"
    subtype: str = "success"
    duration_ms: int = 0
    duration_api_ms: int = 0
    is_error: bool = False
    result: str = ""
    session_id: str = ""
    usage: dict[str, Any] | None = None

    def to_dict(self) -> dict:
        return {
            "type": self.type,
            "subtype": self.subtype,
            "duration_ms": self.duration_ms,
            "duration_api_ms": self.duration_api_ms,
            "is_error": self.is_error,
            "result": self.result,
            "session_id": self.session_id,
            "usage": self.usage,
        }


@dataclass
class AgentTaskStatusMessage:
    task_id: str
    project_guid: str
    agent_role: str
    status: str
    dev_stage: str = ""
    message: str = ""
    progress: int = 0
    timestamp: int = 0

    def to_dict(self) -> dict:
        return {
            "taskId": self.task_id,
            "projectGuid": self.project_guid,
            "agentRole": self.agent_role,
            "status": self.status,
            "devStage": self.dev_stage,
            "message": self.message,
            "progress": self.progress,
            "timestamp": self.timestamp,
        }


@dataclass
class AgentRequest:
    project_guid: str
    agent_role: str
    message: str
    dev_stage: str = ""
    cli_tool: str | None = None


@dataclass
class SetupRequest:
    project_guid: str
    repo_url: str
    install_toolchain: bool = False
    toolchain_kind: str = "claude-code"
    model: str | None = None
    provider: str | None = None
    token: str | None = None


@dataclass
class DeployRequest:
    project_guid: str
    environment: str = "dev"
    options: dict[str, Any] = field(default_factory=dict)
