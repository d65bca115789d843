"""Task lifecycle events on the Redis pub/sub channel."""

import json
import logging
import time
from collections.abc import Callable
from datetime import datetime, timezone

import redis

from agent_engine.core.constants import (
    BROADCAST_CHANNEL,
    STATUS_CHANNEL,
    STATUS_DONE,
    STATUS_FAILED,
    STATUS_IN_PROGRESS,
    STATUS_RETRYING,
    TERMINAL_STATUSES,
)
from agent_engine.db.models import AgentTaskStatusMessage, TaskResult

logger = logging.getLogger(__name__)


class EventPublisher:
    """Publishes status messages. Failures are logged, never raised."""

    def __init__(
        self,
        client: redis.Redis,
        channel: str = STATUS_CHANNEL,
        broadcast_channel: str = BROADCAST_CHANNEL,
    ):
        self.client = client
        self.channel = channel
        self.broadcast_channel = broadcast_channel

    def publish(self, message: AgentTaskStatusMessage) -> bool:
        if not message.timestamp:
            message.timestamp = int(time.time())
        return self._send(self.channel, message.to_dict())

    def broadcast(self, payload: dict) -> bool:
        return self._send(self.broadcast_channel, payload)

    def _send(self, channel: str, payload: dict) -> bool:
        try:
            data = json.dumps(payload, ensure_ascii=False)
            self.client.publish(channel, data)
        except (redis.RedisError, TypeError, ValueError) as e:
            logger.error("Failed to publish to %s: %s", channel, e)
            return False
        return True


class TaskReporter:
    """Publishes one task's transitions and mirrors them into its result record.

    Progress never decreases, and nothing is emitted after the first terminal
    status. A failure on an attempt that will be retried is reported as an
    in-progress "retrying" event so the terminal status is sent only once.
    """

    def __init__(
        self,
        publisher: EventPublisher,
        task_id: str,
        project_guid: str,
        agent_role: str = "",
        dev_stage: str = "",
        write_result: Callable[[TaskResult], None] | None = None,
        final_attempt: bool = True,
    ):
        self.publisher = publisher
        self.task_id = task_id
        self.project_guid = project_guid
        self.agent_role = agent_role
        self.dev_stage = dev_stage
        self.write_result = write_result
        self.final_attempt = final_attempt
        self.progress_value = 0
        self.status: str | None = None
        self.record_status: str | None = None
        self.message = ""

    @property
    def terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def start(self, message: str = "task started"):
        self.progress(self.progress_value, message)

    def progress(self, percent: int, message: str = ""):
        self._emit(STATUS_IN_PROGRESS, percent, message)

    def done(self, message: str = ""):
        self._emit(STATUS_DONE, 100, message)

    def fail(self, message: str, final: bool | None = None):
        final = self.final_attempt if final is None else final
        if final:
            self._emit(STATUS_FAILED, self.progress_value, message)
        else:
            self._emit(
                STATUS_IN_PROGRESS, self.progress_value, message,
                record_status=STATUS_RETRYING,
            )

    def _emit(self, status: str, percent: int, message: str, record_status: str | None = None):
        if self.terminal:
            logger.debug(
                "Ignoring %s for task %s after terminal status %s",
                status, self.task_id, self.status,
            )
            return

        self.progress_value = max(self.progress_value, min(max(int(percent), 0), 100))
        self.status = status
        self.record_status = record_status or status
        self.message = message

        if self.write_result is not None:
            record = TaskResult(
                task_id=self.task_id,
                status=record_status or status,
                progress=self.progress_value,
                message=message,
                updated_at=datetime.now(timezone.utc).isoformat(),
            )
            try:
                self.write_result(record)
            except Exception:
                logger.exception("Failed to write result record for task %s", self.task_id)

        self.publisher.publish(
            AgentTaskStatusMessage(
                task_id=self.task_id,
                project_guid=self.project_guid,
                agent_role=self.agent_role,
                status=status,
                dev_stage=self.dev_stage,
                message=message,
                progress=self.progress_value,
                timestamp=int(time.time()),
            )
        )
