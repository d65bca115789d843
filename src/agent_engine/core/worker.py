"""Worker pool: claims queued tasks and dispatches them to handlers by kind."""

import logging
import threading
import uuid
from collections.abc import Callable
from datetime import datetime, timezone

from agent_engine.core.constants import (
    STATE_DONE,
    STATE_FAILED,
    STATUS_DONE,
    STATUS_RETRYING,
)
from agent_engine.core.events import EventPublisher, TaskReporter
from agent_engine.core.queue import TaskQueue
from agent_engine.db.models import QueuedTask, TaskResult

logger = logging.getLogger(__name__)


class SkipRetry(Exception):
    """Fail the task immediately, regardless of its remaining retries."""


def is_skip_retry(error: BaseException) -> bool:
    """True if ``error`` is, or was raised from, a SkipRetry."""
    seen = set()
    while error is not None and id(error) not in seen:
        if isinstance(error, SkipRetry):
            return True
        seen.add(id(error))
        error = error.__cause__
    return False


class TaskContext:
    """What a handler sees: the task, its result record, and a reporter."""

    def __init__(self, task: QueuedTask, queue: TaskQueue, publisher: EventPublisher):
        self.task = task
        self.queue = queue
        self.publisher = publisher
        self.current_reporter: TaskReporter | None = None

    @property
    def final_attempt(self) -> bool:
        return self.task.retried >= self.task.max_retry

    @property
    def payload(self) -> dict:
        return self.task.payload

    def write_result(self, record: TaskResult):
        self.queue.write_result(self.task.id, record)

    def reporter(self, agent_role: str = "", dev_stage: str = "") -> TaskReporter:
        reporter = TaskReporter(
            self.publisher,
            task_id=self.task.id,
            project_guid=self.task.project_guid or "",
            agent_role=agent_role,
            dev_stage=dev_stage,
            write_result=self.write_result,
            final_attempt=self.final_attempt,
        )
        # Carry progress over from an earlier attempt so it never goes backwards.
        if self.task.result:
            reporter.progress_value = int(self.task.result.get("progress", 0))
        self.current_reporter = reporter
        return reporter


Handler = Callable[[TaskContext], None]


class TaskMux:
    """Maps task kinds to handlers."""

    def __init__(self):
        self._handlers: dict[str, Handler] = {}

    def handle(self, kind: str, handler: Handler):
        self._handlers[kind] = handler

    def kinds(self) -> list[str]:
        return sorted(self._handlers)

    def process(self, ctx: TaskContext):
        handler = self._handlers.get(ctx.task.kind)
        if handler is None:
            raise SkipRetry(f"No handler registered for task kind {ctx.task.kind!r}")
        handler(ctx)


class WorkerPool:
    """Background threads that claim and process tasks, up to ``concurrency`` at once."""

    def __init__(
        self,
        queue: TaskQueue,
        mux: TaskMux,
        publisher: EventPublisher,
        concurrency: int = 100,
        poll_interval: float = 1.0,
        name: str = "worker",
        heartbeat_interval: float = 30.0,
        expected_errors: tuple[type[Exception], ...] = (),
    ):
        self.queue = queue
        self.mux = mux
        self.publisher = publisher
        self.concurrency = max(1, concurrency)
        self.poll_interval = poll_interval
        self.name = name
        self.heartbeat_interval = heartbeat_interval
        # Worker ids stay unique across processes sharing the database.
        self.pool_id = f"{name}-{uuid.uuid4().hex[:8]}"
        # Failures handlers raise on purpose; anything else is logged with a traceback.
        self.expected_errors = (SkipRetry, *expected_errors)
        self._stop_event = threading.Event()
        self._threads: list[threading.Thread] = []

    def start(self):
        """Re-queue stale tasks and start the worker threads."""
        if any(t.is_alive() for t in self._threads):
            return
        self.queue.recover_stale()
        self._stop_event.clear()
        self._threads = [
            threading.Thread(target=self._run, args=(worker_id,), name=worker_id, daemon=True)
            for worker_id in self.worker_ids
        ]
        self._threads.append(
            threading.Thread(target=self._heartbeat, name=f"{self.pool_id}-heartbeat", daemon=True)
        )
        for t in self._threads:
            t.start()
        logger.info("Worker pool started with %d worker(s)", self.concurrency)

    def stop(self, timeout: float = 30.0):
        """Stop claiming new tasks and wait for in-flight ones."""
        self._stop_event.set()
        for t in self._threads:
            t.join(timeout=timeout)
        self._threads = []
        logger.info("Worker pool stopped")

    @property
    def worker_ids(self) -> list[str]:
        return [f"{self.pool_id}-{i}" for i in range(self.concurrency)]

    def run_once(self, worker_id: str = "inline") -> QueuedTask | None:
        """Claim and process a single task synchronously."""
        task = self.queue.claim_next(worker_id)
        if task is None:
            return None
        self.process(task)
        return self.queue.get_task(task.id)

    def run_until_empty(self, worker_id: str = "inline", limit: int = 1000) -> int:
        processed = 0
        while processed < limit and self.run_once(worker_id) is not None:
            processed += 1
        return processed

    def process(self, task: QueuedTask) -> str:
        ctx = TaskContext(task, self.queue, self.publisher)
        logger.info("Processing %s task %s (attempt %d)", task.kind, task.id, task.retried + 1)
        try:
            self.mux.process(ctx)
        except Exception as e:
            skip = is_skip_retry(e)
            if not isinstance(e, self.expected_errors):
                logger.exception("Unexpected error in %s task %s", task.kind, task.id)
            state = self.queue.finish(task.id, error=str(e) or type(e).__name__, skip_retry=skip)
            self._settle(ctx, state, str(e))
            return state

        state = self.queue.finish(task.id)
        self._settle(ctx, state, "")
        return state

    def _settle(self, ctx: TaskContext, state: str, message: str):
        """Make sure the result record reflects the outcome the queue recorded."""
        reporter = ctx.current_reporter
        if reporter is not None:
            if reporter.terminal:
                return
            if state not in (STATE_DONE, STATE_FAILED) and reporter.record_status == STATUS_RETRYING:
                return
            if state == STATE_DONE:
                reporter.done(message or reporter.message)
            else:
                reporter.fail(message, final=state == STATE_FAILED)
            return

        # Handlers that failed before reporting (bad payloads) still owe a failed event.
        if state == STATE_FAILED:
            ctx.reporter().fail(message, final=True)
        elif state == STATE_DONE:
            ctx.write_result(
                TaskResult(
                    task_id=ctx.task.id,
                    status=STATUS_DONE,
                    progress=100,
                    message=message,
                    updated_at=datetime.now(timezone.utc).isoformat(),
                )
            )

    def _heartbeat(self):
        """Keep this pool's running tasks from being recovered by other processes."""
        while not self._stop_event.wait(self.heartbeat_interval):
            try:
                self.queue.heartbeat(self.worker_ids)
            except Exception:
                logger.exception("Error sending heartbeat for %s", self.pool_id)

    def _run(self, worker_id: str):
        """Main worker loop."""
        while not self._stop_event.is_set():
            try:
                task = self.queue.claim_next(worker_id)
            except Exception:
                logger.exception("Error claiming task in %s", worker_id)
                task = None
            if task is None:
                self._stop_event.wait(self.poll_interval)
                continue
            try:
                self.process(task)
            except Exception:
                logger.exception("Error finishing task %s in %s", task.id, worker_id)

