"""SQLite-backed task queue: priority queues, retries, retention, per-project exclusion."""

import json
import logging
import random
import sqlite3
import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path

from agent_engine.core.constants import (
    QUEUE_CRITICAL,
    QUEUE_DEFAULT,
    QUEUE_LOW,
    QUEUE_WEIGHTS,
    STATE_DONE,
    STATE_FAILED,
    STATE_QUEUED,
    STATE_RETRY,
    STATE_RUNNING,
    STATUS_QUEUED,
    TASK_KINDS,
)
from agent_engine.db.engine import get_db, init_db
from agent_engine.db.models import QueuedTask, TaskEvent, TaskInfo, TaskResult

logger = logging.getLogger(__name__)

QUEUE_ORDER = (QUEUE_CRITICAL, QUEUE_DEFAULT, QUEUE_LOW)

# A task is claimable when it is due and no other task of its project is running.
_CLAIMABLE = """
    state IN ('queued', 'retry')
    AND process_after <= datetime('now')
    AND (
        project_guid IS NULL OR project_guid = ''
        OR NOT EXISTS (
            SELECT 1 FROM tasks r
            WHERE r.state = 'running' AND r.project_guid = tasks.project_guid
        )
    )
"""

_VISIBLE = "(expires_at IS NULL OR expires_at > datetime('now'))"


class EnqueueError(Exception):
    """Raised when a task cannot be accepted."""


def _parse_dt(val: str | None) -> datetime | None:
    if val is None:
        return None
    return datetime.fromisoformat(val)


def _sql_time(dt: datetime) -> str:
    """Format like SQLite's datetime('now'): UTC, second precision."""
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt.strftime("%Y-%m-%d %H:%M:%S")


def _row_to_task(row: sqlite3.Row) -> QueuedTask:
    return QueuedTask(
        id=row["id"],
        kind=row["kind"],
        payload=json.loads(row["payload"]),
        queue=row["queue"],
        project_guid=row["project_guid"],
        state=row["state"],
        max_retry=row["max_retry"],
        retried=row["retried"],
        retention_seconds=row["retention_seconds"],
        result=json.loads(row["result"]) if row["result"] else None,
        last_error=row["last_error"],
        worker_id=row["worker_id"],
        enqueued_at=_parse_dt(row["enqueued_at"]),
        process_after=_parse_dt(row["process_after"]),
        started_at=_parse_dt(row["started_at"]),
        heartbeat_at=_parse_dt(row["heartbeat_at"]),
        completed_at=_parse_dt(row["completed_at"]),
        expires_at=_parse_dt(row["expires_at"]),
        updated_at=_parse_dt(row["updated_at"]),
    )


def _log_event(
    db: sqlite3.Connection,
    task_id: str,
    event_type: str,
    old_value: str | None,
    new_value: str | None,
):
    db.execute(
        "INSERT INTO task_events (task_id, event_type, old_value, new_value) VALUES (?, ?, ?, ?)",
        (task_id, event_type, old_value, new_value),
    )


class TaskQueue:
    """At-least-once task store shared by the HTTP ingress and the worker pool."""

    def __init__(
        self,
        db_path: str | Path,
        weights: dict[str, int] | None = None,
        strict_priority: bool = False,
        retry_delay_seconds: int = 10,
        stale_after_seconds: int = 300,
        rng: random.Random | None = None,
    ):
        self.db_path = Path(db_path)
        self.weights = dict(weights or QUEUE_WEIGHTS)
        self.strict_priority = strict_priority
        self.retry_delay_seconds = retry_delay_seconds
        self.stale_after_seconds = stale_after_seconds
        self.rng = rng or random.Random()
        init_db(self.db_path).close()

    # ── Intake ───────────────────────────────────────────────────────────────

    def enqueue(
        self,
        kind: str,
        payload: dict,
        queue: str = QUEUE_DEFAULT,
        max_retry: int = 1,
        retention_seconds: int = 3600,
        process_in: int = 0,
    ) -> TaskInfo:
        """Accept a task. Raises EnqueueError without side effects on failure."""
        if kind not in TASK_KINDS:
            raise EnqueueError(f"Unknown task kind: {kind!r}")
        if queue not in self.weights:
            raise EnqueueError(f"Unknown queue: {queue!r}")
        if max_retry < 0 or retention_seconds < 0:
            raise EnqueueError("max_retry and retention must be non-negative")
        try:
            data = json.dumps(payload, ensure_ascii=False)
        except (TypeError, ValueError) as e:
            raise EnqueueError(f"Payload is not JSON-encodable: {e}") from e

        project_guid = payload.get("projectGuid") if isinstance(payload, dict) else None
        task_id = uuid.uuid4().hex
        result = TaskResult(task_id=task_id, status=STATUS_QUEUED)

        try:
            with get_db(self.db_path) as db:
                db.execute(
                    """INSERT INTO tasks
                       (id, kind, queue, payload, project_guid, max_retry,
                        retention_seconds, result, process_after)
                       VALUES (?, ?, ?, ?, ?, ?, ?, ?, datetime('now', ?))""",
                    (
                        task_id, kind, queue, data, project_guid or None, max_retry,
                        retention_seconds, json.dumps(result.to_dict()),
                        f"+{int(process_in)} seconds",
                    ),
                )
                _log_event(db, task_id, "enqueued", None, queue)
                db.commit()
        except sqlite3.Error as e:
            raise EnqueueError(f"Failed to enqueue {kind}: {e}") from e

        logger.info("Enqueued %s task %s on %s (project %s)", kind, task_id, queue, project_guid)
        return TaskInfo(id=task_id, kind=kind, queue=queue)

    # ── Claiming ─────────────────────────────────────────────────────────────

    def choose_queue(self, available: list[str]) -> str | None:
        """Pick among non-empty queues, by priority or weighted at random."""
        ordered = [q for q in QUEUE_ORDER if q in available]
        if not ordered:
            return None
        if self.strict_priority or len(ordered) == 1:
            return ordered[0]
        weights = [self.weights.get(q, 1) for q in ordered]
        return self.rng.choices(ordered, weights=weights, k=1)[0]

    def claim_next(self, worker_id: str) -> QueuedTask | None:
        """Atomically move the next claimable task to running, or return None."""
        with get_db(self.db_path) as db:
            db.execute("BEGIN IMMEDIATE")
            try:
                rows = db.execute(
                    f"SELECT DISTINCT queue FROM tasks WHERE {_CLAIMABLE}"
                ).fetchall()
                queue = self.choose_queue([r["queue"] for r in rows])
                if queue is None:
                    db.rollback()
                    return None

                row = db.execute(
                    f"""SELECT * FROM tasks WHERE queue = ? AND {_CLAIMABLE}
                        ORDER BY process_after, enqueued_at, rowid LIMIT 1""",
                    (queue,),
                ).fetchone()
                db.execute(
                    """UPDATE tasks
                       SET state = 'running', worker_id = ?, started_at = datetime('now'),
                           heartbeat_at = datetime('now'), updated_at = datetime('now')
                       WHERE id = ?""",
                    (worker_id, row["id"]),
                )
                _log_event(db, row["id"], "state_changed", row["state"], STATE_RUNNING)
                db.commit()
            except Exception:
                db.rollback()
                raise

            claimed = db.execute("SELECT * FROM tasks WHERE id = ?", (row["id"],)).fetchone()
        task = _row_to_task(claimed)
        logger.debug("Worker %s claimed %s task %s", worker_id, task.kind, task.id)
        return task

    # ── Results and outcomes ─────────────────────────────────────────────────

    def write_result(self, task_id: str, result: TaskResult):
        with get_db(self.db_path) as db:
            db.execute(
                "UPDATE tasks SET result = ?, updated_at = datetime('now') WHERE id = ?",
                (json.dumps(result.to_dict(), ensure_ascii=False), task_id),
            )
            db.commit()

    def finish(self, task_id: str, error: str | None = None, skip_retry: bool = False) -> str:
        """Record a handler outcome and return the task's new state."""
        with get_db(self.db_path) as db:
            row = db.execute("SELECT * FROM tasks WHERE id = ?", (task_id,)).fetchone()
            if not row:
                raise ValueError(f"Task not found: {task_id}")

            if error is None:
                new_state = STATE_DONE
            elif not skip_retry and row["retried"] < row["max_retry"]:
                new_state = STATE_RETRY
            else:
                new_state = STATE_FAILED

            if new_state == STATE_RETRY:
                db.execute(
                    """UPDATE tasks
                       SET state = 'retry', retried = retried + 1, last_error = ?,
                           worker_id = NULL, process_after = datetime('now', ?),
                           updated_at = datetime('now')
                       WHERE id = ?""",
                    (error, f"+{self.retry_delay_seconds} seconds", task_id),
                )
            else:
                db.execute(
                    """UPDATE tasks
                       SET state = ?, last_error = ?, completed_at = datetime('now'),
                           expires_at = datetime('now', '+' || retention_seconds || ' seconds'),
                           updated_at = datetime('now')
                       WHERE id = ?""",
                    (new_state, error, task_id),
                )
            _log_event(db, task_id, "state_changed", row["state"], new_state)
            if error:
                _log_event(db, task_id, "error", None, error)
            db.commit()

        log = logger.info if new_state == STATE_DONE else logger.warning
        log("Task %s -> %s%s", task_id, new_state, f": {error}" if error else "")
        return new_state

    def heartbeat(self, worker_ids: list[str]) -> int:
        """Mark the running tasks owned by ``worker_ids`` as still alive."""
        if not worker_ids:
            return 0
        marks = ", ".join("?" for _ in worker_ids)
        with get_db(self.db_path) as db:
            cur = db.execute(
                f"""UPDATE tasks SET heartbeat_at = datetime('now')
                    WHERE state = 'running' AND worker_id IN ({marks})""",
                worker_ids,
            )
            db.commit()
            return cur.rowcount

    def recover_stale(self, now: datetime | None = None) -> int:
        """Re-queue running tasks whose worker has not sent a heartbeat lately.

        Tasks of live workers in other processes keep heartbeating and are left alone.
        """
        cutoff = _sql_time(
            (now or datetime.now(timezone.utc)) - timedelta(seconds=self.stale_after_seconds)
        )
        with get_db(self.db_path) as db:
            db.execute("BEGIN IMMEDIATE")
            rows = db.execute(
                """SELECT id, worker_id FROM tasks
                   WHERE state = 'running' AND COALESCE(heartbeat_at, started_at) <= ?""",
                (cutoff,),
            ).fetchall()
            for row in rows:
                db.execute(
                    """UPDATE tasks SET state = 'queued', worker_id = NULL,
                       updated_at = datetime('now') WHERE id = ?""",
                    (row["id"],),
                )
                _log_event(db, row["id"], "state_changed", STATE_RUNNING, STATE_QUEUED)
            db.commit()
        for row in rows:
            logger.warning("Re-queued task %s left running by %s", row["id"], row["worker_id"])
        return len(rows)

    def purge_expired(self, now: datetime | None = None) -> int:
        """Delete terminal tasks whose retention window has passed."""
        cutoff = _sql_time(now or datetime.now(timezone.utc))
        with get_db(self.db_path) as db:
            cur = db.execute(
                "DELETE FROM tasks WHERE expires_at IS NOT NULL AND expires_at <= ?",
                (cutoff,),
            )
            db.commit()
            count = cur.rowcount
        if count:
            logger.info("Purged %d expired task(s)", count)
        return count

    # ── Queries ──────────────────────────────────────────────────────────────

    def get_task(self, task_id: str) -> QueuedTask | None:
        """Get a task; terminal tasks past retention are no longer visible."""
        with get_db(self.db_path) as db:
            row = db.execute(
                f"SELECT * FROM tasks WHERE id = ? AND {_VISIBLE}", (task_id,)
            ).fetchone()
        if not row:
            return None
        return _row_to_task(row)

    def get_result(self, task_id: str) -> TaskResult | None:
        task = self.get_task(task_id)
        if not task or not task.result:
            return None
        return TaskResult.from_dict(task.result)

    def list_tasks(
        self,
        state: str | None = None,
        project_guid: str | None = None,
        limit: int = 50,
    ) -> list[QueuedTask]:
        query = f"SELECT * FROM tasks WHERE {_VISIBLE}"
        params: list = []
        if state:
            query += " AND state = ?"
            params.append(state)
        if project_guid:
            query += " AND project_guid = ?"
            params.append(project_guid)
        query += " ORDER BY enqueued_at DESC, rowid DESC LIMIT ?"
        params.append(limit)
        with get_db(self.db_path) as db:
            rows = db.execute(query, params).fetchall()
        return [_row_to_task(r) for r in rows]

    def counts(self) -> dict[str, int]:
        counts = {s: 0 for s in (STATE_QUEUED, STATE_RUNNING, STATE_RETRY, STATE_DONE, STATE_FAILED)}
        with get_db(self.db_path) as db:
            rows = db.execute(
                f"SELECT state, COUNT(*) AS n FROM tasks WHERE {_VISIBLE} GROUP BY state"
            ).fetchall()
        for r in rows:
            counts[r["state"]] = r["n"]
        return counts

    def get_task_events(self, task_id: str) -> list[TaskEvent]:
        """Get the event history for a task."""
        with get_db(self.db_path) as db:
            rows = db.execute(
                "SELECT * FROM task_events WHERE task_id = ? ORDER BY created_at, id",
                (task_id,),
            ).fetchall()
        return [
            TaskEvent(
                id=r["id"],
                task_id=r["task_id"],
                event_type=r["event_type"],
                old_value=r["old_value"],
                new_value=r["new_value"],
                created_at=_parse_dt(r["created_at"]),
            )
            for r in rows
        ]
