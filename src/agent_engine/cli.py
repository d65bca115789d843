"""CLI entry point for the agent execution engine."""

import json
import logging
import sys
import time

import click

from agent_engine.config import get_config
from agent_engine.core import constants as c
from agent_engine.core.queue import EnqueueError, TaskQueue

LOG_FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"


def _setup_logging(level: str):
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)


def _get_queue() -> TaskQueue:
    config = get_config()
    return TaskQueue(config.db_path, retry_delay_seconds=config.retry_delay_seconds)


def _enqueue(kind: str, payload: dict, queue: str):
    config = get_config()
    try:
        info = _get_queue().enqueue(
            kind,
            payload,
            queue=queue,
            max_retry=config.max_retry,
            retention_seconds=config.retention_seconds,
        )
    except EnqueueError as e:
        click.echo(f"Enqueue failed: {e}", err=True)
        sys.exit(1)
    click.echo(f"Enqueued {info.kind} task: {info.id} (queue: {info.queue})")


@click.group()
@click.option("--log-level", default=None, help="Override AE_LOG_LEVEL")
def main(log_level):
    """ae - Agent Execution Engine CLI"""
    _setup_logging(log_level or get_config().log_level)


# ── Servers ───────────────────────────────────────────────────────────────────


@main.command("serve")
@click.option("--host", default=None, help="Host to bind to")
@click.option("--port", default=None, type=int, help="Port to listen on")
@click.option("--workers/--no-workers", default=True, help="Run the worker pool in-process")
def serve_command(host, port, workers):
    """Start the HTTP API (and, by default, the worker pool)."""
    from agent_engine.services import Services
    from agent_engine.web.app import run_server

    config = get_config()
    services = Services.from_config(config)
    pool = services.worker_pool() if workers else None
    if pool:
        pool.start()
    try:
        run_server(services, host=host or config.host, port=port or config.port)
    finally:
        if pool:
            pool.stop()
        services.close()


@main.command("worker")
@click.option("--concurrency", default=None, type=int, help="Parallel workers (default AE_CONCURRENCY)")
def worker_command(concurrency):
    """Run the worker pool until interrupted."""
    from agent_engine.services import Services

    services = Services.from_config(get_config())
    pool = services.worker_pool(concurrency)
    pool.start()
    click.echo(f"Worker pool running with {pool.concurrency} worker(s). Ctrl-C to stop.")
    try:
        while True:
            time.sleep(60)
            services.queue.purge_expired()
    except KeyboardInterrupt:
        click.echo("Stopping...")
    finally:
        pool.stop()
        services.close()


# ── Enqueue Commands ──────────────────────────────────────────────────────────


@main.group("enqueue")
def enqueue_group():
    """Submit tasks to the queue."""
    pass


_queue_option = click.option(
    "--queue", "queue_name", default=c.QUEUE_DEFAULT,
    type=click.Choice([c.QUEUE_CRITICAL, c.QUEUE_DEFAULT, c.QUEUE_LOW]),
    help="Priority queue",
)


@enqueue_group.command("chat")
@click.argument("project_guid")
@click.argument("message")
@click.option("--role", default=c.ROLE_DEV, type=click.Choice(c.AGENT_ROLES), help="Agent role")
@click.option("--cli-tool", default=None, help="claude-code, qwen-code or gemini")
@click.option("--dev-stage", default=None, help="Dev stage tag for events")
@_queue_option
def enqueue_chat(project_guid, message, role, cli_tool, dev_stage, queue_name):
    """Enqueue one agent chat turn."""
    payload = {
        "projectGuid": project_guid,
        "agentRole": role,
        "message": message,
        "devStage": dev_stage or c.default_stage(role),
        "cliTool": cli_tool or "",
    }
    _enqueue(c.KIND_AGENT_CHAT, payload, queue_name)


@enqueue_group.command("setup")
@click.argument("project_guid")
@click.argument("repo_url")
@click.option("--toolchain", default=c.DEFAULT_TOOLCHAIN_KIND, help="Assistant toolchain to install")
@click.option("--force-toolchain", is_flag=True, help="Reinstall the toolchain even if present")
@_queue_option
def enqueue_setup(project_guid, repo_url, toolchain, force_toolchain, queue_name):
    """Enqueue project environment setup."""
    payload = {
        "projectGuid": project_guid,
        "repoUrl": repo_url,
        "installToolchain": force_toolchain,
        "toolchainKind": toolchain,
    }
    _enqueue(c.KIND_PROJECT_SETUP, payload, queue_name)


@enqueue_group.command("deploy")
@click.argument("project_guid")
@click.option("--environment", default="dev", help="Make target suffix (build-<env>, run-<env>)")
@_queue_option
def enqueue_deploy(project_guid, environment, queue_name):
    """Enqueue build and run of a project."""
    payload = {"projectGuid": project_guid, "environment": environment, "options": {}}
    _enqueue(c.KIND_PROJECT_DEPLOY, payload, queue_name)


@enqueue_group.command("backup")
@click.argument("project_guid")
@click.option("--download", is_flag=True, help="Archive for download instead of backup")
@_queue_option
def enqueue_backup(project_guid, download, queue_name):
    """Enqueue a zip archive of a project tree."""
    kind = c.KIND_PROJECT_DOWNLOAD if download else c.KIND_PROJECT_BACKUP
    _enqueue(kind, {"projectGuid": project_guid}, queue_name)


# ── Task Commands ─────────────────────────────────────────────────────────────


@main.group("task")
def task_group():
    """Inspect queued tasks."""
    pass


@task_group.command("show")
@click.argument("task_id")
@click.option("--json-output", "--json", is_flag=True, help="Output as JSON")
def task_show(task_id, json_output):
    """Show a task, its result record and history."""
    queue = _get_queue()
    task = queue.get_task(task_id)
    if not task:
        click.echo(f"Task not found: {task_id}", err=True)
        sys.exit(1)

    if json_output:
        click.echo(json.dumps(_task_dict(task), indent=2, ensure_ascii=False))
        return

    click.echo(f"Task: {task.id}")
    click.echo(f"  Kind: {task.kind}")
    click.echo(f"  Queue: {task.queue}")
    click.echo(f"  State: {task.state}")
    if task.project_guid:
        click.echo(f"  Project: {task.project_guid}")
    click.echo(f"  Attempts: {task.retried + 1} (max retry {task.max_retry})")
    if task.result:
        click.echo(f"  Status: {task.result.get('status')} ({task.result.get('progress')}%)")
        if task.result.get("message"):
            click.echo(f"  Message: {task.result['message']}")
    if task.last_error:
        click.echo(f"  Last error: {task.last_error}")

    events = queue.get_task_events(task_id)
    if events:
        click.echo("  History:")
        for e in events:
            click.echo(f"    [{e.created_at}] {e.event_type}: {e.old_value} -> {e.new_value}")


@task_group.command("list")
@click.option("--state", default=None, help="Filter by state")
@click.option("--project", default=None, help="Filter by project GUID")
@click.option("--limit", default=50, type=int)
def task_list(state, project, limit):
    """List recent tasks."""
    tasks = _get_queue().list_tasks(state=state, project_guid=project, limit=limit)
    if not tasks:
        click.echo("No tasks found.")
        return
    for task in tasks:
        progress = task.result.get("progress", 0) if task.result else 0
        click.echo(f"  {task.id} {task.kind} [{task.state}] {progress}% {task.project_guid or ''}")


@task_group.command("purge")
def task_purge():
    """Delete tasks whose retention window has passed."""
    count = _get_queue().purge_expired()
    click.echo(f"Purged {count} task(s).")


# ── Health ────────────────────────────────────────────────────────────────────


@main.command("health")
def health_command():
    """Report versions of the external tools."""
    from agent_engine.core.health import HealthProbe

    report = HealthProbe().check()
    for name, info in report["tools"].items():
        mark = "✓" if info["installed"] else "✗"
        click.echo(f"  {mark} {name}: {info['version'] or 'not found'}")


def _task_dict(task) -> dict:
    return {
        "id": task.id,
        "kind": task.kind,
        "queue": task.queue,
        "state": task.state,
        "project_guid": task.project_guid,
        "payload": task.payload,
        "retried": task.retried,
        "max_retry": task.max_retry,
        "result": task.result,
        "last_error": task.last_error,
        "enqueued_at": task.enqueued_at.isoformat() if task.enqueued_at else None,
        "completed_at": task.completed_at.isoformat() if task.completed_at else None,
    }
