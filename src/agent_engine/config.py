"""Configuration loading from environment variables."""

import os
from dataclasses import dataclass, field
from pathlib import Path


def _default_home() -> Path:
    return Path.home() / ".agent_engine"


def parse_rewrites(raw: str) -> list[tuple[str, str]]:
    """Parse ``from=>to;from=>to`` into prefix pairs."""
    pairs = []
    for item in raw.split(";"):
        item = item.strip()
        if not item or "=>" not in item:
            continue
        src, dst = item.split("=>", 1)
        pairs.append((src.strip(), dst.strip()))
    return pairs


@dataclass
class Config:
    db_path: Path = field(default_factory=lambda: _default_home() / "tasks.db")
    workspace_path: Path = field(default_factory=lambda: _default_home() / "workspace")
    archive_dir: Path | None = None
    redis_url: str = "redis://localhost:6379/1"
    command_timeout: float = 300.0
    concurrency: int = 100
    poll_interval: float = 1.0
    max_retry: int = 1
    retention_seconds: int = 3600
    retry_delay_seconds: int = 10
    stale_after_seconds: int = 300
    default_cli_tool: str = "claude-code"
    repo_url_rewrites: list[tuple[str, str]] = field(default_factory=list)
    log_level: str = "INFO"
    host: str = "127.0.0.1"
    port: int = 8088

    @classmethod
    def from_env(cls) -> "Config":
        config = cls()

        if db := os.environ.get("AE_DB_PATH"):
            config.db_path = Path(db)

        if ws := os.environ.get("AE_WORKSPACE_PATH") or os.environ.get("WORKSPACE_PATH"):
            config.workspace_path = Path(ws)

        if archive := os.environ.get("AE_ARCHIVE_DIR"):
            config.archive_dir = Path(archive)

        if redis_url := os.environ.get("AE_REDIS_URL"):
            config.redis_url = redis_url

        if timeout := os.environ.get("AE_COMMAND_TIMEOUT"):
            config.command_timeout = float(timeout)

        if concurrency := os.environ.get("AE_CONCURRENCY"):
            config.concurrency = int(concurrency)

        if poll := os.environ.get("AE_POLL_INTERVAL"):
            config.poll_interval = float(poll)

        if max_retry := os.environ.get("AE_MAX_RETRY"):
            config.max_retry = int(max_retry)

        if retention := os.environ.get("AE_RETENTION_SECONDS"):
            config.retention_seconds = int(retention)

        if delay := os.environ.get("AE_RETRY_DELAY_SECONDS"):
            config.retry_delay_seconds = int(delay)

        if stale := os.environ.get("AE_STALE_AFTER_SECONDS"):
            config.stale_after_seconds = int(stale)

        if tool := os.environ.get("AE_DEFAULT_CLI_TOOL"):
            config.default_cli_tool = tool

        if rewrites := os.environ.get("AE_REPO_URL_REWRITES"):
            config.repo_url_rewrites = parse_rewrites(rewrites)

        if level := os.environ.get("AE_LOG_LEVEL"):
            config.log_level = level.upper()

        if host := os.environ.get("AE_HOST"):
            config.host = host

        if port := os.environ.get("AE_PORT"):
            config.port = int(port)

        return config

    @property
    def heartbeat_interval(self) -> float:
        return max(1.0, self.stale_after_seconds / 5)

    @property
    def archive_path(self) -> Path:
        return self.archive_dir or (self.workspace_path / ".archives")


def get_config() -> Config:
    return Config.from_env()
