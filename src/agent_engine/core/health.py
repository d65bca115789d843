"""Versions of the external tools the engine shells out to."""

import logging
import shutil
import subprocess
import threading
import time

logger = logging.getLogger(__name__)

VERSION_ARGS = {
    "node": ["--version"],
    "npm": ["--version"],
    "npx": ["--version"],
    "git": ["--version"],
    "make": ["--version"],
    "go": ["version"],
    "claude": ["--version"],
    "qwen": ["--version"],
    "gemini": ["--version"],
}


def tool_version(name: str, args: list[str], timeout: float = 10.0) -> str | None:
    """First line of ``<name> <args>``, or None if the tool is missing or broken."""
    path = shutil.which(name)
    if path is None:
        return None
    try:
        result = subprocess.run(
            [path, *args], capture_output=True, text=True, timeout=timeout, check=True
        )
    except (subprocess.CalledProcessError, subprocess.TimeoutExpired, OSError) as e:
        logger.warning("Version check for %s failed: %s", name, e)
        return None
    lines = (result.stdout or result.stderr).strip().splitlines()
    return lines[0].strip() if lines else ""


class HealthProbe:
    """Caches tool versions; probing every tool on each request is slow."""

    def __init__(self, tools: dict[str, list[str]] | None = None, cache_seconds: float = 300.0):
        self.tools = dict(VERSION_ARGS if tools is None else tools)
        self.cache_seconds = cache_seconds
        self._cached: dict | None = None
        self._checked_at = 0.0
        self._lock = threading.Lock()

    def check(self, force: bool = False) -> dict:
        with self._lock:
            fresh = time.monotonic() - self._checked_at < self.cache_seconds
            if self._cached is not None and fresh and not force:
                return self._cached

            tools = {}
            for name, args in self.tools.items():
                version = tool_version(name, args)
                tools[name] = {"installed": version is not None, "version": version or ""}

            self._cached = {"status": "ok", "tools": tools}
            self._checked_at = time.monotonic()
            return self._cached
