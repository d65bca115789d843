"""Test doubles and helpers shared across the test modules."""

import json
import os
import subprocess
from pathlib import Path

import redis

from agent_engine.core.constants import STATUS_CHANNEL

GIT_IDENTITY = {
    "GIT_AUTHOR_NAME": "Test",
    "GIT_AUTHOR_EMAIL": "t@t.com",
    "GIT_COMMITTER_NAME": "Test",
    "GIT_COMMITTER_EMAIL": "t@t.com",
}


class FakeRedis:
    """Just enough of redis.Redis for the session store and the publisher."""

    def __init__(self):
        self.now = 0.0
        self.store: dict[str, tuple[str, float | None]] = {}
        self.published: list[tuple[str, str]] = []

    def set(self, key, value, ex=None):
        self.store[key] = (value, self.now + ex if ex else None)
        return True

    def get(self, key):
        entry = self.store.get(key)
        if entry is None:
            return None
        value, expires = entry
        if expires is not None and self.now >= expires:
            del self.store[key]
            return None
        return value

    def delete(self, *keys):
        return sum(1 for k in keys if self.store.pop(k, None) is not None)

    def publish(self, channel, message):
        self.published.append((channel, message))
        return 0

    def ping(self):
        return True

    def messages(self, channel=STATUS_CHANNEL) -> list[dict]:
        return [json.loads(m) for ch, m in self.published if ch == channel]


class BrokenRedis:
    def set(self, *args, **kwargs):
        raise redis.ConnectionError("connection refused")

    get = delete = publish = ping = set


def run_git(args, cwd):
    return subprocess.run(
        ["git", *args], cwd=cwd, capture_output=True, text=True, check=True,
        env={**os.environ, **GIT_IDENTITY},
    ).stdout.strip()


def make_remote(root: Path, name: str = "app.git", files: dict | None = None) -> Path:
    """Create a bare repository whose default branch is ``main``."""
    remote = root / "remotes" / name
    remote.mkdir(parents=True)
    run_git(["init", "--bare"], remote)
    run_git(["symbolic-ref", "HEAD", "refs/heads/main"], remote)

    seed = root / "seed" / name
    seed.mkdir(parents=True)
    run_git(["init"], seed)
    run_git(["checkout", "-b", "main"], seed)
    for rel, content in (files or {"README.md": "# app\n"}).items():
        path = seed / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)
    run_git(["add", "."], seed)
    run_git(["commit", "-m", "init"], seed)
    run_git(["remote", "add", "origin", str(remote)], seed)
    run_git(["push", "origin", "main"], seed)
    return remote


def clone_into(remote: Path, workspace: Path, guid: str) -> Path:
    workspace.mkdir(parents=True, exist_ok=True)
    run_git(["clone", str(remote), guid], workspace)
    return workspace / guid


def remote_log(remote: Path) -> list[str]:
    return run_git(["log", "--format=%s", "main"], remote).splitlines()


class ToolStubs:
    """Stub ``claude``/``npx``/``npm``/``go``/``make`` scripts controlled through files."""

    def __init__(self, root: Path):
        self.bin = root / "bin"
        self.control = root / "control"
        self.bin.mkdir()
        self.control.mkdir()
        self.calls_log = self.control / "calls.log"
        self.claude_log = self.control / "claude_argv.log"
        self.calls_log.touch()
        self.claude_log.touch()
        self.set_claude_output({"type": "result", "result": "ok", "session_id": "", "is_error": False})
        ctl = str(self.control)

        self._write("claude", f"""
printf '%s\\n' "$*" >> "{ctl}/claude_argv.log"
if [ -f "{ctl}/claude_exit" ]; then
  echo "claude crashed" >&2
  exit "$(cat "{ctl}/claude_exit")"
fi
if [ ! -f "{ctl}/claude_no_change" ]; then
  echo "turn" >> agent_notes.md
fi
cat "{ctl}/claude_output"
""")
        self._write("qwen", f"""
printf 'qwen %s\\n' "$*" >> "{ctl}/calls.log"
echo "turn" >> agent_notes.md
echo "plain qwen answer"
""")
        self._write("npx", f"""
printf 'npx %s\\n' "$*" >> "{ctl}/calls.log"
if [ -f "{ctl}/npx_fail" ]; then echo "npm ERR! network" >&2; exit 1; fi
case "$*" in
  *"-i claude-code"*) mkdir -p .claude ;;
  *"-i qwen-code"*) mkdir -p .qwen ;;
  *"-i gemini"*) mkdir -p .gemini ;;
esac
echo "bmad installed"
""")
        self._write("npm", f"""
printf 'npm %s in %s\\n' "$*" "$(basename "$(pwd)")" >> "{ctl}/calls.log"
if [ -f "{ctl}/npm_fail" ]; then echo "npm ERR! peer dep" >&2; exit 1; fi
mkdir -p node_modules
""")
        self._write("go", f"""
printf 'go %s in %s\\n' "$*" "$(basename "$(pwd)")" >> "{ctl}/calls.log"
if [ "$1" = "build" ]; then touch server; fi
""")
        self._write("make", f"""
printf 'make %s\\n' "$*" >> "{ctl}/calls.log"
if [ -f "{ctl}/make_fail_$1" ]; then
  rm "{ctl}/make_fail_$1"
  echo "./main.go:12: undefined: Foo" >&2
  exit 2
fi
echo "make $1 ok"
""")

    def _write(self, name: str, body: str):
        path = self.bin / name
        path.write_text("#!/bin/bash\n" + body.lstrip("\n"))
        path.chmod(0o755)

    def set_claude_output(self, envelope: dict | str):
        text = envelope if isinstance(envelope, str) else json.dumps(envelope)
        (self.control / "claude_output").write_text(text + "\n")

    def flag(self, name: str, content: str = ""):
        (self.control / name).write_text(content)

    def calls(self) -> list[str]:
        return self.calls_log.read_text().splitlines()

    def claude_calls(self) -> str:
        return self.claude_log.read_text()

