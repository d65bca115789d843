"""Long-lived interpreter subprocess with sentinel-framed command execution.

Each command is written to the interpreter's stdin followed by a line that
prints a per-command token and the command's exit status, once on stdout
and once on stderr. Reader threads drain both pipes into line queues so a
chatty command can never fill a pipe buffer and stall the interpreter.
"""

import logging
import os
import queue
import re
import secrets
import signal
import subprocess
import threading
import time
from concurrent.futures import Future
from pathlib import Path

from agent_engine.db.models import ExecResult

logger = logging.getLogger(__name__)

_EOF = object()

# Grace period for the stderr sentinel once stdout has completed.
STDERR_GRACE_SECONDS = 5.0

IS_WINDOWS = os.name == "nt"


def default_shell_argv() -> list[str]:
    if IS_WINDOWS:
        return ["cmd", "/Q", "/K", "prompt $_"]
    return ["bash", "--noprofile", "--norc"]


def new_token() -> str:
    """Return a token that cannot plausibly appear in command output."""
    return f"__CMD_DONE_{time.time_ns()}_{secrets.token_hex(16)}__"


def match_sentinel(line: str, token: str) -> int | None:
    """Return the exit status if ``line`` is exactly ``<token>:<digits>``."""
    m = re.fullmatch(re.escape(token) + r":(\d+)", line.strip())
    if not m:
        return None
    return int(m.group(1))


def frame_command(command: str, token: str) -> str:
    """Wrap a command so its exit status is reported after it, pass or fail."""
    if IS_WINDOWS:
        return (
            f"{command}\r\n"
            "set __AE_RC=%ERRORLEVEL%\r\n"
            "echo. 1>&2\r\n"
            f"echo {token}:%__AE_RC% 1>&2\r\n"
            "echo.\r\n"
            f"echo {token}:%__AE_RC%\r\n"
        )
    # The subshell keeps `cd`/`exit` local to the command and /dev/null
    # stops it from consuming the framing lines that follow on stdin.
    return (
        f"( {command}\n"
        ") < /dev/null\n"
        "__ae_rc=$?\n"
        f"printf '\\n%s:%d\\n' '{token}' \"$__ae_rc\" >&2\n"
        f"printf '\\n%s:%d\\n' '{token}' \"$__ae_rc\"\n"
    )


class ShellSession:
    """One interpreter process executing commands strictly in arrival order."""

    def __init__(
        self,
        cwd: str | Path,
        argv: list[str] | None = None,
        env: dict[str, str] | None = None,
        queue_size: int = 100,
    ):
        self.cwd = Path(cwd)
        self.argv = list(argv or default_shell_argv())
        self.state = "fresh"
        self._requests: queue.Queue = queue.Queue(maxsize=queue_size)
        self._stdout_lines: queue.Queue = queue.Queue()
        self._stderr_lines: queue.Queue = queue.Queue()
        self._closed = threading.Event()
        self._lock = threading.Lock()

        self._proc = subprocess.Popen(
            self.argv,
            cwd=str(self.cwd),
            env=env,
            stdin=subprocess.PIPE,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            encoding="utf-8",
            errors="replace",
            bufsize=1,
            start_new_session=not IS_WINDOWS,
        )
        self._threads = [
            threading.Thread(
                target=_pump, args=(self._proc.stdout, self._stdout_lines),
                name=f"shell-out-{self._proc.pid}", daemon=True,
            ),
            threading.Thread(
                target=_pump, args=(self._proc.stderr, self._stderr_lines),
                name=f"shell-err-{self._proc.pid}", daemon=True,
            ),
            threading.Thread(
                target=self._loop, name=f"shell-loop-{self._proc.pid}", daemon=True
            ),
        ]
        for t in self._threads:
            t.start()
        logger.debug("Shell session started (pid %s, cwd %s)", self._proc.pid, self.cwd)

    @property
    def pid(self) -> int:
        return self._proc.pid

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def is_alive(self) -> bool:
        return not self.closed and self._proc.poll() is None

    def execute(self, command: str, timeout: float | None = None) -> ExecResult:
        """Queue a command and block until its result is available."""
        future: Future = Future()
        with self._lock:
            if self.closed:
                return ExecResult(success=False, err="session closed")
            try:
                self._requests.put_nowait((command, timeout, future))
            except queue.Full:
                return ExecResult(success=False, err="session queue full")
        return future.result()

    def close(self):
        """Terminate the interpreter and fail anything still queued."""
        with self._lock:
            if self.closed:
                return
            self._closed.set()
            self.state = "closed"

        try:
            self._proc.stdin.close()
        except OSError:
            logger.debug("stdin already closed for shell %s", self._proc.pid)

        if self._proc.poll() is None:
            try:
                if IS_WINDOWS:
                    self._proc.kill()
                else:
                    os.killpg(self._proc.pid, signal.SIGKILL)
            except ProcessLookupError:
                pass  # Already exited
            try:
                self._proc.wait(timeout=5)
            except subprocess.TimeoutExpired:
                logger.warning("Shell %s did not exit after kill", self._proc.pid)
        logger.debug("Shell session closed (pid %s)", self._proc.pid)

    # ── Internals ────────────────────────────────────────────────────────────

    def _loop(self):
        while not self.closed:
            try:
                command, timeout, future = self._requests.get(timeout=0.1)
            except queue.Empty:
                continue
            if self.closed:
                future.set_result(ExecResult(success=False, err="session closed"))
                break
            try:
                result = self._run(command, timeout)
            except Exception as e:
                logger.exception("Shell %s failed running command", self._proc.pid)
                self.close()
                result = ExecResult(success=False, err=str(e))
            future.set_result(result)

        while True:
            try:
                _, _, future = self._requests.get_nowait()
            except queue.Empty:
                break
            future.set_result(ExecResult(success=False, err="session closed"))

    def _run(self, command: str, timeout: float | None) -> ExecResult:
        token = new_token()
        self.state = "running"
        try:
            self._proc.stdin.write(frame_command(command, token))
            self._proc.stdin.flush()
        except (OSError, ValueError) as e:
            self.close()
            return ExecResult(success=False, err=f"shell exited: {e}")

        deadline = time.monotonic() + timeout if timeout else None
        stdout, code, status = _read_until(self._stdout_lines, token, deadline)
        if status == "timeout":
            logger.warning("Command timed out after %ss in shell %s", timeout, self._proc.pid)
            self.close()
            return ExecResult(success=False, stdout=stdout, err="timeout")
        if status == "eof":
            self.close()
            return ExecResult(success=False, stdout=stdout, err="shell exited")

        stderr, _, err_status = _read_until(
            self._stderr_lines, token, time.monotonic() + STDERR_GRACE_SECONDS
        )
        if err_status != "ok":
            # stdout and stderr framing no longer agree; the session is unusable
            logger.warning("Lost stderr framing in shell %s", self._proc.pid)
            self.close()
        else:
            self.state = "idle"

        if code == 0:
            return ExecResult(success=True, stdout=stdout, stderr=stderr, exit_code=0)
        return ExecResult(
            success=False,
            stdout=stdout,
            stderr=stderr,
            err=f"exit status {code}",
            exit_code=code,
        )


def _pump(stream, sink: queue.Queue):
    try:
        for line in iter(stream.readline, ""):
            sink.put(line)
    except (OSError, ValueError):
        logger.debug("Shell stream closed while reading", exc_info=True)
    finally:
        sink.put(_EOF)


def _read_until(
    lines: queue.Queue, token: str, deadline: float | None
) -> tuple[str, int | None, str]:
    """Collect lines up to the sentinel. Returns (text, exit_code, status)."""
    collected: list[str] = []
    while True:
        wait = None
        if deadline is not None:
            wait = deadline - time.monotonic()
            if wait <= 0:
                return "".join(collected).strip(), None, "timeout"
        try:
            line = lines.get(timeout=wait)
        except queue.Empty:
            return "".join(collected).strip(), None, "timeout"
        if line is _EOF:
            lines.put(_EOF)
            return "".join(collected).strip(), None, "eof"
        code = match_sentinel(line, token)
        if code is not None:
            return "".join(collected).strip(), code, "ok"
        collected.append(line)
