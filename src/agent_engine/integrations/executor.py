"""Per-project shell session manager."""

import logging
import shlex
import threading
from pathlib import Path

from agent_engine.db.models import ExecResult
from agent_engine.integrations.shell import ShellSession

logger = logging.getLogger(__name__)


class CommandExecutor:
    """Maps project GUIDs to shell sessions, creating them on first use.

    Each project's session runs with the project directory as its working
    directory; the empty GUID maps to a session at the workspace root.
    """

    def __init__(
        self,
        workspace: str | Path,
        default_timeout: float | None = 300.0,
        shell_argv: list[str] | None = None,
    ):
        self.workspace = Path(workspace)
        self.default_timeout = default_timeout
        self.shell_argv = shell_argv
        self._sessions: dict[str, ShellSession] = {}
        self._key_locks: dict[str, threading.Lock] = {}
        self._guard = threading.Lock()

    def execute(
        self, project_guid: str, command: str, timeout: float | None = None
    ) -> ExecResult:
        """Run an already-quoted shell command in the project's session."""
        try:
            session = self._get_session(project_guid)
        except OSError as e:
            logger.error("Failed to start shell for project %r: %s", project_guid, e)
            return ExecResult(success=False, err=f"failed to start shell: {e}")

        logger.debug("[%s] $ %s", project_guid or "<workspace>", command)
        result = session.execute(command, timeout or self.default_timeout)
        if not result.success:
            logger.info(
                "[%s] command failed (%s): %s",
                project_guid or "<workspace>", result.err, command,
            )
        return result

    def simple_execute(
        self,
        project_guid: str,
        program: str,
        *args: str,
        subdir: str | None = None,
        timeout: float | None = None,
    ) -> ExecResult:
        """Run ``program`` with ``args``, each argument quoted for the shell."""
        command = shlex.join([program, *args])
        if subdir:
            command = f"cd {shlex.quote(subdir)} && {command}"
        return self.execute(project_guid, command, timeout)

    def has_session(self, project_guid: str) -> bool:
        with self._guard:
            session = self._sessions.get(project_guid)
        return session is not None and not session.closed

    def session_count(self) -> int:
        with self._guard:
            return sum(1 for s in self._sessions.values() if not s.closed)

    def close(self, project_guid: str):
        with self._guard:
            session = self._sessions.pop(project_guid, None)
        if session:
            session.close()

    def close_all(self):
        with self._guard:
            sessions = list(self._sessions.values())
            self._sessions.clear()
        for session in sessions:
            session.close()
        logger.info("Closed %d shell session(s)", len(sessions))

    def _cwd_for(self, project_guid: str) -> Path:
        if not project_guid:
            return self.workspace
        return self.workspace / project_guid

    def _get_session(self, project_guid: str) -> ShellSession:
        with self._guard:
            session = self._sessions.get(project_guid)
            if session is not None and not session.closed:
                return session
            key_lock = self._key_locks.setdefault(project_guid, threading.Lock())

        with key_lock:
            with self._guard:
                session = self._sessions.get(project_guid)
                if session is not None and not session.closed:
                    return session
                self._sessions.pop(project_guid, None)

            cwd = self._cwd_for(project_guid)
            if not cwd.is_dir():
                raise FileNotFoundError(f"working directory does not exist: {cwd}")
            session = ShellSession(cwd, argv=self.shell_argv)

            with self._guard:
                self._sessions[project_guid] = session
            logger.info("Started shell session for project %r (pid %s)", project_guid, session.pid)
            return session
