"""Git operations on project working trees, run through project shell sessions."""

import logging

from agent_engine.db.models import ExecResult
from agent_engine.integrations.executor import CommandExecutor

logger = logging.getLogger(__name__)

PUSH_BRANCHES = ("master", "main")


class GitError(Exception):
    """Raised when a git command fails."""


def default_commit_message(project_guid: str) -> str:
    return f"Auto commit by App Maker - {project_guid}"


def rewrite_repo_url(url: str, rewrites: list[tuple[str, str]]) -> str:
    """Apply the first matching prefix rewrite (e.g. internal SSH to HTTP)."""
    for src, dst in rewrites:
        if src and url.startswith(src):
            return dst + url[len(src):]
    return url


class GitHelper:
    def __init__(self, executor: CommandExecutor):
        self.executor = executor

    def run_git(self, project_guid: str, *args: str) -> ExecResult:
        """Run a git command. Raises GitError on failure."""
        result = self.executor.simple_execute(project_guid, "git", *args)
        if not result.success:
            raise GitError(f"git {' '.join(args)} failed: {result.error_text}")
        return result

    def clone(self, repo_url: str, project_guid: str) -> str:
        """Clone into ``<workspace>/<project_guid>`` from the workspace root."""
        return self.run_git("", "clone", repo_url, project_guid).stdout

    def pull(self, project_guid: str) -> str:
        return self.run_git(
            project_guid, "pull", "--progress", "-v", "--no-rebase", "--", "origin"
        ).stdout

    def configure(self, project_guid: str):
        self.run_git(project_guid, "config", "core.autocrlf", "false")

    def has_staged_changes(self, project_guid: str) -> bool:
        result = self.executor.simple_execute(
            project_guid, "git", "diff", "--cached", "--quiet"
        )
        if result.success:
            return False
        if result.exit_code == 1:
            return True
        raise GitError(f"git diff --cached failed: {result.error_text}")

    def commit_and_push(self, project_guid: str, message: str | None = None) -> bool:
        """Stage everything, commit and push. Returns False when nothing changed."""
        self.run_git(project_guid, "add", ".")

        if not self.has_staged_changes(project_guid):
            logger.info("[%s] working tree clean, nothing to commit", project_guid)
            return False

        message = message.strip() if message else ""
        self.run_git(project_guid, "commit", "-m", message or default_commit_message(project_guid))

        errors = []
        for branch in PUSH_BRANCHES:
            result = self.executor.simple_execute(
                project_guid, "git", "push", "-u", "origin", branch
            )
            if result.success:
                logger.info("[%s] pushed to origin/%s", project_guid, branch)
                return True
            logger.warning("[%s] push to %s failed: %s", project_guid, branch, result.error_text)
            errors.append(f"{branch}: {result.error_text}")

        raise GitError("git push failed: " + "; ".join(errors))
