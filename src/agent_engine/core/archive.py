"""Zip archives of project working trees for download and backup."""

import logging
import shutil
from datetime import datetime
from pathlib import Path

from agent_engine.core.events import TaskReporter
from agent_engine.core.workspace import Workspace

logger = logging.getLogger(__name__)


class ArchiveError(Exception):
    """Raised when a project tree cannot be archived."""


def archive_name(project_guid: str, now: datetime | None = None) -> str:
    now = now or datetime.now()
    return f"{project_guid}_{now.strftime('%Y%m%d_%H%M%S')}"


class ProjectArchiver:
    def __init__(self, workspace: Workspace, archive_dir: str | Path):
        self.workspace = workspace
        self.archive_dir = Path(archive_dir)

    def archive(self, project_guid: str, suffix: str = "") -> Path:
        """Zip ``<workspace>/<guid>`` into the archive directory and return the file."""
        source = self.workspace.project_path(project_guid)
        if not source.is_dir():
            raise ArchiveError(f"project directory does not exist: {source}")

        self.archive_dir.mkdir(parents=True, exist_ok=True)
        base = self.archive_dir / (archive_name(project_guid) + suffix)
        try:
            path = shutil.make_archive(str(base), "zip", root_dir=str(source))
        except OSError as e:
            raise ArchiveError(f"failed to zip project file: {e}") from e
        logger.info("[%s] archived to %s", project_guid, path)
        return Path(path)

    def run(self, project_guid: str, reporter: TaskReporter, backup: bool = False) -> Path:
        """Archive a project, reporting progress; the tree itself is left in place."""
        reporter.progress(30, "zipping project file...")
        try:
            path = self.archive(project_guid, suffix="_backup" if backup else "")
        except ArchiveError as e:
            reporter.fail(str(e))
            raise
        reporter.progress(60, "project file zipped to cache")
        reporter.done(str(path))
        return path
