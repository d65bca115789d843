"""Workspace paths and assistant detection for project working trees."""

import logging
from pathlib import Path

from agent_engine.core.cli_tools import CLI_TOOLS, DEFAULT_CLI_TOOL, get_cli_tool

logger = logging.getLogger(__name__)


def validate_project_guid(project_guid: str) -> str:
    """Reject GUIDs that could escape the workspace."""
    if not project_guid or not project_guid.strip():
        raise ValueError("project GUID is required")
    if "/" in project_guid or "\\" in project_guid or project_guid in (".", ".."):
        raise ValueError(f"invalid project GUID: {project_guid!r}")
    if Path(project_guid).is_absolute() or ".." in Path(project_guid).parts:
        raise ValueError(f"invalid project GUID: {project_guid!r}")
    return project_guid


class Workspace:
    def __init__(self, root: str | Path, default_cli_tool: str = DEFAULT_CLI_TOOL):
        self.root = Path(root)
        self.default_cli_tool = get_cli_tool(default_cli_tool).name

    def ensure(self) -> Path:
        self.root.mkdir(parents=True, exist_ok=True)
        return self.root

    def project_path(self, project_guid: str) -> Path:
        return self.root / validate_project_guid(project_guid)

    def project_exists(self, project_guid: str) -> bool:
        return self.project_path(project_guid).is_dir()

    def exists(self, project_guid: str, *parts: str) -> bool:
        """Whether ``parts`` exists under the project directory."""
        return self.project_path(project_guid).joinpath(*parts).exists()

    def detect_cli_tool(self, project_guid: str) -> str:
        """First tool whose marker directory is present, else the default."""
        project = self.project_path(project_guid)
        for tool in CLI_TOOLS.values():
            if (project / tool.marker_dir).is_dir():
                return tool.name
        logger.debug("No assistant marker in %s, using %s", project, self.default_cli_tool)
        return self.default_cli_tool
