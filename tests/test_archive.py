"""Tests for project archives."""

import zipfile
from datetime import datetime

import pytest
from helpers import FakeRedis

from agent_engine.core.archive import ArchiveError, ProjectArchiver, archive_name
from agent_engine.core.events import EventPublisher, TaskReporter
from agent_engine.core.workspace import Workspace


@pytest.fixture
def workspace(tmp_path):
    ws = Workspace(tmp_path / "workspace")
    project = ws.root / "g-001"
    (project / "src").mkdir(parents=True)
    (project / "src" / "main.go").write_text("package main\n")
    (project / "README.md").write_text("# app\n")
    return ws


@pytest.fixture
def archiver(workspace, tmp_path):
    return ProjectArchiver(workspace, tmp_path / "archives")


class TestArchiveName:
    def test_format(self):
        assert archive_name("g-001", datetime(2024, 3, 5, 7, 8, 9)) == "g-001_20240305_070809"


class TestProjectArchiver:
    def test_archive_contents(self, archiver, workspace):
        path = archiver.archive("g-001")
        assert path.suffix == ".zip"
        assert path.parent == archiver.archive_dir
        with zipfile.ZipFile(path) as zf:
            names = set(zf.namelist())
        assert "README.md" in names
        assert "src/main.go" in names
        assert (workspace.root / "g-001" / "README.md").exists()

    def test_missing_project(self, archiver):
        with pytest.raises(ArchiveError, match="does not exist"):
            archiver.archive("g-404")

    def test_run_reports_progress(self, archiver):
        client = FakeRedis()
        reporter = TaskReporter(EventPublisher(client), "t-1", "g-001")
        path = archiver.run("g-001", reporter, backup=True)

        assert path.name.endswith("_backup.zip")
        messages = client.messages()
        assert [m["progress"] for m in messages] == [30, 60, 100]
        assert messages[-1]["status"] == "done"
        assert messages[-1]["message"] == str(path)

    def test_run_failure(self, archiver):
        client = FakeRedis()
        reporter = TaskReporter(EventPublisher(client), "t-1", "g-404")
        with pytest.raises(ArchiveError):
            archiver.run("g-404", reporter)
        assert [m["status"] for m in client.messages()] == ["in_progress", "failed"]
