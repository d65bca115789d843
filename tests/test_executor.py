"""Tests for the per-project command executor."""

import threading

import pytest

from agent_engine.integrations.executor import CommandExecutor


@pytest.fixture
def workspace(tmp_path):
    root = tmp_path / "workspace"
    (root / "p1").mkdir(parents=True)
    (root / "p2").mkdir()
    return root


@pytest.fixture
def executor(workspace):
    ex = CommandExecutor(workspace, default_timeout=30)
    yield ex
    ex.close_all()


class TestCommandExecutor:
    def test_runs_in_project_directory(self, executor, workspace):
        result = executor.execute("p1", "pwd")
        assert result.success
        assert result.stdout == str((workspace / "p1").resolve())

    def test_empty_guid_runs_at_workspace_root(self, executor, workspace):
        result = executor.execute("", "pwd")
        assert result.stdout == str(workspace.resolve())

    def test_one_session_per_project(self, executor):
        pids = []
        lock = threading.Lock()

        def run():
            result = executor.execute("p1", "echo $$")
            with lock:
                pids.append(result.stdout)

        threads = [threading.Thread(target=run) for _ in range(10)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(set(pids)) == 1
        assert executor.session_count() == 1

    def test_projects_get_separate_sessions(self, executor):
        a = executor.execute("p1", "echo $$").stdout
        b = executor.execute("p2", "echo $$").stdout
        assert a != b
        assert executor.session_count() == 2

    def test_concurrent_commands_do_not_interleave(self, executor):
        outputs = {}

        def run(label):
            outputs[label] = executor.execute("p1", f"for i in $(seq 1 300); do echo {label}$i; done")

        threads = [threading.Thread(target=run, args=(label,)) for label in ("A", "B")]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        for label in ("A", "B"):
            lines = outputs[label].stdout.splitlines()
            assert len(lines) == 300
            assert all(line.startswith(label) for line in lines)

    def test_session_recreated_after_timeout(self, executor):
        first = executor.execute("p1", "echo $$").stdout
        result = executor.execute("p1", "sleep 30", timeout=1)
        assert result.err == "timeout"
        assert not executor.has_session("p1")

        follow_up = executor.execute("p1", "echo $$")
        assert follow_up.success
        assert follow_up.stdout != first

    def test_missing_project_directory(self, executor, workspace):
        result = executor.execute("ghost", "pwd")
        assert not result.success
        assert "failed to start shell" in result.err
        assert not executor.has_session("ghost")

        (workspace / "ghost").mkdir()
        assert executor.execute("ghost", "true").success

    def test_simple_execute_quotes_arguments(self, executor):
        text = 'it\'s "quoted" $HOME; rm -rf nothing'
        result = executor.simple_execute("p1", "printf", "%s", text)
        assert result.success
        assert result.stdout == text

    def test_simple_execute_in_subdir(self, executor, workspace):
        (workspace / "p1" / "my dir").mkdir()
        result = executor.simple_execute("p1", "pwd", subdir="my dir")
        assert result.stdout == str((workspace / "p1" / "my dir").resolve())

    def test_simple_execute_missing_subdir_fails(self, executor):
        result = executor.simple_execute("p1", "pwd", subdir="nope")
        assert not result.success
        assert result.exit_code == 1

    def test_close_and_close_all(self, executor):
        executor.execute("p1", "true")
        executor.execute("p2", "true")
        executor.close("p1")
        assert not executor.has_session("p1")
        assert executor.has_session("p2")
        executor.close_all()
        assert executor.session_count() == 0
