"""
Tests for command execution, workspaces and build logs.

run_command is exercised against the running Python interpreter so no
build tooling is needed.
"""
import asyncio
import os
import sys
import time
from pathlib import Path

import pytest

from app.core.build_runner import (
    BuildExecutor,
    BuildLog,
    CommandResult,
    WorkspaceManager,
    _sanitize_env,
    format_build_log,
    run_command,
    MAX_LOG_SIZE,
)
from app.core.detector import Toolchain
from app.core.errors import BuildCommandFailed, BuildTimedOut

PY = sys.executable


def py(code: str) -> list[str]:
    return [PY, "-c", code]


# =============================================================================
# run_command Tests
# =============================================================================

class TestRunCommand:
    """Tests for child process execution."""

    @pytest.mark.asyncio
    async def test_captures_stdout_and_stderr(self, tmp_path):
        result = await run_command(
            py("import sys; print('out'); print('err', file=sys.stderr)"),
            cwd=tmp_path,
        )
        assert result.exit_code == 0
        assert result.stdout.strip() == "out"
        assert result.stderr.strip() == "err"
        assert result.timed_out is False

    @pytest.mark.asyncio
    async def test_nonzero_exit(self, tmp_path):
        result = await run_command(py("import sys; sys.exit(3)"), cwd=tmp_path)
        assert result.exit_code == 3

    @pytest.mark.asyncio
    async def test_runs_in_cwd(self, tmp_path):
        result = await run_command(py("import os; print(os.getcwd())"), cwd=tmp_path)
        assert Path(result.stdout.strip()).resolve() == tmp_path.resolve()

    @pytest.mark.asyncio
    async def test_timeout_kills_process(self, tmp_path):
        start = time.monotonic()
        result = await run_command(py("import time; time.sleep(30)"), cwd=tmp_path, timeout=0.5)

        assert result.timed_out is True
        assert result.exit_code == -1
        assert time.monotonic() - start < 10

    @pytest.mark.asyncio
    async def test_cancellation_kills_process(self, tmp_path):
        pid_file = tmp_path / "child.pid"
        code = (
            f"import os, time; open({str(pid_file)!r}, 'w').write(str(os.getpid())); "
            "time.sleep(30)"
        )
        task = asyncio.create_task(run_command(py(code), cwd=tmp_path, timeout=60))

        deadline = time.monotonic() + 10
        while not (pid_file.exists() and pid_file.read_text()):
            assert time.monotonic() < deadline, "child never started"
            await asyncio.sleep(0.05)
        pid = int(pid_file.read_text())

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        with pytest.raises(ProcessLookupError):
            os.kill(pid, 0)

    @pytest.mark.asyncio
    async def test_spawn_failure(self, tmp_path):
        result = await run_command(["definitely-not-a-real-binary-xyz"], cwd=tmp_path)
        assert result.exit_code == -1
        assert "Failed to start" in result.stderr

    @pytest.mark.asyncio
    async def test_rejects_string_command(self, tmp_path):
        with pytest.raises(ValueError):
            await run_command("echo hi", cwd=tmp_path)

    @pytest.mark.asyncio
    async def test_rejects_empty_command(self, tmp_path):
        with pytest.raises(ValueError):
            await run_command([], cwd=tmp_path)

    def test_sanitized_env_drops_platform_secrets(self, monkeypatch):
        monkeypatch.setenv("R2_SECRET_ACCESS_KEY", "secret")
        monkeypatch.setenv("DATABASE_URL", "postgresql://u:p@db/x")
        env = _sanitize_env()

        assert "R2_SECRET_ACCESS_KEY" not in env
        assert "DATABASE_URL" not in env
        assert env["CI"] == "true"
        assert "PATH" in env


# =============================================================================
# BuildExecutor Tests
# =============================================================================

class TestBuildExecutor:
    """Tests for install/build sequencing and error mapping."""

    @pytest.mark.asyncio
    async def test_execute_success_returns_output(self, tmp_path):
        executor = BuildExecutor(timeout=10)
        log = BuildLog(project_name="myapp")

        result = await executor.execute(py("print('built')"), tmp_path, log)

        assert result.stdout.strip() == "built"
        assert log.commands == [result]

    @pytest.mark.asyncio
    async def test_execute_failure_carries_output(self, tmp_path):
        executor = BuildExecutor(timeout=10)

        with pytest.raises(BuildCommandFailed) as exc_info:
            await executor.execute(
                py("import sys; print('partial'); print('bad thing', file=sys.stderr); sys.exit(2)"),
                tmp_path,
            )

        error = exc_info.value
        assert not isinstance(error, BuildTimedOut)
        assert error.exit_code == 2
        assert "partial" in error.stdout
        assert "bad thing" in error.stderr

    @pytest.mark.asyncio
    async def test_execute_timeout(self, tmp_path):
        executor = BuildExecutor(timeout=0.5)

        with pytest.raises(BuildTimedOut) as exc_info:
            await executor.execute(py("import time; time.sleep(30)"), tmp_path)
        assert exc_info.value.result.timed_out is True

    @pytest.mark.asyncio
    async def test_spawn_failure_is_command_failure(self, tmp_path):
        executor = BuildExecutor(timeout=5)
        with pytest.raises(BuildCommandFailed):
            await executor.execute(["no-such-tool-abc"], tmp_path)

    @pytest.mark.asyncio
    async def test_install_then_build(self, tmp_path):
        toolchain = Toolchain(
            name="test",
            install_command=py("open('installed', 'w').write('1')"),
            build_command=py("import os; assert os.path.exists('installed'); print('ok')"),
            output_dir="dist",
        )
        results = await BuildExecutor(timeout=10).install_and_build(toolchain, tmp_path)

        assert [r.exit_code for r in results] == [0, 0]

    @pytest.mark.asyncio
    async def test_install_failure_skips_build(self, tmp_path):
        toolchain = Toolchain(
            name="test",
            install_command=py("import sys; sys.exit(1)"),
            build_command=py("open('built', 'w').write('1')"),
            output_dir="dist",
        )
        log = BuildLog(project_name="myapp")

        with pytest.raises(BuildCommandFailed):
            await BuildExecutor(timeout=10).install_and_build(toolchain, tmp_path, log)

        assert len(log.commands) == 1
        assert not (tmp_path / "built").exists()


# =============================================================================
# Workspace Tests
# =============================================================================

class TestWorkspaceManager:
    """Tests for scratch directory management."""

    def test_create_unique_workspaces(self, tmp_path):
        manager = WorkspaceManager(tmp_path / "ws")

        first = manager.create_workspace("myapp")
        second = manager.create_workspace("myapp")

        assert first != second
        assert first.is_dir() and second.is_dir()
        assert first.name.endswith("-myapp")
        assert first.name.split("-", 1)[0].isdigit()

    def test_cleanup_workspace(self, tmp_path):
        manager = WorkspaceManager(tmp_path)
        workspace = manager.create_workspace("myapp")
        (workspace / "node_modules").mkdir()

        assert manager.cleanup_workspace(workspace) is True
        assert not workspace.exists()
        assert manager.cleanup_workspace(workspace) is False

    def test_cleanup_old_workspaces(self, tmp_path):
        manager = WorkspaceManager(tmp_path)
        old = manager.create_workspace("old")
        fresh = manager.create_workspace("fresh")
        two_days_ago = time.time() - 48 * 3600
        os.utime(old, (two_days_ago, two_days_ago))

        assert manager.cleanup_old_workspaces() == 1
        assert not old.exists()
        assert fresh.exists()

    def test_cleanup_missing_base_dir(self, tmp_path):
        assert WorkspaceManager(tmp_path / "missing").cleanup_old_workspaces() == 0


# =============================================================================
# Build Log Tests
# =============================================================================

class TestBuildLog:
    """Tests for build log rendering."""

    def test_contains_notes_commands_and_error(self):
        log = BuildLog(project_name="myapp")
        log.enter("build")
        log.add(CommandResult(
            command=["npm", "run", "build"],
            exit_code=1,
            stdout="compiling",
            stderr="SyntaxError",
            duration_ms=10,
        ))
        text = log.render("npm run build failed with exit code 1")

        assert "Build Log for Project: myapp" in text
        assert "stage=build" in text
        assert "npm run build" in text
        assert "--- STDERR ---" in text
        assert "SyntaxError" in text
        assert "ERROR: npm run build failed" in text
        assert log.stage == "build"

    def test_truncates_large_logs(self):
        big = CommandResult(
            command=["npm", "install"],
            exit_code=0,
            stdout="x" * (MAX_LOG_SIZE // 2),
            stderr="y" * (MAX_LOG_SIZE // 2),
            duration_ms=1,
        )
        text = format_build_log("myapp", [], [big])
        assert len(text) <= MAX_LOG_SIZE + 100
        assert text.endswith("(log truncated)")
