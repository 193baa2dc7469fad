"""
Build Runner - child-process execution and scratch workspaces for builds.

Runs install/build commands for a fetched repository in an isolated workspace
and renders the captured output into the build log.

Security:
- No shell=True anywhere, commands are argv lists
- Every command has a deadline, the process group is killed on expiry
- Sanitized environment (no platform credentials leak into builds)
- Workspace per build attempt, removed at the end of the attempt
"""
import asyncio
import logging
import os
import shutil
import signal
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone, timedelta
from pathlib import Path
from typing import Optional

from app.core.detector import Toolchain
from app.core.errors import BuildCommandFailed, BuildTimedOut

logger = logging.getLogger(__name__)

# =============================================================================
# Constants
# =============================================================================

COMMAND_TIMEOUT = 300  # 5 minutes per command
KILL_GRACE_SECONDS = 5
MAX_LOG_SIZE = 1 * 1024 * 1024  # 1MB per build log

WORKSPACE_RETENTION_HOURS = 24

# Environment variables passed through to build commands
PASSTHROUGH_ENV = ("PATH", "NODE_OPTIONS", "NPM_CONFIG_REGISTRY", "HTTPS_PROXY", "HTTP_PROXY")


@dataclass
class CommandResult:
    """Result of a subprocess command."""
    command: list[str]
    exit_code: int
    stdout: str
    stderr: str
    duration_ms: int
    timed_out: bool = False


@dataclass
class BuildLog:
    """Notes and command output accumulated during one build attempt."""
    project_name: str
    stage: str = "queued"
    notes: list[str] = field(default_factory=list)
    commands: list[CommandResult] = field(default_factory=list)

    def enter(self, stage: str) -> None:
        """Record the stage now running; failures are attributed to it."""
        self.stage = stage
        self.notes.append(f"stage={stage}")

    def note(self, message: str) -> None:
        self.notes.append(message)

    def add(self, result: CommandResult) -> None:
        self.commands.append(result)

    def render(self, error: Optional[str] = None) -> str:
        return format_build_log(self.project_name, self.notes, self.commands, error)


# =============================================================================
# Workspace Management
# =============================================================================

class WorkspaceManager:
    """Manages scratch directories for build attempts."""

    def __init__(self, base_dir: Path):
        self._base_dir = Path(base_dir)

    @property
    def base_dir(self) -> Path:
        return self._base_dir

    def create_workspace(self, project_name: str) -> Path:
        """Create a fresh, uniquely named (timestamp + project name) workspace."""
        self._base_dir.mkdir(parents=True, exist_ok=True)
        stamp = int(time.time() * 1000)
        workspace = self._base_dir / f"{stamp}-{project_name}"
        while workspace.exists():
            stamp += 1
            workspace = self._base_dir / f"{stamp}-{project_name}"
        workspace.mkdir(parents=True)
        logger.info(f"workspace_created project={project_name} path={workspace.name}")
        return workspace

    def cleanup_workspace(self, workspace: Path) -> bool:
        """Remove a workspace. Returns True if it existed."""
        workspace = Path(workspace)
        if workspace.exists():
            shutil.rmtree(workspace, ignore_errors=True)
            logger.info(f"workspace_cleaned path={workspace.name}")
            return True
        return False

    def cleanup_old_workspaces(self) -> int:
        """Remove workspaces older than the retention period (left by crashes)."""
        if not self._base_dir.exists():
            return 0
        try:
            cutoff = datetime.now(timezone.utc) - timedelta(hours=WORKSPACE_RETENTION_HOURS)
            deleted = 0

            for item in self._base_dir.iterdir():
                if item.is_dir():
                    mtime = datetime.fromtimestamp(item.stat().st_mtime, tz=timezone.utc)
                    if mtime < cutoff:
                        shutil.rmtree(item, ignore_errors=True)
                        deleted += 1

            if deleted > 0:
                logger.info(f"cleanup_workspaces deleted={deleted}")
            return deleted
        except OSError as e:
            logger.warning(f"cleanup_workspaces_failed error={type(e).__name__}")
            return 0


# =============================================================================
# Safe Command Execution
# =============================================================================

def _sanitize_env() -> dict:
    """Create a sanitized environment for subprocess execution."""
    safe_env = {
        "PATH": "/usr/local/bin:/usr/bin:/bin",
        "HOME": "/tmp",
        "LANG": "C.UTF-8",
        "LC_ALL": "C.UTF-8",
        "CI": "true",
        # Keep git from prompting for credentials on private repos
        "GIT_TERMINAL_PROMPT": "0",
    }
    for name in PASSTHROUGH_ENV:
        value = os.environ.get(name)
        if value:
            safe_env[name] = value
    return safe_env


def _truncate(text: str) -> str:
    max_output = MAX_LOG_SIZE // 2
    if len(text) > max_output:
        return text[:max_output] + f"\n... (truncated, {len(text)} total chars)"
    return text


def _kill_process_group(proc: asyncio.subprocess.Process) -> None:
    try:
        os.killpg(proc.pid, signal.SIGKILL)
    except (ProcessLookupError, PermissionError):
        try:
            proc.kill()
        except ProcessLookupError:
            pass


async def run_command(
    cmd: list[str],
    cwd: Path,
    timeout: float = COMMAND_TIMEOUT,
    env_override: Optional[dict] = None,
) -> CommandResult:
    """
    Execute a command with no shell and a deadline.

    Args:
        cmd: Command as list of strings (NO shell!)
        cwd: Working directory
        timeout: Timeout in seconds
        env_override: Additional environment variables

    Returns:
        CommandResult with output and status. Spawn failures are reported
        as exit_code -1 with the error in stderr.
    """
    if not isinstance(cmd, list):
        raise ValueError("Command must be a list, not a string")

    if len(cmd) == 0:
        raise ValueError("Command cannot be empty")

    env = _sanitize_env()
    if env_override:
        env.update(env_override)

    start = time.perf_counter()
    timed_out = False

    try:
        proc = await asyncio.create_subprocess_exec(
            *cmd,
            cwd=str(cwd),
            env=env,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            start_new_session=True,
        )
    except OSError as e:
        return CommandResult(
            command=cmd,
            exit_code=-1,
            stdout="",
            stderr=f"Failed to start {cmd[0]}: {e}",
            duration_ms=int((time.perf_counter() - start) * 1000),
        )

    try:
        stdout_b, stderr_b = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        timed_out = True
        logger.warning(f"command_timeout cmd={cmd[0]} timeout={timeout}")
        _kill_process_group(proc)
        try:
            stdout_b, stderr_b = await asyncio.wait_for(
                proc.communicate(), timeout=KILL_GRACE_SECONDS
            )
        except asyncio.TimeoutError:
            stdout_b, stderr_b = b"", b""
    except asyncio.CancelledError:
        # The child runs in its own session and would outlive the build
        logger.warning(f"command_cancelled cmd={cmd[0]} pid={proc.pid}")
        _kill_process_group(proc)
        try:
            await asyncio.wait_for(proc.wait(), timeout=KILL_GRACE_SECONDS)
        except asyncio.TimeoutError:
            logger.error(f"command_kill_timeout cmd={cmd[0]} pid={proc.pid}")
        raise

    exit_code = proc.returncode if proc.returncode is not None else -1
    if timed_out:
        exit_code = -1

    return CommandResult(
        command=cmd,
        exit_code=exit_code,
        stdout=_truncate((stdout_b or b"").decode("utf-8", errors="replace")),
        stderr=_truncate((stderr_b or b"").decode("utf-8", errors="replace")),
        duration_ms=int((time.perf_counter() - start) * 1000),
        timed_out=timed_out,
    )


class BuildExecutor:
    """Runs install and build commands against a workspace."""

    def __init__(self, timeout: float = COMMAND_TIMEOUT):
        self.timeout = timeout

    async def execute(
        self,
        cmd: list[str],
        cwd: Path,
        log: Optional[BuildLog] = None,
        timeout: Optional[float] = None,
    ) -> CommandResult:
        """
        Run one command.

        Raises:
            BuildTimedOut: If the command exceeded its deadline
            BuildCommandFailed: On nonzero exit or spawn failure
        """
        result = await run_command(cmd, cwd, timeout=timeout or self.timeout)
        if log is not None:
            log.add(result)

        if result.timed_out:
            raise BuildTimedOut(
                f"{' '.join(cmd)} timed out after {timeout or self.timeout}s", result
            )
        if result.exit_code != 0:
            raise BuildCommandFailed(
                f"{' '.join(cmd)} failed with exit code {result.exit_code}", result
            )
        return result

    async def install_and_build(
        self,
        toolchain: Toolchain,
        workspace: Path,
        log: Optional[BuildLog] = None,
    ) -> list[CommandResult]:
        """Run install then build. An install failure skips the build."""
        results = [await self.execute(toolchain.install_command, workspace, log)]
        results.append(await self.execute(toolchain.build_command, workspace, log))
        return results


# =============================================================================
# Build Log
# =============================================================================

def format_build_log(
    project_name: str,
    notes: list[str],
    commands: list[CommandResult],
    error: Optional[str] = None,
) -> str:
    """Render notes and command output as build log text."""
    log_lines = []
    log_lines.append(f"Build Log for Project: {project_name}")
    log_lines.append(f"Generated: {datetime.now(timezone.utc).isoformat()}")
    log_lines.append("=" * 60)
    log_lines.append("")

    for note in notes:
        log_lines.append(f"* {note}")
    if notes:
        log_lines.append("")

    for i, cmd_result in enumerate(commands):
        log_lines.append(f"### Command {i + 1}: {' '.join(cmd_result.command)}")
        log_lines.append(f"Exit code: {cmd_result.exit_code}")
        log_lines.append(f"Duration: {cmd_result.duration_ms}ms")
        if cmd_result.timed_out:
            log_lines.append("TIMED OUT")
        log_lines.append("")

        if cmd_result.stdout:
            log_lines.append("--- STDOUT ---")
            log_lines.append(cmd_result.stdout)
            log_lines.append("")

        if cmd_result.stderr:
            log_lines.append("--- STDERR ---")
            log_lines.append(cmd_result.stderr)
            log_lines.append("")

        log_lines.append("-" * 40)
        log_lines.append("")

    if error:
        log_lines.append(f"ERROR: {error}")

    log_content = "\n".join(log_lines)

    if len(log_content) > MAX_LOG_SIZE:
        log_content = log_content[:MAX_LOG_SIZE] + "\n... (log truncated)"

    return log_content
