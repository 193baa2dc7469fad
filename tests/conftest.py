"""
Pytest configuration and fixtures.

Tests never touch the network, a real object store or npm: the object store is
in memory, records live in an in-memory SQLite database, and the fetcher and
executor are stubs that write files into the build workspace.
"""
import os
import sys
from pathlib import Path
from typing import Optional

# Keep the module-level app in main.py away from real infrastructure
os.environ.pop("DATABASE_URL", None)
os.environ.pop("R2_ENDPOINT", None)
os.environ.setdefault("BASE_URL", ".example.com")

import pytest
from fastapi.testclient import TestClient

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.core.artifact_store import InMemoryObjectStore
from app.core.build_runner import BuildExecutor, BuildLog, CommandResult
from app.core.config import PlatformConfig
from app.core.errors import BuildCommandFailed
from app.core.fetcher import RepositoryFetcher
from app.core.records import BuildRecordStore
from app.core.services import build_services
from main import create_app

REPO_URL = "https://github.com/acme/myapp.git"

VITE_MANIFEST = '{"name": "myapp", "scripts": {"build": "vite build"}, "devDependencies": {"vite": "^5.0.0"}}'


class StubFetcher(RepositoryFetcher):
    """Writes a fixed file tree instead of cloning."""

    def __init__(self, files: Optional[dict] = None, error: Optional[Exception] = None):
        self.files = files if files is not None else {"package.json": VITE_MANIFEST}
        self.error = error
        self.calls = []

    async def fetch(self, repo_url: str, dest: Path, log: BuildLog) -> None:
        self.calls.append((repo_url, Path(dest)))
        if self.error is not None:
            raise self.error
        for rel, content in self.files.items():
            path = Path(dest) / rel
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(content)


class StubExecutor(BuildExecutor):
    """Pretends to run npm; the build step writes `outputs` into output_dir."""

    def __init__(
        self,
        outputs: Optional[dict] = None,
        output_dir: str = "dist",
        fail_on: Optional[str] = None,
    ):
        super().__init__(timeout=5)
        self.outputs = outputs if outputs is not None else {
            "index.html": "<h1>myapp</h1>",
            "assets/app.js": "console.log('hi')",
        }
        self.output_dir = output_dir
        self.fail_on = fail_on
        self.commands = []

    async def execute(self, cmd, cwd, log=None, timeout=None):
        self.commands.append(list(cmd))
        step = "build" if cmd[-1] == "build" else "install"
        result = CommandResult(command=list(cmd), exit_code=0, stdout=f"{step} ok", stderr="", duration_ms=1)

        if self.fail_on == step:
            result.exit_code = 1
            result.stderr = f"{step} exploded"
            if log is not None:
                log.add(result)
            raise BuildCommandFailed(f"{' '.join(cmd)} failed with exit code 1", result)

        if step == "build":
            for rel, content in self.outputs.items():
                path = Path(cwd) / self.output_dir / rel
                path.parent.mkdir(parents=True, exist_ok=True)
                path.write_text(content)

        if log is not None:
            log.add(result)
        return result


@pytest.fixture
def config(tmp_path):
    """Platform config with workspaces under tmp_path."""
    return PlatformConfig(
        base_url=".example.com",
        workspaces_dir=tmp_path / "workspaces",
        command_timeout_s=5,
    )


@pytest.fixture
def store():
    return InMemoryObjectStore()


@pytest.fixture
def records():
    return BuildRecordStore(database_url="sqlite://")


@pytest.fixture
def fetcher():
    return StubFetcher()


@pytest.fixture
def executor():
    return StubExecutor()


@pytest.fixture
def services(config, records, store, fetcher, executor):
    return build_services(
        config=config,
        records=records,
        store=store,
        fetcher=fetcher,
        executor=executor,
    )


@pytest.fixture
def project(records):
    """A registered project named myapp."""
    return records.register_project("myapp", REPO_URL)


@pytest.fixture
def client(services):
    """Create a test client."""
    return TestClient(create_app(services), raise_server_exceptions=False)
