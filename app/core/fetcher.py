"""
Repository fetching into build workspaces.
"""
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from urllib.parse import urlparse

from app.core.build_runner import BuildLog, run_command
from app.core.errors import FetchFailed

logger = logging.getLogger(__name__)

CLONE_TIMEOUT = 120

ALLOWED_SCHEMES = {"https", "http", "ssh", "git"}


def redact_url(url: str) -> str:
    """Strip userinfo (tokens) from a repository URL before logging it."""
    try:
        parsed = urlparse(url)
    except ValueError:
        return "<invalid>"
    if parsed.username or parsed.password:
        host = parsed.hostname or ""
        if parsed.port:
            host = f"{host}:{parsed.port}"
        return parsed._replace(netloc=host).geturl()
    return url


def validate_clone_url(url: str) -> str:
    """Check a repository URL is something git can clone. Returns it stripped."""
    url = (url or "").strip()
    if not url:
        raise FetchFailed("Repository URL is required")
    if url.startswith("-"):
        raise FetchFailed("Invalid repository URL")
    # scp-like syntax: git@github.com:owner/repo.git
    if "://" not in url:
        if "@" in url and ":" in url:
            return url
        raise FetchFailed(f"Invalid repository URL: {redact_url(url)}")
    scheme = urlparse(url).scheme
    if scheme not in ALLOWED_SCHEMES:
        raise FetchFailed(f"Unsupported repository URL scheme: {scheme}")
    return url


class RepositoryFetcher(ABC):
    """Fetches a source repository into an existing, empty directory."""

    @abstractmethod
    async def fetch(self, repo_url: str, dest: Path, log: BuildLog) -> None:
        """Populate dest with the repository's default branch. Raises FetchFailed."""
        ...


class GitFetcher(RepositoryFetcher):
    """Shallow `git clone` of the default branch."""

    def __init__(self, timeout: float = CLONE_TIMEOUT):
        self.timeout = timeout

    async def fetch(self, repo_url: str, dest: Path, log: BuildLog) -> None:
        repo_url = validate_clone_url(repo_url)
        safe_url = redact_url(repo_url)
        logger.info(f"fetch_start repo={safe_url}")

        result = await run_command(
            ["git", "clone", "--depth", "1", "--", repo_url, str(dest)],
            cwd=Path(dest).parent,
            timeout=self.timeout,
        )
        # The clone URL may embed a token; never persist it in the log
        result.command = ["git", "clone", "--depth", "1", "--", safe_url, str(dest)]
        log.add(result)

        if result.timed_out:
            raise FetchFailed(f"Clone of {safe_url} timed out after {self.timeout}s")
        if result.exit_code != 0:
            detail = result.stderr.strip().splitlines()[-1:] or ["unknown error"]
            raise FetchFailed(f"Clone of {safe_url} failed: {detail[0]}")

        logger.info(f"fetch_done repo={safe_url}")
