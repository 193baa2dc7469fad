"""
Error taxonomy for the build & publish pipeline.
Every pipeline-stage error is a PlatformError; the pipeline turns them into a
failed build record instead of letting them escape.
"""
from typing import Optional


class PlatformError(Exception):
    """Base error for platform operations."""
    pass


class ConfigurationError(PlatformError):
    """A required setting is missing or invalid."""
    pass


class FetchFailed(PlatformError):
    """Source repository unreachable or clone failed."""
    pass


class ManifestInvalid(PlatformError):
    """package.json missing or unparseable."""
    pass


class BuildCommandFailed(PlatformError):
    """Install or build command exited nonzero or could not be spawned."""

    def __init__(self, message: str, result=None):
        super().__init__(message)
        # CommandResult from app.core.build_runner
        self.result = result

    @property
    def stdout(self) -> str:
        return self.result.stdout if self.result else ""

    @property
    def stderr(self) -> str:
        return self.result.stderr if self.result else ""

    @property
    def exit_code(self) -> Optional[int]:
        return self.result.exit_code if self.result else None


class BuildTimedOut(BuildCommandFailed):
    """Command exceeded its deadline and was killed."""
    pass


class ArtifactStoreFailed(PlatformError):
    """Object store operation failed."""
    pass


class ObjectNotFound(ArtifactStoreFailed):
    """Object key does not exist in the store."""
    pass


class RecordStoreFailed(PlatformError):
    """Project/build record read or write failed."""
    pass


class NotFound(PlatformError):
    """No published artifact for the requested host and path."""
    pass


class ProjectUnregistered(PlatformError):
    """Push notification for a repository with no registered project."""
    pass


class BuildInProgress(PlatformError):
    """A build is already in flight for this project."""
    pass
