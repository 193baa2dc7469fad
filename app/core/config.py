"""
Platform configuration from environment variables.
Store and database settings are optional here; operations that need them
raise ConfigurationError when they are missing.
"""
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from app.core.errors import ConfigurationError

PROJECT_ROOT = Path(__file__).parent.parent.parent


@dataclass(frozen=True)
class PlatformConfig:
    """Platform configuration (immutable)."""
    # Object store (S3-compatible, e.g. Cloudflare R2)
    store_endpoint: Optional[str] = None
    store_access_key_id: Optional[str] = None  # Never logged
    store_secret_access_key: Optional[str] = None  # Never logged
    store_bucket: Optional[str] = None
    store_region: str = "auto"
    # Publishing
    base_url: str = ""  # Suffix appended to the project name, e.g. ".example.com"
    apex_domain: Optional[str] = None
    # Records
    database_url: Optional[str] = None
    # Builds
    workspaces_dir: Path = PROJECT_ROOT / "tmp"
    command_timeout_s: int = 300
    clone_timeout_s: int = 120
    max_concurrent_builds: int = 2
    # Server
    log_level: str = "INFO"
    port: int = 3001

    @property
    def publish_apex_domain(self) -> Optional[str]:
        """Host suffix stripped by the publish resolver."""
        if self.apex_domain:
            return self.apex_domain
        if self.base_url:
            return self.base_url.split(":", 1)[0] or None
        return None

    def project_url(self, project_name: str) -> str:
        """Public URL of a project's published site."""
        return f"http://{project_name}{self.base_url}"

    def require_store(self) -> None:
        """Raise ConfigurationError unless the object store is configured."""
        missing = [
            name for name, value in (
                ("R2_ENDPOINT", self.store_endpoint),
                ("R2_ACCESS_KEY_ID", self.store_access_key_id),
                ("R2_SECRET_ACCESS_KEY", self.store_secret_access_key),
                ("R2_BUCKET_NAME", self.store_bucket),
            )
            if not value
        ]
        if missing:
            raise ConfigurationError(f"Object store not configured: missing {', '.join(missing)}")


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def get_platform_config() -> PlatformConfig:
    """Load platform configuration from environment."""
    workspaces_dir = os.getenv("WORKSPACES_DIR")

    return PlatformConfig(
        store_endpoint=os.getenv("R2_ENDPOINT") or None,
        store_access_key_id=os.getenv("R2_ACCESS_KEY_ID") or None,
        store_secret_access_key=os.getenv("R2_SECRET_ACCESS_KEY") or None,
        store_bucket=os.getenv("R2_BUCKET_NAME") or None,
        store_region=os.getenv("R2_REGION", "auto"),
        base_url=os.getenv("BASE_URL", ""),
        apex_domain=os.getenv("PUBLISH_APEX_DOMAIN") or None,
        database_url=os.getenv("DATABASE_URL") or None,
        workspaces_dir=Path(workspaces_dir) if workspaces_dir else PROJECT_ROOT / "tmp",
        command_timeout_s=_int_env("BUILD_COMMAND_TIMEOUT_S", 300),
        clone_timeout_s=_int_env("GIT_CLONE_TIMEOUT_S", 120),
        max_concurrent_builds=max(1, _int_env("MAX_CONCURRENT_BUILDS", 2)),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        port=_int_env("PORT", 3001),
    )
