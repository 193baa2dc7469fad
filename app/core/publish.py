"""
Publish Resolver - maps an inbound content request to an artifact key.

    host "myapp.example.com", path "/"      -> "myapp/index.html"
    host "myapp.example.com", path "/about" -> "myapp/about"

Only "/" is rewritten to "/index.html"; "/docs/" is looked up verbatim and
does not fall back to "/docs/index.html".
"""
import logging
from dataclasses import dataclass
from typing import Optional

from app.core.artifact_store import ObjectStore
from app.core.errors import NotFound, ObjectNotFound
from app.core.metrics import metrics

logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE = "text/html"
INDEX_DOCUMENT = "/index.html"


@dataclass
class PublishedArtifact:
    """A published file ready to be served."""
    key: str
    body: bytes
    content_type: str


def namespace_for_host(host: str, apex_domain: Optional[str] = None) -> str:
    """Project namespace from a request host (port ignored)."""
    host = (host or "").strip().lower()
    if host.startswith("["):
        # IPv6 literal, never a project subdomain
        return ""
    host = host.split(":", 1)[0]

    if apex_domain:
        apex = apex_domain.lower()
        if not apex.startswith("."):
            apex = f".{apex}"
        if host.endswith(apex) and len(host) > len(apex):
            return host[: -len(apex)]

    return host.split(".", 1)[0]


def resolve_key(host: str, path: str, apex_domain: Optional[str] = None) -> tuple[str, str]:
    """Return (namespace, key) for a request."""
    namespace = namespace_for_host(host, apex_domain)
    if not path:
        path = "/"
    if path == "/":
        path = INDEX_DOCUMENT
    elif not path.startswith("/"):
        path = f"/{path}"
    return namespace, f"{namespace}{path}"


class PublishResolver:
    """Serves published artifacts by subdomain."""

    def __init__(self, store: ObjectStore, apex_domain: Optional[str] = None):
        self.store = store
        self.apex_domain = apex_domain

    async def fetch(self, host: str, path: str) -> PublishedArtifact:
        """
        Fetch the artifact for host + path.

        Raises:
            NotFound: If no namespace can be derived or the key is absent
        """
        namespace, key = resolve_key(host, path, self.apex_domain)
        if not namespace:
            metrics.inc("publish_misses_total")
            raise NotFound(key)

        try:
            obj = await self.store.get(key)
        except ObjectNotFound:
            metrics.inc("publish_misses_total")
            raise NotFound(key)

        metrics.inc("publish_hits_total")
        return PublishedArtifact(
            key=key,
            body=obj.body,
            content_type=obj.content_type or DEFAULT_CONTENT_TYPE,
        )
