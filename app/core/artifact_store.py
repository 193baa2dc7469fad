"""
Artifact storage for published sites.
Key-addressed object store (S3-compatible, e.g. Cloudflare R2) plus the
namespace operations the pipeline needs: recursive directory upload and
clearing everything under a project's prefix.

Keys are `<project-name>/<relative-path>` with `/` separators.
"""
import asyncio
import logging
import mimetypes
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from app.core.config import PlatformConfig
from app.core.errors import ArtifactStoreFailed, ObjectNotFound
from app.core.metrics import metrics

logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE = "application/octet-stream"

MISSING_KEY_CODES = {"NoSuchKey", "404", "NotFound"}


@dataclass
class StoredObject:
    """An object read back from the store."""
    key: str
    body: bytes
    content_type: Optional[str]


def guess_content_type(filename: str) -> str:
    """Content type from file extension, application/octet-stream if unknown."""
    content_type, _ = mimetypes.guess_type(filename)
    return content_type or DEFAULT_CONTENT_TYPE


class ObjectStore(ABC):
    """Abstract key-addressed object store."""

    @abstractmethod
    async def put(self, key: str, body: bytes, content_type: str) -> None:
        """Create or overwrite an object."""
        ...

    @abstractmethod
    async def list(self, prefix: str) -> list[str]:
        """All keys beginning with prefix. Empty list if none."""
        ...

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Delete an object. Deleting a missing key is not an error."""
        ...

    @abstractmethod
    async def get(self, key: str) -> StoredObject:
        """Read an object. Raises ObjectNotFound if absent."""
        ...


class InMemoryObjectStore(ObjectStore):
    """Dict-backed store for tests and local runs.

    `fault` is called with (operation, key) before every operation; raising
    from it simulates a store failure at that point.
    """

    def __init__(self, fault: Optional[Callable[[str, str], None]] = None):
        self._objects: dict[str, tuple[bytes, str]] = {}
        self.fault = fault
        self.calls: list[tuple[str, str]] = []

    def _record(self, operation: str, key: str) -> None:
        self.calls.append((operation, key))
        if self.fault is not None:
            self.fault(operation, key)

    async def put(self, key: str, body: bytes, content_type: str) -> None:
        self._record("put", key)
        self._objects[key] = (bytes(body), content_type)

    async def list(self, prefix: str) -> list[str]:
        self._record("list", prefix)
        return sorted(k for k in self._objects if k.startswith(prefix))

    async def delete(self, key: str) -> None:
        self._record("delete", key)
        self._objects.pop(key, None)

    async def get(self, key: str) -> StoredObject:
        self._record("get", key)
        if key not in self._objects:
            raise ObjectNotFound(key)
        body, content_type = self._objects[key]
        return StoredObject(key=key, body=body, content_type=content_type)

    def keys(self) -> set[str]:
        return set(self._objects)


class S3ObjectStore(ObjectStore):
    """S3-compatible object store (boto3), one bucket.

    The client is built on first use so a missing configuration fails the
    operation, not application startup.
    """

    def __init__(self, config: PlatformConfig):
        self._config = config
        self._client = None

    @property
    def bucket(self) -> Optional[str]:
        return self._config.store_bucket

    def _get_client(self):
        if self._client is None:
            self._config.require_store()
            self._client = boto3.client(
                "s3",
                endpoint_url=self._config.store_endpoint,
                aws_access_key_id=self._config.store_access_key_id,
                aws_secret_access_key=self._config.store_secret_access_key,
                region_name=self._config.store_region,
                config=BotoConfig(s3={"addressing_style": "path"}),
            )
        return self._client

    async def _call(self, operation: str, key: str, fn):
        try:
            return await asyncio.to_thread(fn)
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code", "")
            if operation == "get" and code in MISSING_KEY_CODES:
                raise ObjectNotFound(key)
            logger.warning(f"object_store_error op={operation} key={key} code={code}")
            raise ArtifactStoreFailed(f"{operation} {key} failed: {code or 'ClientError'}")
        except BotoCoreError as e:
            logger.warning(f"object_store_error op={operation} key={key} error={type(e).__name__}")
            raise ArtifactStoreFailed(f"{operation} {key} failed: {type(e).__name__}")

    async def put(self, key: str, body: bytes, content_type: str) -> None:
        client = self._get_client()
        await self._call(
            "put",
            key,
            lambda: client.put_object(
                Bucket=self.bucket, Key=key, Body=body, ContentType=content_type
            ),
        )

    async def list(self, prefix: str) -> list[str]:
        client = self._get_client()

        def list_all() -> list[str]:
            keys = []
            paginator = client.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix):
                keys.extend(item["Key"] for item in page.get("Contents", []))
            return keys

        return await self._call("list", prefix, list_all)

    async def delete(self, key: str) -> None:
        client = self._get_client()
        await self._call(
            "delete", key, lambda: client.delete_object(Bucket=self.bucket, Key=key)
        )

    async def get(self, key: str) -> StoredObject:
        client = self._get_client()

        def read() -> StoredObject:
            response = client.get_object(Bucket=self.bucket, Key=key)
            return StoredObject(
                key=key,
                body=response["Body"].read(),
                content_type=response.get("ContentType"),
            )

        return await self._call("get", key, read)


# =============================================================================
# Namespace Operations
# =============================================================================

def _iter_files(root: Path):
    """Depth-first walk yielding (path, relative key path) for regular files."""
    for entry in sorted(os.scandir(root), key=lambda e: e.name):
        path = Path(entry.path)
        if entry.is_dir(follow_symlinks=False):
            for child, rel in _iter_files(path):
                yield child, f"{entry.name}/{rel}"
        elif entry.is_file(follow_symlinks=False):
            yield path, entry.name


async def upload_directory(store: ObjectStore, local_dir: Path, namespace: str) -> list[str]:
    """
    Upload every file under local_dir to `<namespace>/<relative-path>`.

    Returns:
        Uploaded keys, in upload order

    Raises:
        ArtifactStoreFailed: If local_dir is missing or a put fails
    """
    local_dir = Path(local_dir)
    if not local_dir.is_dir():
        raise ArtifactStoreFailed(f"Build output directory not found: {local_dir.name}")

    uploaded = []
    for path, rel in _iter_files(local_dir):
        key = f"{namespace}/{rel}"
        try:
            body = path.read_bytes()
        except OSError as e:
            raise ArtifactStoreFailed(f"Cannot read {rel}: {type(e).__name__}")
        await store.put(key, body, guess_content_type(path.name))
        uploaded.append(key)

    metrics.inc("objects_uploaded_total", len(uploaded))
    logger.info(f"namespace_uploaded namespace={namespace} objects={len(uploaded)}")
    return uploaded


async def clear_namespace(store: ObjectStore, namespace: str) -> int:
    """Delete every object under `<namespace>/`. Returns count deleted."""
    keys = await store.list(f"{namespace}/")
    for key in keys:
        await store.delete(key)

    metrics.inc("objects_deleted_total", len(keys))
    logger.info(f"namespace_cleared namespace={namespace} objects={len(keys)}")
    return len(keys)
