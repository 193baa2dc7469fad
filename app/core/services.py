"""
Wiring of platform components.
Every component gets its collaborators through its constructor; the app holds
one PlatformServices on app.state and routes reach it via get_services().
"""
from dataclasses import dataclass
from typing import Optional

from fastapi import Request

from app.core.artifact_store import ObjectStore, S3ObjectStore
from app.core.build_runner import BuildExecutor, WorkspaceManager
from app.core.config import PlatformConfig, get_platform_config
from app.core.dispatcher import BuildDispatcher
from app.core.fetcher import GitFetcher, RepositoryFetcher
from app.core.pipeline import BuildPipeline
from app.core.publish import PublishResolver
from app.core.records import BuildRecordStore
from app.core.webhook import WebhookAdapter


@dataclass
class PlatformServices:
    """Everything the HTTP layer talks to."""
    config: PlatformConfig
    records: BuildRecordStore
    store: ObjectStore
    workspaces: WorkspaceManager
    pipeline: BuildPipeline
    dispatcher: BuildDispatcher
    webhook: WebhookAdapter
    resolver: PublishResolver


def build_services(
    config: Optional[PlatformConfig] = None,
    records: Optional[BuildRecordStore] = None,
    store: Optional[ObjectStore] = None,
    fetcher: Optional[RepositoryFetcher] = None,
    executor: Optional[BuildExecutor] = None,
) -> PlatformServices:
    """Build the component graph; omitted collaborators come from config."""
    config = config or get_platform_config()
    records = records or BuildRecordStore(database_url=config.database_url)
    store = store or S3ObjectStore(config)
    fetcher = fetcher or GitFetcher(timeout=config.clone_timeout_s)
    executor = executor or BuildExecutor(timeout=config.command_timeout_s)
    workspaces = WorkspaceManager(config.workspaces_dir)

    pipeline = BuildPipeline(
        records=records,
        fetcher=fetcher,
        executor=executor,
        store=store,
        workspaces=workspaces,
        config=config,
    )
    dispatcher = BuildDispatcher(max_concurrent=config.max_concurrent_builds)

    return PlatformServices(
        config=config,
        records=records,
        store=store,
        workspaces=workspaces,
        pipeline=pipeline,
        dispatcher=dispatcher,
        webhook=WebhookAdapter(records=records, pipeline=pipeline, dispatcher=dispatcher),
        resolver=PublishResolver(store, apex_domain=config.publish_apex_domain),
    )


def get_services(request: Request) -> PlatformServices:
    """FastAPI dependency returning the app's services."""
    return request.app.state.services
