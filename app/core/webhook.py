"""
Webhook Adapter - push notifications to builds.

The repository clone URL from the payload must equal a project's stored
repo_url exactly (no URL normalization). Matching builds run detached on the
dispatcher; the response only says the build started, the outcome is in the
build record.
"""
import asyncio
import logging
from typing import Any, Optional

from app.core.dispatcher import BuildDispatcher
from app.core.errors import BuildInProgress, ProjectUnregistered
from app.core.metrics import metrics
from app.core.pipeline import BuildPipeline
from app.core.records import BuildRecordStore, Project

logger = logging.getLogger(__name__)

MESSAGE_UNREGISTERED = "Project not registered"
MESSAGE_IN_PROGRESS = "Build already in progress"
MESSAGE_STARTED = "Build started"


class WebhookAdapter:
    """Maps push events to registered projects and triggers builds."""

    def __init__(
        self,
        records: BuildRecordStore,
        pipeline: BuildPipeline,
        dispatcher: BuildDispatcher,
    ):
        self.records = records
        self.pipeline = pipeline
        self.dispatcher = dispatcher
        self.last_task: Optional[asyncio.Task] = None

    async def find_project(self, clone_url: str) -> Project:
        """Raises ProjectUnregistered when no project has this repo_url."""
        project = await asyncio.to_thread(self.records.get_project_by_repo_url, clone_url)
        if project is None:
            raise ProjectUnregistered(MESSAGE_UNREGISTERED)
        return project

    async def handle(self, clone_url: str) -> dict[str, Any]:
        """Handle one push event. Returns the response body."""
        metrics.inc("webhooks_received_total")

        try:
            project = await self.find_project(clone_url)
        except ProjectUnregistered:
            metrics.inc("webhooks_unregistered_total")
            logger.info("webhook_ignored reason=unregistered")
            return {"success": False, "message": MESSAGE_UNREGISTERED}

        if self.pipeline.is_building(project.id):
            metrics.inc("builds_rejected_total")
            logger.info(f"webhook_ignored project={project.name} reason=in_progress")
            return {"success": False, "message": MESSAGE_IN_PROGRESS}

        self.last_task = self.dispatcher.submit(
            lambda: self._run(project), name=f"build-{project.name}"
        )
        logger.info(f"webhook_build_submitted project={project.name}")
        return {"success": True, "message": MESSAGE_STARTED, "project": project.name}

    async def _run(self, project: Project):
        try:
            return await self.pipeline.run(project)
        except BuildInProgress:
            # Another trigger won the race between the check above and this task starting
            logger.info(f"webhook_build_skipped project={project.name} reason=in_progress")
            return None
