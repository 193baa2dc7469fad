"""
Build Pipeline - fetch, detect, build and publish one project.

Stages run strictly in order and the first failure ends the attempt:

    1. create build record (pending)
    2. fetch repository into a fresh workspace
    3. read package.json, detect toolchain
    4. install + build
    5. delete every object under <project-name>/
    6. upload the build output into <project-name>/
    7. remove workspace
    8. mark build record success

Any failure marks the record failed with the captured log; nothing is retried
and nothing escapes to the caller except BuildInProgress.

Old artifacts are deleted before new ones are uploaded. A store failure (or a
crash) between stages 5 and 6 leaves the project's namespace empty until the
next successful build.
"""
import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from app.core.artifact_store import ObjectStore, clear_namespace, upload_directory
from app.core.build_runner import BuildExecutor, BuildLog, WorkspaceManager
from app.core.config import PlatformConfig
from app.core.detector import detect_toolchain, read_manifest, tree_lookup
from app.core.errors import (
    ArtifactStoreFailed,
    BuildCommandFailed,
    BuildInProgress,
    PlatformError,
)
from app.core.fetcher import RepositoryFetcher
from app.core.metrics import metrics
from app.core.records import Build, BuildRecordStore, BuildStatus, Project
from app.core.request_context import set_build_id

logger = logging.getLogger(__name__)

STDERR_TAIL_CHARS = 2000


class ProjectLocks:
    """In-flight project ids. One build per project at a time.

    Check-and-set never awaits, so it is atomic on the event loop.
    """

    def __init__(self):
        self._in_flight: set[int] = set()

    def is_locked(self, project_id: int) -> bool:
        return project_id in self._in_flight

    def try_acquire(self, project_id: int) -> bool:
        if project_id in self._in_flight:
            return False
        self._in_flight.add(project_id)
        return True

    def release(self, project_id: int) -> None:
        self._in_flight.discard(project_id)


@dataclass
class BuildOutcome:
    """Result of one pipeline run."""
    project: Project
    build: Optional[Build]
    success: bool
    url: str
    error: Optional[str] = None
    stage: Optional[str] = None
    uploaded: int = 0


def describe_error(error: Exception) -> str:
    """Diagnostic text for a failed stage."""
    if isinstance(error, BuildCommandFailed):
        tail = (error.stderr or error.stdout or "").strip()[-STDERR_TAIL_CHARS:]
        return f"{error}\n{tail}" if tail else str(error)
    if isinstance(error, PlatformError):
        return str(error)
    return f"Unexpected error: {type(error).__name__}: {error}"


class BuildPipeline:
    """Orchestrates one build attempt per call to run()."""

    def __init__(
        self,
        records: BuildRecordStore,
        fetcher: RepositoryFetcher,
        executor: BuildExecutor,
        store: ObjectStore,
        workspaces: WorkspaceManager,
        config: PlatformConfig,
        locks: Optional[ProjectLocks] = None,
    ):
        self.records = records
        self.fetcher = fetcher
        self.executor = executor
        self.store = store
        self.workspaces = workspaces
        self.config = config
        self.locks = locks or ProjectLocks()

    def is_building(self, project_id: int) -> bool:
        return self.locks.is_locked(project_id)

    async def run(self, project: Project) -> BuildOutcome:
        """
        Build and publish a project.

        Raises:
            BuildInProgress: If a build for this project is already running
        """
        if not self.locks.try_acquire(project.id):
            metrics.inc("builds_rejected_total")
            logger.warning(f"build_rejected project={project.name} reason=in_progress")
            raise BuildInProgress(f"A build is already running for {project.name}")

        try:
            return await self._run_locked(project)
        finally:
            self.locks.release(project.id)
            set_build_id(None)

    async def _run_locked(self, project: Project) -> BuildOutcome:
        metrics.inc("builds_started_total")
        url = self.config.project_url(project.name)
        log = BuildLog(project_name=project.name)

        log.enter("record")
        try:
            build = await asyncio.to_thread(self.records.create_build, project.id, url)
        except PlatformError as e:
            metrics.inc("builds_failed_total")
            logger.error(f"build_record_failed project={project.name} error={e}")
            return BuildOutcome(
                project=project, build=None, success=False, url=url,
                error=str(e), stage=log.stage,
            )

        set_build_id(build.id)
        logger.info(
            f"build_started build_id={build.id} project={project.name} "
            f"build_number={build.build_number}"
        )

        try:
            uploaded = await self._execute_stages(project, log)
        except asyncio.CancelledError:
            await self._finish(project, build, BuildStatus.FAILED, log, "Build cancelled")
            raise
        except Exception as e:
            error = describe_error(e)
            if not isinstance(e, PlatformError):
                logger.exception(f"build_unexpected_error build_id={build.id} stage={log.stage}")
            logger.error(
                f"build_stage_failed build_id={build.id} project={project.name} "
                f"stage={log.stage} error_type={type(e).__name__} error={error}"
            )
            return await self._finish(project, build, BuildStatus.FAILED, log, error)

        outcome = await self._finish(project, build, BuildStatus.SUCCESS, log)
        outcome.uploaded = uploaded
        return outcome

    async def _execute_stages(self, project: Project, log: BuildLog) -> int:
        """Stages 2-7. Returns the number of uploaded objects."""
        log.enter("fetch")
        workspace = self.workspaces.create_workspace(project.name)
        try:
            await self.fetcher.fetch(project.repo_url, workspace, log)

            log.enter("detect")
            manifest = read_manifest(workspace)
            toolchain = detect_toolchain(manifest, tree_lookup(workspace))
            log.note(f"toolchain={toolchain.name} output_dir={toolchain.output_dir}")
            logger.info(f"toolchain_detected project={project.name} toolchain={toolchain.name}")

            log.enter("build")
            await self.executor.install_and_build(toolchain, workspace, log)

            output_dir = workspace / toolchain.output_dir
            if not output_dir.is_dir():
                raise ArtifactStoreFailed(
                    f"Build output directory {toolchain.output_dir!r} not found"
                )

            return await self._replace_artifacts(project.name, output_dir, log)
        finally:
            # Stage 7 runs on the failure path too
            self.workspaces.cleanup_workspace(workspace)
            log.note("workspace removed")

    async def _replace_artifacts(self, namespace: str, output_dir: Path, log: BuildLog) -> int:
        log.enter("delete_artifacts")
        deleted = await clear_namespace(self.store, namespace)
        log.note(f"deleted {deleted} objects under {namespace}/")

        log.enter("upload_artifacts")
        uploaded = await upload_directory(self.store, output_dir, namespace)
        log.note(f"uploaded {len(uploaded)} objects under {namespace}/")
        return len(uploaded)

    async def _finish(
        self,
        project: Project,
        build: Build,
        status: BuildStatus,
        log: BuildLog,
        error: Optional[str] = None,
    ) -> BuildOutcome:
        """Stage 8 (or the failure path): write the terminal status once."""
        stage = log.stage if error else None
        build_log = log.render(error)
        success = status == BuildStatus.SUCCESS

        try:
            build = await asyncio.to_thread(
                self.records.finish_build, build.id, status, build_log
            )
        except PlatformError as e:
            logger.error(f"build_finalize_failed build_id={build.id} status={status.value} error={e}")
            metrics.inc("builds_failed_total")
            return BuildOutcome(
                project=project, build=build, success=False, url=build.build_url,
                error=error or str(e), stage=stage or "finalize",
            )

        if success:
            metrics.inc("builds_succeeded_total")
            logger.info(f"build_succeeded build_id={build.id} project={project.name}")
        else:
            metrics.inc("builds_failed_total")
            logger.info(f"build_failed build_id={build.id} project={project.name} stage={stage}")

        return BuildOutcome(
            project=project, build=build, success=success, url=build.build_url,
            error=error, stage=stage,
        )
