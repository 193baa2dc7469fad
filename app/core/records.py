"""
SQL-backed record store for projects and build history.
Logs only ids, numbers, statuses and redacted repository URLs - never build logs.
"""
import logging
import re
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, List

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from app.core.errors import ConfigurationError, RecordStoreFailed
from app.core.fetcher import redact_url
from app.db.database import create_session_factory, init_db
from app.db.models import Project as ProjectModel, Build as BuildModel

logger = logging.getLogger(__name__)

# Project names double as subdomain labels and artifact namespaces
PROJECT_NAME_PATTERN = re.compile(r"^[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?$")


class BuildStatus(str, Enum):
    """Build record status. Terminal states are written once."""
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"


TERMINAL_STATUSES = (BuildStatus.SUCCESS, BuildStatus.FAILED)


@dataclass
class Project:
    """Represents a registered project (in-memory representation)."""
    id: int
    name: str
    repo_url: str
    description: Optional[str] = None
    live_url: Optional[str] = None
    deploy_status: str = BuildStatus.PENDING.value
    created_at: Optional[datetime] = None


@dataclass
class Build:
    """Represents one build attempt (in-memory representation)."""
    id: int
    project_id: int
    build_number: int
    status: BuildStatus
    build_url: str
    build_log: str = ""
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


def validate_project_name(name: str) -> str:
    """Validate and return the normalized (lowercase) project name."""
    if not name:
        raise ValueError("Application name is required")

    name = name.strip().lower()
    if not PROJECT_NAME_PATTERN.match(name):
        raise ValueError(
            "Application name must be a valid subdomain label: letters, numbers "
            "and hyphens, not starting or ending with a hyphen (max 63 chars)"
        )
    return name


def _model_to_project(model: ProjectModel) -> Project:
    return Project(
        id=model.id,
        name=model.name,
        repo_url=model.repo_url,
        description=model.description,
        live_url=model.live_url,
        deploy_status=model.deploy_status,
        created_at=model.created_at,
    )


def _model_to_build(model: BuildModel) -> Build:
    return Build(
        id=model.id,
        project_id=model.project_id,
        build_number=model.build_number,
        status=BuildStatus(model.build_status),
        build_url=model.build_url,
        build_log=model.build_log or "",
        created_at=model.created_at,
        updated_at=model.updated_at,
    )


class BuildRecordStore:
    """Project and build records in a relational database.

    The engine is created on first use, so a missing DATABASE_URL fails the
    operation with ConfigurationError rather than application startup.
    """

    def __init__(
        self,
        database_url: Optional[str] = None,
        session_factory: Optional[sessionmaker] = None,
    ):
        self._database_url = database_url
        self._session_factory = session_factory
        self._initialized = False
        self._init_lock = threading.Lock()

    def _session(self):
        with self._init_lock:
            if self._session_factory is None:
                if not self._database_url:
                    raise ConfigurationError("DATABASE_URL not set")
                try:
                    self._session_factory = create_session_factory(self._database_url)
                except (SQLAlchemyError, ValueError) as e:
                    raise ConfigurationError(f"Invalid DATABASE_URL: {type(e).__name__}")
            if not self._initialized:
                try:
                    init_db(self._session_factory)
                except SQLAlchemyError as e:
                    raise RecordStoreFailed(f"Database initialization failed: {type(e).__name__}")
                self._initialized = True
        return self._session_factory()

    # =========================================================================
    # Projects
    # =========================================================================

    def list_projects(self) -> List[Project]:
        """All projects, ordered by id."""
        db = self._session()
        try:
            models = db.query(ProjectModel).order_by(ProjectModel.id).all()
            return [_model_to_project(m) for m in models]
        except SQLAlchemyError as e:
            raise RecordStoreFailed(f"list_projects failed: {type(e).__name__}")
        finally:
            db.close()

    def get_project(self, project_id: int) -> Optional[Project]:
        db = self._session()
        try:
            model = db.query(ProjectModel).filter(ProjectModel.id == project_id).first()
            return _model_to_project(model) if model else None
        except SQLAlchemyError as e:
            raise RecordStoreFailed(f"get_project failed: {type(e).__name__}")
        finally:
            db.close()

    def get_project_by_name(self, name: str) -> Optional[Project]:
        db = self._session()
        try:
            model = db.query(ProjectModel).filter(ProjectModel.name == name).first()
            return _model_to_project(model) if model else None
        except SQLAlchemyError as e:
            raise RecordStoreFailed(f"get_project_by_name failed: {type(e).__name__}")
        finally:
            db.close()

    def get_project_by_repo_url(self, repo_url: str) -> Optional[Project]:
        """Project whose stored repository URL equals repo_url exactly."""
        db = self._session()
        try:
            model = (
                db.query(ProjectModel)
                .filter(ProjectModel.repo_url == repo_url)
                .order_by(ProjectModel.id)
                .first()
            )
            return _model_to_project(model) if model else None
        except SQLAlchemyError as e:
            raise RecordStoreFailed(f"get_project_by_repo_url failed: {type(e).__name__}")
        finally:
            db.close()

    def register_project(
        self,
        name: str,
        repo_url: str,
        description: Optional[str] = None,
    ) -> Project:
        """
        Return the project called name, creating it if missing.
        An existing project's repository URL is replaced by repo_url.
        """
        db = self._session()
        try:
            model = db.query(ProjectModel).filter(ProjectModel.name == name).first()
            if model is None:
                model = ProjectModel(
                    name=name,
                    repo_url=repo_url,
                    description=description,
                    deploy_status=BuildStatus.PENDING.value,
                    created_at=datetime.now(timezone.utc),
                )
                db.add(model)
                logger.info(f"project_registered name={name}")
            elif model.repo_url != repo_url:
                # Push notifications follow the new URL from now on
                logger.warning(
                    f"project_repo_changed name={name} "
                    f"old={redact_url(model.repo_url)} new={redact_url(repo_url)}"
                )
                model.repo_url = repo_url
            db.commit()
            db.refresh(model)
            return _model_to_project(model)
        except SQLAlchemyError as e:
            db.rollback()
            raise RecordStoreFailed(f"register_project failed: {type(e).__name__}")
        finally:
            db.close()

    # =========================================================================
    # Builds
    # =========================================================================

    def create_build(self, project_id: int, build_url: str) -> Build:
        """Create a pending build with the project's next build number."""
        now = datetime.now(timezone.utc)
        db = self._session()
        try:
            last = (
                db.query(func.max(BuildModel.build_number))
                .filter(BuildModel.project_id == project_id)
                .scalar()
            )
            model = BuildModel(
                project_id=project_id,
                build_status=BuildStatus.PENDING.value,
                build_number=(last or 0) + 1,
                build_url=build_url,
                build_log="",
                created_at=now,
                updated_at=now,
            )
            db.add(model)
            db.commit()
            db.refresh(model)

            logger.info(
                f"build_created build_id={model.id} project_id={project_id} "
                f"build_number={model.build_number}"
            )
            return _model_to_build(model)
        except SQLAlchemyError as e:
            db.rollback()
            raise RecordStoreFailed(f"create_build failed: {type(e).__name__}")
        finally:
            db.close()

    def finish_build(self, build_id: int, status: BuildStatus, build_log: str) -> Build:
        """
        Move a pending build to its terminal status and mirror it on the project.

        Raises:
            RecordStoreFailed: If the build is missing or already terminal
        """
        if status not in TERMINAL_STATUSES:
            raise ValueError(f"Not a terminal status: {status}")

        db = self._session()
        try:
            model = db.query(BuildModel).filter(BuildModel.id == build_id).first()
            if model is None:
                raise RecordStoreFailed(f"Build {build_id} not found")
            if model.build_status != BuildStatus.PENDING.value:
                raise RecordStoreFailed(
                    f"Build {build_id} already {model.build_status}, refusing {status.value}"
                )

            model.build_status = status.value
            model.build_log = build_log
            model.updated_at = datetime.now(timezone.utc)

            project = model.project
            if project is not None:
                project.deploy_status = status.value
                if status == BuildStatus.SUCCESS:
                    project.live_url = model.build_url

            db.commit()
            db.refresh(model)

            logger.info(f"build_finished build_id={build_id} status={status.value}")
            return _model_to_build(model)
        except SQLAlchemyError as e:
            db.rollback()
            raise RecordStoreFailed(f"finish_build failed: {type(e).__name__}")
        finally:
            db.close()

    def get_build(self, build_id: int) -> Optional[Build]:
        db = self._session()
        try:
            model = db.query(BuildModel).filter(BuildModel.id == build_id).first()
            return _model_to_build(model) if model else None
        except SQLAlchemyError as e:
            raise RecordStoreFailed(f"get_build failed: {type(e).__name__}")
        finally:
            db.close()

    def list_builds(self, project_id: int, limit: int = 50) -> List[Build]:
        """Builds for a project, newest first."""
        db = self._session()
        try:
            models = (
                db.query(BuildModel)
                .filter(BuildModel.project_id == project_id)
                .order_by(BuildModel.build_number.desc())
                .limit(limit)
                .all()
            )
            return [_model_to_build(m) for m in models]
        except SQLAlchemyError as e:
            raise RecordStoreFailed(f"list_builds failed: {type(e).__name__}")
        finally:
            db.close()
