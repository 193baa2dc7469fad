"""
Pydantic schemas for the platform API requests and responses.
"""
from datetime import datetime
from typing import Optional, List

from pydantic import BaseModel, ConfigDict, Field

from app.core.records import Build, Project
from app.db.models import REPO_URL_MAX_LENGTH


# =============================================================================
# Request Schemas
# =============================================================================

class WebhookRepository(BaseModel):
    """The part of a push event we use; other fields are ignored."""
    clone_url: str = Field(..., min_length=1, max_length=REPO_URL_MAX_LENGTH)


class WebhookPayload(BaseModel):
    """Request body for POST /api/webhook (GitHub push event shape)."""
    repository: WebhookRepository


class DeployRequest(BaseModel):
    """Request body for POST /api/deploy."""
    model_config = ConfigDict(populate_by_name=True)

    repository_url: str = Field(..., alias="repositoryUrl", min_length=1, max_length=REPO_URL_MAX_LENGTH)
    application_name: str = Field(..., alias="applicationName", min_length=1, max_length=63)


# =============================================================================
# Response Schemas
# =============================================================================

class ProjectOut(BaseModel):
    """A registered project."""
    id: int
    name: str
    repo_url: str
    description: Optional[str] = None
    live_url: Optional[str] = None
    deploy_status: str
    created_at: Optional[datetime] = None

    @classmethod
    def from_project(cls, project: Project) -> "ProjectOut":
        return cls(
            id=project.id,
            name=project.name,
            repo_url=project.repo_url,
            description=project.description,
            live_url=project.live_url,
            deploy_status=project.deploy_status,
            created_at=project.created_at,
        )


class BuildOut(BaseModel):
    """One build attempt; build_log only on the single-build endpoint."""
    id: int
    project_id: int
    build_number: int
    build_status: str
    build_url: str
    build_log: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_build(cls, build: Build, include_log: bool = False) -> "BuildOut":
        return cls(
            id=build.id,
            project_id=build.project_id,
            build_number=build.build_number,
            build_status=build.status.value,
            build_url=build.build_url,
            build_log=build.build_log if include_log else None,
            created_at=build.created_at,
            updated_at=build.updated_at,
        )


class ProjectListResponse(BaseModel):
    """Response for GET /all."""
    success: bool = True
    projects: List[ProjectOut] = Field(default_factory=list)


class BuildListResponse(BaseModel):
    """Response for GET /api/projects/{name}/builds."""
    success: bool = True
    project: ProjectOut
    builds: List[BuildOut] = Field(default_factory=list)


class BuildResponse(BaseModel):
    """Response for GET /api/builds/{build_id}."""
    success: bool = True
    build: BuildOut


class DeployResponse(BaseModel):
    """Response for POST /api/deploy."""
    success: bool
    message: str
    url: Optional[str] = None
    error: Optional[str] = None
    build_id: Optional[int] = None
    build_number: Optional[int] = None
