"""
Platform API routes: project list, build history, manual deploy and push webhooks.

Endpoints:
- GET /all - List registered projects
- GET /api/projects/{name}/builds - Build history of a project
- GET /api/builds/{build_id} - One build with its log
- POST /api/deploy - Register (if needed), build and publish synchronously
- POST /api/webhook - Push notification, builds the matching project in the background

/api/deploy and /api/webhook always answer 200; failures are in the body.
"""
import asyncio
import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import ValidationError

from app.core.errors import BuildInProgress, FetchFailed, PlatformError
from app.core.fetcher import validate_clone_url
from app.core.records import validate_project_name
from app.core.services import PlatformServices, get_services
from app.schemas.platform import (
    BuildListResponse,
    BuildOut,
    BuildResponse,
    DeployRequest,
    DeployResponse,
    ProjectListResponse,
    ProjectOut,
    WebhookPayload,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["projects"])


def _first_error(e: ValidationError) -> str:
    errors = e.errors()
    if not errors:
        return "Invalid request body"
    first = errors[0]
    location = ".".join(str(part) for part in first.get("loc", ()))
    return f"{location}: {first.get('msg', 'invalid')}" if location else first.get("msg", "invalid")


async def _read_json(request: Request):
    try:
        return await request.json()
    except ValueError:
        return None


@router.get("/all", response_model=ProjectListResponse)
async def list_projects(services: PlatformServices = Depends(get_services)):
    """List all registered projects."""
    try:
        projects = await asyncio.to_thread(services.records.list_projects)
    except PlatformError as e:
        logger.error(f"list_projects_failed error_type={type(e).__name__}")
        raise HTTPException(status_code=503, detail=str(e))
    return ProjectListResponse(projects=[ProjectOut.from_project(p) for p in projects])


@router.get("/api/projects/{name}/builds", response_model=BuildListResponse)
async def list_project_builds(
    name: str,
    services: PlatformServices = Depends(get_services),
):
    """Build history of a project, newest first."""
    try:
        project = await asyncio.to_thread(services.records.get_project_by_name, name.lower())
        if project is None:
            raise HTTPException(status_code=404, detail="Project not found")
        builds = await asyncio.to_thread(services.records.list_builds, project.id)
    except PlatformError as e:
        raise HTTPException(status_code=503, detail=str(e))

    return BuildListResponse(
        project=ProjectOut.from_project(project),
        builds=[BuildOut.from_build(b) for b in builds],
    )


@router.get("/api/builds/{build_id}", response_model=BuildResponse)
async def get_build(
    build_id: int,
    services: PlatformServices = Depends(get_services),
):
    """One build, including its log. Poll this to follow a webhook-triggered build."""
    try:
        build = await asyncio.to_thread(services.records.get_build, build_id)
    except PlatformError as e:
        raise HTTPException(status_code=503, detail=str(e))
    if build is None:
        raise HTTPException(status_code=404, detail="Build not found")
    return BuildResponse(build=BuildOut.from_build(build, include_log=True))


@router.post("/api/deploy", response_model=DeployResponse, response_model_exclude_none=True)
async def deploy(
    request: Request,
    services: PlatformServices = Depends(get_services),
) -> DeployResponse:
    """
    Build and publish a repository under an application name.

    Blocks until the build finishes. The application name becomes the
    project's subdomain and artifact namespace; the project is registered
    on first deploy. Every deploy creates a build record.
    """
    body = await _read_json(request)
    try:
        payload = DeployRequest.model_validate(body if body is not None else {})
        name = validate_project_name(payload.application_name)
        repo_url = validate_clone_url(payload.repository_url)
    except ValidationError as e:
        return DeployResponse(success=False, message="Deployment failed", error=_first_error(e))
    except (ValueError, FetchFailed) as e:
        return DeployResponse(success=False, message="Deployment failed", error=str(e))

    try:
        project = await asyncio.to_thread(services.records.register_project, name, repo_url)
        outcome = await services.pipeline.run(project)
    except BuildInProgress as e:
        return DeployResponse(success=False, message="Build already in progress", error=str(e))
    except PlatformError as e:
        logger.error(f"deploy_failed project={name} error_type={type(e).__name__}")
        return DeployResponse(success=False, message="Deployment failed", error=str(e))

    build_id = outcome.build.id if outcome.build else None
    build_number = outcome.build.build_number if outcome.build else None

    if outcome.success:
        return DeployResponse(
            success=True,
            message="Deployment successful",
            url=outcome.url,
            build_id=build_id,
            build_number=build_number,
        )

    return DeployResponse(
        success=False,
        message="Deployment failed",
        error=outcome.error,
        build_id=build_id,
        build_number=build_number,
    )


@router.post("/api/webhook")
async def webhook(
    request: Request,
    services: PlatformServices = Depends(get_services),
) -> dict:
    """
    Push notification from the source host.

    Builds the project whose repository URL equals repository.clone_url.
    Returns as soon as the build is scheduled.
    """
    body = await _read_json(request)
    try:
        payload = WebhookPayload.model_validate(body if body is not None else {})
    except ValidationError as e:
        return {"success": False, "message": "Invalid payload", "error": _first_error(e)}

    try:
        return await services.webhook.handle(payload.repository.clone_url)
    except PlatformError as e:
        logger.error(f"webhook_failed error_type={type(e).__name__}")
        return {"success": False, "message": "Webhook handling failed", "error": str(e)}
