"""
Serving of published sites by subdomain.
Catch-all route: include this router after every other router.
"""
import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import PlainTextResponse, Response

from app.core.errors import NotFound, PlatformError
from app.core.services import PlatformServices, get_services

logger = logging.getLogger(__name__)

router = APIRouter(tags=["publish"])


@router.get("/{full_path:path}", include_in_schema=False)
async def serve_published(
    request: Request,
    full_path: str,
    services: PlatformServices = Depends(get_services),
) -> Response:
    """Serve `<subdomain>/<path>` from the artifact store, or 404."""
    host = request.headers.get("host", "")
    try:
        artifact = await services.resolver.fetch(host, request.url.path)
    except NotFound:
        return PlainTextResponse("Not Found", status_code=404)
    except PlatformError as e:
        logger.warning(f"publish_failed host={host} error_type={type(e).__name__}")
        return PlainTextResponse("Not Found", status_code=404)

    return Response(content=artifact.body, media_type=artifact.content_type)
