#!/usr/bin/env python3
"""
pagehost: build frontend repositories and serve them by subdomain.

Routes:
- /health, /metrics, /all
- /api/deploy, /api/webhook, /api/projects/{name}/builds, /api/builds/{id}
- everything else: published artifacts for <project>.<BASE_URL>
"""
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.metrics import router as metrics_router
from app.api.projects import router as projects_router
from app.api.publish import router as publish_router
from app.core.config import get_platform_config
from app.core.logging import setup_logging
from app.core.request_logging import RequestLoggingMiddleware
from app.core.services import PlatformServices, build_services

VERSION = "1.0.0"


def create_app(services: Optional[PlatformServices] = None) -> FastAPI:
    """Create the application. Tests pass their own services."""
    if services is None:
        services = build_services(get_platform_config())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Workspaces left behind by a crashed process
        services.workspaces.cleanup_old_workspaces()
        yield
        await services.dispatcher.shutdown()

    app = FastAPI(
        title="pagehost",
        description="Build & publish frontend sites by subdomain",
        version=VERSION,
        lifespan=lifespan,
    )
    app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )
    # Added last so it runs first and sees every request
    app.add_middleware(RequestLoggingMiddleware)

    @app.get("/health")
    def health():
        """Health check endpoint."""
        return {"success": True}

    app.include_router(metrics_router)
    app.include_router(projects_router)
    # Catch-all, must stay last
    app.include_router(publish_router)

    return app


config = get_platform_config()
setup_logging(config.log_level)
app = create_app(build_services(config))


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=config.port)
