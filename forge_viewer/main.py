"""
FastAPI application entry point.

This module creates and configures the FastAPI application using an
application factory (create_app), so tests can build apps with their
own settings.

For local development:
    uvicorn forge_viewer.main:app --reload

For production:
    gunicorn forge_viewer.main:app -w 4 -k uvicorn.workers.UvicornWorker
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import __version__
from .api.dependencies import build_forge_service
from .api.routes import auth, health, models
from .config.settings import Settings, get_settings
from .core.errors import AuthenticationError, RemoteServiceError

# Configure logging
logging.basicConfig(
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    level=logging.INFO,
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Startup builds the ForgeService (and with it the token cache) once
    for the whole process. Shutdown closes the HTTP connection pool.
    """
    settings: Settings = app.state.settings

    logger.info(
        "Forge Viewer Service starting",
        extra={
            "version": __version__,
            "bucket": settings.bucket_key,
            "mock_mode": settings.aps_mock_mode,
        }
    )

    missing_fields = settings.validate_required_fields()
    if missing_fields:
        logger.error(
            "Missing required configuration",
            extra={"missing_fields": missing_fields}
        )
        # Routes report 503 until the service is configured
        app.state.forge_service = None
    else:
        app.state.forge_service = build_forge_service(settings)

    yield

    # Shutdown
    if app.state.forge_service is not None:
        await app.state.forge_service.aclose()
    logger.info("Forge Viewer Service shutting down")


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Application factory.

    Called once at startup in production, or per test with explicit
    settings.
    """
    settings = settings or get_settings()

    app = FastAPI(
        title=settings.api_title,
        version=__version__,
        description="""
        Backend for a browser-based design model viewer.

        ## Workflow

        1. **Upload**: `POST /api/models` with a `model-file` (and, for zip
           archives, `model-zip-entrypoint`). The file is stored and a
           translation job is started.
        2. **Wait**: poll `GET /api/models/{urn}/status` until `success`.
        3. **View**: fetch a viewer token from `GET /api/auth/token` and
           load the model by its URN.
        """,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.forge_service = None

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include routers
    app.include_router(
        health.router,
        prefix="/health",
        tags=["Health"],
    )

    app.include_router(
        auth.router,
        prefix="/api/auth",
        tags=["Auth"],
    )

    app.include_router(
        models.router,
        prefix="/api/models",
        tags=["Models"],
    )

    @app.get("/", include_in_schema=False)
    async def root():
        """Root endpoint - service banner."""
        return {
            "message": settings.api_title,
            "version": __version__,
            "docs": "/docs",
            "health": "/health",
        }

    @app.exception_handler(RemoteServiceError)
    async def remote_service_exception_handler(request: Request, exc: RemoteServiceError):
        """
        APS failures become 502: the request was fine, the upstream was not.

        The upstream status is passed along so the frontend can tell a
        missing object from an outage.
        """
        logger.warning(
            "APS call failed",
            extra={
                "path": request.url.path,
                "method": request.method,
                "remote_status": exc.status_code,
                "authentication": isinstance(exc, AuthenticationError),
                "error": exc.message,
            }
        )

        return JSONResponse(
            status_code=status.HTTP_502_BAD_GATEWAY,
            content={
                "detail": exc.message,
                "remote_status": exc.status_code,
            }
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """
        Catch-all exception handler.

        Log the full error server-side, return a generic message.
        """
        logger.error(
            "Unhandled exception",
            extra={
                "path": request.url.path,
                "method": request.method,
                "error": str(exc),
            },
            exc_info=exc,
        )

        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"detail": "Internal server error."}
        )

    logger.info(
        "FastAPI application created",
        extra={"title": settings.api_title, "version": __version__}
    )

    return app


# This is what uvicorn/gunicorn will import
app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()

    uvicorn.run(
        "forge_viewer.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level=settings.log_level.lower(),
    )
