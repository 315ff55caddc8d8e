"""
FastAPI application factory for the cvdb gateway.

This module creates the main FastAPI app with:
- CORS configuration for the frontend
- Server lifecycle management (registry, platform, connection cache)
- Mapping of cvdb errors to HTTP responses
- Entity, session and tenant API routes
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from dbaas.cvdb_server import __version__
from dbaas.cvdb_server.config import ServerConfig
from dbaas.cvdb_server.errors import (
    CvDbError,
    ExternalProvisioningError,
    NotAuthenticatedError,
    NotFoundError,
    NotReadyError,
    SchemaMigrationError,
    StorageError,
)
from dbaas.cvdb_server.server import Server

from .config import Settings
from .routes import router


def status_code_for(error: CvDbError) -> int:
    """HTTP status for a cvdb error."""
    if isinstance(error, NotFoundError):
        return 404
    if isinstance(error, NotReadyError):
        return 409
    if isinstance(error, NotAuthenticatedError):
        return 401
    if isinstance(error, (ExternalProvisioningError, SchemaMigrationError, StorageError)):
        return 502
    return 400


async def handle_cvdb_error(request: Request, exc: CvDbError) -> JSONResponse:
    return JSONResponse(
        status_code=status_code_for(exc),
        content={"error": exc.message, "error_code": exc.code, "details": exc.details},
    )


async def handle_value_error(request: Request, exc: ValueError) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content={"error": str(exc), "error_code": "INVALID_REQUEST", "details": {}},
    )


def create_app(server: Server | None = None, config: ServerConfig | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        server: Optional pre-built server (tests inject one)
        config: Optional server configuration (loaded from env if not provided)
    """
    settings = Settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Manage Server lifecycle."""
        instance = server or Server(config)
        await instance.start()
        app.state.server = instance
        app.state.settings = settings

        yield

        await instance.stop()

    app = FastAPI(
        title="cvdb Gateway",
        description=(
            "Career-history storage. Anonymous sessions use a local store; "
            "signed-in principals use a dedicated tenant database."
        ),
        version=__version__,
        lifespan=lifespan,
    )

    # CORS for frontend
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(CvDbError, handle_cvdb_error)
    app.add_exception_handler(ValueError, handle_value_error)

    # API routes
    app.include_router(router, prefix="/api/v1")

    # Health endpoint at root
    @app.get("/health")
    async def health():
        return {"status": "healthy", "service": "cvdb-gateway"}

    return app


# Default app instance
app = create_app()
