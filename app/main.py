"""
Compliance Manager Xero Console
FastAPI Application Entry Point
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.config import Settings, settings
from app.core.errors import register_exception_handlers
from app.integrations.xero.backend_client import ComplianceBackendClient
from app.integrations.xero.orchestrator import XeroDataSyncOrchestrator
from app.integrations.xero.router import router as xero_router
from app.integrations.xero.session import XeroConnectionSession

# Configure logging
logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S"
)

# httpx logs every request at INFO
logging.getLogger("httpx").setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


def create_application(
    app_settings: Optional[Settings] = None,
    backend: Optional[ComplianceBackendClient] = None,
) -> FastAPI:
    """
    Application factory.
    Creates and configures the FastAPI application.

    Args:
        app_settings: Settings override (defaults to environment settings)
        backend: Backend client override (tests pass one with a mock transport)
    """
    app_settings = app_settings or settings

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator:
        """
        Application lifespan handler.
        Creates the connection session and its orchestrator.
        """
        logger.info("Starting %s v%s", app_settings.app_name, app_settings.app_version)
        logger.info("Environment: %s", app_settings.environment)
        logger.info("Compliance backend: %s", app_settings.compliance_api_base_url)

        session = XeroConnectionSession(
            backend=backend or ComplianceBackendClient(app_settings),
            app_settings=app_settings,
        )
        app.state.xero_session = session
        app.state.xero_orchestrator = XeroDataSyncOrchestrator(
            session,
            request_delay=app_settings.resource_request_delay_seconds,
        )

        await session.load_settings()

        yield

        logger.info("%s shutdown complete", app_settings.app_name)

    app = FastAPI(
        title=app_settings.app_name,
        version=app_settings.app_version,
        description="Xero connection, data loading and BAS/FBT figures for the compliance console",
        docs_url="/docs" if app_settings.debug else None,
        redoc_url="/redoc" if app_settings.debug else None,
        openapi_url="/openapi.json" if app_settings.debug else None,
        lifespan=lifespan,
    )

    register_exception_handlers(app)

    # Configure CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=app_settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_routers(app, app_settings)

    return app


def register_routers(app: FastAPI, app_settings: Settings) -> None:
    """
    Register all API routers.
    """
    # Health check endpoint (always available)
    @app.get("/health", tags=["Health"])
    async def health_check():
        """Health check endpoint for monitoring."""
        return {
            "status": "healthy",
            "app": app_settings.app_name,
            "version": app_settings.app_version,
            "environment": app_settings.environment
        }

    @app.get("/", tags=["Root"])
    async def root():
        """Root endpoint with API information."""
        return {
            "message": f"Welcome to {app_settings.app_name} API",
            "version": app_settings.app_version,
            "docs": "/docs" if app_settings.debug else "Disabled in production",
        }

    # Integrations
    app.include_router(xero_router)


# Create the application instance
app = create_application()


if __name__ == "__main__":
    uvicorn.run(
        "app.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )
