"""
Main FastAPI application entry point.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI, status
from fastapi.responses import JSONResponse

import structlog

from accountant.core.config import settings
from accountant.core.logging import setup_logging
from accountant.core.database import DatabaseManager, init_database, close_database
from accountant.services.chain_client import close_chain_client
from accountant.services.explorer_client import close_explorer_client
from accountant.api.middleware import add_middleware
from accountant.api.routes import accounting
from accountant.api.schemas.common import HealthCheckResponse


logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    logger.info("Starting Celo Accountant", version=settings.app_version, network=settings.network)

    try:
        await init_database()
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error("Startup failed", error=str(e))
        raise

    logger.info("Application startup complete")

    yield

    logger.info("Shutting down application")
    try:
        await close_chain_client()
        await close_explorer_client()
        await close_database()
        logger.info("Connections closed")
    except Exception as e:
        logger.error("Shutdown error", error=str(e))

    logger.info("Application shutdown complete")


def create_app() -> FastAPI:
    setup_logging(settings.log_file)

    app = FastAPI(
        title="Celo Accountant",
        version=settings.app_version,
        description="Derives, loads and reconciles the per-epoch reward ledger of monitored Celo addresses.",
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    add_middleware(app)

    @app.get(
        "/health",
        response_model=HealthCheckResponse,
        tags=["System"],
        summary="Health Check",
        description="Check API server health and warehouse connectivity"
    )
    async def health_check():
        if await DatabaseManager.health_check():
            return HealthCheckResponse(
                status="healthy",
                version=settings.app_version,
                services={"database": "healthy", "api": "healthy"},
            )

        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={
                "status": "unhealthy",
                "version": settings.app_version,
                "services": {"database": "unhealthy", "api": "healthy"},
            }
        )

    app.include_router(accounting.router, tags=["Accounting"])
    return app


app = create_app()
