"""
FastAPI application entry point.

This is the main application that ties together all components:
- API routes for campaigns, donations, allocations and disbursements
- Ledger store lifecycle management
- CORS configuration for frontend access
- Error handling and logging
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from dts import __version__
from dts.api.errors import register_error_handlers
from dts.api.routes import allocations, audit, campaigns, disbursements, documents, donations, health, receivers
from dts.config import Settings, get_settings
from dts.services import LedgerServices

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
)
logger = logging.getLogger(__name__)


def create_app(settings: Settings | None = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        settings: Explicit settings; loaded from the environment if None

    Returns:
        Configured FastAPI instance ready to serve requests.
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Application lifespan manager.

        Opens the ledger store on startup and closes it on shutdown.
        """
        logger.info(f"Starting DTS v{__version__}")
        logger.info(f"Receiver assignment: {settings.receiver_assignment}")
        logger.info(f"Debug mode: {settings.debug}")

        services = LedgerServices.from_settings(settings)
        await services.start()
        app.state.ledger = services

        yield  # Application runs here

        logger.info("Shutting down DTS")
        await services.stop()

    app = FastAPI(
        title="DTS API",
        description=(
            "Donation Tracking System.\n\n"
            "Records donations, their verification, allocation to receivers "
            "and disbursement, with an append-only audit trail."
        ),
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.debug else settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Register routers
    app.include_router(health.router)
    for module in (campaigns, receivers, donations, allocations, disbursements, documents, audit):
        app.include_router(module.router, prefix="/api/v1")

    register_error_handlers(app)

    # Global exception handler
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Catch-all exception handler for unhandled errors."""
        logger.exception(f"Unhandled error: {exc}")

        # Don't expose internal errors in production
        if settings.debug:
            detail = str(exc)
        else:
            detail = "An internal error occurred"

        return JSONResponse(
            status_code=500,
            content={
                "error": "Internal Server Error",
                "detail": detail,
            },
        )

    return app


# Development server entry point
if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "dts.main:create_app",
        factory=True,
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
