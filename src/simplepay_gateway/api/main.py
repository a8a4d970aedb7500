"""FastAPI application entry point for the SimplePay gateway adapter."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from simplepay_gateway import __version__
from simplepay_gateway.api.routes import router as simplepay_router
from simplepay_gateway.config import settings
from simplepay_gateway.logging_config import configure_logging, get_logger

# Configure logging at module level
configure_logging(
    log_level="DEBUG" if settings.simplepay.debug else settings.log_level,
    format_as_json=settings.environment != "development",
)

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Log startup and shutdown with the processor mode in use."""
    logger.info(
        "starting_simplepay_gateway",
        environment=settings.environment,
        sandbox=settings.simplepay.sandbox,
        merchant_configured=bool(settings.simplepay.merchant_id),
    )
    yield
    logger.info("simplepay_gateway_shutdown_complete")


app = FastAPI(
    title="SimplePay Gateway",
    description="SimplePay payment gateway adapter for the donation platform",
    version=__version__,
    docs_url="/docs" if settings.simplepay.debug else None,
    redoc_url="/redoc" if settings.simplepay.debug else None,
    lifespan=lifespan,
)

app.include_router(simplepay_router)


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint."""
    return {
        "status": "healthy",
        "service": settings.service_name,
        "environment": settings.environment,
    }


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint."""
    return {
        "service": "SimplePay Gateway",
        "version": __version__,
        "status": "running",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "simplepay_gateway.api.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.simplepay.debug,
        log_level="debug" if settings.simplepay.debug else "info",
    )
