"""
FastAPI Application Entry Point.

This is the main application file for the MoveMatch Backend.
"""

import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from movematch.app.core.config import settings
from movematch.app.api.v1.router import router as api_v1_router
from movematch.app.db.session import engine, Base
from movematch.app.core.exceptions import (
    AppException,
    app_exception_handler,
    http_exception_handler,
    validation_exception_handler,
    generic_exception_handler
)
from movematch.app.core.observability import ObservabilityMiddleware, configure_logging
from movematch.app.core.redis_client import ping_redis, redis_client
from movematch.app.services.cache import build_distance_cache
from movematch.app.services.routing_client import build_routing_client

# Import models to ensure they are registered with Base
from movematch.app.models.audit_log import AuditLog
from movematch.app.models.client_request import ClientRequest
from movematch.app.models.move import Move
from movematch.app.models.match import Match
from movematch.app.models.match_action import MatchAction

configure_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for application startup/shutdown.

    1. Creates database tables on startup.
    2. Builds the shared routing client and distance cache.
    3. Closes the routing client on shutdown.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    app.state.routing_client = build_routing_client()
    app.state.distance_cache = build_distance_cache(redis_client)
    logger.info(
        "MoveMatch started: routing %s, distance cache %s",
        "enabled" if app.state.routing_client else "disabled",
        type(app.state.distance_cache).__name__,
    )
    yield

    if app.state.routing_client is not None:
        await app.state.routing_client.close()


# Initialize FastAPI application
app = FastAPI(
    title=settings.app_name,
    version=settings.api_version,
    debug=settings.debug,
    description="Matching engine pairing client relocation requests with carrier moves",
    lifespan=lifespan,
)

app.add_middleware(ObservabilityMiddleware)

# Register global exception handlers
app.add_exception_handler(AppException, app_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, generic_exception_handler)


@app.get("/health", tags=["Health"])
async def health_check():
    """
    Health check endpoint.

    Returns:
        dict: Status, application information and dependency reachability
    """
    routing_client = getattr(app.state, "routing_client", None)
    return {
        "status": "healthy",
        "app_name": settings.app_name,
        "version": settings.api_version,
        "redis": "up" if await ping_redis() else "down",
        "routing": "unconfigured" if routing_client is None else (
            "up" if routing_client.available else "circuit_open"
        ),
    }


# Include API v1 router
app.include_router(api_v1_router, prefix=f"/{settings.api_version}")


@app.get("/", tags=["Root"])
async def root():
    """
    Root endpoint.

    Returns:
        dict: Welcome message and API documentation links
    """
    return {
        "message": "Welcome to MoveMatch Backend API",
        "docs": "/docs",
        "health": "/health",
    }
