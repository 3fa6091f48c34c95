"""FastAPI Application Entry Point."""

import logging
import time
import uuid
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address

from facewarp.config import get_settings
from facewarp.models.schemas import ErrorCodes
from facewarp.routers import analyze, health, warp
from facewarp.routers.errors import error_response
from facewarp.services.warp_engine import get_warp_engine

logger = logging.getLogger(__name__)

settings = get_settings()

# Rate limiter setup
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[f"{settings.rate_limit_per_minute}/minute"],
    enabled=settings.is_production,
)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    logger.info(f"Starting Facewarp API v{settings.api_version}")
    logger.info(f"Environment: {settings.app_env}, worker enabled: {settings.worker_enabled}")
    yield
    engine = get_warp_engine()
    if engine.worker is not None:
        engine.worker.close()
    logger.info("Shutting down Facewarp API")


app = FastAPI(
    title="Facewarp API",
    description="Facial feature warping API",
    version=settings.api_version,
    lifespan=lifespan,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
)

# State for rate limiter
app.state.limiter = limiter


@app.exception_handler(RateLimitExceeded)
async def custom_rate_limit_exceeded_handler(
    request: Request, exc: RateLimitExceeded
) -> JSONResponse:
    """Handle rate limit exceeded with custom response format."""
    return error_response(
        429,
        ErrorCodes.RATE_LIMITED,
        "Too many requests. Please try again later.",
        details={"retry_after": str(exc.detail)},
    )


# Default per-client limits on every route (enabled in production only)
app.add_middleware(SlowAPIMiddleware)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Request-ID", "X-Processing-Time-Ms"],
)


@app.middleware("http")
async def add_request_metadata(request: Request, call_next) -> Response:
    """Add request ID and processing time to requests."""
    request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
    request.state.request_id = request_id
    request.state.start_time = time.time()

    response = await call_next(request)

    response.headers["X-Request-ID"] = request_id
    processing_time = (time.time() - request.state.start_time) * 1000
    response.headers["X-Processing-Time-Ms"] = f"{processing_time:.2f}"

    return response


# Include routers
app.include_router(health.router)
app.include_router(analyze.router, prefix="/api/v1")
app.include_router(warp.router, prefix="/api/v1")


@app.get("/")
async def root():
    """Root endpoint - basic service info."""
    return {
        "name": "Facewarp API",
        "version": settings.api_version,
        "docs": "/docs" if settings.debug else None,
    }
