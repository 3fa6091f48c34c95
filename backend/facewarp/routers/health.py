"""Health check endpoint."""

from datetime import datetime

from fastapi import APIRouter

from facewarp.config import get_settings
from facewarp.models.schemas import HealthData, HealthResponse

router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Report status, version and whether the warp worker is in use."""
    settings = get_settings()
    return HealthResponse(
        data=HealthData(
            status="ok",
            version=settings.api_version,
            worker_enabled=settings.worker_enabled,
            timestamp=datetime.utcnow(),
        )
    )
