"""Pydantic models for API request/response schemas."""

from datetime import datetime
from typing import Dict, Generic, List, Literal, Optional, TypeVar

from pydantic import BaseModel, Field

T = TypeVar("T")


# ============================================
# Common Response Schemas
# ============================================


class ErrorDetail(BaseModel):
    """Error detail model."""

    code: str = Field(..., description="Error code")
    message: str = Field(..., description="Human readable error message")
    details: Optional[dict] = Field(None, description="Additional error details")


class ErrorResponse(BaseModel):
    """Standard error response."""

    success: Literal[False] = False
    error: ErrorDetail


class ResponseMeta(BaseModel):
    """Response metadata."""

    request_id: str = Field(..., description="Unique request identifier")
    processing_time_ms: float = Field(..., description="Processing time in milliseconds")


class SuccessResponse(BaseModel, Generic[T]):
    """Standard success response."""

    success: Literal[True] = True
    data: T
    meta: Optional[ResponseMeta] = None


# ============================================
# Health Check Schemas
# ============================================


class HealthData(BaseModel):
    """Health check data."""

    status: Literal["ok", "degraded"] = Field(..., description="Service status")
    version: str = Field(..., description="API version")
    worker_enabled: bool = Field(False, description="Whether warps are delegated to a worker process")
    timestamp: datetime = Field(default_factory=datetime.utcnow, description="Current timestamp")


class HealthResponse(SuccessResponse[HealthData]):
    """Health check response."""

    pass


# ============================================
# Shared Geometry Schemas
# ============================================


class FaceBoxModel(BaseModel):
    """Face bounding box in source-pixel coordinates."""

    x: float = Field(..., description="X coordinate of top-left corner")
    y: float = Field(..., description="Y coordinate of top-left corner")
    width: float = Field(..., description="Width of face box")
    height: float = Field(..., description="Height of face box")


class Point(BaseModel):
    """Pixel coordinate."""

    x: float
    y: float


class ImageInfo(BaseModel):
    """Image metadata."""

    width: int = Field(..., gt=0, description="Image width in pixels")
    height: int = Field(..., gt=0, description="Image height in pixels")
    format: Literal["jpeg", "png", "webp", "heic"] = Field(..., description="Upload format")


class ImageDimensions(BaseModel):
    """Image dimensions."""

    width: int = Field(..., gt=0, description="Image width")
    height: int = Field(..., gt=0, description="Image height")


# ============================================
# Face Analysis Schemas
# ============================================


class AnalyzeData(BaseModel):
    """Face analysis result data."""

    face_detected: bool = Field(..., description="Whether a face was detected")
    face_count: int = Field(..., ge=0, description="Number of faces detected")
    face_box: Optional[FaceBoxModel] = Field(None, description="Box of the most confident face")
    confidence: Optional[float] = Field(None, ge=0, le=1, description="Detector confidence")
    landmarks: Optional[List[Point]] = Field(None, description="Landmark keypoints in pixels")
    image_info: ImageInfo = Field(..., description="Image information")


class AnalyzeResponse(SuccessResponse[AnalyzeData]):
    """Face analysis response."""

    pass


# ============================================
# Warp Schemas
# ============================================


class SliderDefinition(BaseModel):
    """Display metadata for one slider."""

    id: str
    name: str
    min: float
    max: float
    step: float
    default: float
    category: str


class SliderListResponse(SuccessResponse[List[SliderDefinition]]):
    """Available sliders."""

    pass


class WarpData(BaseModel):
    """Warp result data."""

    image: str = Field(..., description="Base64 encoded result image")
    format: Literal["png"] = Field(default="png", description="Output image format")
    dimensions: ImageDimensions = Field(..., description="Output image dimensions")
    face_box: Optional[FaceBoxModel] = Field(None, description="Face box the warp was centered on")
    face_box_source: Literal["request", "detected", "default"] = Field(
        ..., description="Where the face box came from"
    )
    sliders: Dict[str, float] = Field(..., description="Slider values after normalization")
    amplification: Optional[float] = Field(None, description="Resolution-scaled amplification")
    path: Literal["identity", "chunked", "worker", "original"] = Field(
        ..., description="How the result was produced"
    )
    effect: Literal["blur", "pixelate", "mask", "none"] = Field("none", description="Effect applied")


class WarpResponse(SuccessResponse[WarpData]):
    """Warp response."""

    pass


class VectorFieldData(BaseModel):
    """Displacement diagnostic rendering."""

    image: str = Field(..., description="Base64 encoded diagnostic image")
    format: Literal["png"] = Field(default="png", description="Output image format")
    dimensions: ImageDimensions = Field(..., description="Output image dimensions")
    step: int = Field(..., gt=0, description="Grid spacing in pixels")


class VectorFieldResponse(SuccessResponse[VectorFieldData]):
    """Vector field response."""

    pass


# ============================================
# Error Code Constants
# ============================================


class ErrorCodes:
    """Error code constants."""

    VALIDATION_ERROR = "VALIDATION_ERROR"
    FACE_NOT_DETECTED = "FACE_NOT_DETECTED"
    IMAGE_TOO_LARGE = "IMAGE_TOO_LARGE"
    INVALID_IMAGE_FORMAT = "INVALID_IMAGE_FORMAT"
    PROCESSING_ERROR = "PROCESSING_ERROR"
    DETECTION_UNAVAILABLE = "DETECTION_UNAVAILABLE"
    RATE_LIMITED = "RATE_LIMITED"
    NOT_FOUND = "NOT_FOUND"
    INTERNAL_ERROR = "INTERNAL_ERROR"
