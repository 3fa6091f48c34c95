"""Face analysis endpoint."""

from __future__ import annotations

import logging
import time
from typing import Optional

from fastapi import APIRouter, File, Request, UploadFile

from facewarp.models.schemas import (
    AnalyzeData,
    AnalyzeResponse,
    ErrorCodes,
    FaceBoxModel,
    ImageInfo,
    Point,
    ResponseMeta,
)
from facewarp.models.types import DetectedFace
from facewarp.routers.errors import (
    detection_unavailable_response,
    error_response,
    image_error_response,
)
from facewarp.services.face_detection import FaceDetectionUnavailableError, get_face_detection_service
from facewarp.utils.image import ImageValidationError, validate_image

logger = logging.getLogger(__name__)

router = APIRouter(tags=["analyze"])


def _face_fields(face: Optional[DetectedFace]) -> dict:
    if face is None:
        return {"face_box": None, "confidence": None, "landmarks": None}
    box = face.box
    return {
        "face_box": FaceBoxModel(x=box.x, y=box.y, width=box.width, height=box.height),
        "confidence": face.confidence,
        "landmarks": [Point(x=x, y=y) for x, y in face.landmarks],
    }


@router.post("/analyze", response_model=None)
async def analyze_face(
    request: Request,
    image: Optional[UploadFile] = File(None),
):
    """
    Detect the face a warp would be centered on.

    Args:
        request: FastAPI request object
        image: Uploaded image file (JPEG, PNG, WebP or HEIC, max 10MB)

    Returns:
        Face box, confidence and keypoints of the most confident face
    """
    start_time = time.time()
    request_id = getattr(request.state, "request_id", "unknown")

    try:
        image_data = await image.read() if image is not None and image.filename else b""
        if not image_data:
            return error_response(400, ErrorCodes.VALIDATION_ERROR, "Image file is required")

        image_format, rgba = validate_image(image_data)
        height, width = rgba.shape[:2]

        result = get_face_detection_service().detect(rgba)
        processing_time_ms = (time.time() - start_time) * 1000
        logger.info(f"Analyze {request_id}: {result.face_count} face(s) in {processing_time_ms:.1f}ms")

        return AnalyzeResponse(
            data=AnalyzeData(
                face_detected=result.face_detected,
                face_count=result.face_count,
                image_info=ImageInfo(width=width, height=height, format=image_format),
                **_face_fields(result.primary),
            ),
            meta=ResponseMeta(
                request_id=request_id,
                processing_time_ms=processing_time_ms,
            ),
        )

    except ImageValidationError as e:
        return image_error_response(e)

    except FaceDetectionUnavailableError as e:
        logger.error(f"Face detection unavailable: {e}")
        return detection_unavailable_response()

    except Exception as e:
        logger.exception(f"Analyze error: {e}")
        return error_response(
            500,
            ErrorCodes.PROCESSING_ERROR,
            "An unexpected error occurred during image analysis",
        )
