"""Error envelopes shared by the API routers."""

from typing import Optional

from fastapi.responses import JSONResponse

from facewarp.models.schemas import ErrorCodes, ErrorDetail, ErrorResponse
from facewarp.utils.image import ImageValidationError

STATUS_CODE_MAP = {
    ErrorCodes.VALIDATION_ERROR: 400,
    ErrorCodes.IMAGE_TOO_LARGE: 413,
    ErrorCodes.INVALID_IMAGE_FORMAT: 400,
    ErrorCodes.FACE_NOT_DETECTED: 400,
}


def error_response(status_code: int, code: str, message: str, details: Optional[dict] = None) -> JSONResponse:
    """Wrap an error in the standard envelope."""
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(
            error=ErrorDetail(code=code, message=message, details=details)
        ).model_dump(),
    )


def validation_error(message: str, details: Optional[dict] = None) -> ImageValidationError:
    return ImageValidationError(code=ErrorCodes.VALIDATION_ERROR, message=message, details=details)


def image_error_response(e: ImageValidationError) -> JSONResponse:
    return error_response(STATUS_CODE_MAP.get(e.code, 400), e.code, e.message, e.details)


def detection_unavailable_response() -> JSONResponse:
    return error_response(
        503,
        ErrorCodes.DETECTION_UNAVAILABLE,
        "Face detection is not available on this server",
    )
