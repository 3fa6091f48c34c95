"""Facial feature warping endpoints."""

from __future__ import annotations

import json
import logging
import math
import time
from typing import Any, Dict, Optional, Tuple

from fastapi import APIRouter, File, Form, Request, UploadFile
from pydantic import ValidationError

from facewarp.models.schemas import (
    ErrorCodes,
    FaceBoxModel,
    ImageDimensions,
    ResponseMeta,
    SliderDefinition,
    SliderListResponse,
    VectorFieldData,
    VectorFieldResponse,
    WarpData,
    WarpResponse,
)
from facewarp.models.types import EFFECT_TYPES, DetectedFace, EffectOptions, FaceBox, PixelBuffer
from facewarp.routers.errors import (
    detection_unavailable_response,
    error_response,
    image_error_response,
    validation_error,
)
from facewarp.services.face_detection import FaceDetectionUnavailableError, get_face_detection_service
from facewarp.services.regions import SLIDER_DEFINITIONS, normalize_sliders
from facewarp.services.warp_engine import WarpRequest, get_warp_engine
from facewarp.utils.image import ImageValidationError, rgba_to_base64, validate_image

logger = logging.getLogger(__name__)

router = APIRouter(tags=["warp"])


def parse_sliders(raw: Optional[str]) -> Dict[str, Any]:
    """
    Parse the sliders form field.

    Values inside the object are not checked here; junk values are zeroed
    by the engine.

    Raises:
        ImageValidationError: If the field is not a JSON object
    """
    if raw is None or raw.strip() == "":
        return {}
    try:
        value = json.loads(raw)
    except json.JSONDecodeError:
        raise validation_error("Invalid sliders JSON format")
    if not isinstance(value, dict):
        raise validation_error("sliders must be a JSON object")
    return value


def parse_face_box(raw: Optional[str]) -> Optional[FaceBox]:
    """
    Parse the optional face_box form field.

    A well-formed but degenerate box is accepted; the engine swaps it for
    the centered default.

    Raises:
        ImageValidationError: If the field is not a valid box object
    """
    if raw is None or raw.strip() == "":
        return None
    try:
        model = FaceBoxModel.model_validate_json(raw)
    except ValidationError as e:
        raise validation_error("Invalid face_box format", details={"errors": e.error_count()})
    return FaceBox(x=model.x, y=model.y, width=model.width, height=model.height)


async def _read_upload(upload: Optional[UploadFile], field_name: str):
    if upload is None or upload.filename == "":
        raise validation_error(f"{field_name} is required")
    data = await upload.read()
    if len(data) == 0:
        raise validation_error(f"{field_name} is required")
    return validate_image(data)


def _detect(rgba) -> Optional[DetectedFace]:
    result = get_face_detection_service().detect(rgba)
    return result.primary


def _resolve_box(
    requested: Optional[FaceBox],
    detect_face: bool,
    rgba,
) -> Tuple[Optional[FaceBox], str, Optional[DetectedFace]]:
    """Pick the face box: explicit request, then detection, then default."""
    if requested is not None:
        return requested, "request", None
    if detect_face:
        face = _detect(rgba)
        if face is not None:
            return face.box, "detected", face
    return None, "default", None


def _box_model(box: Optional[FaceBox]) -> Optional[FaceBoxModel]:
    if box is None:
        return None
    return FaceBoxModel(x=box.x, y=box.y, width=box.width, height=box.height)


@router.get("/warp/sliders", response_model=SliderListResponse)
async def list_sliders() -> SliderListResponse:
    """List the sliders a warp accepts, with their ranges."""
    return SliderListResponse(data=[SliderDefinition(**definition) for definition in SLIDER_DEFINITIONS])


@router.post("/warp", response_model=None)
async def warp_face(
    request: Request,
    image: Optional[UploadFile] = File(None),
    sliders: Optional[str] = Form(None),
    face_box: Optional[str] = Form(None),
    effect_type: str = Form("none"),
    effect_intensity: float = Form(0.0),
    mask_image: Optional[UploadFile] = File(None),
    mask_x: float = Form(0.0),
    mask_y: float = Form(0.0),
    mask_scale: float = Form(1.0),
    seed: Optional[int] = Form(None),
    detect_face: bool = Form(False),
):
    """
    Warp facial features of an uploaded image.

    Args:
        request: FastAPI request object
        image: Source image (JPEG, PNG, WebP or HEIC, max 10MB)
        sliders: JSON object of slider values, e.g. {"eyeSize": 30}
        face_box: Optional JSON {x, y, width, height} in source pixels
        effect_type: One of none, blur, pixelate, mask
        effect_intensity: Effect intensity (0 - 100)
        mask_image: Overlay image for the mask effect
        mask_x: Mask offset as a fraction of the face box width
        mask_y: Mask offset as a fraction of the face box height
        mask_scale: Mask size relative to the face box, capped by the server
        seed: Seed for the noise generator
        detect_face: Run face detection when no face_box is given

    Returns:
        Warped image as base64-encoded PNG
    """
    start_time = time.time()
    request_id = getattr(request.state, "request_id", "unknown")

    try:
        if effect_type not in EFFECT_TYPES:
            raise validation_error(
                f"effect_type must be one of {', '.join(EFFECT_TYPES)}",
                details={"effect_type": effect_type},
            )
        if effect_intensity < 0.0 or effect_intensity > 100.0:
            raise validation_error("effect_intensity must be between 0 and 100")
        if not math.isfinite(mask_scale) or mask_scale <= 0.0:
            raise validation_error("mask_scale must be positive")

        slider_values = parse_sliders(sliders)
        requested_box = parse_face_box(face_box)
        _, rgba = await _read_upload(image, "image")

        mask_rgba = None
        if effect_type == "mask":
            if mask_image is None or mask_image.filename == "":
                raise validation_error("mask_image is required for the mask effect")
            _, mask_rgba = await _read_upload(mask_image, "mask_image")

        box, box_source, _ = _resolve_box(requested_box, detect_face, rgba)

        effect = EffectOptions(
            type=effect_type,
            intensity=effect_intensity,
            mask_image=mask_rgba,
            mask_position=(mask_x, mask_y),
            mask_scale=mask_scale,
        )

        engine = get_warp_engine()
        result = await engine.warp_async(
            WarpRequest(
                source=PixelBuffer.from_array(rgba),
                sliders=slider_values,
                face_box=box,
                effect=effect,
                seed=seed,
            )
        )

        if result is None or result.path == "original":
            return error_response(
                500,
                ErrorCodes.PROCESSING_ERROR,
                "Failed to warp the image",
            )

        if result.face_box_is_default:
            box_source = "default"

        params = result.params
        output = result.buffer.to_array()
        height, width = output.shape[:2]
        processing_time_ms = (time.time() - start_time) * 1000
        logger.info(f"Warp {request_id} took {processing_time_ms:.1f}ms via {result.path}")

        return WarpResponse(
            data=WarpData(
                image=rgba_to_base64(output),
                dimensions=ImageDimensions(width=width, height=height),
                face_box=_box_model(result.face_box),
                face_box_source=box_source,
                sliders=params.sliders if params else normalize_sliders(slider_values),
                amplification=params.amplification if params else None,
                path=result.path,
                effect=effect_type if effect.is_active() else "none",
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
        logger.exception(f"Unexpected error in warp_face: {e}")
        return error_response(
            500,
            ErrorCodes.PROCESSING_ERROR,
            "An unexpected error occurred during warping",
        )


@router.post("/warp/vector-field", response_model=None)
async def warp_vector_field(
    request: Request,
    image: Optional[UploadFile] = File(None),
    sliders: Optional[str] = Form(None),
    face_box: Optional[str] = Form(None),
    step: Optional[int] = Form(None),
    detect_face: bool = Form(False),
):
    """
    Render the displacement field for a slider configuration.

    Arrows point the way image content moves; the face box and,
    when detected, the face keypoints are drawn as well.
    """
    start_time = time.time()
    request_id = getattr(request.state, "request_id", "unknown")

    try:
        if step is not None and step <= 0:
            raise validation_error("step must be positive")

        slider_values = parse_sliders(sliders)
        requested_box = parse_face_box(face_box)
        _, rgba = await _read_upload(image, "image")

        box, _, face = _resolve_box(requested_box, detect_face, rgba)

        engine = get_warp_engine()
        canvas = engine.render_vector_field(
            PixelBuffer.from_array(rgba),
            slider_values,
            face_box=box,
            landmarks=face.landmarks if face else None,
            step=step,
        )

        output = canvas.to_array()
        height, width = output.shape[:2]
        processing_time_ms = (time.time() - start_time) * 1000

        return VectorFieldResponse(
            data=VectorFieldData(
                image=rgba_to_base64(output),
                dimensions=ImageDimensions(width=width, height=height),
                step=step or engine.settings.vector_field_step,
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
        logger.exception(f"Unexpected error in warp_vector_field: {e}")
        return error_response(
            500,
            ErrorCodes.PROCESSING_ERROR,
            "An unexpected error occurred while rendering the vector field",
        )
