"""
Warp worker - runs a whole transformation in an independent process.

The engine hands ``handle_message`` a plain-data request
(``{"command": "process", "buffer": ..., "params": {...}}``) through a
single-process executor and waits with a timeout. The reply is either
``{"processedBuffer": ..., "elapsedTimeMs": ...}`` or ``{"error": ...}``;
this function never raises.

The module also works as a command line tool for warping image files:

Usage:
    python -m facewarp.worker --input face.png --output warped.png \\
        --slider eyeSize=40 --slider jawline=-20

    python -m facewarp.worker --input face.png --output field.png \\
        --slider mouthWidth=30 --vector-field
"""

from __future__ import annotations

import argparse
import logging
import sys
import time
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

logger = logging.getLogger(__name__)

MAX_ERROR_LENGTH = 500


def _error(message: str, generation: int = 0) -> Dict[str, Any]:
    """Build an error reply, truncating long messages."""
    from facewarp.models.messages import WorkerErrorResponse

    if len(message) > MAX_ERROR_LENGTH:
        message = message[:MAX_ERROR_LENGTH] + "..."
    return WorkerErrorResponse(error=message, generation=generation).model_dump(by_alias=True)


def handle_message(message: Dict[str, Any]) -> Dict[str, Any]:
    """
    Process one worker request.

    Args:
        message: Request dict using the camelCase wire names

    Returns:
        Response dict, success or error
    """
    # Lazy imports keep the child process start-up light
    from facewarp.models.messages import WorkerRequest, WorkerResponse
    from facewarp.models.types import PixelBuffer
    from facewarp.services.effects import EffectPostProcessor
    from facewarp.services.regions import build_region_model
    from facewarp.services.scheduler import ChunkedScheduler, WarpJob

    start_time = time.perf_counter()
    generation = message.get("generation", 0) if isinstance(message, dict) else 0

    if not isinstance(message, dict) or message.get("command") != "process":
        command = message.get("command") if isinstance(message, dict) else None
        return _error(f"Unknown command: {command!r}", generation)

    try:
        request = WorkerRequest.model_validate(message)
    except ValidationError as e:
        return _error(f"Invalid request: {e.error_count()} validation error(s)", generation)

    try:
        source = PixelBuffer(request.buffer, request.width, request.height)
        if not source.is_consistent():
            return _error(
                f"Buffer of {source.data.size} bytes does not match {request.width}x{request.height}",
                generation,
            )

        params = request.params.to_warp_params()
        job = WarpJob(source.to_array(), params, build_region_model())
        # The worker owns the whole job, no reason to slice it
        output = ChunkedScheduler(rows_per_slice=request.height).run_sync(job)

        effect = request.params.effect_options
        if effect is not None:
            output = EffectPostProcessor().apply(output, effect.face_box.to_face_box(), effect.to_options())

    except Exception as e:
        logger.exception(f"Worker failed on generation {generation}: {e}")
        return _error(str(e) or type(e).__name__, generation)

    elapsed_ms = (time.perf_counter() - start_time) * 1000
    return WorkerResponse(
        processed_buffer=output.tobytes(),
        width=request.width,
        height=request.height,
        elapsed_time_ms=elapsed_ms,
        generation=generation,
    ).model_dump(by_alias=True)


def _parse_sliders(pairs: List[str]) -> Dict[str, float]:
    sliders: Dict[str, float] = {}
    for pair in pairs:
        if "=" not in pair:
            raise argparse.ArgumentTypeError(f"Slider must look like name=value, got {pair!r}")
        name, value = pair.split("=", 1)
        sliders[name.strip()] = float(value)
    return sliders


def _parse_face_box(value: Optional[str]):
    from facewarp.models.types import FaceBox

    if not value:
        return None
    parts = [float(v) for v in value.split(",")]
    if len(parts) != 4:
        raise argparse.ArgumentTypeError("Face box must be x,y,width,height")
    return FaceBox(*parts)


def main(argv: Optional[List[str]] = None) -> int:
    """Entry point for the worker CLI."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )

    parser = argparse.ArgumentParser(description="Warp facial features in an image file")
    parser.add_argument("--input", required=True, help="Source image (JPEG/PNG/WebP)")
    parser.add_argument("--output", required=True, help="Where to write the PNG result")
    parser.add_argument(
        "--slider",
        action="append",
        default=[],
        help="Slider value as name=value, may be repeated (e.g. eyeSize=40)",
    )
    parser.add_argument("--face-box", default=None, help="Face box as x,y,width,height (default: centered estimate)")
    parser.add_argument(
        "--effect",
        choices=["none", "blur", "pixelate", "mask"],
        default="none",
        help="Post-warp effect (default: none)",
    )
    parser.add_argument("--intensity", type=float, default=50.0, help="Effect intensity 0-100 (default: 50)")
    parser.add_argument("--mask", default=None, help="Mask image for --effect mask")
    parser.add_argument("--seed", type=int, default=None, help="Seed for the noise generator")
    parser.add_argument(
        "--vector-field",
        action="store_true",
        help="Write the displacement diagnostic instead of the warped image",
    )

    args = parser.parse_args(argv)

    from facewarp.models.types import EffectOptions, PixelBuffer
    from facewarp.services.warp_engine import WarpRequest, get_warp_engine
    from facewarp.utils.image import ImageValidationError, load_rgba_file, save_rgba_file

    try:
        sliders = _parse_sliders(args.slider)
        face_box = _parse_face_box(args.face_box)
        source = PixelBuffer.from_array(load_rgba_file(args.input))
        mask = load_rgba_file(args.mask) if args.mask else None
    except (argparse.ArgumentTypeError, ValueError, ImageValidationError, OSError) as e:
        logger.error(f"Invalid arguments: {e}")
        return 2

    engine = get_warp_engine()

    if args.vector_field:
        output = engine.render_vector_field(source, sliders, face_box=face_box)
        save_rgba_file(args.output, output.to_array())
        logger.info(f"Wrote vector field to {args.output}")
        return 0

    request = WarpRequest(
        source=source,
        sliders=sliders,
        face_box=face_box,
        effect=EffectOptions(type=args.effect, intensity=args.intensity, mask_image=mask),
        seed=args.seed,
    )
    result = engine.warp(request)
    save_rgba_file(args.output, result.buffer.to_array())
    logger.info(f"Wrote {args.output} via {result.path} path in {result.elapsed_ms:.1f}ms")
    return 0 if result.path != "original" else 1


if __name__ == "__main__":
    sys.exit(main())
