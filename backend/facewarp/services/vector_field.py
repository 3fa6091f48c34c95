"""Diagnostic rendering of the displacement field as colored arrows."""

from __future__ import annotations

import logging
import math
from typing import List, Optional, Tuple

import cv2
import numpy as np

from facewarp.models.types import FaceBox
from facewarp.services.displacement import DisplacementFieldGenerator

logger = logging.getLogger(__name__)

DIM_PERCENT = 30
MIN_ARROW_LENGTH = 0.5
BOX_COLOR = (255, 255, 255, 255)
LANDMARK_COLOR = (0, 255, 0, 255)


def _arrow_color(angle: float, magnitude: float, max_magnitude: float) -> Tuple[int, int, int, int]:
    """Hue from direction, brightness from relative magnitude."""
    hue = int((math.degrees(angle) % 360) / 2)  # OpenCV hue is 0-179
    value = int(round(80 + 175 * min(1.0, magnitude / max_magnitude))) if max_magnitude > 0 else 255
    hsv = np.uint8([[[hue, 255, value]]])
    r, g, b = cv2.cvtColor(hsv, cv2.COLOR_HSV2RGB)[0, 0]
    return int(r), int(g), int(b), 255


def render_vector_field(
    source: np.ndarray,
    generator: DisplacementFieldGenerator,
    step: int = 20,
    face_box: Optional[FaceBox] = None,
    landmarks: Optional[List[Tuple[float, float]]] = None,
    arrow_scale: float = 3.0,
) -> np.ndarray:
    """
    Draw the displacement field over a dimmed copy of the source.

    Each arrow starts at a grid point and points along the displacement,
    the way image content moves; the colour there is sampled from the
    opposite side.

    Args:
        source: (H, W, 4) uint8 image; left untouched
        generator: Field to sample
        step: Grid spacing in pixels
        face_box: Optional outline to draw
        landmarks: Optional landmark points to mark
        arrow_scale: Multiplier from displacement to arrow length

    Returns:
        New (H, W, 4) uint8 image
    """
    height, width = source.shape[:2]
    canvas = np.ascontiguousarray(source, dtype=np.uint8).copy()
    canvas[:, :, :3] = ((canvas[:, :, :3].astype(np.uint32) * DIM_PERCENT + 50) // 100).astype(np.uint8)

    if face_box is not None:
        region = face_box.clip(width, height)
        if region is not None:
            x0, y0, x1, y1 = region
            cv2.rectangle(canvas, (x0, y0), (x1 - 1, y1 - 1), BOX_COLOR, 1)

    xs, ys, dx, dy = generator.sample_grid(width, height, step)
    magnitudes = np.hypot(dx, dy)
    max_magnitude = float(magnitudes.max()) if magnitudes.size else 0.0

    arrows = 0
    for x, y, vx, vy, mag in zip(xs.ravel(), ys.ravel(), dx.ravel(), dy.ravel(), magnitudes.ravel()):
        if mag * arrow_scale < MIN_ARROW_LENGTH:
            continue
        start = (int(x), int(y))
        end = (int(round(x + vx * arrow_scale)), int(round(y + vy * arrow_scale)))
        color = _arrow_color(math.atan2(vy, vx), float(mag), max_magnitude)
        cv2.arrowedLine(canvas, start, end, color, 1, cv2.LINE_AA, tipLength=0.3)
        arrows += 1

    for lx, ly in landmarks or []:
        cv2.circle(canvas, (int(round(lx)), int(round(ly))), 2, LANDMARK_COLOR, -1)

    logger.debug(f"Rendered {arrows} arrows (max displacement {max_magnitude:.2f}px)")
    return canvas
