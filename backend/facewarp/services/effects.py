"""Post-warp effects confined to the face box: blur, pixelation, mask overlay."""

from __future__ import annotations

import logging
import math
from typing import Optional, Tuple

import cv2
import numpy as np

from facewarp.config import Settings, get_settings
from facewarp.models.types import EffectOptions, FaceBox

logger = logging.getLogger(__name__)


def blur_radius_for(intensity: float, max_radius: int) -> int:
    """Linear map of intensity (0-100) to a blur radius capped at max_radius."""
    radius = int(round(max(0.0, intensity) / 100.0 * max_radius))
    return max(0, min(max_radius, radius))


def pixel_block_for(intensity: float, max_block: int) -> int:
    """Linear map of intensity (0-100) to a block size in [2, max_block]."""
    block = int(max(0.0, intensity) / 100.0 * max_block)
    return max(2, min(max_block, block))


def blur_region(array: np.ndarray, region: Tuple[int, int, int, int], radius: int) -> np.ndarray:
    """
    Gaussian-blur the colour channels inside a region, in place.

    Args:
        array: (H, W, 4) uint8 image
        region: (x0, y0, x1, y1) clipped region
        radius: Kernel radius in pixels

    Returns:
        The same array
    """
    if radius <= 0:
        return array
    x0, y0, x1, y1 = region
    ksize = 2 * radius + 1
    roi = np.ascontiguousarray(array[y0:y1, x0:x1, :3])
    array[y0:y1, x0:x1, :3] = cv2.GaussianBlur(roi, (ksize, ksize), 0, borderType=cv2.BORDER_REPLICATE)
    return array


def pixelate_region(array: np.ndarray, region: Tuple[int, int, int, int], block_size: int) -> np.ndarray:
    """
    Replace a region with block-averaged colour, upsampled without smoothing.

    Blocks start at the region origin; blocks cut by the region edge average
    only the pixels they cover. Each block gets the rounded (half up) mean
    of its source pixels on all four channels.
    """
    if block_size <= 1:
        return array
    x0, y0, x1, y1 = region
    roi = array[y0:y1, x0:x1].astype(np.int64)
    h, w = roi.shape[:2]

    row_starts = np.arange(0, h, block_size)
    col_starts = np.arange(0, w, block_size)
    sums = np.add.reduceat(np.add.reduceat(roi, row_starts, axis=0), col_starts, axis=1)

    row_sizes = np.diff(np.append(row_starts, h))
    col_sizes = np.diff(np.append(col_starts, w))
    counts = np.outer(row_sizes, col_sizes)[:, :, None]

    means = np.floor(sums / counts + 0.5).astype(np.uint8)
    blocks = np.repeat(np.repeat(means, row_sizes, axis=0), col_sizes, axis=1)
    array[y0:y1, x0:x1] = blocks
    return array


def overlay_mask(
    array: np.ndarray,
    mask_image: np.ndarray,
    face_box: FaceBox,
    position: Tuple[float, float] = (0.0, 0.0),
    scale: float = 1.0,
    opacity: float = 0.9,
) -> np.ndarray:
    """
    Composite an RGBA mask over the face.

    The mask is sized to the face box times scale and offset by position,
    which is expressed as a fraction of the face box size. Only the part
    that lands inside the image is resampled, so the cost is bounded by
    the image size whatever the scale.
    """
    height, width = array.shape[:2]
    if not math.isfinite(scale) or scale <= 0:
        return array
    target_w = int(round(face_box.width * scale))
    target_h = int(round(face_box.height * scale))
    if target_w <= 0 or target_h <= 0:
        return array

    if mask_image.ndim == 2:
        mask_image = cv2.cvtColor(mask_image, cv2.COLOR_GRAY2RGBA)
    elif mask_image.shape[2] == 3:
        mask_image = cv2.cvtColor(mask_image, cv2.COLOR_RGB2RGBA)

    left = int(round(face_box.x + position[0] * face_box.width))
    top = int(round(face_box.y + position[1] * face_box.height))

    # Clip the placement against the image bounds
    dst_x0, dst_y0 = max(0, left), max(0, top)
    dst_x1, dst_y1 = min(width, left + target_w), min(height, top + target_h)
    if dst_x1 <= dst_x0 or dst_y1 <= dst_y0:
        return array

    # Render only the visible part of the scaled mask
    mask_h, mask_w = mask_image.shape[:2]
    inv_x = mask_w / target_w
    inv_y = mask_h / target_h
    transform = np.array(
        [
            [inv_x, 0.0, (dst_x0 - left + 0.5) * inv_x - 0.5],
            [0.0, inv_y, (dst_y0 - top + 0.5) * inv_y - 0.5],
        ]
    )
    src = cv2.warpAffine(
        np.ascontiguousarray(mask_image),
        transform,
        (dst_x1 - dst_x0, dst_y1 - dst_y0),
        flags=cv2.INTER_LINEAR | cv2.WARP_INVERSE_MAP,
        borderMode=cv2.BORDER_REPLICATE,
    ).astype(np.float64)
    dst = array[dst_y0:dst_y1, dst_x0:dst_x1].astype(np.float64)

    alpha = (src[:, :, 3:4] / 255.0) * max(0.0, min(1.0, opacity))
    blended = dst[:, :, :3] * (1.0 - alpha) + src[:, :, :3] * alpha
    array[dst_y0:dst_y1, dst_x0:dst_x1, :3] = np.clip(np.floor(blended + 0.5), 0, 255).astype(np.uint8)
    return array


class EffectPostProcessor:
    """Applies at most one effect per request, after warping."""

    def __init__(self, settings: Optional[Settings] = None):
        settings = settings or get_settings()
        self.max_blur_radius = settings.effect_max_blur_radius
        self.max_pixel_block = settings.effect_max_pixel_block
        self.mask_opacity = settings.effect_mask_opacity
        self.max_mask_scale = settings.effect_max_mask_scale

    def apply(self, array: np.ndarray, face_box: FaceBox, options: Optional[EffectOptions]) -> np.ndarray:
        """
        Apply the requested effect to a copy of the image.

        Args:
            array: (H, W, 4) warped image
            face_box: Region the effect is confined to
            options: Effect request; None or inactive means no-op

        Returns:
            New array (the input is not modified)
        """
        if options is None or not options.is_active():
            return array

        height, width = array.shape[:2]
        region = face_box.clip(width, height)
        if region is None:
            logger.debug(f"Face box {face_box} outside image, skipping {options.type}")
            return array

        result = array.copy()
        if options.type == "blur":
            radius = blur_radius_for(options.intensity, self.max_blur_radius)
            blur_region(result, region, radius)
        elif options.type == "pixelate":
            block = pixel_block_for(options.intensity, self.max_pixel_block)
            pixelate_region(result, region, block)
        elif options.type == "mask":
            if options.mask_image is None:
                logger.debug("Mask effect requested without a mask image")
                return array
            overlay_mask(
                result,
                options.mask_image,
                face_box,
                position=options.mask_position,
                scale=min(options.mask_scale, self.max_mask_scale),
                opacity=self.mask_opacity,
            )
        else:
            raise ValueError(f"Unknown effect type: {options.type}")

        logger.debug(f"Applied {options.type} effect at intensity {options.intensity}")
        return result
