"""Sub-pixel resampling of the source image through a displacement field."""

from __future__ import annotations

import logging
from typing import Optional

import numpy as np

logger = logging.getLogger(__name__)


def hermite_weights(t: np.ndarray):
    """Cubic Hermite basis pair for a fractional offset in [0, 1]."""
    t2 = t * t
    t3 = t2 * t
    near = 2.0 * t3 - 3.0 * t2 + 1.0
    far = -2.0 * t3 + 3.0 * t2
    return near, far


def round_half_up(values: np.ndarray) -> np.ndarray:
    return np.floor(values + 0.5)


class Resampler:
    """
    Reads colour from an immutable RGBA source at displaced coordinates.

    Sample coordinates are clamped to stay ``safety_margin`` pixels inside
    the image, so no read ever leaves the buffer.
    """

    def __init__(self, source: np.ndarray, safety_margin: int = 3):
        if source.ndim != 3 or source.shape[2] != 4:
            raise ValueError(f"Expected an (H, W, 4) source, got shape {source.shape}")
        self.source = source
        self.height, self.width = source.shape[:2]
        self.safety_margin = max(0, int(safety_margin))
        # Shrink the margin on images too small to honour it
        self._margin_x = min(self.safety_margin, (self.width - 1) // 2)
        self._margin_y = min(self.safety_margin, (self.height - 1) // 2)

    def clamp(self, sample_x: np.ndarray, sample_y: np.ndarray):
        sx = np.clip(sample_x, self._margin_x, self.width - self._margin_x - 1)
        sy = np.clip(sample_y, self._margin_y, self.height - self._margin_y - 1)
        return sx, sy

    def sample(self, xs, ys, dx, dy) -> np.ndarray:
        """
        Interpolate destination pixels.

        Args:
            xs: Destination X coordinates (1D)
            ys: Destination Y coordinates (1D)
            dx: Horizontal displacement per destination pixel
            dy: Vertical displacement per destination pixel

        Returns:
            (N, 4) uint8 array of RGBA values
        """
        sx, sy = self.clamp(
            np.asarray(xs, dtype=np.float64) - np.asarray(dx, dtype=np.float64),
            np.asarray(ys, dtype=np.float64) - np.asarray(dy, dtype=np.float64),
        )

        x1 = np.floor(sx).astype(np.intp)
        y1 = np.floor(sy).astype(np.intp)
        x2 = np.minimum(x1 + 1, self.width - 1)
        y2 = np.minimum(y1 + 1, self.height - 1)

        hx1, hx2 = hermite_weights(sx - x1)
        hy1, hy2 = hermite_weights(sy - y1)

        src = self.source
        top_left = src[y1, x1, :3].astype(np.float64)
        top_right = src[y1, x2, :3].astype(np.float64)
        bottom_left = src[y2, x1, :3].astype(np.float64)
        bottom_right = src[y2, x2, :3].astype(np.float64)

        top = top_left * hx1[:, None] + top_right * hx2[:, None]
        bottom = bottom_left * hx1[:, None] + bottom_right * hx2[:, None]
        colour = top * hy1[:, None] + bottom * hy2[:, None]

        out = np.empty((sx.shape[0], 4), dtype=np.uint8)
        out[:, :3] = np.clip(round_half_up(colour), 0, 255).astype(np.uint8)

        # Alpha from the nearest sampled source pixel
        nearest_x = np.clip(round_half_up(sx), 0, self.width - 1).astype(np.intp)
        nearest_y = np.clip(round_half_up(sy), 0, self.height - 1).astype(np.intp)
        out[:, 3] = src[nearest_y, nearest_x, 3]
        return out


def apply_noise(
    pixels: np.ndarray,
    noise_level: float,
    rng: Optional[np.random.Generator] = None,
) -> np.ndarray:
    """
    Add bounded symmetric per-channel noise to colour channels.

    The level is truncated to a whole number of intensity steps so the
    deviation never exceeds it after rounding.

    Args:
        pixels: (..., 4) uint8 array
        noise_level: Maximum absolute offset per channel
        rng: Random generator; a fresh unseeded one when omitted

    Returns:
        New uint8 array with alpha untouched
    """
    level = int(noise_level)
    if level <= 0:
        return pixels
    rng = rng or np.random.default_rng()
    offsets = rng.integers(-level, level + 1, size=pixels[..., :3].shape)
    noisy = pixels.copy()
    noisy[..., :3] = np.clip(pixels[..., :3].astype(np.int32) + offsets, 0, 255).astype(np.uint8)
    return noisy
