"""Displacement field generation around a detected face."""

from __future__ import annotations

import logging
import math
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Optional, Tuple

import numpy as np

from facewarp.config import Settings, get_settings
from facewarp.models.types import FaceBox
from facewarp.services.regions import NOISE_SLIDER, RegionModel

logger = logging.getLogger(__name__)


@dataclass
class WarpParams:
    """Resolved, plain-data description of one warp."""

    center_x: float
    center_y: float
    half_extent_x: float
    half_extent_y: float
    inner_edge: float
    max_influence: float
    sliders: Dict[str, float] = field(default_factory=dict)
    amplification: float = 1.0
    safety_margin: int = 3
    noise_level: float = 0.0
    seed: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def resolve_face_box(
    face_box: Optional[FaceBox],
    width: int,
    height: int,
    settings: Optional[Settings] = None,
) -> Tuple[FaceBox, bool]:
    """
    Pick the face box to warp around.

    Args:
        face_box: Box from the detector, possibly missing or degenerate
        width: Image width
        height: Image height
        settings: Settings override

    Returns:
        Tuple of (box, is_default) where is_default marks a substituted
        centered estimate
    """
    if face_box is not None and face_box.is_valid():
        return face_box, False

    settings = settings or get_settings()
    box_w = width * settings.warp_default_face_fraction_x
    box_h = height * settings.warp_default_face_fraction_y
    if face_box is not None:
        logger.warning(f"Degenerate face box {face_box}, using centered default")
    return FaceBox(x=(width - box_w) / 2, y=(height - box_h) / 2, width=box_w, height=box_h), True


def amplification_factor(width: int, height: int, settings: Optional[Settings] = None) -> float:
    """Scale the base amplification so visual strength does not depend on resolution."""
    settings = settings or get_settings()
    area = max(0, width) * max(0, height)
    return settings.warp_amplification_base * math.sqrt(area / settings.warp_reference_area)


def transition_factor(dist, inner_edge: float, max_influence: float):
    """
    Falloff applied to the summed displacement.

    1.0 up to inner_edge, 0.0 from max_influence on, and a septic
    smoothstep in between. Accepts scalars or arrays.
    """
    dist = np.asarray(dist, dtype=np.float64)
    span = max(max_influence - inner_edge, 1e-12)
    t = np.clip((dist - inner_edge) / span, 0.0, 1.0)
    t4 = t ** 4
    smooth = t4 * (35.0 - 84.0 * t + 70.0 * t * t - 20.0 * t * t * t)
    factor = 1.0 - smooth
    factor = np.where(dist <= inner_edge, 1.0, factor)
    factor = np.where(dist >= max_influence, 0.0, factor)
    if factor.ndim == 0:
        return float(factor)
    return factor


def build_warp_params(
    width: int,
    height: int,
    face_box: FaceBox,
    sliders: Dict[str, float],
    seed: Optional[int] = None,
    settings: Optional[Settings] = None,
) -> WarpParams:
    """Derive center, over-scanned extent and strength for an image."""
    settings = settings or get_settings()
    center_x, center_y = face_box.center()
    overscan = settings.warp_face_overscan

    return WarpParams(
        center_x=center_x,
        center_y=center_y,
        half_extent_x=face_box.width / 2 * overscan,
        half_extent_y=face_box.height / 2 * overscan,
        inner_edge=settings.warp_inner_edge,
        max_influence=settings.warp_max_influence,
        sliders=dict(sliders),
        amplification=amplification_factor(width, height, settings),
        safety_margin=settings.warp_safety_margin,
        noise_level=sliders.get(NOISE_SLIDER, 0.0),
        seed=seed,
    )


class DisplacementFieldGenerator:
    """Evaluates the region model over pixel positions and applies the falloff."""

    def __init__(self, params: WarpParams, regions: RegionModel):
        self.params = params
        self.regions = regions

    def normalize(self, xs, ys) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """Map pixel coordinates into face-relative units."""
        p = self.params
        norm_x = (np.asarray(xs, dtype=np.float64) - p.center_x) / p.half_extent_x
        norm_y = (np.asarray(ys, dtype=np.float64) - p.center_y) / p.half_extent_y
        dist = np.sqrt(norm_x * norm_x + norm_y * norm_y)
        return norm_x, norm_y, dist

    def displacement(self, xs, ys) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """
        Displacement at arbitrary pixel positions.

        Args:
            xs: Pixel X coordinate(s)
            ys: Pixel Y coordinate(s), broadcast against xs

        Returns:
            (dx, dy, dist) arrays; dx and dy are exactly zero wherever
            dist >= max_influence
        """
        p = self.params
        norm_x, norm_y, dist = self.normalize(xs, ys)
        dx, dy = self.regions.displacement(norm_x, norm_y, p.sliders, p.amplification, dist=dist)

        falloff = transition_factor(dist, p.inner_edge, p.max_influence)
        dx = dx * falloff
        dy = dy * falloff

        outside = dist >= p.max_influence
        dx = np.where(outside, 0.0, dx)
        dy = np.where(outside, 0.0, dy)
        return dx, dy, dist

    def field(self, width: int, y_start: int, y_end: int) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """Displacement for every pixel in rows [y_start, y_end)."""
        ys, xs = np.mgrid[y_start:y_end, 0:width]
        return self.displacement(xs, ys)

    def at(self, x: float, y: float) -> Tuple[float, float]:
        dx, dy, _ = self.displacement(x, y)
        return float(dx), float(dy)

    def sample_grid(self, width: int, height: int, step: int):
        """
        Sample the field on a coarse grid for diagnostics.

        Returns:
            Tuple of (xs, ys, dx, dy) 2D arrays
        """
        step = max(1, int(step))
        offset = step // 2
        ys, xs = np.mgrid[offset:height:step, offset:width:step]
        dx, dy, _ = self.displacement(xs, ys)
        return xs, ys, dx, dy
