"""Facial region table and slider handling.

Each region pairs a predicate over normalized face coordinates with a
displacement function. The table is built once and handed to the
displacement generator; every region matching a pixel contributes.
"""

from __future__ import annotations

import logging
import math
import numbers
import sys
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np

logger = logging.getLogger(__name__)

# Feature sliders, range is symmetric around zero
FEATURE_SLIDERS = [
    "eyeSize",
    "eyeSpacing",
    "eyebrowHeight",
    "noseWidth",
    "noseLength",
    "mouthWidth",
    "mouthHeight",
    "faceWidth",
    "chinShape",
    "jawline",
]

NOISE_SLIDER = "noiseLevel"

SLIDER_IDS = FEATURE_SLIDERS + [NOISE_SLIDER]

# Display metadata for clients building slider controls
SLIDER_DEFINITIONS: List[Dict[str, Any]] = [
    {"id": "eyeSize", "name": "Eye Size", "min": -50, "max": 50, "step": 1, "default": 0, "category": "Eyes"},
    {"id": "eyeSpacing", "name": "Eye Spacing", "min": -50, "max": 50, "step": 1, "default": 0, "category": "Eyes"},
    {"id": "eyebrowHeight", "name": "Eyebrow Height", "min": -50, "max": 50, "step": 1, "default": 0, "category": "Eyes"},
    {"id": "noseWidth", "name": "Nose Width", "min": -50, "max": 50, "step": 1, "default": 0, "category": "Nose"},
    {"id": "noseLength", "name": "Nose Length", "min": -50, "max": 50, "step": 1, "default": 0, "category": "Nose"},
    {"id": "mouthWidth", "name": "Mouth Width", "min": -50, "max": 50, "step": 1, "default": 0, "category": "Mouth"},
    {"id": "mouthHeight", "name": "Mouth Height", "min": -50, "max": 50, "step": 1, "default": 0, "category": "Mouth"},
    {"id": "faceWidth", "name": "Face Width", "min": -50, "max": 50, "step": 1, "default": 0, "category": "Face"},
    {"id": "chinShape", "name": "Chin Shape", "min": -50, "max": 50, "step": 1, "default": 0, "category": "Face"},
    {"id": "jawline", "name": "Jawline", "min": -50, "max": 50, "step": 1, "default": 0, "category": "Face"},
    {"id": "noiseLevel", "name": "Noise Level", "min": 0, "max": 30, "step": 1, "default": 0, "category": "Privacy"},
]

ArrayLike = Any
Condition = Callable[[np.ndarray, np.ndarray, np.ndarray], np.ndarray]
Transform = Callable[[np.ndarray, np.ndarray, Mapping[str, float], float], Tuple[np.ndarray, np.ndarray]]


def _coerce_slider(value: Any) -> float:
    """Turn any slider input into a finite float, zero when unusable."""
    if isinstance(value, bool) or value is None:
        return 0.0
    if isinstance(value, numbers.Real):
        try:
            number = float(value)
        except OverflowError:
            # Integers too large for a float still clamp to the limit
            number = sys.float_info.max if value > 0 else -sys.float_info.max
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return 0.0
    else:
        return 0.0
    return number if math.isfinite(number) else 0.0


def normalize_sliders(
    values: Optional[Mapping[str, Any]],
    slider_limit: float = 50.0,
    noise_limit: float = 30.0,
) -> Dict[str, float]:
    """
    Build a complete slider map from caller input.

    Args:
        values: Raw slider values; may be None, partial, or hold junk
        slider_limit: Feature sliders are clamped to +/- this value
        noise_limit: noiseLevel is clamped to [0, noise_limit]

    Returns:
        Dict with every known slider id; unknown ids are dropped
    """
    values = values or {}
    normalized: Dict[str, float] = {}

    for slider_id in FEATURE_SLIDERS:
        raw = _coerce_slider(values.get(slider_id))
        normalized[slider_id] = max(-slider_limit, min(slider_limit, raw))

    noise = _coerce_slider(values.get(NOISE_SLIDER))
    normalized[NOISE_SLIDER] = max(0.0, min(noise_limit, noise))

    unknown = set(values) - set(SLIDER_IDS)
    if unknown:
        logger.debug(f"Ignoring unknown sliders: {sorted(unknown)}")

    return normalized


def has_transformations(sliders: Mapping[str, float]) -> bool:
    """Check whether any feature slider moves pixels."""
    return any(abs(sliders.get(slider_id, 0.0)) > 0.01 for slider_id in FEATURE_SLIDERS)


def _side(values: np.ndarray) -> np.ndarray:
    # Zero counts as the left side
    return np.where(values > 0, 1.0, -1.0)


def _magnitude(sliders: Mapping[str, float], slider_id: str, amplification: float) -> float:
    return sliders.get(slider_id, 0.0) / 100.0 * amplification


@dataclass(frozen=True)
class FacialRegion:
    """A named facial region: where it applies and how it moves pixels."""

    name: str
    condition: Condition
    transform: Transform

    def contribution(
        self,
        norm_x: np.ndarray,
        norm_y: np.ndarray,
        dist: np.ndarray,
        sliders: Mapping[str, float],
        amplification: float,
    ) -> Tuple[np.ndarray, np.ndarray]:
        """Displacement of this region alone, zero where the condition fails."""
        mask = self.condition(norm_x, norm_y, dist)
        dx, dy = self.transform(norm_x, norm_y, sliders, amplification)
        shape = np.broadcast(norm_x, norm_y).shape
        dx = np.where(mask, np.broadcast_to(dx, shape), 0.0)
        dy = np.where(mask, np.broadcast_to(dy, shape), 0.0)
        return dx, dy


# ============================================
# Region definitions
# ============================================


def _eyes_condition(nx, ny, dist):
    return (np.abs(ny + 0.25) < 0.28) & (np.abs(nx) < 0.5)


def _eyes_transform(nx, ny, sliders, amplification):
    size = _magnitude(sliders, "eyeSize", amplification)
    spacing = _magnitude(sliders, "eyeSpacing", amplification)
    return size * nx + spacing * _side(nx), size * ny


def _eyebrows_condition(nx, ny, dist):
    return (np.abs(ny + 0.4) < 0.15) & (np.abs(nx) < 0.5)


def _eyebrows_transform(nx, ny, sliders, amplification):
    height = _magnitude(sliders, "eyebrowHeight", amplification)
    return np.zeros_like(nx, dtype=np.float64), np.full_like(ny, -height, dtype=np.float64)


def _nose_condition(nx, ny, dist):
    return (np.abs(nx) < 0.25) & (ny > -0.35) & (ny < 0.25)


def _nose_transform(nx, ny, sliders, amplification):
    width = _magnitude(sliders, "noseWidth", amplification)
    length = _magnitude(sliders, "noseLength", amplification)
    return width * nx, length * _side(ny)


def _mouth_condition(nx, ny, dist):
    return (np.abs(nx) < 0.4) & (ny > 0.05) & (ny < 0.45)


def _mouth_transform(nx, ny, sliders, amplification):
    width = _magnitude(sliders, "mouthWidth", amplification)
    height = _magnitude(sliders, "mouthHeight", amplification)
    return width * nx, height * (ny - 0.25)


def _face_width_condition(nx, ny, dist):
    return (dist > 0.35) & (dist < 1.2)


def _face_width_transform(nx, ny, sliders, amplification):
    width = _magnitude(sliders, "faceWidth", amplification)
    return width * nx, np.zeros_like(ny, dtype=np.float64)


def _chin_condition(nx, ny, dist):
    return (ny > 0.25) & (np.abs(nx) < 0.4)


def _chin_transform(nx, ny, sliders, amplification):
    shape = _magnitude(sliders, "chinShape", amplification)
    return np.zeros_like(nx, dtype=np.float64), shape * (ny - 0.4)


def _jawline_condition(nx, ny, dist):
    return (ny > 0.1) & (np.abs(nx) > 0.15) & (np.abs(nx) < 0.7)


def _jawline_transform(nx, ny, sliders, amplification):
    jaw = _magnitude(sliders, "jawline", amplification)
    return jaw * _side(nx), np.zeros_like(ny, dtype=np.float64)


class RegionModel:
    """Ordered, immutable collection of facial regions."""

    def __init__(self, regions: Sequence[FacialRegion]):
        self._regions = tuple(regions)

    @property
    def regions(self) -> Tuple[FacialRegion, ...]:
        return self._regions

    @property
    def names(self) -> List[str]:
        return [region.name for region in self._regions]

    def __len__(self) -> int:
        return len(self._regions)

    def __iter__(self):
        return iter(self._regions)

    def get(self, name: str) -> FacialRegion:
        for region in self._regions:
            if region.name == name:
                return region
        raise KeyError(name)

    def reordered(self, names: Sequence[str]) -> "RegionModel":
        """Return a model with the same regions in a different order."""
        return RegionModel([self.get(name) for name in names])

    def matching(self, norm_x: float, norm_y: float) -> List[str]:
        """Names of the regions whose condition holds at a single point."""
        nx = np.asarray(norm_x, dtype=np.float64)
        ny = np.asarray(norm_y, dtype=np.float64)
        dist = np.sqrt(nx * nx + ny * ny)
        return [r.name for r in self._regions if bool(r.condition(nx, ny, dist))]

    def displacement(
        self,
        norm_x: ArrayLike,
        norm_y: ArrayLike,
        sliders: Mapping[str, float],
        amplification: float,
        dist: Optional[ArrayLike] = None,
    ) -> Tuple[np.ndarray, np.ndarray]:
        """
        Sum the contribution of every matching region.

        Args:
            norm_x: Normalized X coordinate(s)
            norm_y: Normalized Y coordinate(s)
            sliders: Normalized slider map
            amplification: Global amplification factor
            dist: Precomputed radial distance, derived when omitted

        Returns:
            (dx, dy) arrays shaped like the broadcast inputs
        """
        nx = np.asarray(norm_x, dtype=np.float64)
        ny = np.asarray(norm_y, dtype=np.float64)
        if dist is None:
            dist = np.sqrt(nx * nx + ny * ny)
        else:
            dist = np.asarray(dist, dtype=np.float64)

        shape = np.broadcast(nx, ny).shape
        total_x = np.zeros(shape, dtype=np.float64)
        total_y = np.zeros(shape, dtype=np.float64)

        for region in self._regions:
            dx, dy = region.contribution(nx, ny, dist, sliders, amplification)
            total_x += dx
            total_y += dy

        return total_x, total_y


def build_region_model() -> RegionModel:
    """Build the canonical region table."""
    return RegionModel(
        [
            FacialRegion("eyes", _eyes_condition, _eyes_transform),
            FacialRegion("eyebrows", _eyebrows_condition, _eyebrows_transform),
            FacialRegion("nose", _nose_condition, _nose_transform),
            FacialRegion("mouth", _mouth_condition, _mouth_transform),
            FacialRegion("face_width", _face_width_condition, _face_width_transform),
            FacialRegion("chin", _chin_condition, _chin_transform),
            FacialRegion("jawline", _jawline_condition, _jawline_transform),
        ]
    )
