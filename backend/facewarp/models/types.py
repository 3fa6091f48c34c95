"""Core data types shared by the warp services."""

from __future__ import annotations

import math
import numbers
from dataclasses import dataclass, field
from typing import List, Literal, Optional, Tuple

import numpy as np

EffectType = Literal["blur", "pixelate", "mask", "none"]
EFFECT_TYPES = ("blur", "pixelate", "mask", "none")


@dataclass(frozen=True)
class FaceBox:
    """Axis-aligned face rectangle in source-pixel coordinates."""

    x: float
    y: float
    width: float
    height: float

    def is_valid(self) -> bool:
        """A box is usable only with finite values and a positive extent."""
        values = (self.x, self.y, self.width, self.height)
        if not all(isinstance(v, numbers.Real) and math.isfinite(v) for v in values):
            return False
        return self.width > 0 and self.height > 0

    def center(self) -> Tuple[float, float]:
        return self.x + self.width / 2, self.y + self.height / 2

    def clip(self, width: int, height: int) -> Optional[Tuple[int, int, int, int]]:
        """
        Clip the box to an image and round it to whole pixels.

        Args:
            width: Image width
            height: Image height

        Returns:
            (x0, y0, x1, y1) with exclusive end coordinates, or None when
            the box does not intersect the image.
        """
        if not self.is_valid():
            return None
        x0 = max(0, int(math.floor(self.x)))
        y0 = max(0, int(math.floor(self.y)))
        x1 = min(width, int(math.ceil(self.x + self.width)))
        y1 = min(height, int(math.ceil(self.y + self.height)))
        if x1 <= x0 or y1 <= y0:
            return None
        return x0, y0, x1, y1


@dataclass
class DetectedFace:
    """What the external face detector hands to the warp core."""

    box: FaceBox
    confidence: float
    landmarks: List[Tuple[float, float]] = field(default_factory=list)


@dataclass
class PixelBuffer:
    """
    Flat RGBA byte buffer with explicit dimensions.

    The declared width/height are not trusted: callers check
    ``is_consistent()`` before treating the data as an image.
    """

    data: np.ndarray
    width: int
    height: int

    def __post_init__(self):
        if not isinstance(self.data, np.ndarray):
            self.data = np.frombuffer(bytes(self.data), dtype=np.uint8)
        self.data = self.data.reshape(-1).astype(np.uint8, copy=False)

    @classmethod
    def from_array(cls, array: np.ndarray) -> "PixelBuffer":
        """Wrap an (H, W, 4) uint8 array."""
        if array.ndim != 3 or array.shape[2] != 4:
            raise ValueError(f"Expected an (H, W, 4) array, got shape {array.shape}")
        h, w = array.shape[:2]
        return cls(data=np.ascontiguousarray(array, dtype=np.uint8).reshape(-1).copy(), width=w, height=h)

    def is_consistent(self) -> bool:
        return (
            self.width > 0
            and self.height > 0
            and self.data.size == self.width * self.height * 4
        )

    def to_array(self) -> np.ndarray:
        """Return an (H, W, 4) copy of the pixels."""
        return self.data.reshape(self.height, self.width, 4).copy()

    def copy(self) -> "PixelBuffer":
        return PixelBuffer(data=self.data.copy(), width=self.width, height=self.height)

    def tobytes(self) -> bytes:
        return self.data.tobytes()


@dataclass
class EffectOptions:
    """Post-warp effect confined to the face box."""

    type: EffectType = "none"
    intensity: float = 0.0
    mask_image: Optional[np.ndarray] = None  # (H, W, 4) RGBA
    mask_position: Tuple[float, float] = (0.0, 0.0)
    mask_scale: float = 1.0

    def is_active(self) -> bool:
        return self.type != "none" and self.intensity > 0
