"""Request/response messages exchanged with the warp worker process.

Field names on the wire are camelCase; Python code uses snake_case through
aliases. Every message is plain data so it can cross a process boundary.
"""

from __future__ import annotations

from typing import Dict, Literal, Optional, Tuple

import numpy as np
from pydantic import BaseModel, ConfigDict, Field

from facewarp.models.types import EffectOptions, FaceBox
from facewarp.services.displacement import WarpParams


class WorkerMessage(BaseModel):
    """Base for worker messages."""

    model_config = ConfigDict(populate_by_name=True)


class WorkerFaceBox(WorkerMessage):
    """Face box as plain numbers."""

    x: float
    y: float
    width: float
    height: float

    @classmethod
    def from_face_box(cls, box: FaceBox) -> "WorkerFaceBox":
        return cls(x=box.x, y=box.y, width=box.width, height=box.height)

    def to_face_box(self) -> FaceBox:
        return FaceBox(x=self.x, y=self.y, width=self.width, height=self.height)


class WorkerEffectOptions(WorkerMessage):
    """Effect request carried to the worker, mask pixels included."""

    type: Literal["blur", "pixelate", "mask", "none"] = "none"
    intensity: float = 0.0
    face_box: WorkerFaceBox = Field(..., alias="faceBox")
    mask_image: Optional[bytes] = Field(None, alias="maskImage")
    mask_width: Optional[int] = Field(None, alias="maskWidth")
    mask_height: Optional[int] = Field(None, alias="maskHeight")
    mask_position: Tuple[float, float] = Field((0.0, 0.0), alias="maskPosition")
    mask_scale: float = Field(1.0, alias="maskScale")

    @classmethod
    def from_options(cls, options: EffectOptions, face_box: FaceBox) -> "WorkerEffectOptions":
        mask_bytes = None
        mask_w = mask_h = None
        if options.mask_image is not None:
            mask = np.ascontiguousarray(options.mask_image, dtype=np.uint8)
            mask_h, mask_w = mask.shape[:2]
            mask_bytes = mask.tobytes()
        return cls(
            type=options.type,
            intensity=options.intensity,
            face_box=WorkerFaceBox.from_face_box(face_box),
            mask_image=mask_bytes,
            mask_width=mask_w,
            mask_height=mask_h,
            mask_position=tuple(options.mask_position),
            mask_scale=options.mask_scale,
        )

    def to_options(self) -> EffectOptions:
        mask = None
        if self.mask_image is not None and self.mask_width and self.mask_height:
            channels = len(self.mask_image) // (self.mask_width * self.mask_height)
            mask = np.frombuffer(self.mask_image, dtype=np.uint8).reshape(
                self.mask_height, self.mask_width, channels
            )
        return EffectOptions(
            type=self.type,
            intensity=self.intensity,
            mask_image=mask,
            mask_position=self.mask_position,
            mask_scale=self.mask_scale,
        )


class WorkerParams(WorkerMessage):
    """Geometry, sliders and strength for one warp."""

    center_x: float = Field(..., alias="centerX")
    center_y: float = Field(..., alias="centerY")
    half_extent_x: float = Field(..., gt=0, alias="halfExtentX")
    half_extent_y: float = Field(..., gt=0, alias="halfExtentY")
    inner_edge: float = Field(..., alias="innerEdge")
    max_influence: float = Field(..., alias="maxInfluence")
    sliders: Dict[str, float] = Field(default_factory=dict)
    amplification: float
    safety_margin: int = Field(3, ge=0, alias="safetyMargin")
    noise_level: float = Field(0.0, ge=0, alias="noiseLevel")
    seed: Optional[int] = None
    effect_options: Optional[WorkerEffectOptions] = Field(None, alias="effectOptions")

    @classmethod
    def from_warp_params(
        cls,
        params: WarpParams,
        effect_options: Optional[WorkerEffectOptions] = None,
    ) -> "WorkerParams":
        return cls(
            center_x=params.center_x,
            center_y=params.center_y,
            half_extent_x=params.half_extent_x,
            half_extent_y=params.half_extent_y,
            inner_edge=params.inner_edge,
            max_influence=params.max_influence,
            sliders=dict(params.sliders),
            amplification=params.amplification,
            safety_margin=params.safety_margin,
            noise_level=params.noise_level,
            seed=params.seed,
            effect_options=effect_options,
        )

    def to_warp_params(self) -> WarpParams:
        return WarpParams(
            center_x=self.center_x,
            center_y=self.center_y,
            half_extent_x=self.half_extent_x,
            half_extent_y=self.half_extent_y,
            inner_edge=self.inner_edge,
            max_influence=self.max_influence,
            sliders=dict(self.sliders),
            amplification=self.amplification,
            safety_margin=self.safety_margin,
            noise_level=self.noise_level,
            seed=self.seed,
        )


class WorkerRequest(WorkerMessage):
    """{command: "process", buffer, width, height, params}."""

    command: str = "process"
    buffer: bytes
    width: int
    height: int
    generation: int = 0
    params: WorkerParams


class WorkerResponse(WorkerMessage):
    """Successful worker reply."""

    processed_buffer: bytes = Field(..., alias="processedBuffer")
    width: int
    height: int
    elapsed_time_ms: float = Field(..., alias="elapsedTimeMs")
    generation: int = 0


class WorkerErrorResponse(WorkerMessage):
    """Failed worker reply."""

    error: str
    generation: int = 0
