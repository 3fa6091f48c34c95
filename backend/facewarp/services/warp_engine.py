"""Facial warp engine.

Ties the region model, displacement generator, resampler, scheduler and
effect post-processor together, and decides which execution path a request
takes: the identity fast path, the worker process, or local chunked
processing. Whatever goes wrong, the caller gets back an intact image.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, List, Literal, Mapping, Optional, Tuple

import numpy as np

from facewarp.config import Settings, get_settings
from facewarp.models.messages import WorkerEffectOptions, WorkerParams, WorkerRequest
from facewarp.models.types import EffectOptions, FaceBox, PixelBuffer
from facewarp.services.displacement import (
    DisplacementFieldGenerator,
    WarpParams,
    build_warp_params,
    resolve_face_box,
)
from facewarp.services.effects import EffectPostProcessor
from facewarp.services.regions import RegionModel, build_region_model, has_transformations, normalize_sliders
from facewarp.services.scheduler import ChunkedScheduler, WarpJob
from facewarp.services.vector_field import render_vector_field
from facewarp.services.worker_client import WorkerClient, WorkerUnavailableError

logger = logging.getLogger(__name__)

WarpPath = Literal["identity", "chunked", "worker", "original"]


@dataclass
class WarpRequest:
    """One caller request: source pixels, sliders and an optional effect."""

    source: PixelBuffer
    sliders: Mapping[str, Any] = field(default_factory=dict)
    face_box: Optional[FaceBox] = None
    effect: Optional[EffectOptions] = None
    seed: Optional[int] = None


@dataclass
class WarpResult:
    """Output buffer plus how it was produced."""

    buffer: PixelBuffer
    params: Optional[WarpParams]
    elapsed_ms: float
    path: WarpPath
    generation: int = 0
    face_box: Optional[FaceBox] = None
    face_box_is_default: bool = False


def _elapsed_ms(start_time: float) -> float:
    return (time.perf_counter() - start_time) * 1000


class FacialWarpEngine:
    """Runs warps with the configured regions, scheduler and effects."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        regions: Optional[RegionModel] = None,
        scheduler: Optional[ChunkedScheduler] = None,
        effects: Optional[EffectPostProcessor] = None,
        worker: Optional[WorkerClient] = None,
    ):
        self.settings = settings or get_settings()
        self.regions = regions if regions is not None else build_region_model()
        self.scheduler = scheduler or ChunkedScheduler(self.settings.warp_rows_per_slice)
        self.effects = effects or EffectPostProcessor(self.settings)
        self.worker = worker

    def resolve_params(self, request: WarpRequest) -> Tuple[WarpParams, FaceBox, bool]:
        """
        Normalize sliders and derive the warp geometry for a request.

        Returns:
            Tuple of (params, face box used, whether the box is the default)
        """
        source = request.source
        sliders = normalize_sliders(
            request.sliders,
            slider_limit=self.settings.warp_slider_limit,
            noise_limit=self.settings.warp_noise_limit,
        )
        box, is_default = resolve_face_box(request.face_box, source.width, source.height, self.settings)
        params = build_warp_params(
            source.width,
            source.height,
            box,
            sliders,
            seed=request.seed,
            settings=self.settings,
        )
        return params, box, is_default

    @staticmethod
    def _moves_pixels(params: WarpParams) -> bool:
        return has_transformations(params.sliders) or int(params.noise_level) > 0

    def _is_identity(self, params: WarpParams, effect: Optional[EffectOptions]) -> bool:
        return not self._moves_pixels(params) and (effect is None or not effect.is_active())

    def _identity_result(self, request: WarpRequest, start_time: float, generation: int, **kwargs) -> WarpResult:
        return WarpResult(
            buffer=request.source.copy(),
            elapsed_ms=_elapsed_ms(start_time),
            path="identity",
            generation=generation,
            **kwargs,
        )

    def _original_result(self, request: WarpRequest, start_time: float, generation: int) -> WarpResult:
        return WarpResult(
            buffer=request.source.copy(),
            params=None,
            elapsed_ms=_elapsed_ms(start_time),
            path="original",
            generation=generation,
        )

    def warp(self, request: WarpRequest, generation: int = 0) -> WarpResult:
        """
        Warp synchronously in a single pass.

        Args:
            request: Warp request
            generation: Tag copied onto the result

        Returns:
            WarpResult; never raises
        """
        start_time = time.perf_counter()
        source = request.source

        if not source.is_consistent():
            logger.warning(
                f"Inconsistent buffer ({source.data.size} bytes for {source.width}x{source.height}), returning a copy"
            )
            return self._identity_result(request, start_time, generation, params=None)

        try:
            params, box, is_default = self.resolve_params(request)
            if self._is_identity(params, request.effect):
                return self._identity_result(
                    request, start_time, generation, params=params, face_box=box, face_box_is_default=is_default
                )

            output = source.to_array()
            if self._moves_pixels(params):
                job = WarpJob(output, params, self.regions)
                output = self.scheduler.run_sync(job)
            output = self.effects.apply(output, box, request.effect)

            elapsed_ms = _elapsed_ms(start_time)
            logger.info(f"Warped {source.width}x{source.height} image in {elapsed_ms:.1f}ms")
            return WarpResult(
                buffer=PixelBuffer.from_array(output),
                params=params,
                elapsed_ms=elapsed_ms,
                path="chunked",
                generation=generation,
                face_box=box,
                face_box_is_default=is_default,
            )

        except Exception as e:
            logger.exception(f"Warp failed, returning the original image: {e}")
            return self._original_result(request, start_time, generation)

    def _worker_request(
        self,
        request: WarpRequest,
        params: WarpParams,
        box: FaceBox,
        generation: int,
    ) -> WorkerRequest:
        effect_options = None
        if request.effect is not None and request.effect.is_active():
            effect_options = WorkerEffectOptions.from_options(request.effect, box)
        return WorkerRequest(
            buffer=request.source.tobytes(),
            width=request.source.width,
            height=request.source.height,
            generation=generation,
            params=WorkerParams.from_warp_params(params, effect_options),
        )

    async def warp_async(
        self,
        request: WarpRequest,
        is_current: Optional[Callable[[], bool]] = None,
        worker: Optional[WorkerClient] = None,
        generation: int = 0,
    ) -> Optional[WarpResult]:
        """
        Warp without blocking the event loop.

        The worker is tried first when one is available; on timeout or
        error the same inputs run through the local chunked scheduler.

        Args:
            request: Warp request
            is_current: Returns False once a newer request supersedes this one
            worker: Worker client, defaults to the engine's own
            generation: Tag carried to the worker and onto the result

        Returns:
            WarpResult, or None when the request was superseded
        """
        start_time = time.perf_counter()
        source = request.source
        worker = worker if worker is not None else self.worker

        if not source.is_consistent():
            logger.warning(
                f"Inconsistent buffer ({source.data.size} bytes for {source.width}x{source.height}), returning a copy"
            )
            return self._identity_result(request, start_time, generation, params=None)

        try:
            params, box, is_default = self.resolve_params(request)
            if self._is_identity(params, request.effect):
                return self._identity_result(
                    request, start_time, generation, params=params, face_box=box, face_box_is_default=is_default
                )

            if worker is not None:
                try:
                    response = await worker.process(self._worker_request(request, params, box, generation))
                except WorkerUnavailableError as e:
                    logger.info(f"Falling back to chunked processing: {e}")
                else:
                    if is_current is not None and not is_current():
                        return None
                    return WarpResult(
                        buffer=PixelBuffer(response.processed_buffer, response.width, response.height),
                        params=params,
                        elapsed_ms=_elapsed_ms(start_time),
                        path="worker",
                        generation=generation,
                        face_box=box,
                        face_box_is_default=is_default,
                    )

            output = source.to_array()
            if self._moves_pixels(params):
                job = WarpJob(output, params, self.regions)
                output = await self.scheduler.run(job, is_current)
                if output is None:
                    return None
            elif is_current is not None and not is_current():
                return None
            output = self.effects.apply(output, box, request.effect)

            return WarpResult(
                buffer=PixelBuffer.from_array(output),
                params=params,
                elapsed_ms=_elapsed_ms(start_time),
                path="chunked",
                generation=generation,
                face_box=box,
                face_box_is_default=is_default,
            )

        except Exception as e:
            logger.exception(f"Warp failed, returning the original image: {e}")
            return self._original_result(request, start_time, generation)

    def render_vector_field(
        self,
        source: PixelBuffer,
        sliders: Mapping[str, Any],
        face_box: Optional[FaceBox] = None,
        landmarks: Optional[List[Tuple[float, float]]] = None,
        step: Optional[int] = None,
    ) -> PixelBuffer:
        """
        Render the displacement diagnostic for a slider configuration.

        Raises:
            ValueError: If the source buffer does not match its dimensions
        """
        if not source.is_consistent():
            raise ValueError(f"Buffer of {source.data.size} bytes does not match {source.width}x{source.height}")

        params, box, _ = self.resolve_params(WarpRequest(source=source, sliders=sliders, face_box=face_box))
        generator = DisplacementFieldGenerator(params, self.regions)
        canvas = render_vector_field(
            source.to_array(),
            generator,
            step=step or self.settings.vector_field_step,
            face_box=box,
            landmarks=landmarks,
            arrow_scale=self.settings.vector_field_arrow_scale,
        )
        return PixelBuffer.from_array(np.ascontiguousarray(canvas))


# Singleton instance
_warp_engine: Optional[FacialWarpEngine] = None


def get_warp_engine() -> FacialWarpEngine:
    """Get or create the warp engine singleton."""
    global _warp_engine
    if _warp_engine is None:
        settings = get_settings()
        worker = None
        if settings.worker_enabled:
            worker = WorkerClient(timeout_seconds=settings.worker_timeout_seconds)
        _warp_engine = FacialWarpEngine(settings=settings, worker=worker)
    return _warp_engine
