"""Row-sliced warp execution and request generation tracking.

A warp is split into slices of rows. The async runner yields to the event
loop after every slice so a long transformation never blocks other work.
Each slice writes disjoint destination rows and only reads the immutable
source, so no locking is needed.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Iterator, Optional, Tuple

import numpy as np

from facewarp.services.displacement import DisplacementFieldGenerator, WarpParams
from facewarp.services.regions import RegionModel
from facewarp.services.resampler import Resampler, apply_noise

logger = logging.getLogger(__name__)


class WarpJob:
    """One warp of one source image; owns its destination buffer."""

    def __init__(self, source: np.ndarray, params: WarpParams, regions: RegionModel):
        self.source = source
        self.params = params
        self.height, self.width = source.shape[:2]
        self.output = source.copy()
        self.generator = DisplacementFieldGenerator(params, regions)
        self.resampler = Resampler(source, params.safety_margin)
        self.noise_level = int(params.noise_level)
        self.rng = np.random.default_rng(params.seed)
        self.rows_done = 0

    def process_rows(self, y_start: int, y_end: int) -> None:
        """
        Fill destination rows [y_start, y_end).

        Pixels with zero displacement keep their source value; the rest are
        resampled. Noise, when enabled, touches every pixel inside the
        influence area.
        """
        dx, dy, dist = self.generator.field(self.width, y_start, y_end)

        moved = (dx != 0.0) | (dy != 0.0)
        if moved.any():
            rows, cols = np.nonzero(moved)
            rows = rows + y_start
            self.output[rows, cols] = self.resampler.sample(cols, rows, dx[moved], dy[moved])

        if self.noise_level > 0:
            inside = dist < self.params.max_influence
            if inside.any():
                band = self.output[y_start:y_end]
                band[inside] = apply_noise(band[inside], self.noise_level, self.rng)

        self.rows_done += y_end - y_start


IsCurrent = Callable[[], bool]


class ChunkedScheduler:
    """Runs a WarpJob slice by slice."""

    def __init__(self, rows_per_slice: int = 20):
        self.rows_per_slice = max(1, int(rows_per_slice))

    def slices(self, height: int) -> Iterator[Tuple[int, int]]:
        for start in range(0, height, self.rows_per_slice):
            yield start, min(start + self.rows_per_slice, height)

    def run_sync(self, job: WarpJob) -> np.ndarray:
        """Process every slice back to back."""
        for y_start, y_end in self.slices(job.height):
            job.process_rows(y_start, y_end)
        return job.output

    async def run(self, job: WarpJob, is_current: Optional[IsCurrent] = None) -> Optional[np.ndarray]:
        """
        Process slices, yielding to the event loop after each one.

        Args:
            job: Job to run
            is_current: Checked before every slice; once it returns False
                the job stops and its result is suppressed

        Returns:
            Destination array, or None when the job was superseded
        """
        slice_count = 0
        for y_start, y_end in self.slices(job.height):
            if is_current is not None and not is_current():
                logger.debug(f"Job superseded after {slice_count} slices, dropping it")
                return None
            job.process_rows(y_start, y_end)
            slice_count += 1
            await asyncio.sleep(0)

        if is_current is not None and not is_current():
            logger.debug("Job superseded on completion, dropping it")
            return None
        return job.output


class WarpSession:
    """
    One logical editor session: at most one accepted result per request.

    Every submit starts a new generation. A result is accepted only if its
    generation is still the latest requested when it completes; anything
    older is discarded even if it finishes last.
    """

    def __init__(self, engine, worker=None):
        self.engine = engine
        self.worker = worker
        self._generation = 0
        self.latest_result = None
        self.discarded_count = 0

    @property
    def generation(self) -> int:
        return self._generation

    def is_current(self, generation: int) -> bool:
        return generation == self._generation

    async def submit(self, request):
        """
        Warp a request on behalf of this session.

        Returns:
            WarpResult, or None if a newer request superseded this one
        """
        self._generation += 1
        generation = self._generation

        result = await self.engine.warp_async(
            request,
            is_current=lambda: self.is_current(generation),
            worker=self.worker,
            generation=generation,
        )

        if result is None or not self.is_current(generation):
            self.discarded_count += 1
            logger.info(f"Discarding stale result for generation {generation} (latest is {self._generation})")
            return None

        self.latest_result = result
        return result
