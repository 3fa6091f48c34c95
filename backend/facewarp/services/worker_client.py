"""Client for delegating a whole warp to an independent worker process."""

from __future__ import annotations

import asyncio
import logging
from concurrent.futures import Executor, ProcessPoolExecutor
from typing import Any, Callable, Dict, Optional

from pydantic import ValidationError

from facewarp.models.messages import WorkerRequest, WorkerResponse
from facewarp.worker import handle_message

logger = logging.getLogger(__name__)

Handler = Callable[[Dict[str, Any]], Dict[str, Any]]


class WorkerUnavailableError(Exception):
    """Raised when the worker times out, fails or answers with an error."""

    pass


class WorkerClient:
    """
    Sends one WorkerRequest at a time to a single worker and awaits the reply.

    The executor is created lazily. A client that owns its executor replaces
    it after a timeout so a stuck job does not block the next request.
    """

    def __init__(
        self,
        timeout_seconds: float = 5.0,
        executor: Optional[Executor] = None,
        handler: Optional[Handler] = None,
    ):
        self.timeout_seconds = timeout_seconds
        self.handler = handler or handle_message
        self._executor = executor
        self._owns_executor = executor is None

    def _get_executor(self) -> Executor:
        if self._executor is None:
            self._executor = ProcessPoolExecutor(max_workers=1)
            logger.info("Started warp worker process pool")
        return self._executor

    def _discard_executor(self) -> None:
        """Drop an owned pool and stop any worker process still busy in it."""
        if not self._owns_executor or self._executor is None:
            return
        # ProcessPoolExecutor keeps no public handle on its children
        processes = list((getattr(self._executor, "_processes", None) or {}).values())
        self._executor.shutdown(wait=False, cancel_futures=True)
        self._executor = None
        for process in processes:
            if process.is_alive():
                logger.warning(f"Terminating stuck warp worker process {process.pid}")
                process.terminate()

    async def process(self, request: WorkerRequest) -> WorkerResponse:
        """
        Run a request on the worker.

        Args:
            request: Complete plain-data description of the warp

        Returns:
            Parsed WorkerResponse

        Raises:
            WorkerUnavailableError: On timeout, transport failure or an
                error reply
        """
        loop = asyncio.get_running_loop()
        payload = request.model_dump(by_alias=True)

        try:
            future = loop.run_in_executor(self._get_executor(), self.handler, payload)
            reply = await asyncio.wait_for(future, timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            logger.warning(
                f"Worker timed out after {self.timeout_seconds}s on generation {request.generation}"
            )
            self._discard_executor()
            raise WorkerUnavailableError(f"Worker timed out after {self.timeout_seconds}s")
        except Exception as e:
            logger.warning(f"Worker transport failed: {type(e).__name__}: {e}")
            self._discard_executor()
            raise WorkerUnavailableError(f"Worker failed: {e}") from e

        if not isinstance(reply, dict):
            raise WorkerUnavailableError(f"Unexpected worker reply of type {type(reply).__name__}")
        if "error" in reply:
            raise WorkerUnavailableError(f"Worker error: {reply['error']}")

        try:
            response = WorkerResponse.model_validate(reply)
        except ValidationError as e:
            raise WorkerUnavailableError(f"Malformed worker reply: {e.error_count()} error(s)") from e

        if response.width != request.width or response.height != request.height:
            raise WorkerUnavailableError(
                f"Worker returned {response.width}x{response.height}, expected {request.width}x{request.height}"
            )
        expected_size = request.width * request.height * 4
        if len(response.processed_buffer) != expected_size:
            raise WorkerUnavailableError(
                f"Worker returned {len(response.processed_buffer)} bytes, expected {expected_size}"
            )

        return response

    def close(self) -> None:
        """Shut down an executor this client created."""
        if self._owns_executor and self._executor is not None:
            self._executor.shutdown(wait=False, cancel_futures=True)
        self._executor = None
