"""Resolution of stream identifiers to playable manifest URLs."""

import asyncio
import logging
from concurrent.futures import Executor

from .backend import ExtractionBackend, build_watch_url
from .errors import (
    ExtractionError,
    LofiRadioError,
    OfflineError,
    ResolutionTimeoutError,
    StreamNotFoundError,
)
from .types import StreamID, StreamURL

logger = logging.getLogger(__name__)

DEFAULT_RESOLVE_TIMEOUT = 30.0


class ResolutionService:
    """
    Turns a stream identifier into a currently valid manifest URL.

    Live manifest URLs are short-lived, so nothing is cached: every call
    asks the backend again.

    Attributes:
        backend: Extraction backend used to resolve manifests.
        executor: Executor for the blocking backend call (loop default if None).
    """

    def __init__(self, backend: ExtractionBackend, executor: Executor | None = None) -> None:
        self.backend = backend
        self.executor = executor

    def _resolve_blocking(self, stream_id: StreamID) -> StreamURL:
        watch_url = build_watch_url(stream_id)
        try:
            manifest_url = self.backend.resolve_manifest(watch_url)
        except LofiRadioError:
            raise
        except OSError as e:
            msg = f"Could not reach backend for stream {stream_id}: {e}"
            raise OfflineError(msg) from e
        except Exception as e:
            msg = f"Could not extract stream {stream_id}: {e}"
            raise ExtractionError(msg) from e

        if not manifest_url:
            msg = f"No manifest URL available for stream {stream_id}"
            raise StreamNotFoundError(msg)
        return manifest_url

    async def resolve(
        self,
        stream_id: StreamID,
        timeout: float = DEFAULT_RESOLVE_TIMEOUT,
    ) -> StreamURL:
        """
        Resolve a stream to its manifest URL.

        Cancelling the awaiting task abandons the call; the worker thread
        finishes on its own and its result is dropped.

        Args:
            stream_id: Identifier of the stream.
            timeout: Upper bound in seconds (default: 30.0).

        Returns:
            The manifest URL.

        Raises:
            ValueError: If stream_id is empty.
            StreamNotFoundError: If the backend has no manifest for the stream.
            ResolutionTimeoutError: If the bound is exceeded.
            OfflineError: If the backend cannot be reached.
            ExtractionError: For other backend failures.
        """
        if not stream_id:
            msg = "stream_id must not be empty"
            raise ValueError(msg)

        loop = asyncio.get_running_loop()
        logger.info("Resolving stream %s", stream_id)
        try:
            url = await asyncio.wait_for(
                loop.run_in_executor(self.executor, self._resolve_blocking, stream_id),
                timeout=timeout,
            )
        except TimeoutError as e:
            msg = f"Resolving stream {stream_id} took longer than {timeout:.0f}s"
            raise ResolutionTimeoutError(msg) from e

        logger.debug("Resolved stream %s to %s", stream_id, url)
        return url
