"""Live stream catalog with fallback to the last successful fetch."""

import asyncio
import logging
import threading
from concurrent.futures import Executor

from .backend import ExtractionBackend, LiveItem, StreamType, extract_video_id
from .errors import ExtractionError, LofiRadioError, OfflineError
from .types import CatalogSnapshot, StreamDescriptor

logger = logging.getLogger(__name__)


class CatalogCache:
    """
    Holds the most recent successfully fetched stream list.

    Reads and writes are atomic with respect to each other; a reader always
    sees either the previous list or the new one, never a mix.
    """

    def __init__(self) -> None:
        self._streams: tuple[StreamDescriptor, ...] = ()
        self._lock = threading.Lock()

    def get(self) -> tuple[StreamDescriptor, ...]:
        with self._lock:
            return self._streams

    def replace(self, streams: tuple[StreamDescriptor, ...]) -> None:
        with self._lock:
            self._streams = streams

    def __len__(self) -> int:
        with self._lock:
            return len(self._streams)


def to_descriptor(item: LiveItem) -> StreamDescriptor | None:
    """
    Map a backend item to a stream descriptor.

    Args:
        item: Raw item from the backend.

    Returns:
        The descriptor, or None if no identifier could be parsed.
    """
    stream_id = extract_video_id(item.source_url)
    if not stream_id:
        logger.debug("Dropping item without identifier: %s", item.source_url)
        return None

    return StreamDescriptor(
        title=item.name,
        id=stream_id,
        thumbnail_url=item.thumbnail_urls[0] if item.thumbnail_urls else None,
        viewer_count=max(0, item.view_count),
    )


class CatalogService:
    """
    Fetches the channel's live streams through the extraction backend.

    Failed fetches fall back to the cache when it holds anything; with an
    empty cache the failure propagates to the caller.

    Attributes:
        backend: Extraction backend to list items from.
        channel_id: Channel whose live streams are listed.
        cache: Last successful result.
        executor: Executor for the blocking backend call (loop default if None).
    """

    def __init__(
        self,
        backend: ExtractionBackend,
        channel_id: str,
        cache: CatalogCache | None = None,
        executor: Executor | None = None,
    ) -> None:
        self.backend = backend
        self.channel_id = channel_id
        self.cache = cache or CatalogCache()
        self.executor = executor

    def _fetch_blocking(self) -> tuple[StreamDescriptor, ...]:
        items = self.backend.list_live_items(self.channel_id)
        streams = []
        for item in items:
            if item.stream_type is not StreamType.LIVE_STREAM:
                continue
            descriptor = to_descriptor(item)
            if descriptor is not None:
                streams.append(descriptor)
        return tuple(streams)

    async def fetch(self) -> CatalogSnapshot:
        """
        Fetch the current live streams.

        Returns:
            A fresh snapshot, or a stale one served from the cache if the
            fetch failed and the cache is non-empty.

        Raises:
            OfflineError: Transport failure and nothing cached.
            ExtractionError: Backend failure and nothing cached.
        """
        loop = asyncio.get_running_loop()
        try:
            streams = await loop.run_in_executor(self.executor, self._fetch_blocking)
        except Exception as e:
            cached = self.cache.get()
            if cached:
                logger.warning(
                    "Catalog fetch failed, serving %d cached streams: %s", len(cached), e
                )
                return CatalogSnapshot(streams=cached, stale=True)

            if isinstance(e, LofiRadioError):
                raise
            msg = f"Catalog fetch failed: {e}"
            if isinstance(e, OSError):
                raise OfflineError(msg) from e
            raise ExtractionError(msg) from e

        self.cache.replace(streams)
        logger.info("Fetched %d live streams for channel %s", len(streams), self.channel_id)
        return CatalogSnapshot(streams=streams, stale=False)
