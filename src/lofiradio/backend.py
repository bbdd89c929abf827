"""Extraction backend interface and an Invidious API implementation."""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol

import requests

from .errors import ExtractionError, OfflineError, RateLimitedError
from .types import URL, StreamID, StreamURL

logger = logging.getLogger(__name__)

WATCH_URL_PREFIX = "https://www.youtube.com/watch?v="

# Browser User-Agent to avoid bot detection
USER_AGENT = "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:140.0) Gecko/20100101 Firefox/140.0"

# HTTP status code constants
HTTP_TOO_MANY_REQUESTS = 429
HTTP_CLIENT_ERROR = 400  # Start of client error codes


class StreamType(Enum):
    """Kind of item listed on a channel tab."""

    LIVE_STREAM = "live_stream"
    UPCOMING = "upcoming"
    VIDEO = "video"


@dataclass
class LiveItem:
    """Raw item as listed by the extraction backend.

    Attributes:
        name: Item title.
        source_url: Watch URL the stream identifier is parsed from.
        thumbnail_urls: Thumbnail URLs, best first.
        view_count: Viewer count reported by the backend.
        stream_type: Whether the item is live, upcoming or a plain video.
    """

    name: str
    source_url: URL
    thumbnail_urls: list[URL] = field(default_factory=list)
    view_count: int = 0
    stream_type: StreamType = StreamType.VIDEO


class ExtractionBackend(Protocol):
    """Source of channel listings and stream manifests.

    Both calls block. Implementations raise OfflineError for transport
    failures, RateLimitedError when throttled and ExtractionError for any
    other backend failure.
    """

    def list_live_items(self, channel_id: str) -> list[LiveItem]: ...

    def resolve_manifest(self, stream_url: URL) -> StreamURL | None: ...


def extract_video_id(url: URL) -> StreamID:
    """
    Parse the stream identifier out of a watch URL.

    Takes the ``v=`` query value up to the next ``&``; without one, falls back
    to the last path segment up to ``?``.

    Args:
        url: Watch or short URL of a stream.

    Returns:
        The identifier, or an empty string if none could be parsed.
    """
    _, found, rest = url.partition("v=")
    video_id = rest.partition("&")[0] if found else ""
    if not video_id:
        video_id = url.rpartition("/")[2].partition("?")[0]
    return video_id


def build_watch_url(stream_id: StreamID) -> URL:
    """Build the canonical watch URL for a stream identifier."""
    return f"{WATCH_URL_PREFIX}{stream_id}"


class InvidiousBackend:
    """
    Extraction backend speaking the Invidious JSON API.

    Attributes:
        base_url: Root URL of the Invidious instance.
        timeout: Per-request timeout in seconds.
        session: Shared requests session carrying the User-Agent header.
    """

    def __init__(
        self,
        base_url: URL,
        session: requests.Session | None = None,
        timeout: float = 15.0,
    ) -> None:
        """
        Initialize the backend.

        Args:
            base_url: Root URL of the Invidious instance.
            session: Session to reuse (a new one is created if None).
            timeout: Per-request timeout in seconds (default: 15.0).
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers["User-Agent"] = USER_AGENT
        logger.info("InvidiousBackend initialized with %s", self.base_url)

    def _get_json(self, path: str) -> Any:
        """
        GET an API path and decode the JSON body.

        Raises:
            OfflineError: On connection failures and timeouts.
            RateLimitedError: On HTTP 429.
            ExtractionError: On any other HTTP error or a malformed body.
        """
        url = f"{self.base_url}{path}"
        try:
            response = self.session.get(url, timeout=self.timeout)
        except (requests.ConnectionError, requests.Timeout) as e:
            msg = f"Could not reach {self.base_url}"
            raise OfflineError(msg) from e
        except requests.RequestException as e:
            msg = f"Request to {url} failed: {e}"
            raise ExtractionError(msg) from e

        if response.status_code == HTTP_TOO_MANY_REQUESTS:
            retry_after = _parse_retry_after(response.headers.get("Retry-After"))
            logger.warning("Rate limited by %s (retry after: %s)", self.base_url, retry_after)
            msg = f"Rate limited by {self.base_url}"
            raise RateLimitedError(msg, retry_after=retry_after)

        if response.status_code >= HTTP_CLIENT_ERROR:
            msg = f"Backend returned HTTP {response.status_code} for {path}"
            raise ExtractionError(msg)

        try:
            return response.json()
        except ValueError as e:
            msg = f"Malformed response for {path}"
            raise ExtractionError(msg) from e

    def list_live_items(self, channel_id: str) -> list[LiveItem]:
        """
        List the items on a channel's live streams tab.

        Args:
            channel_id: Channel identifier.

        Returns:
            Items in the order the backend lists them.
        """
        data = self._get_json(f"/api/v1/channels/{channel_id}/streams")
        videos = data.get("videos") if isinstance(data, dict) else None
        if not isinstance(videos, list):
            msg = f"Unexpected channel listing for {channel_id}"
            raise ExtractionError(msg)

        items = []
        for video in videos:
            if not isinstance(video, dict):
                continue
            if video.get("liveNow"):
                stream_type = StreamType.LIVE_STREAM
            elif video.get("isUpcoming"):
                stream_type = StreamType.UPCOMING
            else:
                stream_type = StreamType.VIDEO
            thumbnails = [
                thumb["url"]
                for thumb in video.get("videoThumbnails") or []
                if isinstance(thumb, dict) and thumb.get("url")
            ]
            video_id = str(video.get("videoId") or "")
            items.append(
                LiveItem(
                    name=str(video.get("title", "")),
                    source_url=build_watch_url(video_id) if video_id else "",
                    thumbnail_urls=thumbnails,
                    view_count=int(video.get("viewCount") or 0),
                    stream_type=stream_type,
                )
            )

        logger.debug("Listed %d items for channel %s", len(items), channel_id)
        return items

    def resolve_manifest(self, stream_url: URL) -> StreamURL | None:
        """
        Resolve a watch URL to its HLS manifest URL.

        Args:
            stream_url: Canonical watch URL.

        Returns:
            The manifest URL, or None if the backend has none for this stream.
        """
        video_id = extract_video_id(stream_url)
        if not video_id:
            msg = f"No stream identifier in {stream_url}"
            raise ExtractionError(msg)

        data = self._get_json(f"/api/v1/videos/{video_id}")
        if not isinstance(data, dict):
            msg = f"Unexpected video details for {video_id}"
            raise ExtractionError(msg)

        hls_url = data.get("hlsUrl")
        if hls_url and not hls_url.startswith("http"):
            # Proxied instances return paths relative to themselves
            hls_url = f"{self.base_url}{hls_url}"
        return hls_url or None


def _parse_retry_after(value: str | None) -> float | None:
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        return None
