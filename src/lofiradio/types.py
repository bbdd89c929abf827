"""Type definitions for lofiradio."""

from dataclasses import dataclass, field
from enum import Enum

from .ranking import rank_streams

# Common type aliases (Python 3.12+ syntax)
type URL = str
type StreamURL = str
type StreamID = str


class ErrorKind(Enum):
    """Failure categories surfaced to the rendering layer."""

    OFFLINE = "offline"
    EXTRACTION_ERROR = "extraction_error"
    RATE_LIMITED = "rate_limited"
    TIMEOUT = "timeout"
    NOT_FOUND = "not_found"
    ENGINE_UNAVAILABLE = "engine_unavailable"


@dataclass(frozen=True)
class StreamDescriptor:
    """One live broadcast on the channel.

    Attributes:
        title: Broadcast title as shown by the backend.
        id: Opaque stream identifier, the identity of the descriptor.
        thumbnail_url: Artwork URL, if the backend provided one.
        viewer_count: Current number of viewers (never negative).
    """

    title: str
    id: StreamID
    thumbnail_url: URL | None = field(default=None, compare=False)
    viewer_count: int = field(default=0, compare=False)

    def __post_init__(self) -> None:
        if self.viewer_count < 0:
            object.__setattr__(self, "viewer_count", 0)

    def __hash__(self) -> int:
        return hash(self.id)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, StreamDescriptor):
            return NotImplemented
        return self.id == other.id


@dataclass(frozen=True)
class CatalogSnapshot:
    """Result of one catalog fetch.

    ``stale`` is True when the streams come from the cache because a fresh
    fetch failed. A stale snapshot always holds at least one stream.
    """

    streams: tuple[StreamDescriptor, ...]
    stale: bool = False


# --- Catalog sub-state ---


@dataclass(frozen=True)
class Loading:
    """Catalog fetch in progress."""


@dataclass(frozen=True)
class Empty:
    """The channel has no live streams right now."""


@dataclass(frozen=True)
class Ready:
    """Live streams to choose from; stale when served from the cache."""

    streams: tuple[StreamDescriptor, ...]
    stale: bool = False


@dataclass(frozen=True)
class CatalogError:
    """Catalog fetch failed with nothing cached to fall back on."""

    kind: ErrorKind
    message: str | None = None


type CatalogState = Loading | Empty | Ready | CatalogError


# --- Playback sub-state ---


@dataclass(frozen=True)
class Idle:
    """Nothing selected yet."""


@dataclass(frozen=True)
class Resolving:
    """Looking up the manifest URL of the selected stream."""


@dataclass(frozen=True)
class Buffering:
    """Waiting for the selected stream to start or resume playing."""


@dataclass(frozen=True)
class Playing:
    """Audio is playing."""


@dataclass(frozen=True)
class Paused:
    """Stream loaded but not playing."""


@dataclass(frozen=True)
class PlaybackError:
    """Resolution or playback of the selected stream failed."""

    kind: ErrorKind
    message: str | None = None


type PlaybackState = Idle | Resolving | Buffering | Playing | Paused | PlaybackError


@dataclass(frozen=True)
class SleepTimerState:
    """Countdown state of the sleep timer.

    Attributes:
        active: Whether a countdown is running.
        remaining_ms: Milliseconds left until expiry (0 when inactive).
        preset_minutes: The preset the timer was started from, if any.
    """

    active: bool = False
    remaining_ms: int = 0
    preset_minutes: int | None = None


@dataclass(frozen=True)
class SessionState:
    """Immutable snapshot of the whole session, published to the rendering layer."""

    catalog: CatalogState = field(default_factory=Loading)
    selection: StreamDescriptor | None = None
    playback: PlaybackState = field(default_factory=Idle)
    sleep_timer: SleepTimerState = field(default_factory=SleepTimerState)
    search_query: str = ""

    @property
    def streams(self) -> tuple[StreamDescriptor, ...]:
        """Streams of the current catalog, empty unless it is Ready."""
        match self.catalog:
            case Ready(streams=streams):
                return streams
            case Loading() | Empty() | CatalogError():
                return ()

    @property
    def ranked_streams(self) -> list[StreamDescriptor]:
        """Catalog filtered and ordered against the current search query."""
        return rank_streams(self.streams, self.search_query)
