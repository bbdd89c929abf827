"""Error taxonomy for catalog, resolution and playback failures."""

from .types import ErrorKind


class LofiRadioError(Exception):
    """Base class for every failure surfaced to the session state."""

    kind: ErrorKind = ErrorKind.EXTRACTION_ERROR
    retryable: bool = True


class OfflineError(LofiRadioError):
    """No connectivity or a transport-level failure."""

    kind = ErrorKind.OFFLINE


class ExtractionError(LofiRadioError):
    """The backend failed or returned malformed or unexpected data."""

    kind = ErrorKind.EXTRACTION_ERROR


class RateLimitedError(ExtractionError):
    """The backend answered with HTTP 429.

    Attributes:
        retry_after: Seconds the server asked us to wait, if it said so.
    """

    kind = ErrorKind.RATE_LIMITED

    def __init__(self, message: str, retry_after: float | None = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class ResolutionTimeoutError(LofiRadioError):
    """Stream resolution exceeded its time bound."""

    kind = ErrorKind.TIMEOUT


class StreamNotFoundError(LofiRadioError):
    """Resolution succeeded but produced no usable manifest URL."""

    kind = ErrorKind.NOT_FOUND


class PlaybackEngineUnavailableError(LofiRadioError):
    """The playback engine could not be started or reached."""

    kind = ErrorKind.ENGINE_UNAVAILABLE
    retryable = False


def error_kind(exc: BaseException) -> ErrorKind:
    """
    Map any exception to the kind shown to the user.

    Args:
        exc: The failure to classify.

    Returns:
        The ErrorKind of a LofiRadioError, OFFLINE for OS-level I/O errors,
        EXTRACTION_ERROR for everything else.
    """
    if isinstance(exc, LofiRadioError):
        return exc.kind
    if isinstance(exc, OSError):
        return ErrorKind.OFFLINE
    return ErrorKind.EXTRACTION_ERROR
