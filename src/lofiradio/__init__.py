"""
lofiradio - Live stream radio for the terminal.

This package discovers a channel's live broadcasts, resolves the selected
one to a playable stream and manages playback with an optional sleep timer.
"""

from .backend import ExtractionBackend, InvidiousBackend
from .catalog import CatalogCache, CatalogService
from .player import MpvEngine, PlaybackEngine
from .ranking import rank_streams, score
from .resolver import ResolutionService
from .session import SessionOrchestrator
from .sleep_timer import SleepScheduler
from .types import CatalogSnapshot, SessionState, StreamDescriptor

__version__ = "0.1.0"
__all__ = [
    "CatalogCache",
    "CatalogService",
    "CatalogSnapshot",
    "ExtractionBackend",
    "InvidiousBackend",
    "MpvEngine",
    "PlaybackEngine",
    "ResolutionService",
    "SessionOrchestrator",
    "SessionState",
    "SleepScheduler",
    "StreamDescriptor",
    "rank_streams",
    "score",
]
