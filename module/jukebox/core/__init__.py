# Core module
from .cache import CacheRecord, ContentCache, content_hash
from .queue import TrackEvent, TrackHandle, TrackMetadata, TrackMetadataTable, TrackQueue
from .scheduler import AutoDisconnectScheduler
from .session import VoiceSession, VoiceSessionManager
from .player import MusicPlayer, PlayResult

__all__ = [
    "CacheRecord",
    "ContentCache",
    "content_hash",
    "TrackEvent",
    "TrackHandle",
    "TrackMetadata",
    "TrackMetadataTable",
    "TrackQueue",
    "AutoDisconnectScheduler",
    "VoiceSession",
    "VoiceSessionManager",
    "MusicPlayer",
    "PlayResult",
]
