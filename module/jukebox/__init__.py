"""
Jukebox - queued voice playback with a content-addressed audio cache

- per-guild voice sessions with a FIFO track queue
- tracks cached on disk by SHA-256 of their source URL
- background caching while the first play streams live
- automatic leave after the queue has been idle
"""

# Core (imported first: the downloader package depends on core.cache)
from .core import (
    CacheRecord,
    ContentCache,
    content_hash,
    TrackEvent,
    TrackHandle,
    TrackMetadata,
    TrackMetadataTable,
    TrackQueue,
    AutoDisconnectScheduler,
    VoiceSession,
    VoiceSessionManager,
    MusicPlayer,
    PlayResult,
)

# Database
from .database import DatabaseManager

# Downloader
from .downloader import YTDLPDownloader, DownloadCoordinator, looks_like_playlist, looks_like_url

# FFmpeg
from .ffmpeg import FFmpegManager, build_audio_source, get_ffmpeg_path

# UI
from .ui import QueueLine, render_queue, format_duration

# Utils
from .utils.errors import (
    MusicError,
    DownloadError,
    AlreadyInFlightError,
    ResolveError,
    MetadataError,
    CacheWriteError,
    VoiceConnectionError,
    NoSessionError,
    QueueEmptyError,
    UnexpectedStateError,
)
from .utils.decorators import reply_on_error, log_operation, send_reply

# Constants
from .constants import (
    CACHE_HOME,
    DATABASE_PATH,
    AUTO_DISCONNECT_DELAY,
    MESSAGE_CHARACTER_LIMIT,
)

__all__ = [
    # Core
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
    # Database
    "DatabaseManager",
    # Downloader
    "YTDLPDownloader",
    "DownloadCoordinator",
    "looks_like_playlist",
    "looks_like_url",
    # FFmpeg
    "FFmpegManager",
    "build_audio_source",
    "get_ffmpeg_path",
    # UI
    "QueueLine",
    "render_queue",
    "format_duration",
    # Utils
    "MusicError",
    "DownloadError",
    "AlreadyInFlightError",
    "ResolveError",
    "MetadataError",
    "CacheWriteError",
    "VoiceConnectionError",
    "NoSessionError",
    "QueueEmptyError",
    "UnexpectedStateError",
    "reply_on_error",
    "log_operation",
    "send_reply",
    # Constants
    "CACHE_HOME",
    "DATABASE_PATH",
    "AUTO_DISCONNECT_DELAY",
    "MESSAGE_CHARACTER_LIMIT",
]
