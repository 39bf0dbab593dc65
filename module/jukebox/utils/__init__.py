# Utils module
from .errors import (
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
from .decorators import reply_on_error, log_operation, send_reply

__all__ = [
    # Errors
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
    # Decorators
    "reply_on_error",
    "log_operation",
    "send_reply",
]
