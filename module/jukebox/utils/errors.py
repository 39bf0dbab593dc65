"""
Music error hierarchy

Every error derives from MusicError and carries:
- message: technical description (for the log)
- user_message: what the Discord user gets to see
"""

from typing import Optional


class MusicError(Exception):
    """Base class for music errors"""

    def __init__(self, message: str, user_message: Optional[str] = None):
        self.message = message
        self.user_message = user_message or message
        super().__init__(self.message)

    def __str__(self) -> str:
        return self.message


class DownloadError(MusicError):
    """The fetch tool exited with a non-zero status"""

    def __init__(self, message: str, url: Optional[str] = None):
        self.url = url
        super().__init__(
            message=message,
            user_message="Failed to download the track"
        )


class AlreadyInFlightError(MusicError):
    """Another download of the same content is already running"""

    def __init__(self, content_id: str):
        self.content_id = content_id
        super().__init__(
            message=f"Download of {content_id} is already in flight",
            user_message="This track is already being cached"
        )


class ResolveError(MusicError):
    """
    Live resolution of a query failed

    reason is one of:
    - age_restricted
    - copyright
    - private
    - unavailable
    - region_blocked
    - not_found: the search returned nothing
    - unknown
    """

    REASON_MESSAGES = {
        "age_restricted": "This video is age restricted and cannot be played",
        "copyright": "This video is blocked on copyright grounds",
        "private": "This video is private",
        "unavailable": "This video is no longer available",
        "region_blocked": "This video is not available in this region",
        "not_found": "No result found!",
        "unknown": "Failed to find the requested track",
    }

    def __init__(self, message: str, reason: str = "unknown", query: Optional[str] = None):
        self.reason = reason
        self.query = query
        user_message = self.REASON_MESSAGES.get(reason, self.REASON_MESSAGES["unknown"])
        super().__init__(message=message, user_message=user_message)


class MetadataError(MusicError):
    """The resolved track carries no canonical source URL"""

    def __init__(self, message: str):
        super().__init__(
            message=message,
            user_message="Failed to determine the source of the track"
        )


class CacheWriteError(MusicError):
    """A cache record could not be written"""
    pass


class VoiceConnectionError(MusicError):
    """Joining the voice channel failed"""

    def __init__(self, message: str):
        super().__init__(
            message=message,
            user_message="Failed to join the voice channel"
        )


class NoSessionError(MusicError):
    """The guild has no active voice session"""

    def __init__(self, guild_id: int):
        self.guild_id = guild_id
        super().__init__(
            message=f"No voice session for guild {guild_id}",
            user_message="Not connected to a voice channel"
        )


class QueueEmptyError(MusicError):
    """The queue holds no track"""

    def __init__(self):
        super().__init__(
            message="Queue is empty",
            user_message="Queue is empty"
        )


class UnexpectedStateError(MusicError):
    """Internal bookkeeping disagrees with itself"""

    def __init__(self, message: str):
        super().__init__(
            message=message,
            user_message="Something went wrong, please try again"
        )
