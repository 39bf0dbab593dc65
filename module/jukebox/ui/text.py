"""
Plain-text replies

/queue output looks like:

    **Currently playing:** Song A **⏐⏐ 1:05 / 3:30 ⏐⏐**

    **1. ⏐⏐ 2:25 ⏐⏐** Song B
    **2. ⏐⏐ 6:10 ⏐⏐** Song C

The ETA of an upcoming track is the remaining time of the current track
plus the durations of everything before it. Once a duration is unknown
every later ETA is "unknown".

Entries queued from a playlist are grouped under a bold playlist title and
quoted:

    **My Mix**
    > **3. ⏐⏐ 8:40 ⏐⏐** Song D
"""

from typing import Iterable, List, NamedTuple, Optional, Sequence

from ..constants import MESSAGE_CHARACTER_LIMIT, QUEUE_TRUNCATION_MARKER, UNKNOWN_TITLE
from ..core.queue import TrackMetadata

UNKNOWN_DURATION = "unknown"


class QueueLine(NamedTuple):
    title: str
    duration: Optional[int] = None
    playlist: Optional[str] = None


def format_duration(seconds: Optional[int]) -> str:
    """M:SS or H:MM:SS; "unknown" for None"""
    if seconds is None:
        return UNKNOWN_DURATION

    seconds = max(0, int(seconds))
    if seconds >= 3600:
        hours = seconds // 3600
        minutes = (seconds % 3600) // 60
        secs = seconds % 60
        return f"{hours}:{minutes:02d}:{secs:02d}"
    minutes = seconds // 60
    secs = seconds % 60
    return f"{minutes}:{secs:02d}"


def now_playing(title: str) -> str:
    return f"Now playing: {title}"


def added_to_queue(title: str) -> str:
    return f"Added to queue: {title}"


def playlist_added(title: str) -> str:
    return f"Added to queue (playlist): {title}"


def truncate_message(message: str, limit: int = MESSAGE_CHARACTER_LIMIT,
                     marker: str = QUEUE_TRUNCATION_MARKER) -> str:
    """Cut message to fit limit, ending with marker when anything was cut"""
    if len(message) <= limit:
        return message

    cut = message[:limit - len(marker) - 1]
    if cut.endswith("\n"):
        cut = cut[:-1]
    return cut + marker


def render_queue(current: Optional[QueueLine], elapsed: int, upcoming: Sequence[QueueLine],
                 limit: int = MESSAGE_CHARACTER_LIMIT) -> str:
    """
    Render the queue

    Args:
        current: the playing track, None for an empty queue
        elapsed: seconds played of the current track
        upcoming: the tracks after it, in order
        limit: maximum message length
    """
    if current is None:
        return "Queue is empty"

    current = QueueLine(*current)
    title, duration = current.title, current.duration
    lines = [
        f"**Currently playing:** {title} **⏐⏐ {format_duration(elapsed)} / {format_duration(duration)} ⏐⏐**",
        "",
    ]

    eta = None if duration is None else max(0, duration - elapsed)
    playlist = None
    for index, line in enumerate(upcoming, start=1):
        line = QueueLine(*line)
        if line.playlist and line.playlist != playlist:
            lines.append(f"**{line.playlist}**")
        playlist = line.playlist

        prefix = "> " if line.playlist else ""
        lines.append(f"{prefix}**{index}. ⏐⏐ {format_duration(eta)} ⏐⏐** {line.title}")
        if eta is not None and line.duration is not None:
            eta += line.duration
        else:
            eta = None

    return truncate_message("\n".join(lines).rstrip("\n"), limit)


def queue_lines(entries: Iterable[Optional[TrackMetadata]]) -> List[QueueLine]:
    """TrackMetadata (or None for a handle without metadata) -> QueueLine"""
    lines = []
    for metadata in entries:
        if metadata is None:
            lines.append(QueueLine(UNKNOWN_TITLE))
        else:
            lines.append(QueueLine(metadata.display_title, metadata.duration, metadata.playlist))
    return lines
