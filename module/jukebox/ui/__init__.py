"""
Reply text for the music commands
"""

from .text import (
    QueueLine,
    added_to_queue,
    format_duration,
    now_playing,
    playlist_added,
    queue_lines,
    render_queue,
    truncate_message,
)

__all__ = [
    "QueueLine",
    "added_to_queue",
    "format_duration",
    "now_playing",
    "playlist_added",
    "queue_lines",
    "render_queue",
    "truncate_message",
]
