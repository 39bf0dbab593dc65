from module.jukebox.constants import QUEUE_TRUNCATION_MARKER
from module.jukebox.core.queue import TrackMetadata
from module.jukebox.ui import (
    QueueLine,
    added_to_queue,
    format_duration,
    now_playing,
    playlist_added,
    queue_lines,
    render_queue,
    truncate_message,
)


def test_format_duration():
    assert format_duration(None) == "unknown"
    assert format_duration(0) == "0:00"
    assert format_duration(65) == "1:05"
    assert format_duration(3599) == "59:59"
    assert format_duration(3661) == "1:01:01"


def test_play_replies():
    assert now_playing("Song") == "Now playing: Song"
    assert added_to_queue("Song") == "Added to queue: Song"
    assert playlist_added("My Mix") == "Added to queue (playlist): My Mix"


def test_empty_queue():
    assert render_queue(None, 0, []) == "Queue is empty"


def test_queue_with_etas():
    text = render_queue(("Song A", 210), 65, [("Song B", 145), ("Song C", 100)])

    assert text.splitlines() == [
        "**Currently playing:** Song A **⏐⏐ 1:05 / 3:30 ⏐⏐**",
        "",
        "**1. ⏐⏐ 2:25 ⏐⏐** Song B",
        "**2. ⏐⏐ 4:50 ⏐⏐** Song C",
    ]


def test_unknown_duration_makes_later_etas_unknown():
    text = render_queue(("Song A", 100), 40, [("Song B", None), ("Song C", 100), ("Song D", 50)])

    assert text.splitlines()[2:] == [
        "**1. ⏐⏐ 1:00 ⏐⏐** Song B",
        "**2. ⏐⏐ unknown ⏐⏐** Song C",
        "**3. ⏐⏐ unknown ⏐⏐** Song D",
    ]


def test_unknown_current_duration():
    text = render_queue(("Live", None), 30, [("Next", 100)])

    assert text.splitlines() == [
        "**Currently playing:** Live **⏐⏐ 0:30 / unknown ⏐⏐**",
        "",
        "**1. ⏐⏐ unknown ⏐⏐** Next",
    ]


def test_long_queue_is_truncated():
    upcoming = [(f"A rather long track title number {i}", 180) for i in range(200)]

    text = render_queue(("Song A", 180), 0, upcoming)

    assert len(text) <= 2000
    assert text.endswith(QUEUE_TRUNCATION_MARKER)
    assert text.startswith("**Currently playing:** Song A")


def test_truncate_message():
    assert truncate_message("short", limit=20) == "short"

    cut = truncate_message("x" * 50, limit=20, marker="[more]")
    assert cut == "x" * 13 + "[more]"


def test_queue_lines_fill_in_missing_metadata():
    assert queue_lines([TrackMetadata(title="Song", duration=10), None]) == [
        ("Song", 10, None),
        ("Unknown title", None, None),
    ]


def test_playlist_entries_are_grouped():
    upcoming = [
        QueueLine("B", 60),
        QueueLine("C", 60, "My Mix"),
        QueueLine("D", 60, "My Mix"),
        QueueLine("E", 60),
    ]
    lines = render_queue(QueueLine("A", 100), 40, upcoming).splitlines()

    assert lines[2:] == [
        "**1. ⏐⏐ 1:00 ⏐⏐** B",
        "**My Mix**",
        "> **2. ⏐⏐ 2:00 ⏐⏐** C",
        "> **3. ⏐⏐ 3:00 ⏐⏐** D",
        "**4. ⏐⏐ 4:00 ⏐⏐** E",
    ]
