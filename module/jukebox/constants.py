"""
Music module settings

Values are read from the environment (``.env`` is loaded by main.py before
any extension is imported); every setting has a usable default.
"""

import os


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if not value:
        return default
    try:
        return float(value)
    except ValueError:
        return default


# === Cache ===
CACHE_HOME = os.getenv("MUSIC_CACHE_HOME", "./temp/music")
DATABASE_PATH = os.getenv("MUSIC_DATABASE_PATH", "./data/music.db")

# === yt-dlp ===
YTDLP_PATH = os.getenv("YTDLP_PATH", "yt-dlp")
YTDLP_FORMAT = "webm[abr>0]/bestaudio/best"
YTDLP_SEARCH_PREFIX = "ytsearch1:"
YTDLP_EXTRACT_TIMEOUT = 30
YTDLP_DOWNLOAD_TIMEOUT = 600
YTDLP_PLAYLIST_LIMIT = 100

# === FFmpeg ===
FFMPEG_PATH = os.getenv("FFMPEG_PATH") or None
FFMPEG_STREAM_BEFORE_OPTIONS = "-reconnect 1 -reconnect_streamed 1 -reconnect_delay_max 5"
FFMPEG_OPTIONS = "-vn"

# === Voice ===
AUTO_DISCONNECT_DELAY = _env_float("AUTO_DISCONNECT_DELAY", 300.0)
VOICE_CONNECT_TIMEOUT = 30.0

# === Messages ===
MESSAGE_CHARACTER_LIMIT = 2000
QUEUE_TRUNCATION_MARKER = "...\n**Queue too long to display!**"
UNKNOWN_TITLE = "Unknown title"
