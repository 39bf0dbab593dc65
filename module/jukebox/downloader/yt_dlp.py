"""
yt-dlp async wrapper

Every call runs yt-dlp as a child process through
asyncio.create_subprocess_exec, so nothing blocks the event loop.

- resolve(): live resolution of a URL or search text to a streamable URL
  plus metadata (--dump-json)
- resolve_playlist(): the entries of a playlist URL (--flat-playlist)
- fetch(): download one URL into the cache with fixed format selection
"""

import asyncio
import json
from pathlib import Path
from typing import Optional
from urllib.parse import parse_qs, urlparse

from loguru import logger

from ..constants import (
    YTDLP_PATH,
    YTDLP_FORMAT,
    YTDLP_SEARCH_PREFIX,
    YTDLP_EXTRACT_TIMEOUT,
    YTDLP_DOWNLOAD_TIMEOUT,
    YTDLP_PLAYLIST_LIMIT,
)
from ..utils.errors import DownloadError, ResolveError


def looks_like_url(query: str) -> bool:
    """True for http(s) URLs with a host; anything else is search text"""
    parsed = urlparse(query.strip())
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def looks_like_playlist(query: str) -> bool:
    """True for URLs that carry a playlist id (a ``list`` query parameter)"""
    if not looks_like_url(query):
        return False
    return bool(parse_qs(urlparse(query.strip()).query).get("list"))


class YTDLPDownloader:
    """
    yt-dlp child-process runner

    Usage:
        downloader = YTDLPDownloader()

        info = await downloader.resolve("never gonna give you up")
        # info["stream_url"], info["source_url"], info["title"], info["duration"]

        await downloader.fetch(info["source_url"], Path("./temp/music/<hash>"))
    """

    # stderr fragments -> ResolveError reason
    ERROR_PATTERNS = {
        "age_restricted": [
            "sign in to confirm your age",
            "age-restricted",
            "inappropriate for some users"
        ],
        "copyright": [
            "copyright grounds",
            "blocked it",
            "content owner",
            "has blocked"
        ],
        "region_blocked": [
            "not available in your country"
        ],
        "private": [
            "private video",
            "sign in if you've been granted access"
        ],
        "unavailable": [
            "video unavailable",
            "this video is unavailable",
            "no longer available",
            "has been removed",
            "account has been terminated"
        ]
    }

    def __init__(self, executable: str = YTDLP_PATH):
        self.executable = executable

    # === Public ===

    async def resolve(self, query: str, timeout: int = YTDLP_EXTRACT_TIMEOUT) -> dict:
        """
        Resolve a URL or free-text query to a streamable track

        Args:
            query: URL, or search text (searched as the first platform hit)
            timeout: seconds before giving up

        Returns:
            {"stream_url", "source_url", "title", "duration"}; source_url and
            duration may be None when yt-dlp does not report them

        Raises:
            ResolveError: yt-dlp failed, timed out or found nothing
        """
        target = query if looks_like_url(query) else f"{YTDLP_SEARCH_PREFIX}{query}"
        args = [
            self.executable,
            "-f", YTDLP_FORMAT,
            "--dump-json",
            "--no-playlist",
            "--ignore-config",
            "--no-warnings",
            "--quiet",
            target,
        ]
        data = await self._run_json(args, query, timeout)
        return self._parse_video_data(data)

    async def resolve_playlist(self, url: str, timeout: int = YTDLP_EXTRACT_TIMEOUT) -> dict:
        """
        List the entries of a playlist without resolving each one

        Returns:
            {"title", "entries": [{"source_url", "title", "duration"}, ...]};
            entries without a URL are left out

        Raises:
            ResolveError: yt-dlp failed, timed out or found nothing
        """
        args = [
            self.executable,
            "--flat-playlist",
            "--dump-single-json",
            "--playlist-end", str(YTDLP_PLAYLIST_LIMIT),
            "--ignore-config",
            "--no-warnings",
            "--quiet",
            url,
        ]
        data = await self._run_json(args, url, timeout)

        entries = []
        for entry in data.get("entries") or []:
            if not entry:
                continue
            parsed = self._parse_video_data(entry)
            source_url = entry.get("webpage_url") or entry.get("url")
            if not source_url:
                continue
            entries.append({
                "source_url": source_url,
                "title": parsed["title"],
                "duration": parsed["duration"],
            })

        return {"title": data.get("title") or url, "entries": entries}

    async def fetch(self, url: str, destination: Path, timeout: int = YTDLP_DOWNLOAD_TIMEOUT) -> Path:
        """
        Download url to destination

        Raises:
            DownloadError: non-zero exit, timeout, or yt-dlp missing
        """
        args = [
            self.executable,
            "-f", YTDLP_FORMAT,
            "--no-playlist",
            "--ignore-config",
            "--no-warnings",
            url,
            "-o", str(destination),
        ]

        logger.debug(f"[yt-dlp] fetch: {' '.join(args)}")

        try:
            proc = await asyncio.create_subprocess_exec(
                *args,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE
            )
        except OSError as e:
            raise DownloadError(f"Could not start yt-dlp: {e}", url=url) from e

        try:
            _, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            raise DownloadError(f"Download timed out after {timeout}s: {url}", url=url)

        if proc.returncode != 0:
            error_msg = stderr.decode(errors="replace").strip() or f"returncode={proc.returncode}"
            raise DownloadError(f"yt-dlp download failed: {error_msg}", url=url)

        return destination

    # === Private ===

    async def _run_json(self, args: list, query: str, timeout: int) -> dict:
        """Run yt-dlp and parse the first JSON line of its output"""
        logger.debug(f"[yt-dlp] resolve: {' '.join(args)}")

        try:
            proc = await asyncio.create_subprocess_exec(
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE
            )
        except OSError as e:
            raise ResolveError(f"Could not start yt-dlp: {e}", query=query) from e

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            raise ResolveError(f"yt-dlp resolve timed out after {timeout}s: {query}", query=query)

        stdout_str = stdout.decode(errors="replace").strip()
        stderr_str = stderr.decode(errors="replace").strip()

        if proc.returncode != 0:
            error_msg = stderr_str or stdout_str or f"returncode={proc.returncode}"
            raise ResolveError(
                f"yt-dlp resolve failed: {error_msg}",
                reason=self._detect_error_type(error_msg),
                query=query,
            )

        # ytsearch prints nothing when the search has no hit
        first_line = stdout_str.splitlines()[0] if stdout_str else ""
        if not first_line:
            raise ResolveError(f"No result for {query!r}", reason="not_found", query=query)

        try:
            return json.loads(first_line)
        except json.JSONDecodeError as e:
            raise ResolveError(f"Unreadable yt-dlp output: {e}", query=query) from e

    def _parse_video_data(self, data: dict) -> dict:
        duration = data.get("duration")
        try:
            duration = int(float(duration)) if duration else None
        except (ValueError, TypeError, OverflowError):
            duration = None

        return {
            "stream_url": data.get("url"),
            "source_url": data.get("webpage_url") or data.get("original_url"),
            "title": data.get("title") or data.get("fulltitle"),
            "duration": duration,
        }

    def _detect_error_type(self, error_msg: str) -> str:
        error_lower = error_msg.lower()

        for error_type, patterns in self.ERROR_PATTERNS.items():
            for pattern in patterns:
                if pattern in error_lower:
                    return error_type

        return "unknown"
