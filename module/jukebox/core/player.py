"""
Music player

Composes the pieces behind the slash commands:
- play: cache lookup or live resolution, enqueue, timer/presence upkeep;
  playlist URLs queue every entry, each one loaded when its turn comes
- skip / stop: queue and session control
- queue_text: the /queue reply

Every guild gets its own session, queue and timer; the cache and the
download coordinator are shared.
"""

from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

import discord
from loguru import logger

from ..ffmpeg.manager import build_audio_source
from ..downloader.coordinator import DownloadCoordinator
from ..constants import UNKNOWN_TITLE
from ..downloader.yt_dlp import YTDLPDownloader, looks_like_playlist
from ..ui.text import added_to_queue, now_playing, playlist_added, queue_lines, render_queue
from ..utils.decorators import log_operation
from ..utils.errors import (
    MetadataError,
    NoSessionError,
    QueueEmptyError,
    ResolveError,
    UnexpectedStateError,
)
from .cache import ContentCache
from .queue import TrackHandle, TrackMetadata, TrackMetadataTable
from .scheduler import AutoDisconnectScheduler
from .session import VoiceSessionManager

SourceFactory = Callable[..., discord.AudioSource]


@dataclass
class PlayResult:
    title: str
    started: bool           # the track is the only one queued and is playing now
    position: int           # queue length after the insert
    from_cache: bool
    playlist: Optional[str] = None  # set when a whole playlist was queued

    @property
    def message(self) -> str:
        if self.playlist is not None:
            return playlist_added(self.playlist)
        return now_playing(self.title) if self.started else added_to_queue(self.title)


class MusicPlayer:
    """
    Usage:
        player = MusicPlayer(bot, cache, YTDLPDownloader(), ffmpeg_path="ffmpeg")

        result = await player.play(voice_channel, "never gonna give you up")
        await interaction.followup.send(result.message)
    """

    def __init__(
        self,
        bot: discord.Client,
        cache: ContentCache,
        downloader: YTDLPDownloader,
        ffmpeg_path: str = "ffmpeg",
        scheduler: Optional[AutoDisconnectScheduler] = None,
        coordinator: Optional[DownloadCoordinator] = None,
        source_factory: SourceFactory = build_audio_source,
    ):
        self.cache = cache
        self.downloader = downloader
        self.ffmpeg_path = ffmpeg_path
        self.source_factory = source_factory

        self.metadata = TrackMetadataTable()
        self.scheduler = scheduler or AutoDisconnectScheduler()
        self.sessions = VoiceSessionManager(bot, self.scheduler, self.metadata)
        self.coordinator = coordinator or DownloadCoordinator(cache, downloader)

    # === Commands ===

    @log_operation("play")
    async def play(self, channel, query: str) -> PlayResult:
        """
        Queue query in the guild of channel, joining channel if needed

        Raises:
            VoiceConnectionError: joining failed
            ResolveError / MetadataError: the query could not be turned into a track
        """
        query = query.strip()
        if not query:
            raise ResolveError("Empty query", reason="not_found")

        if looks_like_playlist(query):
            return await self._play_playlist(channel, query)

        session = await self.sessions.connect(channel)
        guild_id = session.guild_id
        # an idle timer left from the last track must not fire while resolving
        self.scheduler.cancel(guild_id)

        try:
            handle, metadata, from_cache = await self._build_track(query)
        except Exception:
            # joined for nothing: do not stay in voice forever
            if session.queue.is_empty and not self.scheduler.is_armed(guild_id):
                self.sessions.schedule_idle_leave(session)
            raise

        async with self.sessions.lock(guild_id):
            if self.sessions.get(guild_id) is not session:
                handle.source.cleanup()
                raise UnexpectedStateError(f"Voice session of guild {guild_id} closed while resolving")

            self.metadata.attach(handle, metadata)
            length = session.queue.enqueue(handle)

            if length == 1:
                self.scheduler.cancel(guild_id)
                await self.sessions.set_presence(metadata.display_title)

        return PlayResult(
            title=metadata.display_title,
            started=length == 1,
            position=length,
            from_cache=from_cache,
        )

    async def skip(self, guild_id: int) -> str:
        """
        Skip the current track

        Returns:
            title of the skipped track

        Raises:
            NoSessionError: the guild has no voice session
            QueueEmptyError: nothing is playing
        """
        session = self.sessions.get(guild_id)
        if session is None:
            raise NoSessionError(guild_id)

        async with self.sessions.lock(guild_id):
            current = session.queue.current()
            if current is None:
                raise QueueEmptyError()

            metadata = self.metadata.get(current)
            title = metadata.display_title if metadata else UNKNOWN_TITLE
            try:
                session.queue.skip()
            except IndexError as e:
                raise UnexpectedStateError(f"Queue of guild {guild_id} emptied during skip") from e

        logger.info(f"[Player] guild {guild_id}: skipped {title}")
        return title

    async def stop(self, guild_id: int) -> None:
        """
        Raises:
            NoSessionError: the guild has no voice session
        """
        await self.sessions.leave(guild_id)

    def queue_text(self, guild_id: int) -> str:
        session = self.sessions.get(guild_id)
        if session is None or session.queue.is_empty:
            return render_queue(None, 0, [])

        handles = list(session.queue)
        lines = queue_lines(self.metadata.get(handle) for handle in handles)
        return render_queue(lines[0], handles[0].elapsed, lines[1:])

    async def close(self) -> None:
        await self.coordinator.shutdown()
        self.scheduler.cancel_all()
        await self.sessions.close()
        logger.info("[Player] closed")

    # === Internal ===

    async def _build_track(self, query: str) -> Tuple[TrackHandle, TrackMetadata, bool]:
        record = await self.cache.lookup(query)

        if record is not None and not self.cache.has_file(record.id):
            logger.warning(f"[Player] cache record {record.id} has no file, playing live")
            record = None

        if record is not None:
            logger.debug(f"[Player] cache hit for {query!r}: {record.id}")
            source = self.source_factory(str(self.cache.get_path(record.id)), self.ffmpeg_path, streaming=False)
            metadata = TrackMetadata(title=record.title, source_url=record.source_url, duration=record.duration)
            return TrackHandle(source), metadata, True

        info = await self.downloader.resolve(query)

        source_url = info.get("source_url")
        if not source_url:
            raise MetadataError(f"No source url in resolution of {query!r}")
        if not info.get("stream_url"):
            raise ResolveError(f"No stream url in resolution of {query!r}", query=query)

        source = self.source_factory(info["stream_url"], self.ffmpeg_path, streaming=True)
        metadata = TrackMetadata(title=info.get("title"), source_url=source_url, duration=info.get("duration"))

        self.coordinator.spawn(source_url, query, metadata.title, metadata.duration)
        return TrackHandle(source), metadata, False

    async def _play_playlist(self, channel, url: str) -> PlayResult:
        session = await self.sessions.connect(channel)
        guild_id = session.guild_id
        self.scheduler.cancel(guild_id)

        try:
            playlist = await self.downloader.resolve_playlist(url)
            if not playlist["entries"]:
                raise ResolveError(f"Playlist {url!r} has no playable entries", reason="not_found", query=url)
            tracks = self._playlist_tracks(playlist)
        except Exception:
            if session.queue.is_empty and not self.scheduler.is_armed(guild_id):
                self.sessions.schedule_idle_leave(session)
            raise

        async with self.sessions.lock(guild_id):
            if self.sessions.get(guild_id) is not session:
                raise UnexpectedStateError(f"Voice session of guild {guild_id} closed while resolving")

            first_length = None
            for handle, metadata in tracks:
                self.metadata.attach(handle, metadata)
                length = session.queue.enqueue(handle)
                if first_length is None:
                    first_length = length

            if first_length == 1:
                self.scheduler.cancel(guild_id)
                await self.sessions.set_presence(tracks[0][1].display_title)

        logger.info(f"[Player] guild {guild_id}: queued {len(tracks)} tracks from playlist {playlist['title']}")
        return PlayResult(
            title=tracks[0][1].display_title,
            started=first_length == 1,
            position=first_length,
            from_cache=False,
            playlist=playlist["title"],
        )

    def _playlist_tracks(self, playlist: dict) -> List[Tuple[TrackHandle, TrackMetadata]]:
        # an entry gets its source (and its ffmpeg process) at the head of the queue
        tracks = []
        for entry in playlist["entries"]:
            metadata = TrackMetadata(
                title=entry.get("title"),
                source_url=entry["source_url"],
                duration=entry.get("duration"),
                playlist=playlist["title"],
            )
            tracks.append((TrackHandle(loader=lambda m=metadata: self._load_entry(m)), metadata))
        return tracks

    async def _load_entry(self, metadata: TrackMetadata) -> discord.AudioSource:
        """Source for a playlist entry: the cached file, or a live stream"""
        record = await self.cache.lookup(metadata.source_url)
        if record is not None and self.cache.has_file(record.id):
            return self.source_factory(str(self.cache.get_path(record.id)), self.ffmpeg_path, streaming=False)

        info = await self.downloader.resolve(metadata.source_url)
        if not info.get("stream_url"):
            raise ResolveError(f"No stream url in resolution of {metadata.source_url!r}", query=metadata.source_url)

        source_url = info.get("source_url") or metadata.source_url
        self.coordinator.spawn(source_url, metadata.source_url, info.get("title") or metadata.title, info.get("duration"))
        return self.source_factory(info["stream_url"], self.ffmpeg_path, streaming=True)
