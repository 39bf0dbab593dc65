"""
Track queue

A FIFO queue on top of a discord.py voice client. The head of the queue is
the track that is playing; when it ends (naturally or via skip) it is
popped and the next one starts.

Listeners:
- TrackEvent.START(handle): a track began playing
- TrackEvent.END(handle): a track finished and was popped; ``queue.is_empty``
  tells whether anything is left

Handles carry no metadata. Title, URL and duration live in a
TrackMetadataTable owned by the caller.

A handle may come without a source and with a loader instead (playlist
entries). The loader runs when the handle reaches the head of the queue; a
failing loader ends the track like a failed play.
"""

import asyncio
import itertools
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

import discord
from loguru import logger

from ..constants import UNKNOWN_TITLE

_track_ids = itertools.count(1)

SourceLoader = Callable[[], Awaitable[discord.AudioSource]]


class TrackEvent(Enum):
    START = "track_start"
    END = "track_end"


@dataclass(eq=False)
class TrackHandle:
    """Opaque queue entry"""
    source: Optional[discord.AudioSource] = None
    loader: Optional[SourceLoader] = field(default=None, repr=False)
    id: int = field(default_factory=lambda: next(_track_ids))
    started_at: Optional[float] = field(default=None, repr=False)

    def __post_init__(self):
        if self.source is None and self.loader is None:
            raise ValueError("TrackHandle needs a source or a loader")

    @property
    def elapsed(self) -> int:
        """Seconds since the track started (0 if it has not)"""
        if self.started_at is None:
            return 0
        return max(0, int(time.monotonic() - self.started_at))


@dataclass
class TrackMetadata:
    title: Optional[str] = None
    source_url: Optional[str] = None
    duration: Optional[int] = None      # seconds, None when unknown
    playlist: Optional[str] = None      # title of the playlist it was queued from

    @property
    def display_title(self) -> str:
        return self.title or self.source_url or UNKNOWN_TITLE


class TrackMetadataTable:
    """TrackId -> TrackMetadata"""

    def __init__(self):
        self._entries: Dict[int, TrackMetadata] = {}

    def attach(self, handle: TrackHandle, metadata: TrackMetadata) -> None:
        self._entries[handle.id] = metadata

    def get(self, handle: TrackHandle) -> Optional[TrackMetadata]:
        return self._entries.get(handle.id)

    def discard(self, handle: TrackHandle) -> None:
        self._entries.pop(handle.id, None)

    def __len__(self) -> int:
        return len(self._entries)


Listener = Callable[[TrackHandle], Awaitable[Any]]


class TrackQueue:
    """
    Per-guild FIFO playback queue

    Usage:
        queue = TrackQueue(voice_client)
        queue.add_listener(TrackEvent.END, on_end)

        queue.enqueue(TrackHandle(source))   # starts playing if it is the only one
        queue.skip()                         # ends the current track
        queue.stop()                         # drops everything, no END events
    """

    def __init__(self, voice_client: discord.VoiceClient, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._voice_client = voice_client
        self._loop = loop or asyncio.get_running_loop()
        self._tracks: List[TrackHandle] = []
        self._listeners: Dict[TrackEvent, List[Listener]] = {
            TrackEvent.START: [],
            TrackEvent.END: [],
        }
        self._tasks: Set[asyncio.Task] = set()

    # === Properties ===

    @property
    def voice_client(self) -> discord.VoiceClient:
        return self._voice_client

    @property
    def is_empty(self) -> bool:
        return len(self._tracks) == 0

    def current(self) -> Optional[TrackHandle]:
        """The track at the head of the queue (the one playing)"""
        return self._tracks[0] if self._tracks else None

    def upcoming(self) -> List[TrackHandle]:
        return self._tracks[1:]

    def __len__(self) -> int:
        return len(self._tracks)

    def __iter__(self):
        return iter(list(self._tracks))

    # === Listeners ===

    def add_listener(self, event: TrackEvent, listener: Listener) -> None:
        self._listeners[event].append(listener)

    def listener_count(self) -> int:
        return sum(len(listeners) for listeners in self._listeners.values())

    # === Operations ===

    def rebind(self, voice_client: discord.VoiceClient) -> List[TrackHandle]:
        """
        Continue on a new voice client after a rejoin

        Tracks left over from the dead connection are dropped.

        Returns:
            the dropped handles
        """
        dropped = self._tracks
        self._tracks = []
        self._voice_client = voice_client
        return dropped

    def enqueue(self, handle: TrackHandle) -> int:
        """
        Append a track

        Returns:
            queue length after the insert (1 means it started playing)
        """
        self._tracks.append(handle)
        if len(self._tracks) == 1:
            self._start(handle)
        logger.debug(f"[Queue] enqueued track {handle.id}, length {len(self._tracks)}")
        return len(self._tracks)

    def skip(self) -> TrackHandle:
        """End the current track; the END listener and the next START follow"""
        current = self.current()
        if current is None:
            raise IndexError("skip on an empty queue")
        if current.source is None:
            # still loading: nothing is playing that could call back
            self._spawn(self._handle_track_end(current))
        else:
            # stop() makes the voice client call our after-callback
            self._voice_client.stop()
        return current

    def stop(self) -> List[TrackHandle]:
        """
        Drop every track and stop playback

        Returns:
            the removed handles
        """
        removed = self._tracks
        self._tracks = []
        if self._voice_client.is_playing() or self._voice_client.is_paused():
            self._voice_client.stop()
        logger.debug(f"[Queue] stopped, dropped {len(removed)} tracks")
        return removed

    # === Internal ===

    def _start(self, handle: TrackHandle) -> None:
        if handle.source is None:
            self._spawn(self._load_and_start(handle))
            return

        handle.started_at = time.monotonic()
        try:
            self._voice_client.play(
                handle.source,
                after=lambda error, h=handle: self._after_playback(h, error)
            )
        except discord.ClientException as e:
            logger.error(f"[Queue] failed to start track {handle.id}: {e}")
            self._after_playback(handle, e)
            return
        self._emit(TrackEvent.START, handle)

    async def _load_and_start(self, handle: TrackHandle) -> None:
        try:
            source = await handle.loader()
        except Exception as e:
            logger.error(f"[Queue] failed to load track {handle.id}: {e}")
            await self._handle_track_end(handle)
            return

        # skipped or stopped while loading
        if self.current() is not handle:
            source.cleanup()
            return

        handle.source = source
        self._start(handle)

    def _after_playback(self, handle: TrackHandle, error: Optional[Exception]) -> None:
        """Called by discord.py from the audio thread"""
        if error:
            logger.error(f"[Queue] playback error on track {handle.id}: {error}")
        asyncio.run_coroutine_threadsafe(self._handle_track_end(handle), self._loop)

    async def _handle_track_end(self, handle: TrackHandle) -> None:
        # a stopped queue already dropped the handle: nothing to report
        if not self._tracks or self._tracks[0] is not handle:
            return

        self._tracks.pop(0)
        self._emit(TrackEvent.END, handle)

        if self._tracks:
            self._start(self._tracks[0])

    def _emit(self, event: TrackEvent, handle: TrackHandle) -> None:
        for listener in self._listeners[event]:
            self._spawn(self._safe_call(event, listener, handle))

    def _spawn(self, coro) -> asyncio.Task:
        task = self._loop.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _safe_call(self, event: TrackEvent, listener: Listener, handle: TrackHandle) -> None:
        try:
            await listener(handle)
        except Exception as e:
            logger.exception(f"[Queue] {event.value} listener failed: {e}")
