import asyncio
import itertools
from types import SimpleNamespace
from typing import Optional

import discord
import pytest

from module.jukebox import (
    AutoDisconnectScheduler,
    ContentCache,
    DatabaseManager,
    DownloadError,
    MusicPlayer,
    ResolveError,
    looks_like_url,
)

_ids = itertools.count(1000)


# -------------------- Helpers --------------------

async def drain(rounds: int = 25) -> None:
    """Let callbacks and listener tasks scheduled on the loop run"""
    for _ in range(rounds):
        await asyncio.sleep(0)


async def eventually(predicate, timeout: float = 3.0, interval: float = 0.01) -> None:
    """Poll predicate (sync or async) until it is truthy"""
    async def poll():
        while True:
            result = predicate()
            if asyncio.iscoroutine(result):
                result = await result
            if result:
                return
            await asyncio.sleep(interval)

    await asyncio.wait_for(poll(), timeout)


# -------------------- Discord fakes --------------------

class FakeSource:
    def __init__(self, location: str, streaming: bool = False):
        self.location = location
        self.streaming = streaming
        self.cleaned_up = False

    def cleanup(self):
        self.cleaned_up = True


def make_source(location, executable="ffmpeg", streaming=False):
    return FakeSource(location, streaming)


class FakeVoiceClient:
    def __init__(self, channel: "FakeChannel"):
        self.channel = channel
        self.guild = channel.guild
        self.connected = True
        self.played = []
        self.disconnect_calls = 0
        self.fail_play = False
        self._current = None

    def is_connected(self) -> bool:
        return self.connected

    def is_playing(self) -> bool:
        return self._current is not None

    def is_paused(self) -> bool:
        return False

    @property
    def source(self):
        return self._current[0] if self._current else None

    def play(self, source, *, after=None):
        if self.fail_play:
            raise discord.ClientException("Not connected to voice.")
        if self._current is not None:
            raise discord.ClientException("Already playing audio.")
        self._current = (source, after)
        self.played.append(source)

    def stop(self):
        self._end(None)

    def finish(self, error: Optional[Exception] = None):
        """The current track ran to its end"""
        self._end(error)

    def drop(self):
        """The gateway dropped the connection"""
        self.connected = False

    async def disconnect(self, *, force: bool = False):
        self.disconnect_calls += 1
        self.connected = False
        self._end(None)
        if self.guild.voice_client is self:
            self.guild.voice_client = None

    def _end(self, error):
        if self._current is None:
            return
        _, after = self._current
        self._current = None
        if after is not None:
            after(error)


class FakeGuild:
    def __init__(self, guild_id: Optional[int] = None):
        self.id = guild_id or next(_ids)
        self.name = f"guild-{self.id}"
        self.voice_client: Optional[FakeVoiceClient] = None
        self.members = {}

    def get_member(self, user_id: int):
        return self.members.get(user_id)

    def add_member(self, user_id: int, channel: Optional["FakeChannel"] = None):
        voice = SimpleNamespace(channel=channel) if channel is not None else None
        self.members[user_id] = SimpleNamespace(id=user_id, voice=voice)


class FakeChannel:
    def __init__(self, guild: FakeGuild, channel_id: Optional[int] = None):
        self.id = channel_id or next(_ids)
        self.guild = guild
        self.connect_calls = 0
        self.fail_connect = False

    async def connect(self, *, timeout: float = 60.0, self_deaf: bool = False):
        self.connect_calls += 1
        if self.fail_connect:
            raise asyncio.TimeoutError()
        voice_client = FakeVoiceClient(self)
        self.guild.voice_client = voice_client
        return voice_client


class FakeBot:
    def __init__(self):
        self.presence = []
        self.user = SimpleNamespace(id=1)
        self.delay = 0.0

    async def change_presence(self, *, activity=None):
        if self.delay:
            await asyncio.sleep(self.delay)
        self.presence.append(activity.name if activity else None)

    @property
    def current_presence(self):
        return self.presence[-1] if self.presence else None


class FakeResponse:
    def __init__(self, interaction: "FakeInteraction"):
        self._interaction = interaction
        self._done = False

    def is_done(self) -> bool:
        return self._done

    async def send_message(self, content=None, *, ephemeral: bool = False):
        self._done = True
        self._interaction.sent.append(content)

    async def defer(self, *, ephemeral: bool = False, thinking: bool = False):
        self._done = True


class FakeFollowup:
    def __init__(self, interaction: "FakeInteraction"):
        self._interaction = interaction

    async def send(self, content=None, *, ephemeral: bool = False):
        self._interaction.sent.append(content)


class FakeInteraction:
    def __init__(self, guild: Optional[FakeGuild] = None, user_id: int = 42):
        self.guild = guild
        self.guild_id = guild.id if guild else None
        self.user = SimpleNamespace(id=user_id, name=f"user-{user_id}")
        self.sent = []
        self.response = FakeResponse(self)
        self.followup = FakeFollowup(self)


# -------------------- yt-dlp fake --------------------

class FakeDownloader:
    """
    resolve() answers from ``results`` (or a generated default);
    resolve_playlist() answers from ``playlists``;
    fetch() writes a small file to the destination, optionally waiting on
    ``gate`` first and failing when ``fail`` is set.
    """

    def __init__(self):
        self.results = {}
        self.playlists = {}
        self.resolve_calls = []
        self.playlist_calls = []
        self.resolve_delay = 0.0
        self.fetch_calls = []
        self.gate: Optional[asyncio.Event] = None
        self.fail = False

    async def resolve(self, query: str, timeout: int = 30) -> dict:
        self.resolve_calls.append(query)
        if self.resolve_delay:
            await asyncio.sleep(self.resolve_delay)
        if query in self.results:
            return dict(self.results[query])

        source_url = query if looks_like_url(query) else f"https://video.example/{query.replace(' ', '-')}"
        return {
            "stream_url": f"https://media.example/stream/{len(self.resolve_calls)}",
            "source_url": source_url,
            "title": f"Title of {query}",
            "duration": 200,
        }

    async def resolve_playlist(self, url: str, timeout: int = 30) -> dict:
        self.playlist_calls.append(url)
        if url not in self.playlists:
            raise ResolveError(f"No result for {url!r}", reason="not_found", query=url)
        playlist = self.playlists[url]
        return {"title": playlist["title"], "entries": [dict(entry) for entry in playlist["entries"]]}

    async def fetch(self, url: str, destination, timeout: int = 600):
        self.fetch_calls.append(url)
        if self.gate is not None:
            await self.gate.wait()
        if self.fail:
            raise DownloadError(f"yt-dlp download failed: {url}", url=url)
        destination.write_bytes(b"audio")
        return destination


# -------------------- Fixtures --------------------

@pytest.fixture
async def db(tmp_path):
    manager = await DatabaseManager.create(tmp_path / "music.db")
    yield manager
    await manager.close()


@pytest.fixture
def cache(db, tmp_path):
    return ContentCache(db, cache_dir=str(tmp_path / "cache"))


@pytest.fixture
def downloader():
    return FakeDownloader()


@pytest.fixture
def bot():
    return FakeBot()


@pytest.fixture
def guild():
    return FakeGuild()


@pytest.fixture
def channel(guild):
    return FakeChannel(guild)


@pytest.fixture
async def player(bot, cache, downloader):
    music = MusicPlayer(
        bot=bot,
        cache=cache,
        downloader=downloader,
        ffmpeg_path="ffmpeg",
        scheduler=AutoDisconnectScheduler(delay=0.2),
        source_factory=make_source,
    )
    yield music
    await music.close()
