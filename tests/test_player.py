import asyncio

import pytest

from module.jukebox import (
    MetadataError,
    NoSessionError,
    QueueEmptyError,
    ResolveError,
    content_hash,
)

from conftest import FakeChannel, FakeGuild, drain, eventually

URL = "https://video.example/x"


async def test_play_url_without_cache_hit(player, channel, cache, downloader):
    result = await player.play(channel, URL)

    assert result.message == f"Now playing: Title of {URL}"
    assert result.started and result.position == 1
    assert not result.from_cache
    assert downloader.resolve_calls == [URL]

    session = player.sessions.get(channel.guild.id)
    assert len(session.queue) == 1
    assert session.voice_client.source.streaming

    await eventually(lambda: cache.is_cached(URL))
    assert cache.has_file(content_hash(URL))


async def test_second_play_is_queued(player, channel):
    await player.play(channel, "first song")
    result = await player.play(channel, "second song")

    assert result.message == "Added to queue: Title of second song"
    assert not result.started
    assert result.position == 2


async def test_cached_query_spawns_no_process(player, guild, channel, cache, downloader):
    await player.play(channel, "some song")
    await eventually(lambda: len(downloader.fetch_calls) == 1 and player.coordinator.pending == 0)
    await player.stop(guild.id)

    result = await player.play(channel, "some song")

    assert result.from_cache
    assert result.message == "Now playing: Title of some song"
    assert downloader.resolve_calls == ["some song"]
    assert len(downloader.fetch_calls) == 1

    source = player.sessions.get(guild.id).voice_client.source
    record = await cache.lookup("some song")
    assert source.location == str(cache.get_path(record.id))
    assert not source.streaming


async def test_cached_url_is_found_by_hash(player, channel, cache, downloader):
    await cache.commit(URL, "other words", title="Cached")
    cache.get_path(content_hash(URL)).write_bytes(b"audio")

    result = await player.play(channel, URL)

    assert result.from_cache
    assert result.title == "Cached"
    assert downloader.resolve_calls == []


async def test_record_without_file_plays_live(player, channel, cache, downloader):
    await cache.commit(URL, URL, title="Lost file")

    result = await player.play(channel, URL)

    assert not result.from_cache
    assert downloader.resolve_calls == [URL]


async def test_play_into_empty_queue_cancels_timer(player, channel):
    guild_id = channel.guild.id
    await player.play(channel, "first song")
    player.sessions.get(guild_id).voice_client.finish()
    await drain()
    assert player.scheduler.is_armed(guild_id)

    await player.play(channel, "second song")

    assert not player.scheduler.is_armed(guild_id)


async def test_skip_on_empty_queue_changes_nothing(player, channel):
    guild_id = channel.guild.id
    await player.play(channel, "first song")
    session = player.sessions.get(guild_id)
    session.voice_client.finish()
    await drain()

    played = list(session.voice_client.played)
    with pytest.raises(QueueEmptyError):
        await player.skip(guild_id)

    assert session.queue.is_empty
    assert session.voice_client.played == played
    assert player.scheduler.is_armed(guild_id)
    assert player.sessions.get(guild_id) is session


async def test_skip_without_session(player):
    with pytest.raises(NoSessionError):
        await player.skip(12345)


async def test_skip_moves_to_next_track(player, channel):
    guild_id = channel.guild.id
    await player.play(channel, "first song")
    await player.play(channel, "second song")

    assert await player.skip(guild_id) == "Title of first song"
    await drain()

    session = player.sessions.get(guild_id)
    assert len(session.queue) == 1
    assert player.metadata.get(session.queue.current()).title == "Title of second song"


async def test_stop_leaves_voice(player, channel, bot):
    guild_id = channel.guild.id
    await player.play(channel, "first song")
    voice_client = player.sessions.get(guild_id).voice_client

    await player.stop(guild_id)
    await drain()

    assert player.sessions.get(guild_id) is None
    assert voice_client.disconnect_calls == 1
    assert bot.current_presence is None
    with pytest.raises(NoSessionError):
        await player.stop(guild_id)


async def test_queue_text(player, channel, downloader):
    guild_id = channel.guild.id
    assert player.queue_text(guild_id) == "Queue is empty"

    downloader.results["b"] = {
        "stream_url": "https://media.example/b",
        "source_url": "https://video.example/b",
        "title": "Song B",
        "duration": None,
    }
    await player.play(channel, "a")
    await player.play(channel, "b")
    await player.play(channel, "c")

    text = player.queue_text(guild_id)
    lines = text.splitlines()
    assert lines[0].startswith("**Currently playing:** Title of a **⏐⏐ 0:")
    assert lines[0].endswith(" / 3:20 ⏐⏐**")
    assert lines[2].endswith("⏐⏐** Song B")
    assert lines[3] == "**2. ⏐⏐ unknown ⏐⏐** Title of c"


async def test_empty_query(player, channel):
    with pytest.raises(ResolveError) as exc_info:
        await player.play(channel, "   ")

    assert exc_info.value.user_message == "No result found!"
    assert player.sessions.get(channel.guild.id) is None


async def test_resolution_without_source_url(player, channel, downloader):
    downloader.results["mystery"] = {
        "stream_url": "https://media.example/m",
        "source_url": None,
        "title": "Mystery",
        "duration": 10,
    }

    with pytest.raises(MetadataError):
        await player.play(channel, "mystery")

    guild_id = channel.guild.id
    assert player.sessions.get(guild_id).queue.is_empty
    assert player.scheduler.is_armed(guild_id)
    assert downloader.fetch_calls == []


async def test_two_guilds_are_independent(player):
    channel_1 = FakeChannel(FakeGuild())
    channel_2 = FakeChannel(FakeGuild())

    result_1, result_2 = await asyncio.gather(
        player.play(channel_1, "song one"),
        player.play(channel_2, "song two"),
    )
    assert result_1.started and result_2.started

    session_1 = player.sessions.get(channel_1.guild.id)
    session_2 = player.sessions.get(channel_2.guild.id)
    assert session_1 is not session_2

    session_1.voice_client.finish()
    await drain()

    assert session_1.queue.is_empty
    assert len(session_2.queue) == 1
    assert player.scheduler.is_armed(channel_1.guild.id)
    assert not player.scheduler.is_armed(channel_2.guild.id)

    assert await player.skip(channel_2.guild.id) == "Title of song two"
    with pytest.raises(QueueEmptyError):
        await player.skip(channel_1.guild.id)


async def test_track_end_does_not_arm_timer_after_new_play(player, channel, bot):
    guild_id = channel.guild.id
    await player.play(channel, "first song")
    session = player.sessions.get(guild_id)

    # the END listener is suspended in change_presence while the next play runs
    bot.delay = 0.05
    session.voice_client.finish()
    await drain()
    result = await player.play(channel, "second song")
    await asyncio.sleep(0.1)

    assert result.started
    assert player.metadata.get(session.queue.current()).title == "Title of second song"
    assert not player.scheduler.is_armed(guild_id)


async def test_idle_timer_cannot_fire_during_resolution(player, channel, downloader):
    guild_id = channel.guild.id
    await player.play(channel, "first song")
    session = player.sessions.get(guild_id)
    voice_client = session.voice_client
    voice_client.finish()
    await drain()
    assert player.scheduler.is_armed(guild_id)

    # resolving outlasts the 0.2s idle delay
    downloader.resolve_delay = 0.3
    result = await player.play(channel, "second song")

    assert result.started
    assert player.sessions.get(guild_id) is session
    assert voice_client.disconnect_calls == 0


async def test_skip_without_metadata_reports_unknown_title(player, channel):
    guild_id = channel.guild.id
    await player.play(channel, "first song")
    session = player.sessions.get(guild_id)
    player.metadata.discard(session.queue.current())

    assert await player.skip(guild_id) == "Unknown title"


PLAYLIST = "https://video.example/playlist?list=PL1"


def add_playlist(downloader, *titles):
    downloader.playlists[PLAYLIST] = {
        "title": "My Mix",
        "entries": [
            {"source_url": f"https://video.example/{title}", "title": title, "duration": 30}
            for title in titles
        ],
    }


async def test_play_playlist(player, channel, downloader):
    add_playlist(downloader, "p1", "p2", "p3")

    result = await player.play(channel, PLAYLIST)

    assert result.message == "Added to queue (playlist): My Mix"
    assert result.started and result.position == 1
    assert downloader.playlist_calls == [PLAYLIST]

    session = player.sessions.get(channel.guild.id)
    assert len(session.queue) == 3
    await eventually(lambda: session.voice_client.source is not None)
    assert session.voice_client.source.streaming
    # only the head of the queue is resolved
    assert downloader.resolve_calls == ["https://video.example/p1"]

    lines = player.queue_text(channel.guild.id).splitlines()
    assert lines[0].startswith("**Currently playing:** p1 ")
    assert lines[2] == "**My Mix**"
    assert lines[3].startswith("> **1. ⏐⏐ ") and lines[3].endswith("** p2")
    assert lines[4].startswith("> **2. ⏐⏐ ") and lines[4].endswith("** p3")


async def test_playlist_behind_playing_track(player, channel, downloader):
    add_playlist(downloader, "p1", "p2")
    await player.play(channel, "first song")

    result = await player.play(channel, PLAYLIST)

    assert result.message == "Added to queue (playlist): My Mix"
    assert not result.started and result.position == 2
    assert len(player.sessions.get(channel.guild.id).queue) == 3


async def test_playlist_entry_that_fails_to_load_is_skipped(player, channel, downloader):
    add_playlist(downloader, "p1", "p2")
    downloader.results["https://video.example/p1"] = {
        "stream_url": None,
        "source_url": "https://video.example/p1",
        "title": "p1",
        "duration": 30,
    }

    await player.play(channel, PLAYLIST)

    session = player.sessions.get(channel.guild.id)
    await eventually(lambda: session.voice_client.source is not None)
    assert len(session.queue) == 1
    assert player.metadata.get(session.queue.current()).title == "p2"


async def test_unknown_playlist(player, channel):
    with pytest.raises(ResolveError):
        await player.play(channel, PLAYLIST)

    guild_id = channel.guild.id
    assert player.sessions.get(guild_id).queue.is_empty
    assert player.scheduler.is_armed(guild_id)


async def test_cached_playlist_entry_plays_from_disk(player, channel, cache, downloader):
    add_playlist(downloader, "p1")
    url = "https://video.example/p1"
    cache.get_path(content_hash(url)).write_bytes(b"audio")
    await cache.commit(url, url, "p1", 30)

    await player.play(channel, PLAYLIST)

    voice_client = player.sessions.get(channel.guild.id).voice_client
    await eventually(lambda: voice_client.source is not None)
    assert voice_client.source.location == str(cache.get_path(content_hash(url)))
    assert downloader.resolve_calls == []
