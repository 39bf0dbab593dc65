"""
Voice sessions

One VoiceSession per guild: the voice client, its TrackQueue and the three
listeners registered when the session is created:

- track start: bot presence shows the title
- track end: when the queue ran dry, clear presence and arm the
  auto-disconnect timer
- driver disconnect: stop the queue, clear presence, cancel the timer

Creation, reuse and teardown of a guild's session run under that guild's
lock. Guilds never share a lock.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Optional

import discord
from loguru import logger

from ..constants import UNKNOWN_TITLE, VOICE_CONNECT_TIMEOUT
from ..utils.errors import NoSessionError, VoiceConnectionError
from .queue import TrackEvent, TrackHandle, TrackMetadataTable, TrackQueue
from .scheduler import AutoDisconnectScheduler


@dataclass(eq=False)
class VoiceSession:
    guild_id: int
    queue: TrackQueue
    disconnect_listeners: List[Callable[["VoiceSession"], Awaitable[None]]] = field(default_factory=list)

    @property
    def voice_client(self) -> discord.VoiceClient:
        return self.queue.voice_client

    @property
    def channel(self):
        """The bound voice channel, None once the connection is gone"""
        if not self.voice_client.is_connected():
            return None
        return self.voice_client.channel

    @property
    def is_stale(self) -> bool:
        return self.channel is None

    @property
    def listener_count(self) -> int:
        return self.queue.listener_count() + len(self.disconnect_listeners)


class VoiceSessionManager:
    """
    Usage:
        sessions = VoiceSessionManager(bot, scheduler, metadata)

        channel = sessions.resolve_voice_channel(interaction.guild, interaction.user.id)
        session = await sessions.connect(channel)
        ...
        await sessions.leave(guild_id)
    """

    def __init__(
        self,
        bot: discord.Client,
        scheduler: AutoDisconnectScheduler,
        metadata: TrackMetadataTable,
        connect_timeout: float = VOICE_CONNECT_TIMEOUT,
    ):
        self.bot = bot
        self.scheduler = scheduler
        self.metadata = metadata
        self.connect_timeout = connect_timeout

        self._sessions: Dict[int, VoiceSession] = {}
        self._locks: Dict[int, asyncio.Lock] = {}

    # === Lookup ===

    def lock(self, guild_id: int) -> asyncio.Lock:
        return self._locks.setdefault(guild_id, asyncio.Lock())

    def get(self, guild_id: int) -> Optional[VoiceSession]:
        return self._sessions.get(guild_id)

    def __len__(self) -> int:
        return len(self._sessions)

    @staticmethod
    def resolve_voice_channel(guild: Optional[discord.Guild], user_id: int):
        """
        The voice channel the user is sitting in, or None

        None covers "not in a guild", "member not cached" and "not in voice".
        """
        if guild is None:
            return None
        member = guild.get_member(user_id)
        if member is None or member.voice is None:
            return None
        return member.voice.channel

    # === Lifecycle ===

    async def connect(self, channel) -> VoiceSession:
        """
        Join channel, or reuse the guild's existing session

        A live session keeps its current channel; only a stale one (no channel
        binding left) is rejoined, to channel.

        Raises:
            VoiceConnectionError: joining failed
        """
        guild_id = channel.guild.id

        async with self.lock(guild_id):
            session = self._sessions.get(guild_id)

            if session is not None:
                if session.is_stale:
                    logger.info(f"[Voice] guild {guild_id}: session is stale, rejoining {channel.id}")
                    voice_client = await self._join(channel)
                    for handle in session.queue.rebind(voice_client):
                        self.metadata.discard(handle)
                return session

            voice_client = await self._join(channel)
            session = VoiceSession(guild_id=guild_id, queue=TrackQueue(voice_client))
            self._register_listeners(session)
            self._sessions[guild_id] = session

            logger.info(f"[Voice] guild {guild_id}: joined channel {channel.id}")
            return session

    async def leave(self, guild_id: int) -> None:
        """
        Tear the guild's session down and leave voice

        Raises:
            NoSessionError: the guild has no session
        """
        async with self.lock(guild_id):
            session = self._sessions.pop(guild_id, None)
            if session is None:
                raise NoSessionError(guild_id)

            await self.clear_presence()
            await self._dispatch_disconnect(session)

            try:
                await session.voice_client.disconnect(force=True)
            except Exception as e:
                logger.warning(f"[Voice] guild {guild_id}: disconnect failed: {e}")

        logger.info(f"[Voice] guild {guild_id}: left voice")

    async def notify_disconnect(self, guild_id: int, channel_id: Optional[int] = None) -> bool:
        """
        Gateway reported a voice-state change for the bot itself

        Args:
            channel_id: the bot's channel after the change; a value means the
                bot was moved and the session stays

        Returns:
            True if the session was torn down
        """
        if channel_id is not None:
            return False

        async with self.lock(guild_id):
            session = self._sessions.pop(guild_id, None)
            if session is None:
                return False

            logger.warning(f"[Voice] guild {guild_id}: disconnected externally")
            await self._dispatch_disconnect(session)

            try:
                await session.voice_client.disconnect(force=True)
            except Exception as e:
                logger.debug(f"[Voice] guild {guild_id}: cleanup after external disconnect: {e}")

        return True

    async def close(self) -> None:
        """Leave every guild (cog unload)"""
        for guild_id in list(self._sessions):
            try:
                await self.leave(guild_id)
            except NoSessionError:
                pass

    def schedule_idle_leave(self, session: VoiceSession) -> asyncio.Task:
        """Arm the guild's auto-disconnect timer for an idle session"""
        return self.scheduler.arm(session.guild_id, lambda: self._leave_if_idle(session))

    # === Presence ===

    async def set_presence(self, title: str) -> None:
        try:
            await self.bot.change_presence(activity=discord.Game(name=title))
        except Exception as e:
            logger.warning(f"[Voice] presence update failed: {e}")

    async def clear_presence(self) -> None:
        try:
            await self.bot.change_presence(activity=None)
        except Exception as e:
            logger.warning(f"[Voice] presence update failed: {e}")

    # === Internal ===

    async def _join(self, channel) -> discord.VoiceClient:
        existing = channel.guild.voice_client
        try:
            if existing is not None:
                if existing.is_connected():
                    # connected outside of any session (e.g. after a cog reload)
                    return existing
                await existing.disconnect(force=True)
            return await channel.connect(timeout=self.connect_timeout, self_deaf=True)
        except Exception as e:
            logger.error(f"[Voice] failed to join channel {channel.id}: {e}")
            raise VoiceConnectionError(str(e)) from e

    def _register_listeners(self, session: VoiceSession) -> None:
        session.queue.add_listener(
            TrackEvent.START,
            lambda handle: self._on_track_start(session, handle)
        )
        session.queue.add_listener(
            TrackEvent.END,
            lambda handle: self._on_track_end(session, handle)
        )
        session.disconnect_listeners.append(self._on_driver_disconnect)

    async def _dispatch_disconnect(self, session: VoiceSession) -> None:
        for listener in session.disconnect_listeners:
            try:
                await listener(session)
            except Exception as e:
                logger.exception(f"[Voice] disconnect listener failed: {e}")

    async def _on_track_start(self, session: VoiceSession, handle: TrackHandle) -> None:
        if self._sessions.get(session.guild_id) is not session:
            return

        metadata = self.metadata.get(handle)
        title = metadata.display_title if metadata else UNKNOWN_TITLE
        logger.info(f"[Voice] guild {session.guild_id}: now playing {title}")
        await self.set_presence(title)

    async def _on_track_end(self, session: VoiceSession, handle: TrackHandle) -> None:
        self.metadata.discard(handle)

        # play enqueues under the same lock: the queue cannot refill between
        # the emptiness check and arming the timer
        async with self.lock(session.guild_id):
            if not session.queue.is_empty:
                return
            if self._sessions.get(session.guild_id) is not session:
                return

            await self.clear_presence()

            if session.queue.is_empty and self._sessions.get(session.guild_id) is session:
                self.schedule_idle_leave(session)

    async def _on_driver_disconnect(self, session: VoiceSession) -> None:
        for handle in session.queue.stop():
            self.metadata.discard(handle)
        await self.clear_presence()
        self.scheduler.cancel(session.guild_id)

    async def _leave_if_idle(self, session: VoiceSession) -> None:
        if self._sessions.get(session.guild_id) is not session:
            return
        if not session.queue.is_empty:
            logger.debug(f"[Voice] guild {session.guild_id}: queue refilled, staying")
            return
        try:
            await self.leave(session.guild_id)
        except NoSessionError:
            pass
