"""
Music Cog

Slash commands:
- /play <query>: play or queue a URL or search text
- /skip: skip the current track
- /stop: stop playback and leave voice
- /queue: show the queue with ETAs
"""

# -------------------- Discord --------------------
import discord
from discord.ext import commands
from discord import app_commands

# -------------------- Module --------------------
from module.jukebox import (
    # Core
    ContentCache,
    MusicPlayer,
    # Database
    DatabaseManager,
    # Downloader
    YTDLPDownloader,
    # FFmpeg
    get_ffmpeg_path,
    # Errors
    NoSessionError,
    QueueEmptyError,
    # Decorators
    reply_on_error,
    # Constants
    CACHE_HOME,
    DATABASE_PATH,
)

# -------------------- Other --------------------
from pathlib import Path
from loguru import logger

NOT_IN_VOICE = "Not connected to voice channel"
NOT_READY = "The music player is not ready yet, please try again later."


class MusicCog(commands.Cog):
    """Discord music commands"""

    def __init__(self, bot: commands.Bot):
        self.bot = bot

        self.db: DatabaseManager | None = None
        self.player: MusicPlayer | None = None

    async def cog_load(self):
        """Open the cache database and build the player"""
        ffmpeg_path = await get_ffmpeg_path()
        if not ffmpeg_path:
            logger.error("[MusicCog] ffmpeg unavailable, music commands are disabled")
            return

        self.db = await DatabaseManager.create(Path(DATABASE_PATH))
        cache = ContentCache(self.db, cache_dir=CACHE_HOME)

        self.player = MusicPlayer(
            bot=self.bot,
            cache=cache,
            downloader=YTDLPDownloader(),
            ffmpeg_path=ffmpeg_path,
        )
        logger.info(f"[MusicCog] ready, {cache.get_cache_count()} tracks cached in {CACHE_HOME}")

    async def cog_unload(self):
        """Leave voice, stop background work, close the database"""
        if self.player:
            await self.player.close()
        if self.db:
            await self.db.close()
        logger.info("[MusicCog] unloaded")

    # ==================== Listeners ====================

    @commands.Cog.listener()
    async def on_voice_state_update(
        self,
        member: discord.Member,
        before: discord.VoiceState,
        after: discord.VoiceState
    ):
        """Tear down the session when the bot is disconnected from voice"""
        if not self.player or member.id != self.bot.user.id:
            return
        if before.channel is None or before.channel == after.channel:
            return

        await self.player.sessions.notify_disconnect(
            member.guild.id,
            after.channel.id if after.channel else None,
        )

    # ==================== Slash commands ====================

    @app_commands.command(name="play", description="Play a track from a URL or a search")
    @app_commands.describe(query="Video URL or search text")
    @app_commands.guild_only()
    @reply_on_error
    async def play(self, interaction: discord.Interaction, query: str):
        # resolving and joining may take longer than the response window
        await interaction.response.defer()

        if not self.player:
            await interaction.followup.send(NOT_READY)
            return

        channel = self.player.sessions.resolve_voice_channel(interaction.guild, interaction.user.id)
        if channel is None:
            logger.info(f"[MusicCog] {interaction.user} used /play outside voice")
            await interaction.followup.send(NOT_IN_VOICE)
            return

        result = await self.player.play(channel, query)
        await interaction.followup.send(result.message)

    @app_commands.command(name="skip", description="Skip the current track")
    @app_commands.guild_only()
    @reply_on_error
    async def skip(self, interaction: discord.Interaction):
        if not self.player:
            await interaction.response.send_message(NOT_READY, ephemeral=True)
            return

        try:
            title = await self.player.skip(interaction.guild_id)
        except NoSessionError:
            await interaction.response.send_message("Failed to skip: not connected to voice", ephemeral=True)
            return
        except QueueEmptyError:
            await interaction.response.send_message("There is nothing to skip!")
            return

        await interaction.response.send_message(f"Skipping: {title}")

    @app_commands.command(name="stop", description="Stop playback and leave the voice channel")
    @app_commands.guild_only()
    @reply_on_error
    async def stop(self, interaction: discord.Interaction):
        if not self.player:
            await interaction.response.send_message(NOT_READY, ephemeral=True)
            return

        try:
            await self.player.stop(interaction.guild_id)
        except NoSessionError:
            await interaction.response.send_message("There is nothing to stop!")
            return

        await interaction.response.send_message("Stopped playback and left the voice channel")

    @app_commands.command(name="queue", description="Show the queue")
    @app_commands.guild_only()
    @reply_on_error
    async def queue(self, interaction: discord.Interaction):
        if not self.player:
            await interaction.response.send_message(NOT_READY, ephemeral=True)
            return

        await interaction.response.send_message(self.player.queue_text(interaction.guild_id))


async def setup(bot: commands.Bot):
    """Load the cog"""
    await bot.add_cog(MusicCog(bot))
