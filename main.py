import discord
from discord.ext import commands

from loguru import logger

import os
import sys
import traceback
from dotenv import load_dotenv

from module.jukebox import send_reply

version = "v1.0"

# ─────────────────────────────────────────────────────────
#  Bot setup
# ─────────────────────────────────────────────────────────
# Voice playback needs the voice_states intent to see who is in which channel
intents = discord.Intents.default()
intents.voice_states = True

bot = commands.Bot(
    command_prefix=commands.when_mentioned,
    intents=intents
)

# on_ready fires again after every reconnect
_initialized = False

# ─────────────────────────────────────────────────────────
#  Startup
# ─────────────────────────────────────────────────────────

@bot.event
async def on_ready():
    global _initialized
    if _initialized:
        logger.info(f"[Init] {bot.user} reconnected")
        return
    _initialized = True

    await load_all_extensions()

    logger.info("[Init] syncing slash commands")
    slash_command = await bot.tree.sync()
    logger.info(f"[Init] synced {len(slash_command)} slash commands")

    logger.info(f"[Init] {bot.user} | Ready! ({version})")


async def load_all_extensions():
    """Load every .py module in the cogs folder"""
    cogs_dir = os.path.join(os.path.dirname(__file__), 'cogs')
    for filename in sorted(os.listdir(cogs_dir)):
        if filename.endswith('.py') and not filename.startswith('_'):
            try:
                logger.info(f"[Init] loading extension: {filename[:-3]}")
                await bot.load_extension(f'cogs.{filename[:-3]}')
            except Exception as exc:
                logger.error(f"[Init] failed to load extension: {exc}\n{traceback.format_exc()}")
    logger.info("[Init] extensions loaded")

# ─────────────────────────────────────────────────────────
#  Slash command errors that escaped the cogs
# ─────────────────────────────────────────────────────────

@bot.tree.error
async def on_app_command_error(interaction: discord.Interaction, error: discord.app_commands.AppCommandError):
    if interaction.guild:
        logger.error(f"{interaction.guild.name}-{interaction.user.name}({interaction.user.id}):{error}\n{traceback.format_exc()}")
    else:
        logger.error(f"{interaction.user.name}({interaction.user.id}):{error}\n{traceback.format_exc()}")

    try:
        await send_reply(interaction, f"Error: {error}", ephemeral=True)
    except discord.HTTPException as e:
        logger.warning(f"[Error handler] could not reply to interaction: {e}")

# ─────────────────────────────────────────────────────────
#  Loguru setup
# ─────────────────────────────────────────────────────────

def set_logger():
    """Configure Loguru sinks (terminal and file)"""
    logger.remove()
    debug_mode = os.getenv('DEBUG', '').lower() in ('true', '1', 'yes')

    logger.add(sys.stdout, level="DEBUG" if debug_mode else "INFO", colorize=True)

    # rotate every 7 days, keep 30 days, compress old files
    logger.add(
        "./logs/system.log",
        rotation="7 days",
        retention="30 days",
        encoding="UTF-8",
        compression="zip",
        level="INFO",
        format="{time:YYYY-MM-DD HH:mm:ss} | {level} | {message}"
    )

# ─────────────────────────────────────────────────────────
#  Entry point
# ─────────────────────────────────────────────────────────

if __name__ == '__main__':
    load_dotenv()
    set_logger()

    TOKEN = os.getenv("DISCORD_BOT_TOKEN")
    if not TOKEN:
        logger.critical("DISCORD_BOT_TOKEN is not set, check .env or the environment")
        sys.exit(1)

    try:
        bot.run(TOKEN, log_handler=None)
    except Exception as e:
        logger.critical(f"Could not start the Discord bot: {e}")
        sys.exit(1)
