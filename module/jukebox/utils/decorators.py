"""
Music decorators

- reply_on_error: turns command failures into a visible reply
- log_operation: debug log around an async operation
"""

from functools import wraps
from typing import Awaitable, Callable, Optional, ParamSpec, TypeVar

import discord
from loguru import logger

from .errors import MusicError

P = ParamSpec('P')
T = TypeVar('T')


async def send_reply(interaction: discord.Interaction, content: str, ephemeral: bool = False) -> None:
    """Reply to an interaction whether or not it was already acknowledged"""
    if interaction.response.is_done():
        await interaction.followup.send(content, ephemeral=ephemeral)
    else:
        await interaction.response.send_message(content, ephemeral=ephemeral)


def reply_on_error(func: Callable[P, Awaitable[None]]) -> Callable[P, Awaitable[None]]:
    """
    Decorator for cog slash-command callbacks

    MusicError becomes its user_message; any other exception is logged with
    its traceback and answered with "Error: ...". Nothing propagates to the
    command tree.

    Usage:
        @app_commands.command(name="skip")
        @reply_on_error
        async def skip(self, interaction):
            ...
    """
    @wraps(func)
    async def wrapper(self, interaction: discord.Interaction, *args, **kwargs):
        try:
            await func(self, interaction, *args, **kwargs)
        except MusicError as e:
            logger.info(f"[{func.__name__}] {e.message}")
            await send_reply(interaction, e.user_message)
        except Exception as e:
            logger.exception(f"[{func.__name__}] unexpected error: {e}")
            await send_reply(interaction, f"Error: {e}")

    return wrapper


def log_operation(operation_name: Optional[str] = None):
    """
    Decorator: log start, end and failure of an async operation

    Usage:
        @log_operation("play")
        async def play(self, ...):
            ...
    """
    def decorator(func: Callable[P, Awaitable[T]]) -> Callable[P, Awaitable[T]]:
        name = operation_name or func.__name__

        @wraps(func)
        async def wrapper(*args, **kwargs):
            logger.debug(f"start: {name}")
            try:
                result = await func(*args, **kwargs)
            except MusicError as e:
                logger.warning(f"failed: {name} - {e.message}")
                raise
            except Exception as e:
                logger.error(f"failed: {name} - {type(e).__name__}: {e}")
                raise
            logger.debug(f"done: {name}")
            return result

        return wrapper
    return decorator
