"""
Auto-disconnect timers

Per guild the scheduler is either Idle (no timer) or Armed (one pending
timer task). Arming an armed guild cancels the old timer first. A timer
that fires removes itself before running its action, so the action may
freely call cancel() for its own guild.

Cancelling is advisory: a leave action that already started runs to the
end.
"""

import asyncio
from typing import Any, Awaitable, Callable, Dict, Optional

from loguru import logger

from ..constants import AUTO_DISCONNECT_DELAY

LeaveAction = Callable[[], Awaitable[Any]]


class AutoDisconnectScheduler:
    """
    Usage:
        scheduler = AutoDisconnectScheduler(delay=300)

        scheduler.arm(guild_id, lambda: sessions.leave(guild_id))
        scheduler.cancel(guild_id)
    """

    def __init__(self, delay: float = AUTO_DISCONNECT_DELAY):
        self.delay = delay
        self._timers: Dict[int, asyncio.Task] = {}

    def is_armed(self, guild_id: int) -> bool:
        task = self._timers.get(guild_id)
        return task is not None and not task.done()

    def arm(self, guild_id: int, action: LeaveAction, delay: Optional[float] = None) -> asyncio.Task:
        """Idle/Armed -> Armed; an existing timer for the guild is cancelled"""
        delay = self.delay if delay is None else delay

        previous = self._timers.pop(guild_id, None)
        if previous is not None and not previous.done():
            previous.cancel()
            logger.debug(f"[AutoDisconnect] guild {guild_id}: replaced pending timer")

        task = asyncio.create_task(
            self._run(guild_id, delay, action),
            name=f"auto_disconnect_{guild_id}"
        )
        self._timers[guild_id] = task
        logger.debug(f"[AutoDisconnect] guild {guild_id}: leaving in {delay:.0f}s unless something plays")
        return task

    def cancel(self, guild_id: int) -> bool:
        """
        Armed -> Idle

        Returns:
            True if a pending timer was cancelled
        """
        task = self._timers.pop(guild_id, None)
        if task is None or task.done():
            return False
        task.cancel()
        logger.debug(f"[AutoDisconnect] guild {guild_id}: timer cancelled")
        return True

    def cancel_all(self) -> int:
        cancelled = 0
        for guild_id in list(self._timers):
            if self.cancel(guild_id):
                cancelled += 1
        return cancelled

    async def _run(self, guild_id: int, delay: float, action: LeaveAction) -> None:
        await asyncio.sleep(delay)

        if self._timers.get(guild_id) is asyncio.current_task():
            del self._timers[guild_id]

        logger.info(f"[AutoDisconnect] guild {guild_id}: idle for {delay:.0f}s, leaving voice")
        try:
            await action()
        except Exception as e:
            logger.error(f"[AutoDisconnect] guild {guild_id}: leave failed: {e}")
