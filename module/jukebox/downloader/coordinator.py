"""
Background caching of played tracks

At most one download per content hash runs at a time. A second request for
a hash that is already downloading fails fast with AlreadyInFlightError
instead of waiting; this is best-effort dedupe, the first download wins.
"""

import asyncio
from typing import Optional, Set

from loguru import logger

from ..core.cache import ContentCache, content_hash
from ..utils.errors import AlreadyInFlightError, MusicError, UnexpectedStateError
from .yt_dlp import YTDLPDownloader


class DownloadCoordinator:
    """
    Owns the in-flight set and the background download tasks

    Usage:
        coordinator = DownloadCoordinator(cache, downloader)

        # wait for it
        await coordinator.ensure_cached(url, query, title)

        # or fire and forget (errors are only logged)
        coordinator.spawn(url, query, title)
    """

    def __init__(self, cache: ContentCache, downloader: YTDLPDownloader):
        self.cache = cache
        self.downloader = downloader

        self._in_flight: Set[str] = set()
        self._in_flight_lock = asyncio.Lock()
        self._tasks: Set[asyncio.Task] = set()

    # === State ===

    def is_in_flight(self, url: str) -> bool:
        return content_hash(url) in self._in_flight

    @property
    def pending(self) -> int:
        """Background downloads still running"""
        return sum(1 for task in self._tasks if not task.done())

    # === Core ===

    async def ensure_cached(
        self,
        url: str,
        query: str,
        title: Optional[str] = None,
        duration: Optional[int] = None,
    ) -> bool:
        """
        Make sure url ends up in the cache with query linked to it

        Returns:
            True if a download ran, False if the url was already cached

        Raises:
            AlreadyInFlightError: another download of the same url is running
            DownloadError: the fetch tool failed
            CacheWriteError: the record could not be written
        """
        content_id = content_hash(url)

        if await self.cache.is_cached(url):
            if self.cache.has_file(content_id):
                await self.cache.link_query(url, query)
                return False
            logger.warning(f"[Download] record {content_id} has no file, downloading again")

        async with self._in_flight_lock:
            if content_id in self._in_flight:
                raise AlreadyInFlightError(content_id)
            self._in_flight.add(content_id)

        try:
            await self.downloader.fetch(url, self.cache.get_path(content_id))
        finally:
            owned = await self._release(content_id)

        if not owned:
            raise UnexpectedStateError(f"In-flight entry for {content_id} vanished during download")

        await self.cache.commit(url, query, title, duration)
        return True

    def spawn(
        self,
        url: str,
        query: str,
        title: Optional[str] = None,
        duration: Optional[int] = None,
    ) -> asyncio.Task:
        """Run ensure_cached in the background and keep its handle"""
        task = asyncio.create_task(
            self._run_detached(url, query, title, duration),
            name=f"cache_{content_hash(url)[:12]}"
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def shutdown(self) -> int:
        """
        Cancel background downloads

        Returns:
            number of tasks cancelled
        """
        cancelled = 0
        for task in list(self._tasks):
            if not task.done():
                task.cancel()
                cancelled += 1

        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

        if cancelled:
            logger.debug(f"[Download] cancelled {cancelled} background downloads")
        return cancelled

    # === Internal ===

    async def _release(self, content_id: str) -> bool:
        async with self._in_flight_lock:
            if content_id in self._in_flight:
                self._in_flight.remove(content_id)
                return True
            return False

    async def _run_detached(
        self,
        url: str,
        query: str,
        title: Optional[str],
        duration: Optional[int],
    ) -> None:
        try:
            downloaded = await self.ensure_cached(url, query, title, duration)
            if downloaded:
                logger.info(f"[Download] background cache done: {title or url}")
        except asyncio.CancelledError:
            logger.debug(f"[Download] background cache cancelled: {url}")
            raise
        except AlreadyInFlightError as e:
            logger.warning(f"[Download] {e.message}")
        except MusicError as e:
            logger.error(f"[Download] background cache failed for {url}: {e.message}")
        except Exception as e:
            logger.exception(f"[Download] unexpected error caching {url}: {e}")
