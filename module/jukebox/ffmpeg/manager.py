"""
FFmpeg locator and audio sources

Lookup order for the ffmpeg executable:
1. FFMPEG_PATH from the environment
2. ffmpeg on the system PATH
3. a copy previously downloaded into the bin directory
4. download a static build (BtbN/FFmpeg-Builds on GitHub)

discord.py decodes every track through ffmpeg; build_audio_source() wraps
both cached files and live stream URLs.
"""

import asyncio
import os
import platform
import shutil
import tarfile
import zipfile
from pathlib import Path
from typing import Optional

import aiohttp
import discord
from loguru import logger

from ..constants import FFMPEG_OPTIONS, FFMPEG_PATH, FFMPEG_STREAM_BEFORE_OPTIONS


def build_audio_source(location: str, executable: str = "ffmpeg", streaming: bool = False) -> discord.AudioSource:
    """
    Opus source for a cached file path or a remote media URL

    Streams get ffmpeg's reconnect flags so a dropped HTTP connection resumes
    instead of ending the track early.
    """
    return discord.FFmpegOpusAudio(
        location,
        executable=executable,
        before_options=FFMPEG_STREAM_BEFORE_OPTIONS if streaming else None,
        options=FFMPEG_OPTIONS,
    )


class FFmpegManager:
    """
    Usage:
        manager = FFmpegManager()
        path = await manager.ensure_ffmpeg()
    """

    ARCHIVES = {
        "Windows": "https://github.com/BtbN/FFmpeg-Builds/releases/download/latest/ffmpeg-master-latest-win64-gpl.zip",
        "Linux": "https://github.com/BtbN/FFmpeg-Builds/releases/download/latest/ffmpeg-master-latest-linux64-gpl.tar.xz",
    }

    def __init__(self, bin_dir: Optional[str] = None, configured_path: Optional[str] = FFMPEG_PATH):
        self.bin_dir = Path(bin_dir) if bin_dir else Path(__file__).parent / "bin"
        self.configured_path = configured_path
        self._ffmpeg_path: Optional[str] = None

    @property
    def ffmpeg_path(self) -> Optional[str]:
        return self._ffmpeg_path

    @property
    def executable_name(self) -> str:
        return "ffmpeg.exe" if platform.system() == "Windows" else "ffmpeg"

    async def ensure_ffmpeg(self) -> Optional[str]:
        """
        Returns:
            path of a working ffmpeg, None if none could be found or fetched
        """
        if self._ffmpeg_path:
            return self._ffmpeg_path

        candidates = [
            ("configured", self.configured_path),
            ("system", shutil.which("ffmpeg")),
            ("cached", str(self.bin_dir / self.executable_name)),
        ]
        for origin, candidate in candidates:
            if candidate and await self._works(candidate):
                logger.info(f"[FFmpeg] using {origin} ffmpeg: {candidate}")
                self._ffmpeg_path = candidate
                return candidate

        logger.info("[FFmpeg] no ffmpeg found, downloading a static build")
        downloaded = await self._download()
        if downloaded and await self._works(str(downloaded)):
            self._ffmpeg_path = str(downloaded)
            return self._ffmpeg_path

        logger.error("[FFmpeg] ffmpeg unavailable, playback will fail")
        return None

    async def _works(self, executable: str) -> bool:
        if not Path(executable).exists() and shutil.which(executable) is None:
            return False
        try:
            proc = await asyncio.create_subprocess_exec(
                executable, "-version",
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.DEVNULL
            )
            stdout, _ = await asyncio.wait_for(proc.communicate(), timeout=10)
        except (OSError, asyncio.TimeoutError) as e:
            logger.debug(f"[FFmpeg] {executable} unusable: {e}")
            return False
        return proc.returncode == 0 and b"ffmpeg version" in stdout

    async def _download(self) -> Optional[Path]:
        system = platform.system()
        url = self.ARCHIVES.get(system)
        if url is None:
            logger.error(f"[FFmpeg] no prebuilt ffmpeg for {system}")
            return None

        self.bin_dir.mkdir(parents=True, exist_ok=True)
        archive = self.bin_dir / url.rsplit("/", 1)[-1]

        try:
            for attempt in range(1, 4):
                try:
                    await self._fetch_archive(url, archive)
                    break
                except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                    logger.warning(f"[FFmpeg] download attempt {attempt}/3 failed: {e}")
                    if attempt == 3:
                        return None
                    await asyncio.sleep(2)

            return await asyncio.to_thread(self._unpack, archive)
        finally:
            archive.unlink(missing_ok=True)

    async def _fetch_archive(self, url: str, dest: Path) -> None:
        timeout = aiohttp.ClientTimeout(total=300)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.get(url) as resp:
                resp.raise_for_status()
                with open(dest, "wb") as f:
                    async for chunk in resp.content.iter_chunked(64 * 1024):
                        f.write(chunk)
        logger.info(f"[FFmpeg] downloaded {dest.stat().st_size / 1024 / 1024:.1f} MB")

    def _unpack(self, archive: Path) -> Optional[Path]:
        extract_dir = self.bin_dir / "extract_temp"
        extract_dir.mkdir(exist_ok=True)
        try:
            if archive.suffix == ".zip":
                with zipfile.ZipFile(archive) as zf:
                    zf.extractall(extract_dir)
            else:
                with tarfile.open(archive, "r:xz") as tf:
                    tf.extractall(extract_dir)

            for found in extract_dir.rglob(self.executable_name):
                dest = self.bin_dir / self.executable_name
                shutil.move(str(found), str(dest))
                if platform.system() != "Windows":
                    os.chmod(dest, 0o755)
                logger.info(f"[FFmpeg] installed to {dest}")
                return dest

            logger.error("[FFmpeg] archive holds no ffmpeg executable")
            return None
        finally:
            shutil.rmtree(extract_dir, ignore_errors=True)


_manager: Optional[FFmpegManager] = None


async def get_ffmpeg_path(bin_dir: Optional[str] = None) -> Optional[str]:
    global _manager

    if _manager is None:
        _manager = FFmpegManager(bin_dir=bin_dir)

    return await _manager.ensure_ffmpeg()
