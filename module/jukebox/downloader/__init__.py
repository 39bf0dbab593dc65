# Downloader module
from .yt_dlp import YTDLPDownloader, looks_like_playlist, looks_like_url
from .coordinator import DownloadCoordinator

__all__ = ["YTDLPDownloader", "looks_like_playlist", "looks_like_url", "DownloadCoordinator"]
