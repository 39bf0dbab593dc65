from .manager import FFmpegManager, build_audio_source, get_ffmpeg_path

__all__ = ["FFmpegManager", "build_audio_source", "get_ffmpeg_path"]
