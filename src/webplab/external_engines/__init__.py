from .codec import CodecService, ScratchSpace
from .common import run_command
from .ffmpeg import FFmpegCodec

__all__ = [
    "CodecService",
    "ScratchSpace",
    "FFmpegCodec",
    "run_command",
]
