"""
Optimisers for images and videos.
"""

from .binaries import BinaryManager, KNOWN_TOOLS
from .engine import OptimisationEngine
from .images import optimise_image
from .video import build_ffmpeg_command, build_gifsicle_command, optimise_gif, optimise_video

__all__ = [
    "BinaryManager",
    "KNOWN_TOOLS",
    "OptimisationEngine",
    "optimise_image",
    "build_ffmpeg_command",
    "build_gifsicle_command",
    "optimise_gif",
    "optimise_video",
]
