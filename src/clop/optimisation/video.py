"""
Video and GIF optimisation through external codec processes.
"""

import threading
from pathlib import Path
from typing import List, Optional

from clop.optimisation.process import run_tool


def build_ffmpeg_command(
    ffmpeg: Path,
    src: Path,
    dst: Path,
    crf: int,
    downscale_factor: float = 1.0
) -> List[str]:
    """
    Build the ffmpeg command line for re-encoding a video with x264.

    Downscaled dimensions are rounded down to even numbers, which
    yuv420p requires.
    """
    cmd = [
        str(ffmpeg),
        "-y",
        "-hide_banner",
        "-nostdin",
        "-loglevel", "error",
        "-i", str(src),
        "-map_metadata", "0",
        "-c:v", "libx264",
        "-crf", str(crf),
        "-preset", "medium",
        "-pix_fmt", "yuv420p",
    ]
    if downscale_factor < 1:
        cmd += ["-vf", f"scale=trunc(iw*{downscale_factor}/2)*2:trunc(ih*{downscale_factor}/2)*2"]
    cmd += ["-c:a", "copy", "-movflags", "+faststart", str(dst)]
    return cmd


def build_gifsicle_command(
    gifsicle: Path,
    src: Path,
    dst: Path,
    aggressive: bool,
    downscale_factor: float = 1.0
) -> List[str]:
    """Build the gifsicle command line."""
    cmd = [str(gifsicle), "-O3", "--no-warnings"]
    if aggressive:
        cmd.append("--lossy=80")
    if downscale_factor < 1:
        cmd += ["--scale", f"{downscale_factor}"]
    cmd += ["-o", str(dst), str(src)]
    return cmd


def optimise_video(
    ffmpeg: Path,
    src: Path,
    dst: Path,
    crf: int,
    downscale_factor: float,
    cancel_event: threading.Event,
    log_path: Path,
    poll_interval: float = 0.1,
    timeout: Optional[float] = None
) -> None:
    """
    Re-encode a video with ffmpeg.

    Raises:
        CancelledError: If cancel_event was set; ffmpeg is killed.
        ToolInvocationError: If ffmpeg fails, is missing or times out.
        ResourceExhaustedError: If ffmpeg ran out of disk space.
    """
    run_tool(
        build_ffmpeg_command(ffmpeg, src, dst, crf, downscale_factor),
        cancel_event,
        log_path,
        poll_interval=poll_interval,
        timeout=timeout,
    )


def optimise_gif(
    gifsicle: Path,
    src: Path,
    dst: Path,
    aggressive: bool,
    downscale_factor: float,
    cancel_event: threading.Event,
    log_path: Path,
    poll_interval: float = 0.1,
    timeout: Optional[float] = None
) -> None:
    """Optimise a GIF with gifsicle. Raises like ``optimise_video``."""
    run_tool(
        build_gifsicle_command(gifsicle, src, dst, aggressive, downscale_factor),
        cancel_event,
        log_path,
        poll_interval=poll_interval,
        timeout=timeout,
    )
