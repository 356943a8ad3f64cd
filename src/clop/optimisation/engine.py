"""
Optimisation engine: runs one job's transform into a scratch file.
"""

import threading
from pathlib import Path
from typing import Optional

from clop.config.settings import Settings
from clop.jobs.errors import (
    OptimisationError,
    ResourceExhaustedError,
    UnsupportedFormatError,
    is_resource_exhausted,
)
from clop.jobs.models import EngineOutput, MediaType, OptimisationOptions, Source
from clop.optimisation.binaries import BinaryManager
from clop.optimisation.images import optimise_image
from clop.optimisation.process import check_cancelled, scratch_file
from clop.optimisation.video import optimise_gif, optimise_video
from clop.utils.logging_config import get_logger, job_log_path
from clop.utils.paths import IMAGES, VIDEOS, ensure_workdir

logger = get_logger(__name__)


class OptimisationEngine:
    """
    Executes the transform for a single job in isolation.

    Images are handled in-process with Pillow (GIFs with gifsicle when it
    is installed); videos are re-encoded by an ffmpeg process that is killed
    when the job is cancelled. The engine never touches the source file:
    it writes a scratch output into the workdir and returns it, and the job
    manager decides whether to apply it. Scratch outputs are deleted on any
    failure or cancellation.

    Example:
        >>> engine = OptimisationEngine(settings)
        >>> output = engine.optimise("job1", source, OptimisationOptions(), threading.Event())
        >>> output.optimised_size < output.original_size
        True
    """

    def __init__(self, settings: Settings, binaries: Optional[BinaryManager] = None):
        """
        Initialize the engine.

        Args:
            settings: Encoder settings, workdir and tool limits.
            binaries: Codec binary lookup. Defaults to one using settings.bin_dir.
        """
        self.settings = settings
        self.binaries = binaries or BinaryManager(settings.bin_dir)
        self.paths = ensure_workdir(settings.workdir)

    def optimise(
        self,
        job_id: str,
        source: Source,
        options: OptimisationOptions,
        cancel_event: threading.Event
    ) -> EngineOutput:
        """
        Optimise a source into a scratch file.

        Args:
            job_id: Job identifier, used to name scratch and log files.
            source: Payload to optimise.
            options: Aggressiveness and downscale factor.
            cancel_event: Cooperative cancellation signal.

        Returns:
            EngineOutput pointing at the scratch file.

        Raises:
            UnsupportedFormatError: For formats no optimiser handles.
            ToolInvocationError: If an external codec failed or is missing.
            ResourceExhaustedError: On disk full or memory exhaustion.
            CancelledError: If cancel_event was set.
        """
        check_cancelled(cancel_event)

        src = source.path
        suffix = src.suffix.lower()
        media_type = MediaType.from_path(src)
        if media_type == MediaType.UNKNOWN:
            raise UnsupportedFormatError(f"Unsupported file type: {suffix or src.name}")

        aggressive = options.aggressive
        if aggressive is None:
            aggressive = self.settings.aggressive_default(suffix)

        try:
            original_size = src.stat().st_size
        except OSError as e:
            raise OptimisationError(f"Source {src.name} is no longer readable: {e}") from e

        scratch_dir = self.paths[IMAGES] if media_type == MediaType.IMAGE else self.paths[VIDEOS]
        log_path = job_log_path(self.settings.workdir, job_id)

        logger.info(
            f"Job {job_id}: optimising {media_type.value} {src.name} "
            f"(aggressive={aggressive}, scale={options.downscale_factor})"
        )

        try:
            with scratch_file(scratch_dir / f"{job_id}{suffix}") as dst:
                if media_type == MediaType.VIDEO:
                    self._optimise_video(src, dst, aggressive, options, cancel_event, log_path)
                elif suffix == ".gif" and self.binaries.has("gifsicle"):
                    self._optimise_gif(src, dst, aggressive, options, cancel_event, log_path)
                else:
                    optimise_image(
                        src,
                        dst,
                        aggressive=aggressive,
                        downscale_factor=options.downscale_factor,
                        jpeg_quality=self.settings.jpeg_quality,
                        jpeg_aggressive_quality=self.settings.jpeg_aggressive_quality,
                        cancel_event=cancel_event,
                    )
                check_cancelled(cancel_event)
                optimised_size = dst.stat().st_size
        except OSError as e:
            if is_resource_exhausted(e):
                raise ResourceExhaustedError(f"Not enough space to optimise {src.name}: {e}") from e
            raise OptimisationError(f"Could not write output for {src.name}: {e}") from e

        return EngineOutput(path=dst, original_size=original_size, optimised_size=optimised_size)

    def _optimise_video(
        self,
        src: Path,
        dst: Path,
        aggressive: bool,
        options: OptimisationOptions,
        cancel_event: threading.Event,
        log_path: Path
    ) -> None:
        crf = self.settings.video_aggressive_crf if aggressive else self.settings.video_crf
        optimise_video(
            self.binaries.find("ffmpeg"),
            src,
            dst,
            crf=crf,
            downscale_factor=options.downscale_factor,
            cancel_event=cancel_event,
            log_path=log_path,
            poll_interval=self.settings.cancel_poll_interval,
            timeout=self.settings.tool_timeout,
        )

    def _optimise_gif(
        self,
        src: Path,
        dst: Path,
        aggressive: bool,
        options: OptimisationOptions,
        cancel_event: threading.Event,
        log_path: Path
    ) -> None:
        optimise_gif(
            self.binaries.find("gifsicle"),
            src,
            dst,
            aggressive=aggressive,
            downscale_factor=options.downscale_factor,
            cancel_event=cancel_event,
            log_path=log_path,
            poll_interval=self.settings.cancel_poll_interval,
            timeout=self.settings.tool_timeout,
        )
