"""
Image optimisation with Pillow.

JPEG (including Multi-Picture JPEG) is re-encoded progressively at the
configured quality, PNG is recompressed (and palette-quantized when
aggressive), GIF frames are re-saved with Pillow's optimizer when
gifsicle is unavailable.
Cancellation is checked between decoding, resizing and encoding.
"""

import threading
from pathlib import Path
from typing import Any, Dict, List

from PIL import Image, ImageSequence, UnidentifiedImageError

from clop.jobs.errors import (
    OptimisationError,
    ResourceExhaustedError,
    UnsupportedFormatError,
    is_resource_exhausted,
)
from clop.optimisation.process import check_cancelled
from clop.utils.logging_config import get_logger

logger = get_logger(__name__)

SUPPORTED_FORMATS = ("JPEG", "MPO", "PNG", "GIF")

# Multi-Picture JPEGs from phones and cameras; only the primary frame is kept
JPEG_FORMATS = ("JPEG", "MPO")
PNG_PALETTE_COLORS = 256


def _scaled_size(size, factor: float):
    width, height = size
    return max(1, round(width * factor)), max(1, round(height * factor))


def downscale(image: Image.Image, factor: float) -> Image.Image:
    """Resize both dimensions by ``factor`` with LANCZOS resampling."""
    if factor >= 1:
        return image
    return image.resize(_scaled_size(image.size, factor), Image.Resampling.LANCZOS)


def _metadata(image: Image.Image) -> Dict[str, Any]:
    kwargs = {}
    if image.info.get("icc_profile"):
        kwargs["icc_profile"] = image.info["icc_profile"]
    if image.info.get("exif"):
        kwargs["exif"] = image.info["exif"]
    return kwargs


def _save_jpeg(image: Image.Image, dst: Path, quality: int, extra: Dict[str, Any]) -> None:
    if image.mode not in ("RGB", "L", "CMYK"):
        image = image.convert("RGB")
    image.save(
        dst,
        format="JPEG",
        quality=quality,
        optimize=True,
        progressive=True,
        **extra,
    )


def _save_png(image: Image.Image, dst: Path, aggressive: bool, extra: Dict[str, Any]) -> None:
    if aggressive and image.mode != "P":
        if image.mode in ("RGBA", "LA", "PA") or "transparency" in image.info:
            image = image.convert("RGBA").quantize(
                colors=PNG_PALETTE_COLORS, method=Image.Quantize.FASTOCTREE
            )
        else:
            image = image.convert("RGB").quantize(colors=PNG_PALETTE_COLORS)
    image.save(dst, format="PNG", optimize=True, **extra)


def _save_gif(
    image: Image.Image,
    dst: Path,
    factor: float,
    cancel_event: threading.Event
) -> None:
    frames: List[Image.Image] = []
    durations: List[int] = []
    for frame in ImageSequence.Iterator(image):
        check_cancelled(cancel_event)
        durations.append(frame.info.get("duration", image.info.get("duration", 100)))
        frames.append(downscale(frame.copy(), factor))

    first, rest = frames[0], frames[1:]
    save_kwargs: Dict[str, Any] = {"format": "GIF", "optimize": True}
    if rest:
        save_kwargs.update(
            save_all=True,
            append_images=rest,
            duration=durations,
            loop=image.info.get("loop", 0),
        )
    first.save(dst, **save_kwargs)


def optimise_image(
    src: Path,
    dst: Path,
    aggressive: bool,
    downscale_factor: float,
    jpeg_quality: int,
    jpeg_aggressive_quality: int,
    cancel_event: threading.Event
) -> None:
    """
    Write an optimised copy of an image.

    Args:
        src: Source image (JPEG, PNG or GIF).
        dst: Output path, same format as the source.
        aggressive: Use lossier settings.
        downscale_factor: Scale factor in (0, 1].
        jpeg_quality: JPEG quality for normal optimisation.
        jpeg_aggressive_quality: JPEG quality for aggressive optimisation.
        cancel_event: Checked between processing steps.

    Raises:
        UnsupportedFormatError: If the file is not a supported image.
        ResourceExhaustedError: On disk full, memory exhaustion or
            decompression bombs.
        CancelledError: If cancel_event was set.
        OptimisationError: For other decoding or encoding failures.
    """
    try:
        with Image.open(src) as image:
            if image.format not in SUPPORTED_FORMATS:
                raise UnsupportedFormatError(
                    f"Unsupported image format {image.format} for {src.name}"
                )
            image_format = image.format
            image.load()
            check_cancelled(cancel_event)

            if image_format == "GIF":
                _save_gif(image, dst, downscale_factor, cancel_event)
                return

            extra = _metadata(image)
            primary = image.copy() if image_format == "MPO" else image
            resized = downscale(primary, downscale_factor)
            check_cancelled(cancel_event)

            if image_format in JPEG_FORMATS:
                quality = jpeg_aggressive_quality if aggressive else jpeg_quality
                _save_jpeg(resized, dst, quality, extra)
            else:
                _save_png(resized, dst, aggressive, extra)

    except UnidentifiedImageError as e:
        raise UnsupportedFormatError(f"{src.name} is not a supported image") from e
    except Image.DecompressionBombError as e:
        raise ResourceExhaustedError(f"{src.name} is too large to decode: {e}") from e
    except MemoryError as e:
        raise ResourceExhaustedError(f"Out of memory while optimising {src.name}") from e
    except OSError as e:
        if is_resource_exhausted(e):
            raise ResourceExhaustedError(f"Not enough space to optimise {src.name}: {e}") from e
        raise OptimisationError(f"Could not process image {src.name}: {e}") from e

    logger.debug(f"Optimised image {src.name} (aggressive={aggressive}, scale={downscale_factor})")
