"""
Source resolution: turn dropped files and clipboard payloads into Sources.
"""

import hashlib
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Union

from clop.jobs.errors import InvalidSourceError
from clop.jobs.models import MediaType, Source, SourceKind
from clop.utils.logging_config import get_logger
from clop.utils.paths import CLIPBOARD, ensure_workdir

logger = get_logger(__name__)

SourceLike = Union[Source, Path, str]


def source_from_path(path: Union[Path, str], kind: SourceKind = SourceKind.FILE) -> Source:
    """
    Validate a file and describe it as a Source.

    Args:
        path: File to optimise.
        kind: Origin of the payload.

    Returns:
        Source with resolved path, media type and size.

    Raises:
        InvalidSourceError: If the file is missing, not a regular file,
            empty or unreadable.
    """
    path = Path(path).expanduser()

    if not path.exists():
        raise InvalidSourceError(f"Source not found: {path}")
    if not path.is_file():
        raise InvalidSourceError(f"Source is not a regular file: {path}")

    try:
        size = path.stat().st_size
        with path.open("rb") as f:
            f.read(1)
    except OSError as e:
        raise InvalidSourceError(f"Cannot read source {path}: {e}") from e

    if size == 0:
        raise InvalidSourceError(f"Source is empty: {path}")

    return Source(
        path=path.resolve(),
        kind=kind,
        media_type=MediaType.from_path(path),
        size=size,
    )


def source_from_bytes(data: bytes, suffix: str, workdir: Path) -> Source:
    """
    Store a clipboard payload in the workdir and describe it as a Source.

    Args:
        data: Raw clipboard bytes.
        suffix: File suffix for the payload format (".png", "jpeg", ...).
        workdir: Workdir root.

    Returns:
        CLIPBOARD Source pointing at the stored payload.

    Raises:
        InvalidSourceError: If the payload is empty or the suffix is missing.
    """
    if not data:
        raise InvalidSourceError("Clipboard payload is empty")

    suffix = suffix.strip().lower()
    if not suffix or suffix == ".":
        raise InvalidSourceError("Clipboard payload has no format suffix")
    if not suffix.startswith("."):
        suffix = f".{suffix}"

    clipboard_dir = ensure_workdir(workdir)[CLIPBOARD]
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S_%f")
    hash_suffix = hashlib.md5(data[:4096]).hexdigest()[:4]
    path = clipboard_dir / f"clipboard_{timestamp}_{hash_suffix}{suffix}"
    path.write_bytes(data)

    logger.debug(f"Stored clipboard payload ({len(data)} bytes) at {path}")
    return source_from_path(path, kind=SourceKind.CLIPBOARD)


def resolve_source(source: SourceLike) -> Source:
    """
    Re-validate a Source or build one from a path.

    Raises:
        InvalidSourceError: If the payload cannot be read.
    """
    if isinstance(source, Source):
        fresh = source_from_path(source.path, kind=source.kind)
        return replace(source, path=fresh.path, media_type=fresh.media_type, size=fresh.size)
    if isinstance(source, (str, Path)):
        if not str(source).strip():
            raise InvalidSourceError("Source path is empty")
        return source_from_path(source)
    raise InvalidSourceError(f"Unsupported source type: {type(source).__name__}")
