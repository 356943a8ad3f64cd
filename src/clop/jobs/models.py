"""
Data models for the optimisation job system.
"""

import copy
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional


IMAGE_SUFFIXES = (".jpg", ".jpeg", ".png", ".gif")
VIDEO_SUFFIXES = (".mp4", ".mov", ".m4v")

MIN_SCALING_FACTOR = 0.1


class JobState(str, Enum):
    """Job lifecycle state."""
    QUEUED = "queued"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (JobState.SUCCEEDED, JobState.FAILED, JobState.CANCELLED)


class SourceKind(str, Enum):
    """Where a source came from."""
    FILE = "file"
    CLIPBOARD = "clipboard"


class MediaType(str, Enum):
    """Media type, derived from the file suffix."""
    IMAGE = "image"
    VIDEO = "video"
    UNKNOWN = "unknown"

    @classmethod
    def from_path(cls, path: Path) -> "MediaType":
        suffix = Path(path).suffix.lower()
        if suffix in IMAGE_SUFFIXES:
            return cls.IMAGE
        if suffix in VIDEO_SUFFIXES:
            return cls.VIDEO
        return cls.UNKNOWN


@dataclass(frozen=True)
class Source:
    """
    A readable payload submitted for optimisation.

    Attributes:
        path: File holding the payload. Clipboard payloads are written to
            the workdir first.
        kind: Whether the payload is a user file or a clipboard item.
        media_type: Image, video or unknown.
        size: Size in bytes at submission time.
    """
    path: Path
    kind: SourceKind = SourceKind.FILE
    media_type: MediaType = MediaType.UNKNOWN
    size: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "path": str(self.path),
            "kind": self.kind.value,
            "media_type": self.media_type.value,
            "size": self.size,
        }


@dataclass(frozen=True)
class OptimisationOptions:
    """
    Per-job optimisation options.

    Attributes:
        aggressive: Force aggressive (lossier) optimisation on or off.
            None uses the per-format default from settings.
        downscale_factor: Scale both dimensions by this factor (0, 1].
    """
    aggressive: Optional[bool] = None
    downscale_factor: float = 1.0

    def __post_init__(self):
        if not 0 < self.downscale_factor <= 1:
            raise ValueError(
                f"downscale_factor must be in (0, 1], got {self.downscale_factor}"
            )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "aggressive": self.aggressive,
            "downscale_factor": self.downscale_factor,
        }


def next_scaling_factor(current: float) -> float:
    """
    Step a downscale factor down for the next "downscale" request.

    Large factors step by 0.25, small ones by 0.1, never below 0.1.

    Args:
        current: Factor used by the previous downscale (1.0 for none).

    Returns:
        The next, smaller factor.
    """
    step = 0.25 if current > 0.5 else 0.1
    return round(max(current - step, MIN_SCALING_FACTOR), 2)


@dataclass(frozen=True)
class EngineOutput:
    """
    Scratch output produced by the engine, not yet applied to the source.

    Attributes:
        path: Scratch file in the workdir.
        original_size: Source size in bytes.
        optimised_size: Scratch file size in bytes.
    """
    path: Path
    original_size: int
    optimised_size: int


@dataclass(frozen=True)
class OptimisationResult:
    """
    Outcome of a succeeded job.

    Attributes:
        path: File now holding the payload.
        backup_path: Copy of the original, None when nothing was replaced.
        original_size: Size before optimisation.
        optimised_size: Size after optimisation.
        improved: False when the output was not smaller and was discarded.
    """
    path: Path
    backup_path: Optional[Path]
    original_size: int
    optimised_size: int
    improved: bool = True

    @property
    def saved_bytes(self) -> int:
        return max(self.original_size - self.optimised_size, 0)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "path": str(self.path),
            "backup_path": str(self.backup_path) if self.backup_path else None,
            "original_size": self.original_size,
            "optimised_size": self.optimised_size,
            "improved": self.improved,
            "saved_bytes": self.saved_bytes,
        }


@dataclass
class JobRecord:
    """
    One optimisation job.

    Records are owned by the job manager; callers only ever see snapshots.

    Attributes:
        id: Unique job identifier (timestamp + hash).
        source: The payload being optimised.
        options: Optimisation options for this job.
        state: Current lifecycle state.
        is_original: True until a successful optimisation replaces the payload.
        result: Set only when state is SUCCEEDED.
        error: Non-empty message, set only when state is FAILED.
        created_at: Job creation timestamp.
        started_at: When the job started running.
        completed_at: When the job reached a terminal state.
        seq: Insertion order, used to restore removed jobs in place.
        epoch: Bumped on every cancel request; stale completions are discarded.
    """
    id: str
    source: Source
    options: OptimisationOptions = field(default_factory=OptimisationOptions)
    state: JobState = JobState.QUEUED
    is_original: bool = True
    result: Optional[OptimisationResult] = None
    error: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.now)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    seq: int = 0
    epoch: int = 0

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal

    @property
    def cancelled_before_start(self) -> bool:
        return self.state == JobState.CANCELLED and self.started_at is None

    def snapshot(self) -> "JobRecord":
        """Return a copy safe to hand outside the manager."""
        return copy.copy(self)

    def to_dict(self) -> Dict[str, Any]:
        """Convert job to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "source": self.source.to_dict(),
            "options": self.options.to_dict(),
            "state": self.state.value,
            "is_original": self.is_original,
            "result": self.result.to_dict() if self.result else None,
            "error": self.error,
            "created_at": self.created_at.isoformat(),
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }


class EventKind(str, Enum):
    """Kinds of change published by the job manager."""
    ADDED = "added"
    STATE_CHANGED = "state_changed"
    REMOVED = "removed"
    RESTORED = "restored"
    ORIGINAL_RESTORED = "original_restored"


@dataclass(frozen=True)
class JobEvent:
    """A change to one job, with a snapshot of the record after the change."""
    kind: EventKind
    record: JobRecord
