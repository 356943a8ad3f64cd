"""
Job management for optimisation jobs.

Tracks, runs, cancels and reverts a bounded set of concurrent
file and clipboard optimisation jobs.
"""

from .errors import (
    CancelledError,
    ClopError,
    InvalidSourceError,
    JobNotFoundError,
    JobNotRemovableError,
    NothingToRestoreError,
    OptimisationError,
    ResourceExhaustedError,
    ToolInvocationError,
    UnsupportedFormatError,
)
from .models import (
    EngineOutput,
    EventKind,
    JobEvent,
    JobRecord,
    JobState,
    MediaType,
    OptimisationOptions,
    OptimisationResult,
    Source,
    SourceKind,
    next_scaling_factor,
)
from .store import JobStore
from .sources import source_from_bytes, source_from_path
from .job_manager import JobManager

__all__ = [
    "CancelledError",
    "ClopError",
    "InvalidSourceError",
    "JobNotFoundError",
    "JobNotRemovableError",
    "NothingToRestoreError",
    "OptimisationError",
    "ResourceExhaustedError",
    "ToolInvocationError",
    "UnsupportedFormatError",
    "EngineOutput",
    "EventKind",
    "JobEvent",
    "JobRecord",
    "JobState",
    "MediaType",
    "OptimisationOptions",
    "OptimisationResult",
    "Source",
    "SourceKind",
    "next_scaling_factor",
    "JobStore",
    "source_from_bytes",
    "source_from_path",
    "JobManager",
]
