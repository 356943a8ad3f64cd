"""
Exceptions raised by the job manager and the optimisation engine.
"""

import errno
from typing import Optional

RESOURCE_ERRNOS = {
    code for code in (getattr(errno, "ENOSPC", None), getattr(errno, "EDQUOT", None))
    if code is not None
}


class ClopError(Exception):
    """Base class for optimiser errors."""


class InvalidSourceError(ClopError):
    """The submitted source is missing, empty or unreadable."""


class JobNotFoundError(ClopError, LookupError):
    """No active job has the requested id."""

    def __init__(self, job_id: str):
        super().__init__(f"Job {job_id} not found")
        self.job_id = job_id


class JobNotRemovableError(ClopError):
    """The job is still running and cannot be removed."""

    def __init__(self, job_id: str):
        super().__init__(f"Job {job_id} is running and cannot be removed")
        self.job_id = job_id


class NothingToRestoreError(ClopError):
    """The job already holds its original payload."""

    def __init__(self, job_id: str):
        super().__init__(f"Job {job_id} already holds the original file")
        self.job_id = job_id


class OptimisationError(ClopError):
    """Base class for failures while optimising a single job."""


class UnsupportedFormatError(OptimisationError):
    """The source format is not handled by any optimiser."""


class ToolInvocationError(OptimisationError):
    """An external codec process is missing, failed or timed out."""

    def __init__(self, message: str, tool: Optional[str] = None, returncode: Optional[int] = None):
        super().__init__(message)
        self.tool = tool
        self.returncode = returncode


class ResourceExhaustedError(OptimisationError):
    """The machine ran out of disk space or memory."""


class CancelledError(OptimisationError):
    """
    The job was cancelled while running.

    Not a failure: the manager maps it to the Cancelled state.
    """


def is_resource_exhausted(exc: BaseException) -> bool:
    """True for disk-full, quota and out-of-memory errors."""
    if isinstance(exc, MemoryError):
        return True
    return isinstance(exc, OSError) and exc.errno in RESOURCE_ERRNOS
