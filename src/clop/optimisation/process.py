"""
Running external codec processes with cooperative cancellation.

The process is owned by ``run_tool``: it is polled every
``poll_interval`` seconds and killed on cancel, timeout or any error
in the caller's thread, so no codec process outlives its job.
"""

import subprocess
import threading
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional, Sequence

from clop.jobs.errors import (
    CancelledError,
    ResourceExhaustedError,
    ToolInvocationError,
    is_resource_exhausted,
)
from clop.utils.logging_config import get_logger, read_log_tail

logger = get_logger(__name__)


def check_cancelled(cancel_event: threading.Event) -> None:
    """Raise CancelledError if the job was asked to stop."""
    if cancel_event.is_set():
        raise CancelledError("Optimisation cancelled")


@contextmanager
def scratch_file(path: Path) -> Iterator[Path]:
    """Remove a partially written output unless the block completes."""
    path.parent.mkdir(parents=True, exist_ok=True)
    try:
        yield path
    except BaseException:
        path.unlink(missing_ok=True)
        raise


def _kill(process: subprocess.Popen) -> None:
    process.kill()
    process.wait()


def run_tool(
    args: Sequence[str],
    cancel_event: threading.Event,
    log_path: Path,
    poll_interval: float = 0.1,
    timeout: Optional[float] = None
) -> None:
    """
    Run an external tool to completion, honouring cancellation.

    Args:
        args: Command line, executable first.
        cancel_event: Set to stop the tool; it is killed within one
            poll interval.
        log_path: File receiving the tool's stdout and stderr.
        poll_interval: Seconds between cancellation checks.
        timeout: Kill the tool after this many seconds (None for no limit).

    Raises:
        CancelledError: If cancel_event was set.
        ToolInvocationError: If the tool is missing, times out or exits
            with a non-zero code.
        ResourceExhaustedError: If the tool ran out of disk space.
    """
    tool = Path(args[0]).name
    log_path.parent.mkdir(parents=True, exist_ok=True)

    with open(log_path, "w", encoding="utf-8", errors="replace") as log_f:
        try:
            process = subprocess.Popen(
                [str(a) for a in args],
                stdout=log_f,
                stderr=subprocess.STDOUT,
                stdin=subprocess.DEVNULL,
            )
        except FileNotFoundError as e:
            raise ToolInvocationError(f"{tool} is not installed", tool=tool) from e
        except OSError as e:
            if is_resource_exhausted(e):
                raise ResourceExhaustedError(f"Could not start {tool}: {e}") from e
            raise ToolInvocationError(f"Could not start {tool}: {e}", tool=tool) from e

        logger.debug(f"Started {tool} (PID {process.pid}), logs: {log_path}")
        deadline = time.monotonic() + timeout if timeout else None

        try:
            while process.poll() is None:
                if cancel_event.wait(poll_interval):
                    _kill(process)
                    logger.info(f"Killed {tool} (PID {process.pid}) on cancel")
                    raise CancelledError(f"{tool} cancelled")
                if deadline is not None and time.monotonic() > deadline:
                    _kill(process)
                    raise ToolInvocationError(
                        f"{tool} timed out after {timeout:.0f}s", tool=tool
                    )
        except BaseException:
            if process.poll() is None:
                _kill(process)
            raise

    returncode = process.returncode
    if returncode != 0:
        tail = read_log_tail(log_path)
        if "No space left on device" in tail:
            raise ResourceExhaustedError(f"{tool} ran out of disk space")
        raise ToolInvocationError(
            f"{tool} exited with code {returncode}" + (f": {tail}" if tail else ""),
            tool=tool,
            returncode=returncode,
        )
