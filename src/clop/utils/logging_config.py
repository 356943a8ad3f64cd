"""
Logging for the optimiser.

Two kinds of log are written: the application log (console plus an
optional UTF-8 file, relative paths resolved inside the workdir) and one
process log per job under ``workdir/process_logs`` that captures the
output of external codecs.
"""

import logging
from pathlib import Path
from typing import List, Optional, Union

from clop.utils.paths import PROCESS_LOGS

DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
PROCESS_LOG_TAIL_CHARS = 500

# Third-party loggers that are chatty at INFO
QUIET_LOGGERS = ("PIL", "uvicorn.access", "httpx", "httpcore", "multipart")


def resolve_log_file(log_file: Union[str, Path], workdir: Optional[Path] = None) -> Path:
    """
    Resolve an application log path.

    Relative paths are placed inside the workdir when one is given, so
    ``CLOP_LOG_FILE=clop.log`` ends up next to the backups and process logs.
    """
    path = Path(log_file).expanduser()
    if not path.is_absolute() and workdir is not None:
        path = Path(workdir) / path
    return path


def setup_logging(
    log_file: Optional[Union[str, Path]] = None,
    level: int = logging.INFO,
    log_format: Optional[str] = None,
    workdir: Optional[Path] = None
) -> logging.Logger:
    """
    Configure the root logger for the optimiser.

    Args:
        log_file: Application log file, appended to. None logs to the
            console only.
        level: Logging level (default: logging.INFO).
        log_format: Custom format string. Defaults to DEFAULT_FORMAT.
        workdir: Base for a relative ``log_file``.

    Returns:
        Configured root logger.
    """
    formatter = logging.Formatter(log_format or DEFAULT_FORMAT)
    handlers: List[logging.Handler] = [logging.StreamHandler()]

    if log_file:
        path = resolve_log_file(log_file, workdir)
        path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(path, mode="a", encoding="utf-8"))

    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)

    logging.basicConfig(level=level, handlers=handlers, force=True)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return logging.getLogger()


def get_logger(name: str) -> logging.Logger:
    """Get a module logger (pass ``__name__``)."""
    return logging.getLogger(name)


def job_log_path(workdir: Path, job_id: str) -> Path:
    """Process log for one job: ``workdir/process_logs/<job id>.log``."""
    return Path(workdir) / PROCESS_LOGS / f"{job_id}.log"


def read_log_tail(log_path: Path, max_chars: int = PROCESS_LOG_TAIL_CHARS) -> str:
    """
    Last ``max_chars`` characters of a process log, for error messages.

    Returns an empty string when the log is missing or unreadable.
    """
    try:
        text = Path(log_path).read_text(encoding="utf-8", errors="replace")
    except OSError:
        return ""
    return text.strip()[-max_chars:]
