"""
Utility modules for the optimiser.
"""

from clop.utils.logging_config import get_logger, job_log_path, read_log_tail, setup_logging
from clop.utils.paths import clean_workdir, ensure_workdir, get_workdir_paths

__all__ = [
    "setup_logging",
    "get_logger",
    "job_log_path",
    "read_log_tail",
    "clean_workdir",
    "ensure_workdir",
    "get_workdir_paths",
]
