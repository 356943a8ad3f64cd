"""
Applying engine output to the source file, with a backup of the original.
"""

import errno
import os
import shutil
from pathlib import Path

from clop.jobs.models import EngineOutput, OptimisationResult, Source
from clop.utils.logging_config import get_logger

logger = get_logger(__name__)


def discard_output(output: EngineOutput) -> None:
    """Delete a scratch output that will not be applied."""
    output.path.unlink(missing_ok=True)


def _replace_file(src: Path, dst: Path) -> None:
    try:
        os.replace(src, dst)
    except OSError as e:
        if e.errno != errno.EXDEV:
            raise
        # Workdir on another filesystem
        shutil.copyfile(src, dst)
        src.unlink(missing_ok=True)


def commit_output(
    job_id: str,
    source: Source,
    output: EngineOutput,
    backups_dir: Path
) -> OptimisationResult:
    """
    Replace the source with the optimised output, keeping a backup.

    Outputs that are not smaller than the source are discarded and the
    source is left untouched.

    Args:
        job_id: Job identifier, used to name the backup.
        source: The job's source.
        output: Scratch output from the engine.
        backups_dir: Directory for original copies.

    Returns:
        OptimisationResult describing the applied (or skipped) replacement.

    Raises:
        OSError: If the backup or the replacement fails. The source is left
            as it was.
    """
    if output.optimised_size >= output.original_size:
        discard_output(output)
        logger.info(
            f"Job {job_id}: output not smaller ({output.optimised_size} >= "
            f"{output.original_size} bytes), keeping original"
        )
        return OptimisationResult(
            path=source.path,
            backup_path=None,
            original_size=output.original_size,
            optimised_size=output.original_size,
            improved=False,
        )

    backups_dir.mkdir(parents=True, exist_ok=True)
    backup_path = backups_dir / f"{job_id}{source.path.suffix}"

    try:
        shutil.copy2(source.path, backup_path)
        _replace_file(output.path, source.path)
    except OSError:
        backup_path.unlink(missing_ok=True)
        discard_output(output)
        raise

    logger.info(
        f"Job {job_id}: {source.path.name} {output.original_size} -> "
        f"{output.optimised_size} bytes"
    )
    return OptimisationResult(
        path=source.path,
        backup_path=backup_path,
        original_size=output.original_size,
        optimised_size=output.optimised_size,
    )


def restore_backup(result: OptimisationResult) -> None:
    """
    Copy the original back over the optimised file.

    Raises:
        FileNotFoundError: If the backup was removed (e.g. workdir cleaned).
    """
    if result.backup_path is None or not result.backup_path.exists():
        raise FileNotFoundError(f"Backup for {result.path} no longer exists")
    shutil.copy2(result.backup_path, result.path)
