"""
Workdir layout for the optimiser.

Every scratch output, backup and process log lives under a single workdir so
it can be opened, inspected and force-cleaned as a whole.
"""

import shutil
from pathlib import Path
from typing import Dict

BACKUPS = "backups"
IMAGES = "images"
VIDEOS = "videos"
CLIPBOARD = "clipboard"
PROCESS_LOGS = "process_logs"

WORKDIR_SUBDIRS = (BACKUPS, IMAGES, VIDEOS, CLIPBOARD, PROCESS_LOGS)


def get_workdir_paths(root: Path) -> Dict[str, Path]:
    """
    Get the workdir subdirectory paths.

    Args:
        root: Workdir root.

    Returns:
        Dictionary with keys backups, images, videos, clipboard, process_logs.
    """
    root = Path(root)
    return {name: root / name for name in WORKDIR_SUBDIRS}


def ensure_workdir(root: Path) -> Dict[str, Path]:
    """
    Create the workdir and its subdirectories if missing.

    Args:
        root: Workdir root.

    Returns:
        Same mapping as get_workdir_paths().
    """
    paths = get_workdir_paths(root)
    for path in paths.values():
        path.mkdir(parents=True, exist_ok=True)
    return paths


def clean_workdir(root: Path) -> Dict[str, Path]:
    """
    Remove every workdir subdirectory and recreate an empty layout.

    Backups are removed too, so jobs optimised before the clean can no
    longer be restored to their original.

    Args:
        root: Workdir root.

    Returns:
        Mapping of the recreated subdirectories.

    Raises:
        OSError: If a directory could not be removed or recreated.
    """
    for path in get_workdir_paths(root).values():
        if path.exists():
            shutil.rmtree(path)

    paths = ensure_workdir(root)
    if not Path(root).is_dir():
        raise OSError(f"Could not create workdir at {root}")
    return paths
