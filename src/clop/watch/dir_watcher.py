"""
Folder watcher that submits new images and videos for optimisation.

Directories are polled every ``watch_interval`` seconds. A file is
submitted once its modification time has stayed the same for two
consecutive scans, so files still being copied are not picked up half
written. Files already present when the watcher starts are left alone.
"""

import threading
from pathlib import Path
from typing import Dict, List, Optional, Set, Tuple

from clop.config.settings import Settings
from clop.jobs.errors import InvalidSourceError
from clop.jobs.job_manager import JobManager
from clop.jobs.models import IMAGE_SUFFIXES, VIDEO_SUFFIXES, EventKind, JobEvent
from clop.utils.logging_config import get_logger

logger = get_logger(__name__)

BYTES_PER_MB = 1024 * 1024


class DirWatcher:
    """
    Polls watched folders and submits new files to the job manager.

    Files above ``max_auto_file_size_mb`` are not submitted; they are
    recorded in ``skipped`` so a UI can list them. Files submitted by the
    watcher stay owned by it while they exist: they are re-stamped whenever
    the job manager rewrites them (job end, restore of the original), so
    those writes are not mistaken for new files.

    Example:
        >>> watcher = DirWatcher(manager, settings)
        >>> watcher.start()
        >>> ...
        >>> watcher.stop()
    """

    def __init__(self, manager: JobManager, settings: Settings):
        self.manager = manager
        self.settings = settings
        self.paused = settings.pause_automatic_optimisations
        self._skipped: List[Path] = []

        self._seen: Dict[Path, float] = {}
        self._settling: Dict[Path, float] = {}
        self._in_flight: Set[Path] = set()
        self._owned: Set[Path] = set()
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

        self._seen.update(self._snapshot())
        self._unsubscribe = manager.subscribe(self._on_event)
        logger.info(f"Watching {len(self._watched())} folder(s), {len(self._seen)} existing file(s) ignored")

    def _watched(self) -> List[Tuple[Path, Tuple[str, ...]]]:
        watched = []
        if self.settings.enable_automatic_image_optimisations:
            watched += [(Path(d), IMAGE_SUFFIXES) for d in self.settings.image_dirs]
        if self.settings.enable_automatic_video_optimisations:
            watched += [(Path(d), VIDEO_SUFFIXES) for d in self.settings.video_dirs]
        return watched

    def _snapshot(self) -> Dict[Path, float]:
        """Map every matching file in the watched folders to its mtime."""
        files: Dict[Path, float] = {}
        for directory, suffixes in self._watched():
            if not directory.is_dir():
                continue
            for path in directory.iterdir():
                if path.name.startswith(".") or path.suffix.lower() not in suffixes:
                    continue
                try:
                    if path.is_file():
                        files[path.resolve()] = path.stat().st_mtime
                except OSError:
                    continue
        return files

    @property
    def skipped(self) -> List[Path]:
        """Files not submitted because they exceed the size limit."""
        with self._lock:
            return list(self._skipped)

    def set_paused(self, paused: bool) -> None:
        self.paused = paused
        logger.info(f"Automatic optimisations {'paused' if paused else 'resumed'}")

    def scan_once(self) -> List[str]:
        """
        Scan the watched folders once and submit settled new files.

        Returns:
            Ids of the jobs submitted by this scan.
        """
        if self.paused:
            return []

        current = self._snapshot()
        ready: List[Path] = []

        with self._lock:
            for path in list(self._seen):
                if path not in current:
                    del self._seen[path]
            self._owned.intersection_update(current)
            self._skipped = [p for p in self._skipped if p in current]

            for path, mtime in current.items():
                if path in self._in_flight or self._seen.get(path) == mtime:
                    self._settling.pop(path, None)
                    continue
                if self._settling.get(path) == mtime:
                    del self._settling[path]
                    self._seen[path] = mtime
                    ready.append(path)
                else:
                    self._settling[path] = mtime

        job_ids = []
        limit = self.settings.max_auto_file_size_mb * BYTES_PER_MB
        for path in ready:
            try:
                size = path.stat().st_size
            except OSError:
                continue

            if limit > 0 and size > limit:
                with self._lock:
                    if path not in self._skipped:
                        self._skipped.append(path)
                logger.warning(
                    f"Skipping {path.name}: {size / BYTES_PER_MB:.1f} MB exceeds "
                    f"{self.settings.max_auto_file_size_mb:.0f} MB limit"
                )
                continue

            with self._lock:
                self._in_flight.add(path)
                self._owned.add(path)
            try:
                job_ids.append(self.manager.submit(path))
            except InvalidSourceError as e:
                with self._lock:
                    self._in_flight.discard(path)
                    self._owned.discard(path)
                logger.warning(f"Not optimising {path.name}: {e}")

        return job_ids

    def _on_event(self, event: JobEvent) -> None:
        if event.kind == EventKind.STATE_CHANGED:
            if not event.record.is_terminal:
                return
        elif event.kind != EventKind.ORIGINAL_RESTORED:
            return

        path = event.record.source.path
        with self._lock:
            if path not in self._owned:
                return
            self._in_flight.discard(path)
            try:
                self._seen[path] = path.stat().st_mtime
            except OSError:
                self._seen.pop(path, None)
            self._settling.pop(path, None)

    def _run(self) -> None:
        while not self._stop.wait(self.settings.watch_interval):
            try:
                self.scan_once()
            except Exception:
                logger.exception("Folder scan failed")

    def start(self) -> None:
        """Start polling in a background thread."""
        if self._thread is not None:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="clop-watcher", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        """Stop polling and detach from the job manager."""
        self._stop.set()
        if self._thread is not None:
            self._thread.join()
            self._thread = None
        self._unsubscribe()
