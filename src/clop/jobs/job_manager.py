"""
Job manager for submitting, running, cancelling and reverting optimisation jobs.
"""

import hashlib
import itertools
import threading
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import Callable, Deque, Dict, List, Optional, Tuple

from clop.config.settings import Settings
from clop.jobs.backups import commit_output, discard_output, restore_backup
from clop.jobs.errors import (
    CancelledError,
    JobNotFoundError,
    JobNotRemovableError,
    NothingToRestoreError,
    OptimisationError,
    is_resource_exhausted,
)
from clop.jobs.models import (
    EngineOutput,
    EventKind,
    JobEvent,
    JobRecord,
    JobState,
    OptimisationOptions,
    Source,
)
from clop.jobs.sources import SourceLike, resolve_source
from clop.jobs.store import JobStore
from clop.utils.logging_config import get_logger
from clop.utils.paths import BACKUPS, get_workdir_paths

logger = get_logger(__name__)

Subscriber = Callable[[JobEvent], None]
TerminalCallback = Callable[[JobRecord], None]


def _error_message(exc: BaseException) -> str:
    message = str(exc).strip()
    return message or type(exc).__name__


class JobManager:
    """
    Single source of truth for which optimisation jobs exist and their states.

    Every state transition happens under one lock, so transitions of a job
    are totally ordered. Engines run on a pool of ``max_concurrent_jobs``
    worker threads and report back through a completion callback; they never
    touch the store. Jobs beyond the cap wait in FIFO order.

    The engine is any object with
    ``optimise(job_id, source, options, cancel_event) -> EngineOutput``
    that raises the errors from ``clop.jobs.errors``.

    Events are published to subscribers after the lock is released, in the
    order the transitions happened.

    Example:
        >>> manager = JobManager(OptimisationEngine(settings), settings)
        >>> job_id = manager.submit("~/Desktop/screenshot.png")
        >>> manager.wait(job_id).state
        <JobState.SUCCEEDED: 'succeeded'>
        >>> manager.restore_original(job_id)
    """

    def __init__(
        self,
        engine,
        settings: Settings,
        store: Optional[JobStore] = None,
        on_terminal: Optional[TerminalCallback] = None
    ):
        """
        Initialize the job manager.

        Args:
            engine: Optimisation engine (see class docstring).
            settings: Validated settings; provides the concurrency cap, undo
                capacity, workdir and auto-removal delay.
            store: Job store. Defaults to one sized by undo_stack_size.
            on_terminal: Called once with a snapshot whenever a job reaches
                Succeeded, Failed or Cancelled.
        """
        settings.validate()
        self.engine = engine
        self.settings = settings
        self.max_concurrent = settings.max_concurrent_jobs
        self.store = store or JobStore(undo_capacity=settings.undo_stack_size)
        self.backups_dir = get_workdir_paths(settings.workdir)[BACKUPS]
        self._on_terminal = on_terminal

        self._lock = threading.RLock()
        self._changed = threading.Condition(self._lock)
        self._queue: Deque[str] = deque()
        self._running: Dict[str, threading.Event] = {}
        self._timers: Dict[str, threading.Timer] = {}
        self._seq = itertools.count(1)
        self._id_counter = itertools.count()
        self._closed = False

        self._subscribers: List[Subscriber] = []
        self._pending_events: Deque[Tuple[JobEvent, bool]] = deque()
        self._delivery_lock = threading.RLock()

        self._executor = ThreadPoolExecutor(
            max_workers=self.max_concurrent,
            thread_name_prefix="clop-optimiser"
        )

    def __enter__(self) -> "JobManager":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.shutdown()

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def submit(self, source: SourceLike, options: Optional[OptimisationOptions] = None) -> str:
        """
        Create a job for a source and queue it for optimisation.

        Returns immediately; the job runs as soon as a slot is free.

        Args:
            source: File path or Source (clipboard payloads are resolved to
                a file by ``source_from_bytes`` first).
            options: Optimisation options. Defaults to per-format settings.

        Returns:
            The new job's id.

        Raises:
            InvalidSourceError: If the source cannot be read. No job is
                created in that case.
            RuntimeError: If the manager was shut down.
        """
        resolved = resolve_source(source)
        options = options or OptimisationOptions()

        with self._lock:
            if self._closed:
                raise RuntimeError("JobManager is shut down")

            job_id = self._generate_job_id(resolved)
            record = JobRecord(
                id=job_id,
                source=resolved,
                options=options,
                seq=next(self._seq),
            )
            self.store.add(record)
            self._queue.append(job_id)
            self._publish(EventKind.ADDED, record)
            logger.info(f"Created job {job_id} for {resolved.kind.value}: {resolved.path}")

            self._dispatch()

        self._flush_events()
        return job_id

    def cancel(self, job_id: str) -> None:
        """
        Cancel a job.

        Queued jobs become Cancelled immediately and never run. Running jobs
        are signalled and become Cancelled once the engine stops; observe
        that through events or ``wait()``. Terminal jobs are left alone.

        Raises:
            JobNotFoundError: If the job is not active.
        """
        with self._lock:
            self._cancel_locked(self._require(job_id))
        self._flush_events()

    def remove(self, job_id: str) -> JobRecord:
        """
        Remove a job from the active list.

        Finished jobs go onto the undo stack. Queued jobs are cancelled and
        dropped without an undo entry, since they never ran.

        Returns:
            Snapshot of the removed job.

        Raises:
            JobNotFoundError: If the job is not active.
            JobNotRemovableError: If the job is still running.
        """
        with self._lock:
            record = self._remove_locked(self._require(job_id))
        self._flush_events()
        return record

    def restore_last(self) -> Optional[JobRecord]:
        """
        Restore the most recently removed job.

        Returns:
            Snapshot of the restored job, or None if nothing was removed.
        """
        with self._lock:
            record = self.store.pop_undo()
            if record is None:
                return None
            self.store.reinsert(record)
            self._publish(EventKind.RESTORED, record)
            logger.info(f"Restored job {record.id}")
            snapshot = record.snapshot()

        self._flush_events()
        return snapshot

    def restore_original(self, job_id: str) -> JobRecord:
        """
        Put the original file back in place of the optimised one.

        Returns:
            Snapshot of the job, now original.

        Raises:
            JobNotFoundError: If the job is not active.
            NothingToRestoreError: If the job already holds the original.
            FileNotFoundError: If the backup was deleted meanwhile.
        """
        with self._lock:
            record = self._require(job_id)
            if record.is_original or record.result is None:
                raise NothingToRestoreError(job_id)

            restore_backup(record.result)
            record.is_original = True
            self._publish(EventKind.ORIGINAL_RESTORED, record)
            logger.info(f"Job {job_id}: restored original {record.result.path}")
            snapshot = record.snapshot()

        self._flush_events()
        return snapshot

    def get(self, job_id: str) -> Optional[JobRecord]:
        """Get a snapshot of an active job, or None."""
        with self._lock:
            record = self.store.get(job_id)
            return record.snapshot() if record else None

    def list_jobs(self, state: Optional[JobState] = None) -> List[JobRecord]:
        """List snapshots of active jobs, most recent first."""
        with self._lock:
            return [r.snapshot() for r in self.store.list(state)]

    def can_restore_last(self) -> bool:
        return self.store.undo_depth() > 0

    def running_count(self) -> int:
        with self._lock:
            return len(self._running)

    def queued_ids(self) -> List[str]:
        """Ids waiting for a slot, next to run first."""
        with self._lock:
            return list(self._queue)

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """
        Register a callback for job events.

        Args:
            callback: Called with each JobEvent. Exceptions are logged and
                do not affect the manager.

        Returns:
            Function that unregisters the callback.
        """
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def wait(self, job_id: str, timeout: Optional[float] = None) -> JobRecord:
        """
        Block until a job reaches a terminal state.

        Returns:
            Snapshot of the finished job.

        Raises:
            JobNotFoundError: If the job is not active.
            TimeoutError: If the job is still unfinished after ``timeout``.
        """
        with self._changed:
            record = self._require(job_id)
            if not self._changed.wait_for(lambda: record.is_terminal, timeout):
                raise TimeoutError(
                    f"Job {job_id} still {record.state.value} after {timeout}s"
                )
            return record.snapshot()

    def wait_all(self, timeout: Optional[float] = None) -> bool:
        """
        Block until no job is queued or running.

        After shutdown, queued jobs never start, so only running jobs are
        waited for.

        Returns:
            False if jobs are still pending after ``timeout``.
        """
        with self._changed:
            return self._changed.wait_for(
                lambda: not self._running and (self._closed or not self._queue), timeout
            )

    def shutdown(self, wait: bool = True, cancel_pending: bool = True) -> None:
        """
        Stop accepting jobs and release the worker pool.

        Args:
            wait: Block until running engines return.
            cancel_pending: Cancel queued and running jobs first. Otherwise
                running jobs finish and queued jobs stay queued.
        """
        with self._lock:
            self._closed = True
            self._changed.notify_all()
            if cancel_pending:
                for record in self.store.list():
                    if not record.is_terminal:
                        self._cancel_locked(record)
            for timer in self._timers.values():
                timer.cancel()
            self._timers.clear()

        self._flush_events()
        self._executor.shutdown(wait=wait)
        logger.debug("Job manager shut down")

    # ------------------------------------------------------------------
    # Control path (lock held)
    # ------------------------------------------------------------------

    def _generate_job_id(self, source: Source) -> str:
        """
        Generate a unique job ID from timestamp and source path hash.

        Format: YYYYMMDD_HHMMSS_hash4. Retries until the id is unused by
        active jobs and jobs on the undo stack.
        """
        while True:
            timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
            hash_input = f"{source.path}_{timestamp}_{next(self._id_counter)}".encode()
            hash_suffix = hashlib.md5(hash_input).hexdigest()[:4]
            job_id = f"{timestamp}_{hash_suffix}"
            if not self.store.contains(job_id):
                return job_id

    def _require(self, job_id: str) -> JobRecord:
        record = self.store.get(job_id)
        if record is None:
            raise JobNotFoundError(job_id)
        return record

    def _dispatch(self) -> None:
        """Promote queued jobs, oldest first, while slots are free."""
        if self._closed:
            return
        while self._queue and len(self._running) < self.max_concurrent:
            job_id = self._queue.popleft()
            record = self.store.get(job_id)
            if record is None or record.state != JobState.QUEUED:
                continue

            cancel_event = threading.Event()
            self._running[job_id] = cancel_event
            record.state = JobState.RUNNING
            record.started_at = datetime.now()
            self._publish(EventKind.STATE_CHANGED, record)
            logger.info(f"Job {job_id} running ({len(self._running)}/{self.max_concurrent} slots)")

            self._executor.submit(
                self._execute,
                job_id,
                record.epoch,
                record.source,
                record.options,
                cancel_event,
            )

    def _cancel_locked(self, record: JobRecord) -> None:
        if record.is_terminal:
            logger.debug(f"Job {record.id} already {record.state.value}, nothing to cancel")
            return

        if record.state == JobState.QUEUED:
            self._queue.remove(record.id)
            self._finish(record, JobState.CANCELLED)
            return

        record.epoch += 1
        cancel_event = self._running.get(record.id)
        if cancel_event is not None:
            cancel_event.set()
        logger.info(f"Job {record.id}: cancellation requested")

    def _remove_locked(self, record: JobRecord) -> JobRecord:
        if record.state == JobState.RUNNING:
            raise JobNotRemovableError(record.id)

        if record.state == JobState.QUEUED:
            self._cancel_locked(record)

        timer = self._timers.pop(record.id, None)
        if timer is not None:
            timer.cancel()

        push_undo = not record.cancelled_before_start
        self.store.remove(record.id, push_undo=push_undo)
        self._publish(EventKind.REMOVED, record)
        logger.info(f"Removed job {record.id}" + ("" if push_undo else " (not restorable)"))
        return record.snapshot()

    def _finish(self, record: JobRecord, state: JobState, error: Optional[str] = None) -> None:
        record.state = state
        record.error = error
        record.completed_at = datetime.now()
        self._publish(EventKind.STATE_CHANGED, record, terminal=True)
        self._changed.notify_all()

        if state == JobState.FAILED:
            logger.error(f"Job {record.id} failed: {error}")
        else:
            logger.info(f"Job {record.id} {state.value}")

    def _publish(self, kind: EventKind, record: JobRecord, terminal: bool = False) -> None:
        self._pending_events.append((JobEvent(kind, record.snapshot()), terminal))

    def _schedule_auto_remove(self, job_id: str) -> None:
        delay = self.settings.auto_remove_seconds
        if delay <= 0 or self._closed:
            return
        timer = threading.Timer(delay, self._auto_remove, args=(job_id,))
        timer.daemon = True
        self._timers[job_id] = timer
        timer.start()

    # ------------------------------------------------------------------
    # Worker side
    # ------------------------------------------------------------------

    def _execute(
        self,
        job_id: str,
        epoch: int,
        source: Source,
        options: OptimisationOptions,
        cancel_event: threading.Event
    ) -> None:
        output: Optional[EngineOutput] = None
        error: Optional[str] = None
        cancelled = False

        try:
            output = self.engine.optimise(job_id, source, options, cancel_event)
            if output is None:
                error = "Optimiser produced no output"
        except CancelledError:
            cancelled = True
        except OptimisationError as e:
            error = _error_message(e)
        except Exception as e:
            logger.exception(f"Job {job_id}: unexpected optimiser error")
            error = _error_message(e)

        try:
            self._complete(job_id, epoch, output, error, cancelled)
        except Exception:
            logger.exception(f"Job {job_id}: failed to record completion")
            raise

    def _complete(
        self,
        job_id: str,
        epoch: int,
        output: Optional[EngineOutput],
        error: Optional[str],
        cancelled: bool
    ) -> None:
        with self._lock:
            self._running.pop(job_id, None)
            record = self.store.get(job_id)

            if record is None:
                logger.warning(f"Job {job_id} finished but is no longer active")
                if output is not None:
                    discard_output(output)
            elif cancelled or record.epoch != epoch:
                if output is not None:
                    discard_output(output)
                self._finish(record, JobState.CANCELLED)
            elif error is not None:
                self._finish(record, JobState.FAILED, error=error)
            else:
                self._commit(record, output)

            self._changed.notify_all()
            self._dispatch()

        self._flush_events()

    def _commit(self, record: JobRecord, output: EngineOutput) -> None:
        try:
            result = commit_output(record.id, record.source, output, self.backups_dir)
        except OSError as e:
            if is_resource_exhausted(e):
                message = f"Not enough space to save {record.source.path.name}: {e}"
            else:
                message = f"Could not replace {record.source.path.name}: {_error_message(e)}"
            self._finish(record, JobState.FAILED, error=message)
            return

        record.result = result
        record.is_original = not result.improved
        self._finish(record, JobState.SUCCEEDED)
        self._schedule_auto_remove(record.id)

    def _auto_remove(self, job_id: str) -> None:
        with self._lock:
            self._timers.pop(job_id, None)
            record = self.store.get(job_id)
            if record is None or record.state != JobState.SUCCEEDED:
                return
            self._remove_locked(record)
        self._flush_events()

    # ------------------------------------------------------------------
    # Event delivery
    # ------------------------------------------------------------------

    def _flush_events(self) -> None:
        """Deliver pending events in order, outside the state lock."""
        with self._delivery_lock:
            while True:
                with self._lock:
                    if not self._pending_events:
                        return
                    event, terminal = self._pending_events.popleft()
                    subscribers = list(self._subscribers)

                for callback in subscribers:
                    self._deliver(callback, event)
                if terminal and self._on_terminal is not None:
                    self._deliver(self._on_terminal, event.record)

    def _deliver(self, callback: Callable, payload) -> None:
        try:
            callback(payload)
        except Exception:
            logger.exception(f"Job event callback {callback!r} failed")
