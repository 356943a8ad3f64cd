"""
In-memory store for active jobs and the bounded undo stack of removed jobs.
"""

import bisect
import threading
from collections import deque
from typing import Deque, Dict, List, Optional

from clop.jobs.models import JobRecord, JobState


class JobStore:
    """
    Ordered collection of active JobRecords plus a bounded undo stack.

    The store holds no business rules; the job manager decides what may be
    removed or restored. Every method takes the store lock so concurrent
    readers never observe a half-applied mutation.

    Example:
        >>> store = JobStore(undo_capacity=5)
        >>> store.add(record)
        >>> store.remove(record.id, push_undo=True)
        >>> store.pop_undo().id == record.id
        True
    """

    def __init__(self, undo_capacity: int = 5):
        if undo_capacity < 1:
            raise ValueError(f"undo_capacity must be >= 1, got {undo_capacity}")
        self.undo_capacity = undo_capacity
        self._active: List[JobRecord] = []
        self._by_id: Dict[str, JobRecord] = {}
        self._undo: Deque[JobRecord] = deque(maxlen=undo_capacity)
        self._lock = threading.RLock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._active)

    def add(self, record: JobRecord) -> None:
        """Append a new record to the active jobs."""
        with self._lock:
            if record.id in self._by_id:
                raise ValueError(f"Job {record.id} already active")
            self._active.append(record)
            self._by_id[record.id] = record

    def get(self, job_id: str) -> Optional[JobRecord]:
        """Get an active record by id, or None."""
        with self._lock:
            return self._by_id.get(job_id)

    def contains(self, job_id: str) -> bool:
        """True if the id is active or still restorable from the undo stack."""
        with self._lock:
            return job_id in self._by_id or any(r.id == job_id for r in self._undo)

    def remove(self, job_id: str, push_undo: bool = True) -> Optional[JobRecord]:
        """
        Remove an active record.

        Args:
            job_id: Job identifier.
            push_undo: Push the removed record onto the undo stack. When the
                stack is full the oldest entry is evicted.

        Returns:
            The removed record, or None if the id was not active.
        """
        with self._lock:
            record = self._by_id.pop(job_id, None)
            if record is None:
                return None
            self._active.remove(record)
            if push_undo:
                self._undo.append(record)
            return record

    def pop_undo(self) -> Optional[JobRecord]:
        """Pop the most recently removed record, or None when empty."""
        with self._lock:
            if not self._undo:
                return None
            return self._undo.pop()

    def reinsert(self, record: JobRecord) -> None:
        """
        Put a restored record back at its original logical position.

        Active records stay ordered by insertion sequence, so a restored
        record lands between the jobs that surrounded it before removal.
        """
        with self._lock:
            if record.id in self._by_id:
                raise ValueError(f"Job {record.id} already active")
            keys = [r.seq for r in self._active]
            index = bisect.bisect_right(keys, record.seq)
            self._active.insert(index, record)
            self._by_id[record.id] = record

    def list(self, state: Optional[JobState] = None) -> List[JobRecord]:
        """
        List active records, most recent first.

        Args:
            state: Only return records in this state.
        """
        with self._lock:
            records = [r for r in reversed(self._active) if state is None or r.state == state]
        return records

    def undo_depth(self) -> int:
        with self._lock:
            return len(self._undo)

    def undo_ids(self) -> List[str]:
        """Ids on the undo stack, next-to-restore first."""
        with self._lock:
            return [r.id for r in reversed(self._undo)]
