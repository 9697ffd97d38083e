"""
Batch Queue

FIFO hand-off between the source reader and its consumers. The number of
queued rows, not the number of queued batches, drives backpressure: the
reader appends a batch first and only then waits while the queue holds at
least ``max_buffered_rows`` rows, so the queue may exceed the threshold by
less than one batch. That overshoot is intended.

All waits use a condition variable with a bounded timeout per wake-up, so a
cancellation event set from another thread is noticed within one step even
if nobody calls wake().
"""

from collections import deque
from typing import Deque, Optional
import threading

from sqlcp.row import Batch


class BatchQueue:
    """Thread-safe FIFO of batches with a total row count."""

    def __init__(self):
        self._batches: Deque[Batch] = deque()
        self._row_count = 0
        self._peak_row_count = 0
        self._cond = threading.Condition()

    def put(self, batch: Batch) -> None:
        """Append a batch. Empty batches are rejected; end of data is signalled out of band."""
        if not batch:
            raise ValueError("Cannot enqueue an empty batch")
        with self._cond:
            self._batches.append(batch)
            self._row_count += len(batch)
            if self._row_count > self._peak_row_count:
                self._peak_row_count = self._row_count
            self._cond.notify_all()

    def get(self, timeout: Optional[float] = None) -> Optional[Batch]:
        """
        Remove and return the oldest batch.

        Args:
            timeout: Seconds to wait for a batch; None waits forever

        Returns:
            The batch, or None if the queue stayed empty for the whole timeout
        """
        with self._cond:
            if not self._cond.wait_for(lambda: len(self._batches) > 0, timeout):
                return None
            return self._pop()

    def _pop(self) -> Optional[Batch]:
        if not self._batches:
            return None
        batch = self._batches.popleft()
        self._row_count -= len(batch)
        self._cond.notify_all()
        return batch

    def wait_below(self, threshold: int, cancel: threading.Event, step: float) -> bool:
        """
        Block while the queued row count is at or above threshold.

        Args:
            threshold: Maximum number of buffered rows
            cancel: Event checked on every wake-up
            step: Longest single wait in seconds

        Returns:
            True once the row count dropped below threshold, False if cancelled
        """
        with self._cond:
            while self._row_count >= threshold:
                if cancel.is_set():
                    return False
                self._cond.wait(step)
            return True

    def wait_drained(self, cancel: threading.Event, step: float) -> bool:
        """Block until consumers have taken every batch. False if cancelled first."""
        with self._cond:
            while self._batches:
                if cancel.is_set():
                    return False
                self._cond.wait(step)
            return True

    def wake(self) -> None:
        """Wake every waiter so it re-checks its cancellation event."""
        with self._cond:
            self._cond.notify_all()

    @property
    def row_count(self) -> int:
        with self._cond:
            return self._row_count

    @property
    def peak_row_count(self) -> int:
        """Highest row count observed after any put()."""
        with self._cond:
            return self._peak_row_count

    def empty(self) -> bool:
        with self._cond:
            return not self._batches

    def __len__(self) -> int:
        with self._cond:
            return len(self._batches)
