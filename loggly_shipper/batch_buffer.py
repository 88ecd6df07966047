"""Batch buffer — collects encoded documents until a size or age threshold."""

import threading
import time
import logging

logger = logging.getLogger(__name__)


class BatchBuffer:
    """Thread-safe buffer of encoded JSON documents.

    The buffer never sends anything itself: the owner polls ``should_flush``
    and calls ``drain``, which swaps the backing list under the lock so that
    appends racing a slow network send land in a fresh list.

    Growth is unbounded unless *max_pending* is set, in which case appends
    beyond the bound are rejected (drop-newest) and ``append`` returns False.
    """

    def __init__(
        self,
        batch_max_records: int,
        batch_max_age: float,
        max_pending: int = 0,
        clock=time.monotonic,
    ):
        self._batch_max_records = batch_max_records
        self._batch_max_age = batch_max_age
        self._max_pending = max_pending
        self._clock = clock

        self._docs: list[str] = []
        self._oldest: float | None = None
        self._lock = threading.Lock()

    # Public API

    def append(self, doc: str) -> bool:
        """Add a document. Returns False if the pending bound rejected it."""
        with self._lock:
            if self._max_pending and len(self._docs) >= self._max_pending:
                return False
            if not self._docs:
                self._oldest = self._clock()
            self._docs.append(doc)
            return True

    def should_flush(self) -> bool:
        """True once the record count or the oldest document's age hits its bound."""
        with self._lock:
            if not self._docs:
                return False
            if len(self._docs) >= self._batch_max_records:
                return True
            return self._clock() - self._oldest >= self._batch_max_age

    def drain(self) -> list[str]:
        """Atomically remove and return every buffered document, oldest first."""
        with self._lock:
            docs = self._docs
            self._docs = []
            self._oldest = None
        if docs:
            logger.debug("Drained %d documents", len(docs))
        return docs

    def oldest_age(self) -> float:
        """Seconds since the oldest pending document was appended (0 if empty)."""
        with self._lock:
            if self._oldest is None:
                return 0.0
            return self._clock() - self._oldest

    @property
    def pending_count(self) -> int:
        """Number of documents currently waiting in the buffer."""
        with self._lock:
            return len(self._docs)

    @property
    def batch_max_records(self) -> int:
        return self._batch_max_records

    @property
    def batch_max_age(self) -> float:
        return self._batch_max_age
