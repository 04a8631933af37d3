"""
Best-effort persistence retry queue.

Records whose first write failed are retried in the background so the caller
gets its decision without waiting on the audit store. Writes are idempotent on
the sink side, so a record may safely be submitted more than once.

The worker is a daemon thread, so ``close`` is registered with ``atexit`` when it
starts: whatever is still queued gets one last write and anything left unsaved
is logged by claim id.
"""

from __future__ import annotations

import atexit
import logging
import queue
import threading
import time
from collections import deque
from typing import Callable, Optional

from claims.audit import AuditRecord

logger = logging.getLogger(__name__)


class PersistenceRetryQueue:
    def __init__(
        self,
        sink,
        max_attempts: int = 5,
        backoff_seconds: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
        start_worker: bool = True,
        max_abandoned: int = 1000,
    ) -> None:
        self._sink = sink
        self._max_attempts = max_attempts
        self._backoff = backoff_seconds
        self._sleep = sleep
        self._queue: "queue.Queue[tuple[AuditRecord, int]]" = queue.Queue()
        self._start_worker = start_worker
        self._worker: Optional[threading.Thread] = None
        self._lock = threading.Lock()
        self._in_flight: Optional[str] = None
        self._closed = False
        # Most recent claim ids given up on; older ones are only in the logs.
        self.abandoned: "deque[str]" = deque(maxlen=max_abandoned)

    def __len__(self) -> int:
        return self._queue.qsize()

    def submit(self, record: AuditRecord) -> None:
        if self._closed:
            logger.error("retry_queue: closed, %s will not be persisted", record.claim_id)
            self.abandoned.append(record.claim_id)
            return
        self._queue.put((record, 0))
        logger.info("retry_queue: queued %s for persistence retry", record.claim_id)
        if self._start_worker:
            self._ensure_worker()

    def _ensure_worker(self) -> None:
        with self._lock:
            if self._worker is None:
                atexit.register(self.close)
            if self._worker is None or not self._worker.is_alive():
                self._worker = threading.Thread(
                    target=self._run, name="audit-persistence-retry", daemon=True
                )
                self._worker.start()

    def _run(self) -> None:
        while True:
            record, attempts = self._queue.get()
            self._in_flight = record.claim_id
            try:
                self._attempt(record, attempts, wait=True)
            finally:
                self._in_flight = None
                self._queue.task_done()

    def _attempt(self, record: AuditRecord, attempts: int, wait: bool) -> bool:
        if wait and attempts:
            self._sleep(self._backoff * (2 ** (attempts - 1)))
        try:
            self._sink.persist(record)
        except Exception as e:
            attempts += 1
            if attempts >= self._max_attempts or self._closed:
                logger.error(
                    "retry_queue: giving up on %s after %d attempt(s): %s",
                    record.claim_id,
                    attempts,
                    e,
                )
                self.abandoned.append(record.claim_id)
                return False
            logger.warning("retry_queue: attempt %d for %s failed: %s", attempts, record.claim_id, e)
            self._queue.put((record, attempts))
            return False
        logger.info("retry_queue: persisted %s", record.claim_id)
        return True

    def join(self) -> None:
        """Block until every queued record has been persisted or abandoned."""
        self._queue.join()

    def drain(self) -> int:
        """Process queued records in the calling thread until the queue is empty.

        Returns the number of records persisted. Backoff waits are skipped.
        """
        persisted = 0
        while True:
            try:
                item = self._queue.get_nowait()
            except queue.Empty:
                return persisted
            try:
                if self._attempt(*item, wait=False):
                    persisted += 1
            finally:
                self._queue.task_done()

    def close(self) -> list[str]:
        """Give every queued record one last write; return the claim ids left unsaved."""
        self._closed = True
        unsaved: list[str] = []
        while True:
            try:
                record, _ = self._queue.get_nowait()
            except queue.Empty:
                break
            try:
                self._sink.persist(record)
            except Exception as e:
                logger.error("retry_queue: shutting down with %s unsaved: %s", record.claim_id, e)
                unsaved.append(record.claim_id)
                self.abandoned.append(record.claim_id)
            finally:
                self._queue.task_done()
        if self._in_flight is not None:
            logger.warning("retry_queue: shutting down during a retry of %s", self._in_flight)
        return unsaved
