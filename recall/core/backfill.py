"""
Backfill of missing message vectors.

Walks messages that have no stored vector and drives each one through the
embedding path. Runs are idempotent: a message vectorized by another run in
the meantime is detected through the store and skipped, never written twice.
"""

import queue
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from ..util.logging import logger
from ..vector.embeddings import EmbeddingComputer
from ..vector.store import VectorStoreAdapter

DEFAULT_BATCH_SIZE = 100


@dataclass
class BackfillReport:
    """Outcome of one backfill run."""
    started_at: datetime
    completed_at: Optional[datetime] = None
    batches: int = 0
    scanned: int = 0
    written: int = 0
    skipped: int = 0
    empty: int = 0
    failed: List[str] = field(default_factory=list)
    cancelled: bool = False

    def to_dict(self) -> Dict[str, Any]:
        """Convert report to dictionary for serialization."""
        data = {
            "started_at": self.started_at.isoformat(),
            "batches": self.batches,
            "scanned": self.scanned,
            "written": self.written,
            "skipped": self.skipped,
            "empty": self.empty,
            "failed": list(self.failed),
            "cancelled": self.cancelled,
        }
        if self.completed_at:
            data["completed_at"] = self.completed_at.isoformat()
        return data


class BackfillCoordinator:
    """Computes vectors for stored messages that lack one.

    ``backfill`` runs synchronously on the calling thread. ``start`` launches
    a single background worker that serves ``trigger`` requests from a queue,
    so interactive callers never wait on a backfill.
    """

    def __init__(self, computer: EmbeddingComputer, store: VectorStoreAdapter,
                 batch_size: int = DEFAULT_BATCH_SIZE):
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1: {batch_size}")

        self.computer = computer
        self.store = store
        self.batch_size = batch_size
        self.last_report: Optional[BackfillReport] = None

        self._requests: "queue.Queue[Optional[int]]" = queue.Queue()
        self._worker: Optional[threading.Thread] = None
        self._shutdown_event = threading.Event()
        self._lock = threading.Lock()

    def backfill(self, batch_size: Optional[int] = None,
                 cancel_event: Optional[threading.Event] = None) -> BackfillReport:
        """Vectorize every message currently lacking a vector.

        One message's failure is logged and recorded; the run continues with
        the next message. Store failures while listing candidates end the run
        and propagate.
        """
        batch_size = batch_size or self.batch_size
        report = BackfillReport(started_at=datetime.now(timezone.utc))
        cursor = None

        while True:
            if cancel_event is not None and cancel_event.is_set():
                report.cancelled = True
                break

            batch = self.store.all_missing_vectors(batch_size, after=cursor)
            if not batch:
                break

            report.batches += 1
            written_before = report.written
            failed_before = len(report.failed)

            for message in batch:
                if cancel_event is not None and cancel_event.is_set():
                    report.cancelled = True
                    break
                report.scanned += 1
                self._backfill_one(message, report)

            logger.log_backfill_batch(
                report.batches,
                len(batch),
                report.written - written_before,
                len(report.failed) - failed_before,
                status="cancelled" if report.cancelled else "success",
            )

            if report.cancelled:
                break

            # Keyset cursor: failed messages stay missing but are not revisited this run
            cursor = batch[-1]
            if len(batch) < batch_size:
                break

        report.completed_at = datetime.now(timezone.utc)
        self.last_report = report
        logger.log_operation("backfill", "cancelled" if report.cancelled else "success", report.to_dict())
        return report

    def _backfill_one(self, message, report: BackfillReport):
        try:
            # Another run may have written it since the batch was listed
            if self.store.load(message.id) is not None:
                report.skipped += 1
                return

            vector = self.computer.compute_embedding(message.content)
            if vector is None:
                report.empty += 1

            if self.computer.persist(message.id, vector, only_if_missing=True):
                report.written += 1
            else:
                report.skipped += 1
        except Exception as e:
            # Log failed message but continue with the batch
            report.failed.append(str(message.id))
            logger.log_vector_operation("backfill", message.id, {"error": str(e)}, status="failed")

    # Background worker

    def start(self):
        """Start the background worker thread. Safe to call more than once."""
        with self._lock:
            if self._worker is not None and self._worker.is_alive():
                return
            self._shutdown_event.clear()
            self._worker = threading.Thread(target=self._run, name="recall-backfill", daemon=True)
            self._worker.start()
        logger.log_operation("backfill.worker", "started")

    def trigger(self, batch_size: Optional[int] = None):
        """Queue a backfill run on the background worker and return immediately."""
        self.start()
        self._requests.put(batch_size or self.batch_size)

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until every queued run has finished. Returns False on timeout."""
        deadline = None if timeout is None else time.monotonic() + timeout
        while self._requests.unfinished_tasks:
            if deadline is not None and time.monotonic() >= deadline:
                return False
            time.sleep(0.01)
        return True

    def stop(self, timeout: Optional[float] = 5.0):
        """Cancel any running backfill and stop the worker."""
        with self._lock:
            worker = self._worker
            self._worker = None
        if worker is None:
            return
        self._shutdown_event.set()
        self._requests.put(None)
        worker.join(timeout)

        # Runs queued behind the shutdown never execute
        while True:
            try:
                self._requests.get_nowait()
            except queue.Empty:
                break
            self._requests.task_done()
        logger.log_operation("backfill.worker", "stopped")

    def _run(self):
        while not self._shutdown_event.is_set():
            batch_size = self._requests.get()
            try:
                if batch_size is None:
                    return
                self.backfill(batch_size, cancel_event=self._shutdown_event)
            except Exception as e:
                # Error isolation - a failed run must not kill the worker
                logger.log_operation("backfill", "failed", {"error": str(e), "type": type(e).__name__})
            finally:
                self._requests.task_done()
