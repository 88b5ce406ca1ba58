"""
Background print worker for receipty.

This module owns:
- JobQueue: a single worker thread that drains queued jobs in submission order
- The job lifecycle transitions (queued -> printing -> succeeded | failed)

Scheduling: wake() starts the worker thread if it is idle. If the worker is
already running, the wake only sets a pending flag; before going idle the
worker checks that flag and drains once more. At most one print is therefore
in flight at any time, and nothing is lost between "queue looked empty" and
"worker went idle".

It is Flask-agnostic so it can be used from web routes, the app factory and
tests. Print failures never escape the loop; they are recorded on the job.
"""

from __future__ import annotations

import logging
import threading
import traceback
from typing import Any, Dict, Optional

from receipty.core.db import Job, JobStore
from receipty.printing.client import PrinterClient

logger = logging.getLogger(__name__)


def _error_detail(exc: BaseException) -> str:
    return "".join(traceback.format_exception(type(exc), exc, exc.__traceback__)).strip()


class JobQueue:
    def __init__(self, store: JobStore, client: PrinterClient, *, name: str = "receipty-worker") -> None:
        self.store = store
        self.client = client
        self.name = name
        self._lock = threading.Lock()
        self._processing = False
        self._pending_wake = False
        self._idle = threading.Event()
        self._idle.set()
        self._thread: Optional[threading.Thread] = None
        self.processed = 0

    # ----- scheduling --------------------------------------------------------

    def start(self) -> None:
        """Pick up anything left queued by a previous run."""
        self.wake()

    def wake(self) -> None:
        """
        Ask the worker to drain the queue. Coalesces with an active run.
        """
        with self._lock:
            if self._processing:
                self._pending_wake = True
                return
            self._processing = True
            self._idle.clear()
            t = threading.Thread(target=self._run, daemon=True, name=self.name)
            self._thread = t
        t.start()

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until the worker has drained the queue and gone idle."""
        return self._idle.wait(timeout)

    @property
    def is_processing(self) -> bool:
        with self._lock:
            return self._processing

    def _run(self) -> None:
        try:
            while True:
                self.drain()
                with self._lock:
                    if self._pending_wake:
                        self._pending_wake = False
                        continue
                    self._processing = False
                    self._idle.set()
                    return
        except BaseException:
            # Store failures: release the worker slot so a later wake can retry.
            logger.exception("Print worker stopped unexpectedly")
            with self._lock:
                self._processing = False
                self._pending_wake = False
                self._idle.set()
            raise

    # ----- processing --------------------------------------------------------

    def drain(self) -> int:
        """
        Process queued jobs until none remain. Returns the number processed.
        Runs in the calling thread; normally invoked by the worker thread only.
        """
        count = 0
        while True:
            job = self.store.claim_next_job()
            if job is None:
                return count
            self._process(job)
            count += 1

    def _process(self, job: Job) -> None:
        logger.info("Job %s started", job.id, extra={"job_id": job.id})
        try:
            result = self.client.print(job.text or None, job.image_data)
        except Exception as e:
            self.store.update_job_status(job.id, "failed", _error_detail(e))
            logger.error("Job %s failed: %s", job.id, e, extra={"job_id": job.id})
        else:
            self.store.update_job_status(job.id, "succeeded")
            logger.info(
                "Job %s succeeded (%d bytes, %d attempt(s))",
                job.id,
                result.bytes_written,
                result.attempts,
                extra={"job_id": job.id, "bytes": result.bytes_written},
            )
        self.processed += 1

    def status(self) -> Dict[str, Any]:
        """
        Return basic worker/queue status.
        """
        t = self._thread
        return {
            "worker_active": self.is_processing,
            "worker_alive": bool(t) and t.is_alive(),
            "queued": self.store.count_by_status("queued"),
            "processed": self.processed,
        }


__all__ = ["JobQueue"]
