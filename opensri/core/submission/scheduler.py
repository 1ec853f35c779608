"""Deferred redelivery of failed submissions.

Schedulers hold no document state: they only remember *which* document to
resubmit and *when*. Delivery is at-least-once; the coordinator's claim
absorbs duplicates, so a job that fires twice is harmless.

Example:
    >>> scheduler = InMemoryRetryScheduler()
    >>> scheduler.bind(coordinator.submit)
    >>> scheduler.schedule_retry(42, delay=300.0)
    >>> scheduler.drain()  # deliver everything now (tests, CLI worker)
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol

from opensri.utils.logging import get_logger

logger = get_logger(__name__)

RetryHandler = Callable[[int], Any]


class RetryScheduler(Protocol):
    """Redelivers a document to the submission handler after a delay."""

    def bind(self, handler: RetryHandler) -> None: ...

    def schedule_retry(self, document_id: int, delay: float) -> None: ...


@dataclass(order=True)
class ScheduledRetry:
    due_at: float
    document_id: int


class _HandlerMixin:
    _handler: RetryHandler | None = None

    def bind(self, handler: RetryHandler) -> None:
        """Set the callable that receives due document ids."""
        self._handler = handler

    def _deliver(self, document_id: int) -> bool:
        if self._handler is None:
            logger.warning("retry_dropped_no_handler", document_id=document_id)
            return False
        try:
            self._handler(document_id)
        except Exception as e:
            logger.error(
                "retry_delivery_failed",
                document_id=document_id,
                error=str(e),
                error_type=type(e).__name__,
                exc_info=True,
            )
            return False
        return True


class InMemoryRetryScheduler(_HandlerMixin):
    """Keeps jobs in a list; the caller decides when they run.

    ``run_due()`` delivers jobs whose due time has passed; ``drain()`` delivers
    every job, including the ones scheduled by the deliveries themselves.
    """

    def __init__(
        self,
        handler: RetryHandler | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._handler = handler
        self._clock = clock
        self._jobs: list[ScheduledRetry] = []
        self._lock = threading.Lock()

    def schedule_retry(self, document_id: int, delay: float) -> None:
        job = ScheduledRetry(due_at=self._clock() + max(delay, 0.0), document_id=document_id)
        with self._lock:
            self._jobs.append(job)
            self._jobs.sort()
        logger.info("retry_scheduled", document_id=document_id, delay_seconds=delay)

    @property
    def pending(self) -> list[ScheduledRetry]:
        with self._lock:
            return list(self._jobs)

    def __len__(self) -> int:
        with self._lock:
            return len(self._jobs)

    def run_due(self, now: float | None = None) -> int:
        """Deliver jobs due at ``now`` (default: the clock). Returns deliveries made."""
        now = self._clock() if now is None else now
        with self._lock:
            due = [job for job in self._jobs if job.due_at <= now]
            self._jobs = [job for job in self._jobs if job.due_at > now]

        return sum(1 for job in due if self._deliver(job.document_id))

    def drain(self, max_rounds: int = 1000) -> int:
        """Deliver all jobs regardless of due time until none remain."""
        delivered = 0
        for _ in range(max_rounds):
            with self._lock:
                jobs, self._jobs = self._jobs, []
            if not jobs:
                break
            delivered += sum(1 for job in jobs if self._deliver(job.document_id))
        return delivered


class ThreadingRetryScheduler(_HandlerMixin):
    """One daemon ``threading.Timer`` per job.

    Jobs live in process memory only; documents left FAILED by a restart are
    picked up by ``retry_all_failed`` / ``recover_stale_submissions``.
    """

    def __init__(self, handler: RetryHandler | None = None) -> None:
        self._handler = handler
        self._timers: dict[int, threading.Timer] = {}
        self._lock = threading.Lock()
        self._closed = False
        self._sequence = 0

    def schedule_retry(self, document_id: int, delay: float) -> None:
        with self._lock:
            if self._closed:
                logger.warning("retry_rejected_scheduler_closed", document_id=document_id)
                return
            self._sequence += 1
            job_id = self._sequence
            timer = threading.Timer(max(delay, 0.0), self._fire, args=(job_id, document_id))
            timer.daemon = True
            self._timers[job_id] = timer
            timer.start()
        logger.info("retry_scheduled", document_id=document_id, delay_seconds=delay)

    def _fire(self, job_id: int, document_id: int) -> None:
        with self._lock:
            self._timers.pop(job_id, None)
        self._deliver(document_id)

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._timers)

    def shutdown(self) -> None:
        """Cancel every pending timer and refuse new jobs."""
        with self._lock:
            self._closed = True
            timers = list(self._timers.values())
            self._timers.clear()
        for timer in timers:
            timer.cancel()
        logger.info("retry_scheduler_shutdown", cancelled=len(timers))
