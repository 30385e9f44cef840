#!/usr/bin/env python3
"""Bounded worker pool that runs transfer jobs as they are discovered."""

from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Iterable, List

from logging_utils import Logger
from transfer_worker import TransferOutcome, TransferStage

STOP_POLL_S = 0.5


@dataclass(frozen=True)
class Job:
    """One project's unit of work; `run` returns its outcome."""
    label: str
    run: Callable[[], TransferOutcome]


class OutcomeSink:
    """Completion-ordered outcome collection shared by the pool threads."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._outcomes: List[TransferOutcome] = []

    def add(self, outcome: TransferOutcome) -> None:
        with self._lock:
            self._outcomes.append(outcome)

    def outcomes(self) -> List[TransferOutcome]:
        with self._lock:
            return list(self._outcomes)


class ConcurrencyScheduler:
    """Runs jobs with at most `limit` in flight.

    The job iterable is consumed lazily, one item per free slot, so project
    listing overlaps with transfers. Errors raised by the iterable itself
    propagate once the transfers already started have finished.
    """

    def __init__(self, limit: int) -> None:
        if limit < 1:
            raise ValueError("concurrency limit must be at least 1")
        self.limit = limit
        self._stop = threading.Event()

    def request_stop(self) -> None:
        """Let started jobs finish but start no new ones."""
        if not self._stop.is_set():
            Logger.warn("stop requested, waiting for running transfers to finish")
        self._stop.set()

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    def run(self, jobs: Iterable[Job]) -> List[TransferOutcome]:
        sink = OutcomeSink()
        slots = threading.BoundedSemaphore(self.limit)

        with ThreadPoolExecutor(
            max_workers=self.limit, thread_name_prefix="transfer"
        ) as executor:
            for job in jobs:
                if not self._acquire_slot(slots):
                    sink.add(self._cancelled(job))
                    break
                future = executor.submit(self._run_job, job, sink)
                future.add_done_callback(lambda _future: slots.release())

        return sink.outcomes()

    def _acquire_slot(self, slots: threading.BoundedSemaphore) -> bool:
        while not self.stopped:
            if slots.acquire(timeout=STOP_POLL_S):
                if self.stopped:
                    slots.release()
                    return False
                return True
        return False

    @staticmethod
    def _run_job(job: Job, sink: OutcomeSink) -> None:
        try:
            outcome = job.run()
        except Exception as e:
            Logger.error(f"unexpected error while transferring {job.label}: {e}")
            outcome = TransferOutcome.failed_at(
                job.label, TransferStage.PENDING, f"unexpected error: {e}"
            )
        sink.add(outcome)

    @staticmethod
    def _cancelled(job: Job) -> TransferOutcome:
        Logger.warn(f"not started: {job.label}")
        return TransferOutcome.skipped(job.label, "run interrupted")
