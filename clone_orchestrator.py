#!/usr/bin/env python3
"""Main orchestrator: discover, filter and mirror every visible project."""

from __future__ import annotations

import signal
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from functools import partial
from typing import Iterator, List, Optional, Tuple

from config import CloneParams
from destination import DestinationResolver
from errors import TransferError
from gitlab_backup import GitLabBackup
from gitlab_source import GitLabSource, ProjectDescriptor
from git_transport import GitTransport
from logging_utils import Logger
from project_filter import matches
from scheduler import ConcurrencyScheduler, Job
from security import SecurityValidator
from transfer_worker import TransferOutcome, TransferStage, TransferStatus, TransferWorker

# Exit codes
EXIT_SUCCESS = 0
EXIT_TRANSFER_FAILURES = 1


@dataclass
class RunSummary:
    """Per-project outcomes of one run, in completion order."""
    results: List[Tuple[str, TransferOutcome]] = field(default_factory=list)

    @classmethod
    def from_outcomes(cls, outcomes: List[TransferOutcome]) -> "RunSummary":
        return cls([(outcome.project, outcome) for outcome in outcomes])

    def _count(self, status: TransferStatus) -> int:
        return sum(1 for _, outcome in self.results if outcome.status == status)

    @property
    def attempted(self) -> int:
        return len(self.results)

    @property
    def transferred(self) -> int:
        return self._count(TransferStatus.TRANSFERRED)

    @property
    def skipped(self) -> int:
        return self._count(TransferStatus.SKIPPED)

    @property
    def failed(self) -> int:
        return self._count(TransferStatus.FAILED)

    @property
    def failures(self) -> List[Tuple[str, TransferOutcome]]:
        return [(path, o) for path, o in self.results if o.status == TransferStatus.FAILED]

    @property
    def exit_code(self) -> int:
        return EXIT_SUCCESS if self.failed == 0 else EXIT_TRANSFER_FAILURES


class CloneOrchestrator:
    def __init__(
        self,
        params: CloneParams,
        source: Optional[GitLabSource] = None,
        backup: Optional[GitLabBackup] = None,
        transport: Optional[GitTransport] = None,
    ) -> None:
        self.params = params
        self.source = source or GitLabSource(params.fetch)
        if backup is None and params.backup is not None:
            backup = GitLabBackup(params.backup)
        self.backup = backup
        self.transport = transport or GitTransport(params.git_timeout_s, params.secrets)
        self.resolver = DestinationResolver(params, self.transport, self.backup)
        self.worker = TransferWorker(params, self.resolver, self.transport)
        self.scheduler = ConcurrencyScheduler(params.concurrency_limit)

    def run(self) -> RunSummary:
        """Mirror every in-scope project. Listing errors propagate; transfer
        errors end up as Failed outcomes in the summary."""
        self.source.connect()

        if self.params.dry_run:
            Logger.result("dry run: listing projects that would be cloned")

        with self._stop_on_signals():
            outcomes = self.scheduler.run(self._jobs())

        summary = RunSummary.from_outcomes(outcomes)
        if self.params.dry_run:
            Logger.result(f"dry-run completed: {summary.attempted} projects")
        elif summary.failed == 0:
            Logger.info("mission accomplished")
        return summary

    def _jobs(self) -> Iterator[Job]:
        projects = self.source.iter_projects(
            per_page=self.params.objects_per_page,
            limit=self.params.limit,
            only_owned=self.params.only_owned,
            only_membership=self.params.only_membership,
        )
        for index, project in enumerate(projects, start=1):
            path = project.path_with_namespace
            if not matches(path, self.params.patterns):
                Logger.debug(f"filtered out: {path}")
                continue
            Logger.debug(f"[{index}] queued: {path}")
            yield self._job_for(project)

    def _job_for(self, project: ProjectDescriptor) -> Job:
        path = project.path_with_namespace
        try:
            destination = self.resolver.resolve(project)
        except TransferError as e:
            reason = SecurityValidator.redact(e.reason, self.params.secrets)
            Logger.error(f"cannot mirror {path}: {reason}")
            outcome = TransferOutcome.failed_at(
                path, TransferStage.PENDING, reason, self.resolver.describe(project)
            )
            return Job(path, lambda: outcome)
        return Job(path, partial(self.worker.transfer, project, destination))

    @contextmanager
    def _stop_on_signals(self) -> Iterator[None]:
        """Turn SIGINT/SIGTERM into a graceful stop; a second signal aborts."""
        if threading.current_thread() is not threading.main_thread():
            yield
            return

        def handler(signum, _frame):
            if self.scheduler.stopped:
                raise KeyboardInterrupt
            Logger.warn(f"received signal {signum}")
            self.scheduler.request_stop()

        previous = {
            sig: signal.signal(sig, handler) for sig in (signal.SIGINT, signal.SIGTERM)
        }
        try:
            yield
        finally:
            for sig, old in previous.items():
                signal.signal(sig, old)


def run(params: CloneParams) -> RunSummary:
    """Single entry point: mirror everything `params` describes."""
    return CloneOrchestrator(params).run()


def print_report(summary: RunSummary) -> None:
    Logger.result(
        f"summary: attempted={summary.attempted} transferred={summary.transferred} "
        f"skipped={summary.skipped} failed={summary.failed}"
    )
    for path, outcome in summary.results:
        if outcome.status == TransferStatus.FAILED:
            Logger.error(f"  {path}: {outcome.describe()}")
        else:
            Logger.info(f"  {path}: {outcome.describe()}")
