#!/usr/bin/env python3
"""Per-project pipeline: fetch the source mirror, then push it to the backup."""

from __future__ import annotations

import os
import shutil
import tempfile
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from config import CloneMethod, CloneParams
from destination import Destination, DestinationResolver
from errors import TransferError
from gitlab_source import ProjectDescriptor
from git_transport import GitTransport
from logging_utils import Logger
from security import SecurityValidator


class TransferStatus(Enum):
    TRANSFERRED = "transferred"
    SKIPPED = "skipped"
    FAILED = "failed"


class TransferStage(Enum):
    """Last state a project's pipeline reached."""
    PENDING = "pending"
    FETCHING = "fetching"
    FETCH_FAILED = "fetch-failed"
    FETCHED = "fetched"
    PUSHING = "pushing"
    PUSH_FAILED = "push-failed"
    PUSHED = "pushed"
    DONE = "done"


@dataclass(frozen=True)
class TransferOutcome:
    project: str
    status: TransferStatus
    stage: TransferStage
    reason: str = ""
    fetched: bool = False
    destination: Optional[Destination] = None

    @property
    def failed(self) -> bool:
        return self.status == TransferStatus.FAILED

    def describe(self) -> str:
        text = self.status.value
        if self.status == TransferStatus.FAILED:
            text += f" at {self.stage.value}"
            if self.fetched:
                text += " (fetch succeeded)"
        if self.reason:
            text += f": {self.reason}"
        return text

    @classmethod
    def transferred(cls, project: str, destination: Destination, stage: TransferStage) -> "TransferOutcome":
        return cls(project, TransferStatus.TRANSFERRED, stage, fetched=True, destination=destination)

    @classmethod
    def skipped(
        cls,
        project: str,
        reason: str,
        destination: Optional[Destination] = None,
        stage: TransferStage = TransferStage.PENDING,
        fetched: bool = False,
    ) -> "TransferOutcome":
        return cls(project, TransferStatus.SKIPPED, stage, reason, fetched, destination)

    @classmethod
    def failed_at(
        cls,
        project: str,
        stage: TransferStage,
        reason: str,
        destination: Optional[Destination] = None,
        fetched: bool = False,
    ) -> "TransferOutcome":
        return cls(project, TransferStatus.FAILED, stage, reason, fetched, destination)


class TransferWorker:
    """Runs the fetch/push pipeline for one project at a time. One instance
    is shared by all pool threads; it keeps no per-project state."""

    def __init__(
        self,
        params: CloneParams,
        resolver: DestinationResolver,
        transport: GitTransport,
    ) -> None:
        self.params = params
        self.resolver = resolver
        self.transport = transport

    def transfer(self, project: ProjectDescriptor, destination: Destination) -> TransferOutcome:
        name = project.path_with_namespace

        if self.params.dry_run:
            Logger.result(f"would clone: {name} -> {destination.describe()}")
            return TransferOutcome.skipped(name, "dry run", destination)

        if project.empty_repo:
            Logger.info(f"skipping {name}: repository is empty")
            return TransferOutcome.skipped(name, "repository is empty", destination)

        temporary = destination.local_path is None
        work_path: Optional[str] = None
        try:
            # Fetching
            try:
                work_path = destination.local_path or self._create_temp_clone_dir(project)
                Logger.info(f"fetching: {name} -> {work_path}")
                new_refs = self.transport.clone_or_update(
                    self._source_url(project),
                    self.params.clone_method,
                    work_path,
                    self._token_for(self.params.clone_method, self.params.fetch.token),
                )
            except (TransferError, OSError) as e:
                reason = self._reason(e)
                Logger.error(f"fetch failed for {name}: {reason}")
                return TransferOutcome.failed_at(
                    name, TransferStage.FETCH_FAILED, reason, destination
                )
            fetched_changes = new_refs and not temporary

            if self.params.backup is None:
                if not fetched_changes:
                    Logger.info(f"{name} is already up to date")
                    return TransferOutcome.skipped(
                        name, "already up to date", destination, TransferStage.DONE, True
                    )
                Logger.info(f"fetched: {name}")
                return TransferOutcome.transferred(name, destination, TransferStage.DONE)

            # Pushing
            try:
                target = self.resolver.resolve_backup(project)
                Logger.info(f"pushing: {name} -> {target.path_with_namespace}")
                pushed_changes = self.transport.mirror_push(
                    work_path,
                    target.push_url(self.params.push_method),
                    self.params.push_method,
                    self._token_for(self.params.push_method, self.params.backup.token),
                )
            except (TransferError, OSError) as e:
                reason = self._reason(e)
                Logger.error(f"push failed for {name}: {reason}")
                return TransferOutcome.failed_at(
                    name, TransferStage.PUSH_FAILED, reason, destination, fetched=True
                )

            if not fetched_changes and not pushed_changes:
                Logger.info(f"{name} is already up to date")
                return TransferOutcome.skipped(
                    name, "already up to date", destination, TransferStage.DONE, True
                )
            Logger.info(f"mirrored: {name}")
            return TransferOutcome.transferred(name, destination, TransferStage.DONE)
        finally:
            if temporary and work_path:
                self._cleanup_temp_clone_dir(work_path)

    def _source_url(self, project: ProjectDescriptor) -> str:
        if self.params.clone_method == CloneMethod.SSH:
            return project.ssh_url_to_repo
        return project.http_url_to_repo

    @staticmethod
    def _token_for(method: CloneMethod, token: str) -> Optional[str]:
        return token if method == CloneMethod.HTTPS else None

    def _reason(self, error: Exception) -> str:
        text = error.reason if isinstance(error, TransferError) else str(error)
        return SecurityValidator.redact(text, self.params.secrets)

    def _create_temp_clone_dir(self, project: ProjectDescriptor) -> str:
        """Private scratch directory for a mirror that is only pushed."""
        base = self.params.clone_temp_dir
        os.makedirs(base, mode=0o700, exist_ok=True)
        return tempfile.mkdtemp(prefix=f"{project.path}_", dir=base)

    @staticmethod
    def _cleanup_temp_clone_dir(path: str) -> None:
        try:
            shutil.rmtree(path)
            Logger.debug(f"removed temporary clone: {path}")
        except OSError as e:
            Logger.warn(f"failed to clean up temporary clone {path}: {e}")
