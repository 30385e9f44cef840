#!/usr/bin/env python3
"""Backup GitLab API wrapper: mirrors the source group tree under a backup
group, creating subgroups and projects on demand."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Any, Dict, Optional

import gitlab
import requests

from config import BackupConfig, CloneMethod
from errors import BackupError
from gitlab_source import ProjectDescriptor
from logging_utils import Logger
from security import SecurityValidator
from utils import RateLimiter, join_namespace, split_namespace

STAGE = "PUSHING"


@dataclass(frozen=True)
class BackupProject:
    """A project on the backup instance that can receive a mirror push."""
    id: int
    path_with_namespace: str
    http_url_to_repo: str
    ssh_url_to_repo: str

    def push_url(self, method: CloneMethod) -> str:
        if method == CloneMethod.SSH:
            return self.ssh_url_to_repo
        return self.http_url_to_repo


class GitLabBackup:
    """Creates the backup side of each mirror. Shared by all workers."""

    def __init__(self, config: BackupConfig) -> None:
        self.config = config
        self.api: Optional[gitlab.Gitlab] = None
        self.rate_limiter = RateLimiter("backup GitLab API")
        self._lock = threading.Lock()
        self._connect_error: Optional[BackupError] = None
        self._groups: Dict[str, Any] = {}
        self._group_locks: Dict[str, threading.Lock] = {}
        self._group_locks_guard = threading.Lock()

    def target_path(self, project: ProjectDescriptor) -> str:
        """Backup path for a source project: backup group + source namespace path."""
        return join_namespace(self.config.group, project.path_with_namespace)

    def connect(self) -> None:
        """Authenticate once; a failure is remembered and re-raised for every
        later project instead of being retried."""
        with self._lock:
            if self.api is not None:
                return
            if self._connect_error is not None:
                raise self._connect_error
            Logger.info(f"init backup gitlab API: {self.config.url}")
            try:
                api = gitlab.Gitlab(url=self.config.url, private_token=self.config.token)
                self.rate_limiter.wait_if_needed()
                api.auth()
            except gitlab.exceptions.GitlabAuthenticationError as e:
                self._connect_error = BackupError(
                    f"authentication rejected by backup gitlab: {self._safe(e)}", STAGE
                )
                raise self._connect_error from e
            except (gitlab.exceptions.GitlabError, requests.RequestException) as e:
                self._connect_error = BackupError(
                    f"failed to initialize backup gitlab API: {self._safe(e)}", STAGE
                )
                raise self._connect_error from e
            self.api = api

    def ensure_project(self, project: ProjectDescriptor) -> BackupProject:
        """Return the backup project for `project`, creating it and any
        missing subgroups. Existing groups and projects are reused."""
        self.connect()
        full_path = self.target_path(project)
        parent_path, leaf = split_namespace(full_path)
        try:
            parent = self._ensure_group(parent_path)
            existing = self._get_project(full_path)
            if existing is None:
                existing = self._create_project(project, parent, leaf, full_path)
        except gitlab.exceptions.GitlabAuthenticationError as e:
            raise BackupError(
                f"authentication rejected by backup gitlab: {self._safe(e)}", STAGE
            ) from e
        except (gitlab.exceptions.GitlabError, requests.RequestException) as e:
            raise BackupError(
                f"backup gitlab refused '{full_path}': {self._safe(e)}", STAGE
            ) from e

        return BackupProject(
            id=getattr(existing, "id"),
            path_with_namespace=getattr(existing, "path_with_namespace", full_path),
            http_url_to_repo=getattr(existing, "http_url_to_repo", ""),
            ssh_url_to_repo=getattr(existing, "ssh_url_to_repo", ""),
        )

    def _ensure_group(self, full_path: str) -> Any:
        """Walk down from the backup group creating missing subgroups.
        One lock per group path."""
        cached = self._groups.get(full_path)
        if cached is not None:
            return cached

        root = join_namespace(self.config.group)
        parent = None
        if full_path != root:
            parent_path, name = split_namespace(full_path)
            parent = self._ensure_group(parent_path)

        with self._group_lock(full_path):
            if full_path in self._groups:
                return self._groups[full_path]
            group = self._get_group(full_path)
            if group is None and parent is None:
                raise BackupError(
                    f"backup group '{root}' does not exist on {self.config.url}", STAGE
                )
            if group is None:
                group = self._create_group(name, parent, full_path)
            self._groups[full_path] = group
        return group

    def _group_lock(self, full_path: str) -> threading.Lock:
        with self._group_locks_guard:
            return self._group_locks.setdefault(full_path, threading.Lock())

    def _get_group(self, full_path: str) -> Optional[Any]:
        self.rate_limiter.wait_if_needed()
        try:
            return self.api.groups.get(full_path)
        except gitlab.exceptions.GitlabGetError as e:
            if e.response_code == 404:
                return None
            raise

    def _create_group(self, name: str, parent: Any, full_path: str) -> Any:
        Logger.info(f"creating backup subgroup: {full_path}")
        self.rate_limiter.wait_if_needed()
        try:
            return self.api.groups.create(
                {"name": name, "path": name, "parent_id": getattr(parent, "id")}
            )
        except gitlab.exceptions.GitlabCreateError as e:
            # created concurrently or by an earlier run
            group = self._get_group(full_path)
            if group is None:
                raise
            Logger.debug(f"backup subgroup already exists: {full_path} ({e.response_code})")
            return group

    def _get_project(self, full_path: str) -> Optional[Any]:
        self.rate_limiter.wait_if_needed()
        try:
            return self.api.projects.get(full_path)
        except gitlab.exceptions.GitlabGetError as e:
            if e.response_code == 404:
                return None
            raise

    def _create_project(
        self, project: ProjectDescriptor, parent: Any, leaf: str, full_path: str
    ) -> Any:
        Logger.info(f"creating backup project: {full_path}")
        self.rate_limiter.wait_if_needed()
        try:
            return self.api.projects.create(
                {
                    "name": project.name,
                    "path": leaf,
                    "namespace_id": getattr(parent, "id"),
                    "visibility": "private",
                    "description": project.description,
                }
            )
        except gitlab.exceptions.GitlabCreateError as e:
            existing = self._get_project(full_path)
            if existing is None:
                raise
            Logger.debug(f"backup project already exists: {full_path} ({e.response_code})")
            return existing

    def _safe(self, error: Exception) -> str:
        return SecurityValidator.redact(str(error), [self.config.token])
