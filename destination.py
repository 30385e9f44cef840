#!/usr/bin/env python3
"""Maps source projects to their local mirror directory and backup path."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Dict, Optional

from config import CloneParams
from errors import DestinationCollisionError
from gitlab_backup import BackupProject, GitLabBackup
from gitlab_source import ProjectDescriptor
from git_transport import GitTransport
from logging_utils import Logger
from utils import join_namespace, namespace_parts


@dataclass(frozen=True)
class Destination:
    """Where one project goes. local_path is None when no local directory is
    configured (the worker then fetches into a temporary clone)."""
    local_path: Optional[str]
    backup_path: Optional[str]

    def describe(self) -> str:
        targets = []
        if self.local_path:
            targets.append(self.local_path)
        if self.backup_path:
            targets.append(f"backup:{self.backup_path}")
        return ", ".join(targets) or "(no destination)"


def _normalize_remote(url: str) -> str:
    url = url.strip().rstrip("/")
    if url.endswith(".git"):
        url = url[: -len(".git")]
    return url.lower()


class DestinationResolver:
    """Resolves destinations in listing order.

    Local paths are claimed by the first project that resolves to them; a
    later project with the same path is a collision. resolve() is called
    from the single dispatching thread only.
    """

    def __init__(
        self,
        params: CloneParams,
        transport: GitTransport,
        backup: Optional[GitLabBackup] = None,
    ) -> None:
        self.params = params
        self.transport = transport
        self.backup = backup
        self._claimed: Dict[str, str] = {}

    def local_path(self, project: ProjectDescriptor) -> Optional[str]:
        if not self.params.dst:
            return None
        if self.params.disable_hierarchy:
            relative = [project.path]
        else:
            relative = namespace_parts(project.path_with_namespace)
        return os.path.join(self.params.dst, *relative)

    def backup_path(self, project: ProjectDescriptor) -> Optional[str]:
        if self.params.backup is None:
            return None
        return join_namespace(self.params.backup.group, project.path_with_namespace)

    def describe(self, project: ProjectDescriptor) -> Destination:
        """Destination of `project` without claiming or touching anything."""
        return Destination(
            local_path=self.local_path(project),
            backup_path=self.backup_path(project),
        )

    def resolve(self, project: ProjectDescriptor) -> Destination:
        """Claim the destination of `project`.

        Raises DestinationCollisionError when the local directory is already
        claimed in this run, or already holds a mirror of another project.
        """
        destination = self.describe(project)
        path = destination.local_path
        if path is None:
            return destination

        key = os.path.normcase(os.path.abspath(path))
        owner = self._claimed.get(key)
        if owner is not None and owner != project.path_with_namespace:
            raise DestinationCollisionError(
                f"name collision: {path} is already used by {owner}", "PENDING"
            )

        if not self.params.dry_run:
            self._check_existing_mirror(project, path)

        self._claimed[key] = project.path_with_namespace
        Logger.debug(f"resolved {project.path_with_namespace} -> {destination.describe()}")
        return destination

    def resolve_backup(self, project: ProjectDescriptor) -> BackupProject:
        """Create (or reuse) the backup project and its subgroups."""
        if self.backup is None:
            raise ValueError("no backup instance configured")
        return self.backup.ensure_project(project)

    def _check_existing_mirror(self, project: ProjectDescriptor, path: str) -> None:
        if not self.transport.is_mirror(path):
            return
        origin = self.transport.origin_url(path)
        if origin is None:
            return
        known = {
            _normalize_remote(u)
            for u in (project.http_url_to_repo, project.ssh_url_to_repo)
            if u
        }
        if _normalize_remote(origin) not in known:
            raise DestinationCollisionError(
                f"name collision: {path} already mirrors {origin}", "PENDING"
            )
