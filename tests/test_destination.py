"""Tests for DestinationResolver path mapping and collision detection."""

from __future__ import annotations

import os
from unittest.mock import Mock

import pytest

from config import BackupConfig, CloneParams, GitLabCredentials
from destination import DestinationResolver
from errors import DestinationCollisionError
from gitlab_source import ProjectDescriptor
from git_transport import GitTransport


def _project(path: str, pid: int = 1) -> ProjectDescriptor:
    return ProjectDescriptor(
        id=pid,
        path_with_namespace=path,
        name=path.rsplit('/', 1)[-1],
        path=path.rsplit('/', 1)[-1],
        ssh_url_to_repo=f'git@gitlab.local:{path}.git',
        http_url_to_repo=f'https://gitlab.local/{path}.git',
    )


def _params(dst='/out', **overrides) -> CloneParams:
    return CloneParams(
        fetch=GitLabCredentials('https://gitlab.local', 'gl-token'), dst=dst, **overrides
    )


def _resolver(params: CloneParams) -> DestinationResolver:
    transport = Mock(spec=GitTransport)
    transport.is_mirror.return_value = False
    return DestinationResolver(params, transport)


def test_hierarchy_preserved_under_destination() -> None:
    resolver = _resolver(_params())
    assert resolver.resolve(_project('team/a')).local_path == os.path.join('/out', 'team', 'a')
    assert resolver.resolve(_project('team/sub/b', 2)).local_path == os.path.join(
        '/out', 'team', 'sub', 'b'
    )


def test_hierarchy_disabled_uses_leaf_name() -> None:
    resolver = _resolver(_params(disable_hierarchy=True))
    assert resolver.resolve(_project('team/a')).local_path == os.path.join('/out', 'a')
    assert resolver.resolve(_project('team/b', 2)).local_path == os.path.join('/out', 'b')


def test_flattened_leaf_collision_is_detected() -> None:
    """The first project keeps the directory, the second is refused."""
    resolver = _resolver(_params(disable_hierarchy=True))
    resolver.resolve(_project('team/a', 1))

    with pytest.raises(DestinationCollisionError, match='team/a'):
        resolver.resolve(_project('other/a', 2))


def test_existing_mirror_of_another_project_is_a_collision() -> None:
    resolver = _resolver(_params(disable_hierarchy=True))
    resolver.transport.is_mirror.return_value = True
    resolver.transport.origin_url.return_value = 'https://gitlab.local/other/a.git'

    with pytest.raises(DestinationCollisionError, match='already mirrors'):
        resolver.resolve(_project('team/a'))


def test_existing_mirror_of_same_project_is_reused() -> None:
    """Re-running over an existing mirror is not a collision."""
    resolver = _resolver(_params())
    resolver.transport.is_mirror.return_value = True
    resolver.transport.origin_url.return_value = 'https://gitlab.local/team/a'

    destination = resolver.resolve(_project('team/a'))
    assert destination.local_path == os.path.join('/out', 'team', 'a')


def test_dry_run_resolution_does_not_inspect_disk() -> None:
    resolver = _resolver(_params(dry_run=True))
    resolver.resolve(_project('team/a'))
    resolver.transport.is_mirror.assert_not_called()
    resolver.transport.origin_url.assert_not_called()


def test_backup_only_destination() -> None:
    params = _params(
        dst=None, backup=BackupConfig('https://backup.local', 'bk-token', 'backups')
    )
    destination = _resolver(params).resolve(_project('team/sub/a'))
    assert destination.local_path is None
    assert destination.backup_path == 'backups/team/sub/a'
    assert destination.describe() == 'backup:backups/team/sub/a'


def test_resolve_backup_without_backup_configured() -> None:
    resolver = _resolver(_params())
    with pytest.raises(ValueError):
        resolver.resolve_backup(_project('team/a'))
