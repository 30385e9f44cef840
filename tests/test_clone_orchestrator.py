"""End-to-end tests for CloneOrchestrator with faked GitLab and git."""

from __future__ import annotations

import os
from pathlib import Path
from unittest.mock import Mock

import pytest

from clone_orchestrator import CloneOrchestrator, RunSummary
from config import BackupConfig, CloneParams, FilterPatterns, GitLabCredentials
from errors import BackupError, ListingError
from gitlab_backup import BackupProject, GitLabBackup
from gitlab_source import GitLabSource, ProjectDescriptor
from git_transport import GitTransport
from transfer_worker import TransferStage, TransferStatus


def _project(path: str, pid: int) -> ProjectDescriptor:
    return ProjectDescriptor(
        id=pid,
        path_with_namespace=path,
        name=path.rsplit('/', 1)[-1],
        path=path.rsplit('/', 1)[-1],
        ssh_url_to_repo=f'git@gitlab.local:{path}.git',
        http_url_to_repo=f'https://gitlab.local/{path}.git',
    )


SOURCE_PROJECTS = [_project('team/a', 1), _project('team/b', 2), _project('other/c', 3)]


def _source(projects) -> Mock:
    source = Mock(spec=GitLabSource)
    source.iter_projects.side_effect = lambda **_kwargs: iter(projects)
    return source


def _transport() -> Mock:
    transport = Mock(spec=GitTransport)
    transport.is_mirror.return_value = False
    transport.clone_or_update.return_value = True
    transport.mirror_push.return_value = True
    return transport


def _run(params, projects=SOURCE_PROJECTS, backup=None, transport=None):
    transport = transport or _transport()
    orchestrator = CloneOrchestrator(
        params, source=_source(projects), backup=backup, transport=transport
    )
    return orchestrator.run(), transport


def _params(tmp_path: Path, **overrides) -> CloneParams:
    values = dict(
        fetch=GitLabCredentials('https://gitlab.local', 'gl-token'),
        dst=str(tmp_path / 'out'),
        concurrency_limit=2,
    )
    values.update(overrides)
    return CloneParams(**values)


def _fetched_paths(transport) -> set:
    return {c.args[2] for c in transport.clone_or_update.call_args_list}


def test_include_filter_with_hierarchy(tmp_path: Path) -> None:
    out = tmp_path / 'out'
    summary, transport = _run(_params(tmp_path, patterns=FilterPatterns.include(['^team/'])))

    assert {path for path, _ in summary.results} == {'team/a', 'team/b'}
    assert _fetched_paths(transport) == {str(out / 'team' / 'a'), str(out / 'team' / 'b')}
    assert summary.transferred == 2
    assert summary.exit_code == 0


def test_include_filter_without_hierarchy(tmp_path: Path) -> None:
    out = tmp_path / 'out'
    summary, transport = _run(
        _params(tmp_path, patterns=FilterPatterns.include(['^team/']), disable_hierarchy=True)
    )

    assert _fetched_paths(transport) == {str(out / 'a'), str(out / 'b')}
    assert summary.failed == 0


def test_flattened_name_collision_fails_one_project(tmp_path: Path) -> None:
    """Two leaf names 'a' never overwrite each other."""
    projects = [_project('team/a', 1), _project('other/a', 2)]
    summary, transport = _run(_params(tmp_path, disable_hierarchy=True), projects=projects)

    outcomes = dict(summary.results)
    assert outcomes['team/a'].status == TransferStatus.TRANSFERRED
    assert outcomes['other/a'].status == TransferStatus.FAILED
    assert 'name collision' in outcomes['other/a'].reason
    assert transport.clone_or_update.call_count == 1
    assert summary.exit_code != 0


def test_dry_run_reports_same_projects_without_side_effects(tmp_path: Path) -> None:
    patterns = FilterPatterns.exclude(['^other/'])
    dry, dry_transport = _run(_params(tmp_path, patterns=patterns, dry_run=True))
    real, _ = _run(_params(tmp_path, patterns=patterns))

    assert {p for p, _ in dry.results} == {p for p, _ in real.results}
    assert dry.skipped == dry.attempted == 2
    dry_transport.clone_or_update.assert_not_called()
    dry_transport.mirror_push.assert_not_called()
    assert not (tmp_path / 'out').exists()


def test_invalid_backup_token_fails_push_only(tmp_path: Path) -> None:
    backup = Mock(spec=GitLabBackup)
    backup.ensure_project.side_effect = BackupError(
        'authentication rejected by backup gitlab: 401 Unauthorized', 'PUSHING'
    )
    params = _params(tmp_path, backup=BackupConfig('https://backup.local', 'bad', 'backups'))

    summary, transport = _run(params, backup=backup)

    assert summary.failed == 3
    for _, outcome in summary.results:
        assert outcome.stage == TransferStage.PUSH_FAILED
        assert outcome.fetched
        assert 'authentication rejected' in outcome.reason
    assert transport.clone_or_update.call_count == 3
    transport.mirror_push.assert_not_called()


def test_backup_push_targets_created_project(tmp_path: Path) -> None:
    backup = Mock(spec=GitLabBackup)
    backup.ensure_project.side_effect = lambda project: BackupProject(
        id=1,
        path_with_namespace=f'backups/{project.path_with_namespace}',
        http_url_to_repo=f'https://backup.local/backups/{project.path_with_namespace}.git',
        ssh_url_to_repo='',
    )
    params = _params(tmp_path, backup=BackupConfig('https://backup.local', 'bk', 'backups'))

    summary, transport = _run(params, backup=backup)

    assert summary.transferred == 3
    pushed = {c.args[1] for c in transport.mirror_push.call_args_list}
    assert 'https://backup.local/backups/other/c.git' in pushed


def test_rerun_over_existing_mirrors_is_idempotent(tmp_path: Path) -> None:
    transport = _transport()
    transport.is_mirror.return_value = True
    transport.origin_url.side_effect = lambda path: 'https://gitlab.local/{}.git'.format(
        os.path.relpath(path, tmp_path / 'out').replace(os.sep, '/')
    )
    transport.clone_or_update.return_value = False

    summary, _ = _run(_params(tmp_path), transport=transport)

    assert summary.failed == 0
    assert summary.skipped == 3


def test_limit_is_forwarded_to_listing(tmp_path: Path) -> None:
    source = _source(SOURCE_PROJECTS[:1])
    params = _params(tmp_path, limit=1, objects_per_page=10, only_owned=True)

    CloneOrchestrator(params, source=source, transport=_transport()).run()

    source.iter_projects.assert_called_once_with(
        per_page=10, limit=1, only_owned=True, only_membership=False
    )


def test_listing_error_aborts_the_run(tmp_path: Path) -> None:
    source = Mock(spec=GitLabSource)

    def broken(**_kwargs):
        yield SOURCE_PROJECTS[0]
        raise ListingError('failed to list projects after 1 results: 502')

    source.iter_projects.side_effect = broken
    orchestrator = CloneOrchestrator(_params(tmp_path), source=source, transport=_transport())

    with pytest.raises(ListingError):
        orchestrator.run()


def test_summary_counts_and_exit_code() -> None:
    summary = RunSummary()
    assert summary.attempted == 0
    assert summary.exit_code == 0
