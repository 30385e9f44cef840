#!/usr/bin/env python3
"""Command line argument parsing and configuration building."""

from __future__ import annotations

import argparse
import os
import sys
from typing import List, Optional, Sequence

from config import (DEFAULT_CLONE_TEMP_DIR, DEFAULT_CONCURRENCY_LIMIT,
                    DEFAULT_GIT_TIMEOUT_S, BackupConfig, CloneParams,
                    FilterPatterns, GitLabCredentials)
from errors import ConfigurationError
from logging_utils import Logger
from security import SecurityValidator

# Exit codes
EXIT_AUTH_ERROR = 40
EXIT_CONFIG_ERROR = 2


def _create_argument_parser() -> argparse.ArgumentParser:
    """Create and configure the argument parser."""
    parser = argparse.ArgumentParser(
        prog="gitlab-cloner",
        description="A tool for cloning all available repositories in a GitLab instance",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s --fu https://gitlab.local/ --ft TOKEN -d ./mirrors
  %(prog)s --fu https://gitlab.local/ --ft TOKEN -d ./mirrors --include '^team/' --dry-run
  %(prog)s --fu https://gitlab.local/ --ft TOKEN --download-ssh \\
           --bu https://backup-gitlab.local/ --bt BACKUP_TOKEN --bg backups
        """,
    )
    return parser


def _add_fetch_arguments(parser: argparse.ArgumentParser) -> None:
    """Add source GitLab arguments to parser."""
    parser.add_argument(
        "--fu",
        dest="fetch_url",
        required=True,
        metavar="FETCH_URL",
        help="The GitLab instance URL for fetch repositories (example: https://gitlab.local/)",
    )
    parser.add_argument(
        "--ft",
        dest="fetch_token",
        metavar="FETCH_TOKEN",
        help="Your personal GitLab token for fetch repositories "
        "(or set GITLAB_FETCH_TOKEN env var)",
    )


def _add_backup_arguments(parser: argparse.ArgumentParser) -> None:
    """Add backup GitLab arguments to parser."""
    parser.add_argument(
        "--bu",
        dest="backup_url",
        metavar="BACKUP_URL",
        help="The GitLab instance URL for backup repositories "
        "(example: https://backup-gitlab.local/)",
    )
    parser.add_argument(
        "--bt",
        dest="backup_token",
        metavar="BACKUP_TOKEN",
        help="Your personal GitLab token for backup repositories "
        "(or set GITLAB_BACKUP_TOKEN env var)",
    )
    parser.add_argument(
        "--bg",
        dest="backup_group",
        metavar="BACKUP_GROUP",
        help="A target created group on backup GitLab for push repositories",
    )


def _add_behavior_arguments(parser: argparse.ArgumentParser) -> None:
    """Add filtering, scheduling and transport arguments to parser."""
    parser.add_argument(
        "--include",
        dest="include",
        action="append",
        metavar="PATTERNS",
        help="Comma separated include regexp patterns "
        "(cannot be used together with --exclude flag)",
    )
    parser.add_argument(
        "--exclude",
        dest="exclude",
        action="append",
        metavar="PATTERNS",
        help="Comma separated exclude regexp patterns "
        "(cannot be used together with --include flag)",
    )
    parser.add_argument(
        "-d",
        "--dst",
        dest="dst",
        metavar="DIRECTORY",
        help="A destination local folder for save downloaded repositories",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        dest="verbose",
        action="count",
        default=0,
        help="Verbose level (one or more, max four)",
    )
    parser.add_argument(
        "--dry-run",
        dest="dry_run",
        action="store_true",
        help="Show all projects to download",
    )
    parser.add_argument(
        "--objects-per-page",
        dest="objects_per_page",
        type=int,
        metavar="COUNT",
        help="Low-level option, how many projects can fetch in one request",
    )
    parser.add_argument(
        "--limit",
        dest="limit",
        type=int,
        metavar="COUNT",
        help="Maximum projects to download",
    )
    parser.add_argument(
        "--concurrency-limit",
        dest="concurrency_limit",
        type=int,
        default=DEFAULT_CONCURRENCY_LIMIT,
        metavar="LIMIT",
        help=f"Limit concurrency download (default: {DEFAULT_CONCURRENCY_LIMIT})",
    )
    parser.add_argument(
        "--only-owned",
        dest="only_owned",
        action="store_true",
        help="Download projects explicitly owned by user",
    )
    parser.add_argument(
        "--only-membership",
        dest="only_membership",
        action="store_true",
        help="Download only user's projects",
    )
    parser.add_argument(
        "--download-ssh",
        dest="download_ssh",
        action="store_true",
        help="Enable download by ssh instead of http. An authorized ssh key is required",
    )
    parser.add_argument(
        "--upload-ssh",
        dest="upload_ssh",
        action="store_true",
        help="Enable upload by ssh instead of http. An authorized ssh key is required",
    )
    parser.add_argument(
        "--disable-hierarchy",
        dest="disable_hierarchy",
        action="store_true",
        help="Disable saving the directory hierarchy",
    )
    parser.add_argument(
        "--clone-temp-dir",
        dest="clone_temp_dir",
        default=DEFAULT_CLONE_TEMP_DIR,
        help="Scratch directory for mirrors that are only pushed to the backup "
        f"(default: {DEFAULT_CLONE_TEMP_DIR})",
    )
    parser.add_argument(
        "--git-timeout",
        dest="git_timeout_s",
        type=float,
        default=DEFAULT_GIT_TIMEOUT_S,
        metavar="SECONDS",
        help=f"Timeout for a single git clone/fetch/push (default: {DEFAULT_GIT_TIMEOUT_S:.0f})",
    )


def _split_patterns(values: Optional[List[str]]) -> Optional[List[str]]:
    """Flatten repeated, comma separated pattern arguments."""
    if values is None:
        return None
    patterns = [p.strip() for value in values for p in value.split(",") if p.strip()]
    return [SecurityValidator.validate_pattern(p) for p in patterns]


def _build_filter_patterns(args) -> Optional[FilterPatterns]:
    include = _split_patterns(args.include)
    exclude = _split_patterns(args.exclude)
    if include is not None and exclude is not None:
        raise ConfigurationError(
            "You cannot use the --include and --exclude flag together"
        )
    if exclude is not None:
        return FilterPatterns.exclude(exclude)
    if include is not None:
        return FilterPatterns.include(include)
    return None


def _build_backup_config(args) -> Optional[BackupConfig]:
    """All of --bu, --bt and --bg, or none of them."""
    if not (args.backup_url or args.backup_token or args.backup_group):
        return None
    token = args.backup_token or os.getenv("GITLAB_BACKUP_TOKEN")
    given = {"--bu": args.backup_url, "--bt": token, "--bg": args.backup_group}
    missing = [flag for flag, value in given.items() if not value]
    if missing:
        raise ConfigurationError(
            f"incomplete backup configuration, missing: {', '.join(missing)}"
        )
    return BackupConfig(
        url=SecurityValidator.validate_url(args.backup_url),
        token=SecurityValidator.validate_token(token, "backup token"),
        group=SecurityValidator.validate_group_path(args.backup_group),
    )


def _get_fetch_token(args) -> str:
    token = args.fetch_token or os.getenv("GITLAB_FETCH_TOKEN")
    if not token:
        Logger.error("error: fetch token not provided (use --ft or GITLAB_FETCH_TOKEN)")
        sys.exit(EXIT_AUTH_ERROR)
    return token


def _validate_parsed_arguments(args) -> CloneParams:
    """Validate every option and build the run configuration.

    Raises ConfigurationError (or ValueError from SecurityValidator)."""
    fetch_token = _get_fetch_token(args)
    fetch = GitLabCredentials(
        url=SecurityValidator.validate_url(args.fetch_url),
        token=SecurityValidator.validate_token(fetch_token, "fetch token"),
    )
    patterns = _build_filter_patterns(args)
    backup = _build_backup_config(args)

    dst = SecurityValidator.validate_file_path(args.dst) if args.dst else None
    if dst is None and backup is None:
        dst = os.getcwd()
        Logger.warn(f"no --dst or backup configured, cloning into: {dst}")

    if args.git_timeout_s <= 0:
        raise ConfigurationError("git timeout must be positive")

    return CloneParams(
        fetch=fetch,
        backup=backup,
        dst=dst,
        patterns=patterns,
        dry_run=args.dry_run,
        objects_per_page=args.objects_per_page,
        limit=args.limit,
        concurrency_limit=args.concurrency_limit,
        only_owned=args.only_owned,
        only_membership=args.only_membership,
        download_ssh=args.download_ssh,
        upload_ssh=args.upload_ssh,
        disable_hierarchy=args.disable_hierarchy,
        clone_temp_dir=SecurityValidator.validate_file_path(args.clone_temp_dir),
        git_timeout_s=float(args.git_timeout_s),
    )


def parse_arguments(argv: Optional[Sequence[str]] = None) -> CloneParams:
    """Parse command line arguments and return the run configuration.

    Configures log verbosity; exits the process on invalid options."""
    parser = _create_argument_parser()
    _add_fetch_arguments(parser)
    _add_backup_arguments(parser)
    _add_behavior_arguments(parser)

    args = parser.parse_args(argv)
    Logger.set_verbosity(args.verbose)

    try:
        params = _validate_parsed_arguments(args)
    except (ConfigurationError, ValueError) as e:
        Logger.error(f"configuration error: {e}")
        sys.exit(EXIT_CONFIG_ERROR)

    Logger.security_event("CONFIG_VALIDATION", "successfully validated all configuration inputs")
    return params
