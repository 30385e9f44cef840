#!/usr/bin/env python3
"""Configuration dataclasses for gitlab-cloner."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Optional, Tuple

from errors import ConfigurationError

DEFAULT_CONCURRENCY_LIMIT = 21
DEFAULT_OBJECTS_PER_PAGE = 100
DEFAULT_GIT_TIMEOUT_S = 600.0
DEFAULT_CLONE_TEMP_DIR = "/tmp/gitlab-cloner"


class CloneMethod(Enum):
    """Enumeration for git clone/push transports."""
    HTTPS = "https"
    SSH = "ssh"


class FilterMode(Enum):
    INCLUDE = "include"
    EXCLUDE = "exclude"


@dataclass(frozen=True)
class GitLabCredentials:
    """Base URL and personal access token of one GitLab instance."""
    url: str
    token: str


@dataclass(frozen=True)
class BackupConfig:
    """Backup instance credentials and the pre-existing target group.

    Present as a whole or not at all.
    """
    url: str
    token: str
    group: str

    @property
    def credentials(self) -> GitLabCredentials:
        return GitLabCredentials(url=self.url, token=self.token)


@dataclass(frozen=True)
class FilterPatterns:
    """Either an include or an exclude set of regular expressions.

    Build through FilterPatterns.include() or FilterPatterns.exclude(); the
    patterns are compiled up front so a bad regex fails before any request.
    """
    mode: FilterMode
    patterns: Tuple[str, ...]
    compiled: Tuple[re.Pattern, ...] = field(
        init=False, repr=False, compare=False
    )

    def __post_init__(self) -> None:
        if not isinstance(self.mode, FilterMode):
            raise ConfigurationError(f"unknown filter mode: {self.mode!r}")
        compiled = []
        for pattern in self.patterns:
            try:
                compiled.append(re.compile(pattern))
            except re.error as e:
                raise ConfigurationError(
                    f"invalid {self.mode.value} pattern '{pattern}': {e}"
                ) from e
        object.__setattr__(self, "compiled", tuple(compiled))

    @classmethod
    def include(cls, patterns: Iterable[str]) -> "FilterPatterns":
        return cls(FilterMode.INCLUDE, tuple(patterns))

    @classmethod
    def exclude(cls, patterns: Iterable[str]) -> "FilterPatterns":
        return cls(FilterMode.EXCLUDE, tuple(patterns))


@dataclass(frozen=True)
class CloneParams:
    """Run-wide configuration, built once and shared read-only by all workers."""
    fetch: GitLabCredentials
    backup: Optional[BackupConfig] = None
    dst: Optional[str] = None
    patterns: Optional[FilterPatterns] = None
    dry_run: bool = False
    objects_per_page: Optional[int] = None
    limit: Optional[int] = None
    concurrency_limit: int = DEFAULT_CONCURRENCY_LIMIT
    only_owned: bool = False
    only_membership: bool = False
    download_ssh: bool = False
    upload_ssh: bool = False
    disable_hierarchy: bool = False
    clone_temp_dir: str = DEFAULT_CLONE_TEMP_DIR
    git_timeout_s: float = DEFAULT_GIT_TIMEOUT_S

    def __post_init__(self) -> None:
        if self.concurrency_limit < 1:
            raise ConfigurationError("concurrency limit must be at least 1")
        if self.objects_per_page is not None and not 1 <= self.objects_per_page <= 100:
            raise ConfigurationError("objects per page must be between 1 and 100")
        if self.limit is not None and self.limit < 0:
            raise ConfigurationError("limit must not be negative")

    @property
    def clone_method(self) -> CloneMethod:
        return CloneMethod.SSH if self.download_ssh else CloneMethod.HTTPS

    @property
    def push_method(self) -> CloneMethod:
        return CloneMethod.SSH if self.upload_ssh else CloneMethod.HTTPS

    @property
    def secrets(self) -> Tuple[str, ...]:
        """Tokens to scrub from any message that may reach the user."""
        tokens = [self.fetch.token]
        if self.backup is not None:
            tokens.append(self.backup.token)
        return tuple(t for t in tokens if t)
