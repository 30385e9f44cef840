#!/usr/bin/env python3
"""Exception hierarchy for gitlab-cloner."""

from __future__ import annotations

from typing import Optional


class GitLabClonerError(Exception):
    """Base class for all gitlab-cloner errors."""


class ConfigurationError(GitLabClonerError):
    """Invalid or inconsistent options, detected before any network call."""


class ListingError(GitLabClonerError):
    """Project discovery on the fetch instance failed; fatal to the run."""


class AuthenticationError(ListingError):
    """Fetch instance rejected the supplied token."""


class TransferError(GitLabClonerError):
    """A single project's pipeline failed at a given stage."""

    def __init__(self, reason: str, stage: Optional[str] = None) -> None:
        super().__init__(reason)
        self.reason = reason
        self.stage = stage


class GitTransportError(TransferError):
    """A git clone, fetch or push subprocess failed."""


class BackupError(TransferError):
    """The backup GitLab instance refused a group or project operation."""


class DestinationCollisionError(TransferError):
    """Two projects resolve to the same local mirror directory."""
