#!/usr/bin/env python3
"""Security validation utilities for gitlab-cloner."""

import os
import re
from typing import Iterable, List, Optional
from urllib.parse import urlparse


class SecurityValidator:
    """Input validation for CLI values and credential scrubbing for log output."""

    MAX_URL_LENGTH = 2048
    MAX_TOKEN_LENGTH = 512
    MAX_GROUP_PATH_LENGTH = 255
    MAX_PATH_LENGTH = 1024
    MAX_PATTERN_LENGTH = 500

    SAFE_GROUP_PATH_PATTERN = re.compile(r"^[A-Za-z0-9._-]+(/[A-Za-z0-9._-]+)*$")

    # (pattern, replacement) pairs applied by sanitize_for_logging
    REDACTIONS = [
        (r"(https?://)[^/\s:@]+:[^/\s@]+@", r"\1[REDACTED]@"),
        (r"(private[-_]token[=:]\s*)[^\s&]+", r"\1[REDACTED]"),
        (r"(token[=:]\s*)[^\s&]+", r"\1[REDACTED]"),
        (r"(password[=:]\s*)[^\s&]+", r"\1[REDACTED]"),
        (r"glpat-[A-Za-z0-9_.-]+", "[GITLAB_TOKEN_REDACTED]"),
        (r"gloas-[A-Za-z0-9_.-]+", "[GITLAB_TOKEN_REDACTED]"),
        (r"glptt-[A-Za-z0-9_.-]+", "[GITLAB_TOKEN_REDACTED]"),
    ]

    @classmethod
    def validate_url(cls, url: str, allowed_schemes: Optional[List[str]] = None) -> str:
        """Validate a GitLab instance URL and return it without trailing slash."""
        if not url or not isinstance(url, str):
            raise ValueError("URL must be a non-empty string")

        if len(url) > cls.MAX_URL_LENGTH:
            raise ValueError(f"URL exceeds maximum length of {cls.MAX_URL_LENGTH}")

        if "\x00" in url or any(ord(c) < 32 for c in url):
            raise ValueError("URL contains null bytes or control characters")

        parsed = urlparse(url)
        schemes = allowed_schemes or ["https", "http"]
        if parsed.scheme.lower() not in schemes:
            raise ValueError(
                f"URL scheme '{parsed.scheme}' not in allowed schemes: {schemes}"
            )
        if not parsed.netloc:
            raise ValueError(f"URL has no host: {url}")
        if parsed.username or parsed.password:
            raise ValueError("URL must not embed credentials, pass a token instead")

        return url.rstrip("/")

    @classmethod
    def validate_token(cls, token: str, label: str = "token") -> str:
        if not token or not isinstance(token, str):
            raise ValueError(f"{label} must be a non-empty string")

        if len(token) > cls.MAX_TOKEN_LENGTH:
            raise ValueError(f"{label} exceeds maximum length of {cls.MAX_TOKEN_LENGTH}")

        if any(c.isspace() or ord(c) < 32 for c in token):
            raise ValueError(f"{label} contains whitespace or control characters")

        return token

    @classmethod
    def validate_group_path(cls, group: str) -> str:
        """Validate a GitLab group full path such as 'backups' or 'org/backups'."""
        if not group or not isinstance(group, str):
            raise ValueError("Group path must be a non-empty string")

        group = group.strip("/")
        if len(group) > cls.MAX_GROUP_PATH_LENGTH:
            raise ValueError(
                f"Group path exceeds maximum length of {cls.MAX_GROUP_PATH_LENGTH}"
            )

        if ".." in group:
            raise ValueError("Group path contains path traversal sequences")

        if not cls.SAFE_GROUP_PATH_PATTERN.match(group):
            raise ValueError("Group path contains invalid characters")

        return group

    @classmethod
    def validate_file_path(cls, path: str) -> str:
        """Validate a local directory path and return it normalized."""
        if not path or not isinstance(path, str):
            raise ValueError("File path must be a non-empty string")

        if len(path) > cls.MAX_PATH_LENGTH:
            raise ValueError(
                f"File path exceeds maximum length of {cls.MAX_PATH_LENGTH}"
            )

        if "\x00" in path:
            raise ValueError("File path contains null bytes")

        return os.path.normpath(os.path.expanduser(path))

    @classmethod
    def validate_pattern(cls, pattern: str) -> str:
        if len(pattern) > cls.MAX_PATTERN_LENGTH:
            raise ValueError(
                f"filter pattern too long (max {cls.MAX_PATTERN_LENGTH} characters)"
            )
        return pattern

    @classmethod
    def sanitize_for_logging(cls, message: str) -> str:
        """Sanitize message for safe logging by removing potential credentials."""
        if not message:
            return message

        sanitized = str(message)
        for pattern, replacement in cls.REDACTIONS:
            sanitized = re.sub(pattern, replacement, sanitized, flags=re.IGNORECASE)

        return sanitized

    @classmethod
    def redact(cls, message: str, secrets: Iterable[Optional[str]]) -> str:
        """Remove literal secret values, then apply the generic redactions."""
        if not message:
            return message

        for secret in secrets:
            if secret:
                message = message.replace(secret, "[REDACTED]")
        return cls.sanitize_for_logging(message)
