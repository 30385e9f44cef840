#!/usr/bin/env python3
"""Include/exclude filtering of discovered projects by namespace path."""

from __future__ import annotations

from typing import Optional

from config import FilterMode, FilterPatterns


def matches(path: str, patterns: Optional[FilterPatterns]) -> bool:
    """Return True when the project at `path` is in scope.

    Include keeps a path matched by at least one pattern, Exclude keeps a
    path matched by none. Patterns are searched anywhere in the path, so
    anchor them ('^team/') to match from the root namespace.
    """
    if patterns is None:
        return True

    hit = any(regex.search(path) for regex in patterns.compiled)
    if patterns.mode == FilterMode.INCLUDE:
        return hit
    return not hit
