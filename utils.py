#!/usr/bin/env python3
"""Utility functions for gitlab-cloner."""

import threading
import time
from collections import deque
from typing import Deque, List, Tuple

from logging_utils import Logger


class RateLimiter:
    """Sliding one-minute window limiter shared by the threads calling one
    GitLab instance."""

    WINDOW_S = 60.0

    def __init__(self, name: str, max_requests_per_minute: int = 600):
        self.name = name
        self.max_requests = max_requests_per_minute
        self.requests: Deque[float] = deque()
        self.lock = threading.Lock()

    def wait_if_needed(self) -> None:
        """Block until one more request fits in the current window."""
        with self.lock:
            now = time.monotonic()
            self._expire(now)
            if len(self.requests) >= self.max_requests:
                wait_time = self.WINDOW_S - (now - self.requests[0])
                if wait_time > 0:
                    Logger.warn(
                        f"rate limit reached for {self.name}, waiting {wait_time:.2f}s"
                    )
                    time.sleep(wait_time)
                now = time.monotonic()
                self._expire(now)
            self.requests.append(now)

    def _expire(self, now: float) -> None:
        cutoff = now - self.WINDOW_S
        while self.requests and self.requests[0] <= cutoff:
            self.requests.popleft()


def namespace_parts(path_with_namespace: str) -> List[str]:
    """Split 'group/sub/project' into its non-empty segments."""
    return [p for p in path_with_namespace.split("/") if p]


def split_namespace(path_with_namespace: str) -> Tuple[str, str]:
    """Return (parent namespace, leaf) for a project path.

    Example: 'team/sub/app' -> ('team/sub', 'app')
    """
    parts = namespace_parts(path_with_namespace)
    if not parts:
        raise ValueError(f"empty namespace path: {path_with_namespace!r}")
    return "/".join(parts[:-1]), parts[-1]


def join_namespace(*segments: str) -> str:
    parts: List[str] = []
    for segment in segments:
        parts.extend(namespace_parts(segment))
    return "/".join(parts)
