#!/usr/bin/env python3
"""Logging utilities for gitlab-cloner."""

import os
import sys
import threading
import time

import colorama

from security import SecurityValidator

# Initialize colorama for cross-platform colored output
colorama.init(autoreset=True)

# Verbosity levels, selected by the number of -v flags
LEVEL_ERROR = 0
LEVEL_WARN = 1
LEVEL_INFO = 2
LEVEL_DEBUG = 3
LEVEL_TRACE = 4


class Logger:
    """Formatted console output with colors, a verbosity threshold and
    credential scrubbing. Safe to call from worker threads."""

    PROCESS_NAME = "gitlab-cloner"
    level = LEVEL_ERROR
    _lock = threading.Lock()

    @classmethod
    def set_verbosity(cls, verbose: int) -> None:
        cls.level = max(LEVEL_ERROR, min(verbose, LEVEL_TRACE))

    @classmethod
    def enabled(cls, level: int) -> bool:
        return cls.level >= level

    @classmethod
    def trace(cls, *messages: str) -> None:
        if cls.enabled(LEVEL_TRACE):
            cls._write(sys.stdout, colorama.Fore.LIGHTBLACK_EX, *messages)

    @classmethod
    def debug(cls, *messages: str) -> None:
        if cls.enabled(LEVEL_DEBUG):
            cls._write(sys.stdout, colorama.Fore.LIGHTBLACK_EX, *messages)

    @classmethod
    def info(cls, *messages: str) -> None:
        if cls.enabled(LEVEL_INFO):
            cls._write(sys.stdout, colorama.Fore.CYAN, *messages)

    @classmethod
    def warn(cls, *messages: str) -> None:
        if cls.enabled(LEVEL_WARN):
            cls._write(sys.stdout, colorama.Fore.YELLOW, *messages)

    @classmethod
    def error(cls, *messages: str) -> None:
        cls._write(sys.stderr, colorama.Fore.RED, *messages)

    @classmethod
    def result(cls, *messages: str) -> None:
        """Report lines (dry-run listing, run summary), printed at any verbosity."""
        cls._write(sys.stdout, colorama.Fore.GREEN, *messages)

    @classmethod
    def security_event(cls, event_type: str, details: str) -> None:
        """Log security events with appropriate sanitization."""
        if not cls.enabled(LEVEL_DEBUG):
            return
        timestamp = time.strftime("%Y-%m-%d %H:%M:%S")
        cls._write(
            sys.stderr,
            colorama.Fore.MAGENTA,
            f"[SECURITY:{event_type}] {timestamp}: {details}",
        )

    @classmethod
    def _write(cls, stream, color: str, *messages: str) -> None:
        sanitized = [SecurityValidator.sanitize_for_logging(str(m)) for m in messages]
        line = cls._format_line(color, *sanitized)
        with cls._lock:
            stream.write(line + "\n")
            stream.flush()

    @classmethod
    def _get_header(cls) -> str:
        return f"[{cls.PROCESS_NAME}:{os.getpid()}]"

    @classmethod
    def _format_line(cls, color: str, *messages: str) -> str:
        header = cls._get_header()
        message = " ".join(messages)
        return f"{color}{header}{colorama.Style.RESET_ALL} {message}"
