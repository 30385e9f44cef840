#!/usr/bin/env python3
"""
GitLab Cloner - Mirror every repository visible to a user on a GitLab
instance into a local directory tree and/or a group on a backup GitLab
instance.

Projects are discovered through the GitLab API, optionally filtered by
include or exclude regular expressions, and mirrored concurrently with
git clone --mirror and git push over HTTPS or SSH.

Copyright (c) 2025 Michele Tavella <meeghele@proton.me>
Licensed under the MIT License. See LICENSE file for details.

Author: Michele Tavella <meeghele@proton.me>
License: MIT
"""

from __future__ import annotations

import sys
from typing import NoReturn

from argument_parser import parse_arguments
from clone_orchestrator import print_report, run
from errors import AuthenticationError, ListingError
from logging_utils import Logger

# Exit codes
EXIT_EXECUTION_ERROR = 1
EXIT_GITLAB_ERROR = 30
EXIT_AUTH_ERROR = 40


def main() -> NoReturn:
    if __name__ != "__main__":
        sys.exit(EXIT_EXECUTION_ERROR)

    params = parse_arguments()
    try:
        summary = run(params)
    except AuthenticationError as e:
        Logger.error(str(e))
        sys.exit(EXIT_AUTH_ERROR)
    except ListingError as e:
        Logger.error(str(e))
        sys.exit(EXIT_GITLAB_ERROR)
    except KeyboardInterrupt:
        Logger.error("aborted")
        sys.exit(EXIT_EXECUTION_ERROR)

    print_report(summary)
    sys.exit(summary.exit_code)


if __name__ == "__main__":
    main()
