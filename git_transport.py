#!/usr/bin/env python3
"""git subprocess wrapper: mirror clone/update and mirror push, over HTTPS
with token credentials or over SSH with a pre-authorized key."""

from __future__ import annotations

import os
import subprocess
import tempfile
from typing import Dict, List, Optional, Sequence

from config import CloneMethod
from errors import GitTransportError
from logging_utils import Logger
from security import SecurityValidator

HTTPS_USERNAME = "oauth2"

# GitLab rejects pushes to its hidden refs (refs/merge-requests and others)
PUSH_REFSPECS = ("+refs/heads/*:refs/heads/*", "+refs/tags/*:refs/tags/*")

# Reads the credentials from the environment so they never land on disk
ASKPASS_SCRIPT = """#!/bin/sh
case "$1" in
  *Username*) printf '%s\\n' "$GITLAB_CLONER_USERNAME" ;;
  *Password*) printf '%s\\n' "$GITLAB_CLONER_PASSWORD" ;;
  *) exit 1 ;;
esac
"""


class GitTransport:
    """Runs git for one run; stateless apart from its settings, so workers
    share a single instance."""

    def __init__(self, timeout_s: float, secrets: Sequence[str] = ()) -> None:
        self.timeout_s = timeout_s
        self.secrets = tuple(secrets)

    @staticmethod
    def is_mirror(local_path: str) -> bool:
        return os.path.isfile(os.path.join(local_path, "HEAD")) and os.path.isdir(
            os.path.join(local_path, "objects")
        )

    def origin_url(self, local_path: str) -> Optional[str]:
        """Configured origin of an existing mirror, or None if unset."""
        try:
            result = subprocess.run(
                ["git", "config", "--get", "remote.origin.url"],
                cwd=local_path,
                check=False,
                capture_output=True,
                text=True,
                timeout=30,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            raise GitTransportError(
                f"cannot inspect mirror at {local_path}: {e}", "FETCHING"
            ) from e
        url = result.stdout.strip()
        return url or None

    def clone_or_update(
        self,
        source_url: str,
        method: CloneMethod,
        local_path: str,
        token: Optional[str],
    ) -> bool:
        """Make `local_path` a current mirror of `source_url`.

        Clones when there is no mirror yet, otherwise fetches into the
        existing one. Returns True when any ref was created, moved or removed.
        """
        if not source_url:
            raise GitTransportError(f"no {method.value} clone URL available", "FETCHING")

        if os.path.exists(local_path) and not self._is_empty_dir(local_path):
            if not self.is_mirror(local_path):
                raise GitTransportError(
                    f"destination exists and is not a git mirror: {local_path}",
                    "FETCHING",
                )
            Logger.debug(f"updating mirror: {local_path}")
            before = self._refs(local_path)
            self._git(["remote", "set-url", "origin", source_url], local_path, "FETCHING")
            self._git(
                ["remote", "update", "--prune"],
                local_path,
                "FETCHING",
                method=method,
                token=token,
            )
            return self._refs(local_path) != before

        Logger.debug(f"cloning mirror: {local_path}")
        try:
            os.makedirs(os.path.dirname(os.path.abspath(local_path)), exist_ok=True)
        except OSError as e:
            raise GitTransportError(
                f"cannot create parent directory for {local_path}: {e}", "FETCHING"
            ) from e
        self._git(
            ["clone", "--mirror", source_url, local_path],
            None,
            "FETCHING",
            method=method,
            token=token,
        )
        return True

    def mirror_push(
        self,
        local_path: str,
        dest_url: str,
        method: CloneMethod,
        token: Optional[str],
    ) -> bool:
        """Push all branches and tags of the mirror to `dest_url`.

        Branches and tags deleted from the mirror are pruned on the
        destination. Returns False when git reports it already up to date.
        """
        if not dest_url:
            raise GitTransportError(f"no {method.value} push URL available", "PUSHING")

        result = self._git(
            ["push", "--prune", dest_url, *PUSH_REFSPECS],
            local_path,
            "PUSHING",
            method=method,
            token=token,
        )
        output = f"{result.stdout}\n{result.stderr}"
        return "Everything up-to-date" not in output

    def _refs(self, local_path: str) -> str:
        result = self._git(
            ["for-each-ref", "--format=%(objectname) %(refname)"],
            local_path,
            "FETCHING",
        )
        return result.stdout

    @staticmethod
    def _is_empty_dir(path: str) -> bool:
        return os.path.isdir(path) and not os.listdir(path)

    def _git(
        self,
        args: List[str],
        cwd: Optional[str],
        stage: str,
        method: Optional[CloneMethod] = None,
        token: Optional[str] = None,
    ) -> subprocess.CompletedProcess:
        command = ["git", *args]
        env = os.environ.copy()
        env["GIT_TERMINAL_PROMPT"] = "0"
        askpass_script: Optional[str] = None
        try:
            if method == CloneMethod.HTTPS and token:
                askpass_script = self._create_askpass_script()
                env.update(self._askpass_env(askpass_script, token))
            elif method == CloneMethod.SSH:
                env.setdefault("GIT_SSH_COMMAND", "ssh -o BatchMode=yes")
            Logger.trace(f"running: {' '.join(command)}")
            return subprocess.run(
                command,
                cwd=cwd,
                check=True,
                capture_output=True,
                text=True,
                timeout=self.timeout_s,
                env=env,
            )
        except subprocess.TimeoutExpired as e:
            Logger.security_event("GIT_TIMEOUT", f"git {args[0]} timed out")
            raise GitTransportError(
                f"git {args[0]} timed out after {self.timeout_s:.0f}s", stage
            ) from e
        except subprocess.CalledProcessError as e:
            detail = (e.stderr or e.stdout or "").strip()
            safe = SecurityValidator.redact(detail, self.secrets)
            raise GitTransportError(
                f"git {args[0]} failed ({e.returncode}): {safe}", stage
            ) from e
        except OSError as e:
            raise GitTransportError(
                f"git {args[0]} could not run: {SecurityValidator.redact(str(e), self.secrets)}",
                stage,
            ) from e
        finally:
            self._cleanup_askpass_script(askpass_script)

    @staticmethod
    def _askpass_env(script: str, token: str) -> Dict[str, str]:
        return {
            "GIT_ASKPASS": script,
            "GITLAB_CLONER_USERNAME": HTTPS_USERNAME,
            "GITLAB_CLONER_PASSWORD": token,
        }

    @staticmethod
    def _create_askpass_script() -> str:
        """Write the askpass helper to a private temporary file."""
        fd, path = tempfile.mkstemp(prefix="gitlab_cloner_askpass_", text=True)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as script:
                script.write(ASKPASS_SCRIPT)
            os.chmod(path, 0o700)
        except OSError:
            os.unlink(path)
            raise
        Logger.security_event("ASKPASS_CREATED", "temporary credential helper created")
        return path

    @staticmethod
    def _cleanup_askpass_script(path: Optional[str]) -> None:
        if not path:
            return
        try:
            if os.path.exists(path):
                os.remove(path)
        except OSError as error:
            Logger.warn(f"failed to clean up temporary credential helper: {error}")
