#!/usr/bin/env python3
"""GitLab API wrapper for discovering the projects visible to a user."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterator, Optional

import gitlab
import requests

from config import DEFAULT_OBJECTS_PER_PAGE, GitLabCredentials
from errors import AuthenticationError, ListingError
from logging_utils import Logger
from security import SecurityValidator
from utils import RateLimiter, split_namespace


@dataclass(frozen=True)
class ProjectDescriptor:
    """Immutable view of one source project, as listed by the API."""
    id: int
    path_with_namespace: str
    name: str
    path: str
    ssh_url_to_repo: str
    http_url_to_repo: str
    default_branch: Optional[str] = None
    visibility: str = "private"
    description: str = ""
    empty_repo: bool = False

    @property
    def namespace(self) -> str:
        return split_namespace(self.path_with_namespace)[0]

    @classmethod
    def from_api(cls, project: Any) -> "ProjectDescriptor":
        path_ns = getattr(project, "path_with_namespace", "")
        leaf = getattr(project, "path", None) or split_namespace(path_ns)[1]
        return cls(
            id=getattr(project, "id"),
            path_with_namespace=path_ns,
            name=getattr(project, "name", None) or leaf,
            path=leaf,
            ssh_url_to_repo=getattr(project, "ssh_url_to_repo", ""),
            http_url_to_repo=getattr(project, "http_url_to_repo", ""),
            default_branch=getattr(project, "default_branch", None),
            visibility=getattr(project, "visibility", "private") or "private",
            description=getattr(project, "description", None) or "",
            empty_repo=bool(getattr(project, "empty_repo", False)),
        )


class GitLabSource:
    """Wrapper around the fetch GitLab API to enumerate projects."""

    def __init__(self, credentials: GitLabCredentials) -> None:
        self.url = credentials.url
        self.token = credentials.token
        self.api: Optional[gitlab.Gitlab] = None
        self.rate_limiter = RateLimiter("fetch GitLab API")

    def connect(self) -> None:
        Logger.info(f"init fetch gitlab API: {self.url}")
        try:
            self.api = gitlab.Gitlab(url=self.url, private_token=self.token)
            self.rate_limiter.wait_if_needed()
            self.api.auth()
        except gitlab.exceptions.GitlabAuthenticationError as e:
            raise AuthenticationError(
                f"authentication error (fetch gitlab): {self._safe(e)}"
            ) from e
        except (gitlab.exceptions.GitlabError, requests.RequestException) as e:
            raise ListingError(
                f"failed to initialize fetch gitlab API: {self._safe(e)}"
            ) from e
        user = getattr(self.api, "user", None)
        if user is not None:
            Logger.debug(f"authenticated as: {getattr(user, 'username', '?')}")

    def iter_projects(
        self,
        per_page: Optional[int] = None,
        limit: Optional[int] = None,
        only_owned: bool = False,
        only_membership: bool = False,
    ) -> Iterator[ProjectDescriptor]:
        """Lazily yield every visible project, page by page.

        Stops when the API reports no further page or `limit` descriptors
        have been yielded. Any failed page request raises ListingError.
        """
        if self.api is None:
            raise ListingError("fetch gitlab API not initialized")

        if limit is not None and limit <= 0:
            Logger.info("project limit is 0, nothing to list")
            return

        query = self._build_query(per_page, only_owned, only_membership)
        Logger.info(f"discovering projects on: {self.url}")
        Logger.debug(f"project list query: {query}")

        count = 0
        try:
            self.rate_limiter.wait_if_needed()
            pages = self.api.projects.list(iterator=True, **query)
            for project in pages:
                descriptor = ProjectDescriptor.from_api(project)
                Logger.trace(f"found: {descriptor.path_with_namespace}")
                count += 1
                yield descriptor
                if limit is not None and count >= limit:
                    Logger.info(f"project limit of {limit} reached")
                    break
                if self._at_page_boundary(count, query["per_page"]):
                    self.rate_limiter.wait_if_needed()
        except gitlab.exceptions.GitlabAuthenticationError as e:
            raise AuthenticationError(
                f"authentication error while listing projects: {self._safe(e)}"
            ) from e
        except (gitlab.exceptions.GitlabError, requests.RequestException) as e:
            raise ListingError(
                f"failed to list projects after {count} results: {self._safe(e)}"
            ) from e

        Logger.info(f"listed {count} projects")

    @staticmethod
    def _build_query(
        per_page: Optional[int], only_owned: bool, only_membership: bool
    ) -> Dict[str, Any]:
        query: Dict[str, Any] = {
            "per_page": per_page or DEFAULT_OBJECTS_PER_PAGE,
            "order_by": "id",
            "sort": "asc",
        }
        if only_owned:
            query["owned"] = True
        if only_membership:
            query["membership"] = True
        return query

    @staticmethod
    def _at_page_boundary(count: int, per_page: int) -> bool:
        return count % per_page == 0

    def _safe(self, error: Exception) -> str:
        return SecurityValidator.redact(str(error), [self.token])
