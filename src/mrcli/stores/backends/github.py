"""GitHub repository object store backend.

Containers live in the ``<org>_discovery`` repository and are read and
written through the GitHub contents API. The API gives the compare-and-swap
semantics the lock layer relies on:

- ``PUT /contents/{path}`` with ``sha`` fails with 409 if the file changed.
- ``PUT /contents/{path}`` without ``sha`` fails with 422 if the file exists.
- ``DELETE /contents/{path}`` requires the current ``sha``.

Transient failures (network errors, 5xx) are retried with backoff; every
other HTTP error is mapped onto a ``StoreError`` subclass.
"""

from __future__ import annotations

import base64
import json
import logging
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass
from typing import Any, Callable

from mrcli.common.resilience import RetryConfig, RetryExhaustedError, RetryPolicy
from mrcli.result import Ok, Result
from mrcli.stores.base import (
    FileBlob,
    FileEntry,
    StoreConflictError,
    StoreConnectionError,
    StoreError,
    StoreNotFoundError,
    StorePermissionError,
    StoreReadError,
    WriteReceipt,
)
from mrcli.stores.concurrency._errors import store_err

logger = logging.getLogger(__name__)

API_URL = "https://api.github.com"


@dataclass
class GitHubConfig:
    """Configuration for the GitHub store.

    Attributes:
        org: Organization owning the discovery repository.
        token: Access token sent as ``Authorization: token ...``.
        repo: Repository name; defaults to ``<org>_discovery``.
        api_url: Base URL of the REST API.
        request_timeout: Socket timeout per request in seconds.
        default_branch: Main line branch.
    """

    org: str
    token: str
    repo: str | None = None
    api_url: str = API_URL
    request_timeout: float = 30.0
    default_branch: str = "main"

    @property
    def repo_name(self) -> str:
        return self.repo or f"{self.org}_discovery"


class GitHubObjectStore:
    """Object store backed by a GitHub repository.

    Example:
        >>> store = GitHubObjectStore(GitHubConfig(org="acme", token="..."))
        >>> blob = store.read_file("Companies/Companies.json")
        >>> json.loads(blob.text())
    """

    name = "github"

    def __init__(
        self,
        config: GitHubConfig,
        retry: RetryPolicy | None = None,
        urlopen: Callable[..., Any] = urllib.request.urlopen,
    ) -> None:
        self._config = config
        self._retry = retry or RetryPolicy(
            RetryConfig(
                max_attempts=3,
                base_delay=0.5,
                retryable_exceptions=(StoreConnectionError,),
            )
        )
        self._urlopen = urlopen

    @property
    def config(self) -> GitHubConfig:
        return self._config

    @property
    def default_branch(self) -> str:
        return self._config.default_branch

    # -------------------------------------------------------------------------
    # HTTP plumbing
    # -------------------------------------------------------------------------

    def _repo_url(self, suffix: str) -> str:
        return f"{self._config.api_url}/repos/{self._config.org}/{self._config.repo_name}/{suffix}"

    def _contents_url(self, path: str, ref: str | None = None) -> str:
        url = self._repo_url(f"contents/{urllib.parse.quote(path)}")
        if ref:
            url += "?" + urllib.parse.urlencode({"ref": ref})
        return url

    def _send(self, method: str, url: str, payload: dict[str, Any] | None) -> Any:
        data = json.dumps(payload).encode("utf-8") if payload is not None else None
        request = urllib.request.Request(
            url,
            data=data,
            method=method,
            headers={
                "Accept": "application/vnd.github.v3+json",
                "Authorization": f"token {self._config.token}",
                "Content-Type": "application/json",
            },
        )
        try:
            with self._urlopen(request, timeout=self._config.request_timeout) as response:
                body = response.read()
        except urllib.error.HTTPError as e:
            if e.code >= 500:
                raise StoreConnectionError(self.name, f"HTTP {e.code} from {url}") from e
            raise
        except urllib.error.URLError as e:
            raise StoreConnectionError(self.name, f"Network error: {e.reason}") from e
        return json.loads(body) if body else None

    def _request(
        self,
        method: str,
        url: str,
        payload: dict[str, Any] | None = None,
    ) -> Any:
        """Send a request, retrying transient failures.

        Raises:
            urllib.error.HTTPError: For 4xx responses, left to the caller to map.
            StoreConnectionError: When retries are exhausted.
        """
        try:
            return self._retry.execute(self._send, method, url, payload)
        except RetryExhaustedError as e:
            raise StoreConnectionError(
                self.name, f"{method} {url} failed after {e.attempts} attempts"
            ) from e.last_error

    @staticmethod
    def _error_message(error: urllib.error.HTTPError) -> str:
        try:
            return json.loads(error.read().decode()).get("message", error.reason)
        except (ValueError, AttributeError, OSError):
            return str(error.reason)

    def _map_error(
        self,
        error: urllib.error.HTTPError,
        path: str,
        sha: str | None = None,
    ) -> StoreError:
        message = self._error_message(error)
        if error.code == 404:
            return StoreNotFoundError("File", path)
        if error.code in (409, 422):
            return StoreConflictError(path, sha)
        if error.code in (401, 403):
            return StorePermissionError(f"{error.code} on {path}: {message}")
        return StoreError(f"HTTP {error.code} on {path}: {message}")

    # -------------------------------------------------------------------------
    # ObjectStoreBackend
    # -------------------------------------------------------------------------

    def get_branch_sha(self, branch: str) -> str:
        try:
            data = self._request("GET", self._repo_url(f"commits/{urllib.parse.quote(branch)}"))
        except urllib.error.HTTPError as e:
            if e.code in (404, 422):
                raise StoreNotFoundError("Branch", branch) from e
            raise self._map_error(e, branch) from e
        return data["sha"]

    def read_file(self, path: str, ref: str | None = None) -> FileBlob:
        try:
            data = self._request("GET", self._contents_url(path, ref))
        except urllib.error.HTTPError as e:
            raise self._map_error(e, path) from e
        if isinstance(data, list) or data.get("type") != "file":
            raise StoreNotFoundError("File", path)
        if data.get("encoding") == "none" or (data.get("size") and not data.get("content")):
            # Files over 1 MB come back without inline content.
            content = self._read_blob(data["sha"], path)
        else:
            content = base64.b64decode(data.get("content") or b"")
        return FileBlob(path=data["path"], content=content, sha=data["sha"])

    def _read_blob(self, sha: str, path: str) -> bytes:
        """Fetch file bytes through the git data API."""
        try:
            data = self._request("GET", self._repo_url(f"git/blobs/{sha}"))
        except urllib.error.HTTPError as e:
            if e.code == 404:
                raise StoreReadError(f"Blob {sha[:7]} of {path} is missing") from e
            raise self._map_error(e, path) from e
        if data.get("encoding") != "base64" or (data.get("size") and not data.get("content")):
            raise StoreReadError(f"Blob {sha[:7]} of {path} came back without content")
        return base64.b64decode(data["content"])

    def list_directory(self, path: str, ref: str | None = None) -> list[FileEntry]:
        try:
            data = self._request("GET", self._contents_url(path, ref))
        except urllib.error.HTTPError as e:
            if e.code == 404:
                return []
            raise self._map_error(e, path) from e
        if not isinstance(data, list):
            return []
        return [
            FileEntry(path=item["path"], sha=item["sha"], type=item.get("type", "file"))
            for item in data
        ]

    def write_file(
        self,
        path: str,
        content: bytes,
        message: str,
        branch: str,
        sha: str | None = None,
    ) -> WriteReceipt:
        payload: dict[str, Any] = {
            "message": message,
            "content": base64.b64encode(content).decode("ascii"),
            "branch": branch,
        }
        if sha:
            payload["sha"] = sha
        try:
            data = self._request("PUT", self._contents_url(path), payload)
        except urllib.error.HTTPError as e:
            raise self._map_error(e, path, sha) from e
        return WriteReceipt(
            path=path,
            sha=data["content"]["sha"],
            commit_sha=data["commit"]["sha"],
        )

    def delete_file(self, path: str, message: str, branch: str, sha: str) -> str:
        payload = {"message": message, "sha": sha, "branch": branch}
        try:
            data = self._request("DELETE", self._contents_url(path), payload)
        except urllib.error.HTTPError as e:
            raise self._map_error(e, path, sha) from e
        return data["commit"]["sha"]

    # -------------------------------------------------------------------------
    # Repository management
    # -------------------------------------------------------------------------

    def ensure_repository(self) -> bool:
        """Create the discovery repository if it does not exist.

        Returns:
            True if the repository was created, False if it already existed.
        """
        try:
            self._request("GET", self._repo_url("").rstrip("/"))
            return False
        except urllib.error.HTTPError as e:
            if e.code != 404:
                raise self._map_error(e, self._config.repo_name) from e

        url = f"{self._config.api_url}/orgs/{self._config.org}/repos"
        payload = {
            "name": self._config.repo_name,
            "description": "A repository for all of the mediumroast.io application assets.",
            "private": True,
            "auto_init": True,
        }
        try:
            self._request("POST", url, payload)
        except urllib.error.HTTPError as e:
            raise self._map_error(e, self._config.repo_name) from e
        logger.info("Created repository %s/%s", self._config.org, self._config.repo_name)
        return True

    # -------------------------------------------------------------------------
    # Platform queries
    # -------------------------------------------------------------------------

    def _query(self, url: str, subject: str) -> Result[Any]:
        try:
            data = self._request("GET", url)
        except urllib.error.HTTPError as e:
            return store_err(self._map_error(e, subject), f"Unable to capture {subject}")
        except StoreError as e:
            return store_err(e, f"Unable to capture {subject}")
        return Ok(data, f"Captured {subject}")

    def get_user(self) -> Result[dict[str, Any]]:
        """The user the access token belongs to."""
        return self._query(f"{self._config.api_url}/user", "current user info")

    def get_all_users(self) -> Result[list[dict[str, Any]]]:
        """Every collaborator on the discovery repository."""
        url = self._repo_url("collaborators") + "?" + urllib.parse.urlencode({"affiliation": "all"})
        return self._query(url, "info for all users")

    def get_actions_billing(self) -> Result[dict[str, Any]]:
        """Actions minutes used by the organization in the billing cycle."""
        url = f"{self._config.api_url}/orgs/{self._config.org}/settings/billing/actions"
        return self._query(url, "actions billing")

    def get_storage_billing(self) -> Result[dict[str, Any]]:
        """Shared storage used by the organization in the billing cycle."""
        url = f"{self._config.api_url}/orgs/{self._config.org}/settings/billing/shared-storage"
        return self._query(url, "storage billing")
