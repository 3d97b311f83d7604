"""GitHub Contents API client for a single JSON document.

Reads and writes one file in one repository.  The file's blob SHA is the
optimistic-concurrency token: GitHub rejects a PUT whose ``sha`` does not
match the current blob with 409 (or 422 when the sha is missing for an
existing file).

API docs: https://docs.github.com/en/rest/repos/contents
"""

from __future__ import annotations

import base64
import binascii
import logging
from dataclasses import dataclass

import httpx

from src.config import Settings, get_settings
from src.tracker.base import (
    ConflictError,
    RecordNotFoundError,
    RecordValidationError,
    TransientError,
)

logger = logging.getLogger("releaseboard.github")

_ACCEPT = "application/vnd.github.v3+json"


@dataclass
class RepoFile:
    """Decoded file contents plus the blob SHA."""

    content: str
    sha: str


class GitHubContentsClient:
    """Async client for ``/repos/{owner}/{repo}/contents/{path}``.

    Usage::

        client = GitHubContentsClient.from_settings(get_settings())
        current = await client.get_file()
        new_sha = await client.put_file(text, current.sha, "Update apps.json")
        await client.aclose()
    """

    def __init__(
        self,
        owner: str,
        repo: str,
        path: str,
        token: str,
        branch: str | None = None,
        api_url: str = "https://api.github.com",
        timeout: float = 15.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            owner:       Repository owner.
            repo:        Repository name.
            path:        File path inside the repository.
            token:       Personal access token with contents scope.
            branch:      Branch to read/write (None = default branch).
            api_url:     API base URL (GitHub Enterprise override).
            timeout:     Request timeout in seconds.
            http_client: Optional pre-configured httpx client (for testing).
        """
        if not token:
            raise ValueError("A GitHub token is required for the github backend")
        self._url = f"{api_url.rstrip('/')}/repos/{owner}/{repo}/contents/{path}"
        self._path = path
        self._branch = branch
        self._headers = {
            "Authorization": f"Bearer {token}",
            "Accept": _ACCEPT,
        }
        self._owns_client = http_client is None
        self._http_client = http_client or httpx.AsyncClient(timeout=timeout)

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "GitHubContentsClient":
        s = settings or get_settings()
        return cls(
            owner=s.github_repo_owner,
            repo=s.github_repo_name,
            path=s.github_file_path,
            token=s.github_token,
            branch=s.github_branch,
            api_url=s.github_api_url,
            timeout=s.github_timeout_seconds,
        )

    @property
    def path(self) -> str:
        return self._path

    async def get_file(self) -> RepoFile:
        """Fetch and decode the file.

        Raises:
            RecordNotFoundError:   The file does not exist (404).
            RecordValidationError: The payload is not base64-encoded UTF-8.
            TransientError:        Any other HTTP or network failure.
        """
        params = {"ref": self._branch} if self._branch else None
        try:
            response = await self._http_client.get(
                self._url, headers=self._headers, params=params
            )
        except httpx.HTTPError as exc:
            raise TransientError(f"GitHub request failed: {exc}") from exc

        if response.status_code == 404:
            raise RecordNotFoundError(f"{self._path} not found in repository")
        if response.is_error:
            raise TransientError(f"GitHub API error: {response.status_code}")

        try:
            data = response.json()
            content = base64.b64decode(data.get("content", "")).decode("utf-8")
            sha = data["sha"]
        except (binascii.Error, UnicodeDecodeError, ValueError, KeyError, AttributeError) as exc:
            raise RecordValidationError(f"{self._path} payload could not be decoded: {exc}") from exc
        logger.debug("Fetched %s (sha=%s, %d bytes)", self._path, sha, len(content))
        return RepoFile(content=content, sha=sha)

    async def put_file(self, content: str, sha: str | None, message: str) -> str:
        """Create or replace the file and return the new blob SHA.

        Args:
            content: Full UTF-8 file contents.
            sha:     Blob SHA the edit is based on (None to create).
            message: Commit message.

        Raises:
            ConflictError:  The SHA is stale (409) or missing (422).
            TransientError: Any other HTTP or network failure.
        """
        body: dict = {
            "message": message,
            "content": base64.b64encode(content.encode("utf-8")).decode("ascii"),
        }
        if sha:
            body["sha"] = sha
        if self._branch:
            body["branch"] = self._branch

        try:
            response = await self._http_client.put(
                self._url, headers=self._headers, json=body
            )
        except httpx.HTTPError as exc:
            raise TransientError(f"GitHub request failed: {exc}") from exc

        if response.status_code in (409, 422):
            raise ConflictError(
                f"{self._path} changed on GitHub (status {response.status_code})"
            )
        if response.is_error:
            logger.error("Failed to save %s: %s", self._path, response.text)
            raise TransientError(f"GitHub API error: {response.status_code}")

        new_sha = response.json()["content"]["sha"]
        logger.info("Saved %s (sha %s → %s)", self._path, sha, new_sha)
        return new_sha

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http_client.aclose()
