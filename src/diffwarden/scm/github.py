"""
GitHub Client

SourceControl implementation over the GitHub REST API (v3) with httpx.
"""

import base64
import re
from typing import Any

import httpx
import structlog

from diffwarden.errors import PublishError, SourceControlError
from diffwarden.utils.retry import RetryConfig, RetryPolicy

from .base import DiffEntry, DiffPage

logger = structlog.get_logger(__name__)

SHA_PATTERN = re.compile(r"^[0-9a-f]{40}$")


class GitHubClient:
    """
    GitHub REST client.

    Modified files carry ``<before_ref>:<path>`` as their before blob id,
    since the compare endpoint only reports the AFTER blob sha. That form is
    resolved through the contents API, real shas through the blobs API.
    """

    PER_PAGE = 100

    def __init__(
        self,
        token: str,
        api_url: str = "https://api.github.com",
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
        retry: RetryPolicy | None = None,
    ):
        """
        Initialize client.

        Args:
            token: Personal access or installation token
            api_url: API base URL (GitHub Enterprise uses its own)
            timeout: Request timeout in seconds
            client: Optional preconfigured HTTP client
            retry: Retry policy for requests
        """
        self.api_url = api_url.rstrip("/")
        self.headers = {
            "Authorization": f"Bearer {token}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }
        self.client = client or httpx.AsyncClient(timeout=timeout)
        self.retry = retry or RetryPolicy(RetryConfig(max_attempts=3))

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        url = f"{self.api_url}{path}"

        async def send() -> Any:
            try:
                response = await self.client.request(method, url, headers=self.headers, **kwargs)
            except httpx.HTTPError as e:
                raise SourceControlError(f"GitHub request failed: {e}") from e
            if response.status_code >= 400:
                raise SourceControlError(
                    f"GitHub {method} {path} returned {response.status_code}: {response.text[:300]}",
                    status_code=response.status_code,
                )
            if response.status_code == 204 or not response.content:
                return None
            return response.json()

        return await self.retry.execute(send)

    async def get_differences(
        self,
        repository: str,
        before_ref: str,
        after_ref: str,
        page_token: str | None = None,
    ) -> DiffPage:
        page = int(page_token) if page_token else 1
        data = await self._request(
            "GET",
            f"/repos/{repository}/compare/{before_ref}...{after_ref}",
            params={"page": page, "per_page": self.PER_PAGE},
        )
        files = data.get("files") or []

        entries: list[DiffEntry] = []
        for item in files:
            path = item["filename"]
            status = item.get("status", "modified")
            sha = item.get("sha")
            if status == "added" or status == "copied":
                entries.append(DiffEntry(path=path, after_blob_id=sha))
            elif status == "removed":
                entries.append(DiffEntry(path=path, before_blob_id=sha or f"{before_ref}:{path}"))
            elif status == "renamed":
                previous = item.get("previous_filename", path)
                entries.append(DiffEntry(path=previous, before_blob_id=f"{before_ref}:{previous}"))
                entries.append(DiffEntry(path=path, after_blob_id=sha))
            elif status == "unchanged":
                continue
            else:
                entries.append(
                    DiffEntry(path=path, before_blob_id=f"{before_ref}:{path}", after_blob_id=sha)
                )

        next_token = str(page + 1) if len(files) >= self.PER_PAGE else None
        return DiffPage(entries=entries, next_token=next_token)

    async def get_file_content(
        self,
        repository: str,
        path: str,
        ref: str,
        blob_id: str | None = None,
    ) -> str:
        if blob_id and SHA_PATTERN.match(blob_id):
            data = await self._request("GET", f"/repos/{repository}/git/blobs/{blob_id}")
        else:
            data = await self._request("GET", f"/repos/{repository}/contents/{path}", params={"ref": ref})

        if not isinstance(data, dict) or "content" not in data:
            raise SourceControlError(f"No content returned for {path}")
        if data.get("encoding", "base64") != "base64":
            return data["content"]
        return base64.b64decode(data["content"]).decode("utf-8", errors="replace")

    async def list_pull_request_files(self, repository: str, number: int) -> list[str]:
        paths: list[str] = []
        page = 1
        while True:
            data = await self._request(
                "GET",
                f"/repos/{repository}/pulls/{number}/files",
                params={"page": page, "per_page": self.PER_PAGE},
            )
            paths.extend(item["filename"] for item in data or [])
            if not data or len(data) < self.PER_PAGE:
                return paths
            page += 1

    async def list_tree(self, repository: str, ref: str) -> list[str]:
        data = await self._request(
            "GET", f"/repos/{repository}/git/trees/{ref}", params={"recursive": "1"}
        )
        if data.get("truncated"):
            logger.warning("Repository tree truncated by GitHub", repository=repository, ref=ref)
        return [item["path"] for item in data.get("tree", []) if item.get("type") == "blob"]

    async def post_comment(
        self,
        repository: str,
        number: int,
        commit_id: str,
        path: str,
        line: int,
        body: str,
    ) -> None:
        try:
            await self._request(
                "POST",
                f"/repos/{repository}/pulls/{number}/comments",
                json={
                    "body": body,
                    "commit_id": commit_id,
                    "path": path,
                    "line": line,
                    "side": "RIGHT",
                },
            )
        except SourceControlError as e:
            raise PublishError(str(e), path=path, line=line) from e
