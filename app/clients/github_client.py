"""GitHub API client -- repositories and the low-level git data API."""

import base64
import logging

import httpx
from cachetools import TTLCache

from app.errors import ConfigurationError, ConflictError, RemoteError

logger = logging.getLogger(__name__)

GITHUB_API_BASE = "https://api.github.com"

# GitHub limits repo descriptions to 350 chars and rejects control characters
_MAX_DESCRIPTION = 350


# ── Helpers ──────────────────────────────────────────────────────────────────


def _auth_headers(access_token: str) -> dict:
    """Return standard GitHub API auth headers."""
    return {
        "Authorization": f"Bearer {access_token}",
        "Accept": "application/vnd.github+json",
        "X-GitHub-Api-Version": "2022-11-28",
    }


def _error_message(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    msg = data.get("message", "GitHub API error")
    details = [e.get("message", "") for e in data.get("errors", []) if isinstance(e, dict)]
    details = [d for d in details if d]
    return f"{msg}: {'; '.join(details)}" if details else msg


def _check(response: httpx.Response, action: str) -> None:
    """Raise a domain error for any non-2xx response."""
    if response.status_code < 400:
        return
    message = _error_message(response)
    if response.status_code == 422 and "already exists" in message.lower():
        raise ConflictError(f"GitHub {action}: {message}")
    raise RemoteError(
        f"GitHub {action} failed ({response.status_code}): {message}",
        remote_status=response.status_code,
    )


def sanitize_description(description: str | None) -> str:
    safe_desc = (description or "").replace("\r", " ").replace("\n", " ")
    return safe_desc[:_MAX_DESCRIPTION]


class GitHubClient:
    """Token-authenticated GitHub REST client.

    One instance per process; share it across requests.  The
    authenticated identity is cached for five minutes to spare the rate
    limit during bulk operations.
    """

    def __init__(self, token: str, *, http: httpx.AsyncClient | None = None) -> None:
        if not token:
            raise ConfigurationError("GITHUB_TOKEN is not configured")
        self._token = token
        self._http = http or httpx.AsyncClient(base_url=GITHUB_API_BASE, timeout=30.0)
        self._identity_cache: TTLCache[str, dict] = TTLCache(maxsize=1, ttl=300)

    async def close(self) -> None:
        """Close the HTTP client.  Called during app shutdown."""
        await self._http.aclose()

    async def _request(self, method: str, path: str, action: str, **kwargs) -> httpx.Response:
        try:
            response = await self._http.request(
                method, path, headers=_auth_headers(self._token), **kwargs,
            )
        except httpx.TransportError as exc:
            raise RemoteError(f"GitHub {action}: {exc}") from exc
        _check(response, action)
        return response

    # ── identity / repositories ─────────────────────────────────────────

    async def get_authenticated_user(self) -> dict:
        """Fetch the authenticated account (``login``, ``id``)."""
        cached = self._identity_cache.get("me")
        if cached is not None:
            return cached
        response = await self._request("GET", "/user", "get user")
        data = response.json()
        user = {"login": data["login"], "id": data["id"]}
        self._identity_cache["me"] = user
        return user

    async def create_repo(
        self,
        name: str,
        *,
        description: str = "",
        private: bool = True,
    ) -> dict:
        """Create an auto-initialised repository for the authenticated user.

        Raises :class:`ConflictError` if the name is taken.
        """
        response = await self._request(
            "POST",
            "/user/repos",
            "create repo",
            json={
                "name": name,
                "description": sanitize_description(description),
                "private": private,
                "auto_init": True,
            },
        )
        return response.json()

    async def get_repo(self, owner: str, name: str) -> dict:
        response = await self._request("GET", f"/repos/{owner}/{name}", "get repo")
        return response.json()

    async def delete_repo(self, owner: str, name: str) -> bool:
        """Delete a repository.  Returns ``False`` if it was already gone."""
        try:
            await self._request("DELETE", f"/repos/{owner}/{name}", "delete repo")
        except RemoteError as exc:
            if exc.remote_status == 404:
                return False
            raise
        return True

    async def list_repos(self) -> list[dict]:
        """List repositories owned by the authenticated user (up to 500)."""
        repos: list[dict] = []
        page = 1
        per_page = 100
        while page <= 5:
            response = await self._request(
                "GET",
                "/user/repos",
                "list repos",
                params={"per_page": per_page, "page": page, "affiliation": "owner"},
            )
            data = response.json()
            repos.extend(data)
            if len(data) < per_page:
                break
            page += 1
        return repos

    # ── git data API ────────────────────────────────────────────────────

    async def get_ref(self, owner: str, name: str, ref: str) -> dict:
        """Resolve ``heads/<branch>`` to ``{"ref": ..., "object": {"sha": ...}}``."""
        response = await self._request(
            "GET", f"/repos/{owner}/{name}/git/ref/{ref}", "get ref",
        )
        return response.json()

    async def get_commit(self, owner: str, name: str, sha: str) -> dict:
        response = await self._request(
            "GET", f"/repos/{owner}/{name}/git/commits/{sha}", "get commit",
        )
        return response.json()

    async def create_blob(self, owner: str, name: str, content: str) -> str:
        """Upload *content* as a base64 blob and return its SHA."""
        encoded = base64.b64encode(content.encode("utf-8")).decode("ascii")
        response = await self._request(
            "POST",
            f"/repos/{owner}/{name}/git/blobs",
            "create blob",
            json={"content": encoded, "encoding": "base64"},
        )
        return response.json()["sha"]

    async def create_tree(
        self,
        owner: str,
        name: str,
        entries: list[dict],
        *,
        base_tree: str | None = None,
    ) -> str:
        body: dict = {"tree": entries}
        if base_tree:
            body["base_tree"] = base_tree
        response = await self._request(
            "POST", f"/repos/{owner}/{name}/git/trees", "create tree", json=body,
        )
        return response.json()["sha"]

    async def create_commit(
        self,
        owner: str,
        name: str,
        message: str,
        tree: str,
        parents: list[str],
    ) -> str:
        response = await self._request(
            "POST",
            f"/repos/{owner}/{name}/git/commits",
            "create commit",
            json={"message": message, "tree": tree, "parents": parents},
        )
        return response.json()["sha"]

    async def update_ref(self, owner: str, name: str, ref: str, sha: str) -> None:
        """Move ``heads/<branch>`` to *sha* (fast-forward only)."""
        await self._request(
            "PATCH",
            f"/repos/{owner}/{name}/git/refs/{ref}",
            "update ref",
            json={"sha": sha, "force": False},
        )
