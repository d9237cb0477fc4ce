"""Vercel API client -- projects, deployments and build events."""

import logging

import httpx

from app.errors import ConfigurationError, ConflictError, RemoteError

logger = logging.getLogger(__name__)

VERCEL_API_BASE = "https://api.vercel.com"

_ENV_TARGETS = ["production", "preview", "development"]


def _error_message(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    error = data.get("error") if isinstance(data, dict) else None
    if isinstance(error, dict):
        return error.get("message") or error.get("code") or "Vercel API error"
    return str(data)[:300]


def _check(response: httpx.Response, action: str) -> None:
    if response.status_code < 400:
        return
    message = _error_message(response)
    if response.status_code == 409:
        raise ConflictError(f"Vercel {action}: {message}")
    raise RemoteError(
        f"Vercel {action} failed ({response.status_code}): {message}",
        remote_status=response.status_code,
    )


class VercelClient:
    """Bearer-token Vercel REST client, optionally scoped to a team."""

    def __init__(
        self,
        token: str,
        *,
        team_id: str = "",
        http: httpx.AsyncClient | None = None,
    ) -> None:
        if not token:
            raise ConfigurationError("VERCEL_TOKEN is not configured")
        self._token = token
        self._team_id = team_id
        self._http = http or httpx.AsyncClient(base_url=VERCEL_API_BASE, timeout=30.0)

    async def close(self) -> None:
        await self._http.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        action: str,
        *,
        params: dict | None = None,
        **kwargs,
    ) -> httpx.Response:
        query = dict(params or {})
        if self._team_id:
            query["teamId"] = self._team_id
        try:
            response = await self._http.request(
                method,
                path,
                params=query or None,
                headers={
                    "Authorization": f"Bearer {self._token}",
                    "Content-Type": "application/json",
                },
                **kwargs,
            )
        except httpx.TransportError as exc:
            raise RemoteError(f"Vercel {action}: {exc}") from exc
        _check(response, action)
        return response

    # ── projects ────────────────────────────────────────────────────────

    async def create_project(
        self,
        name: str,
        *,
        repo: str,
        env: dict[str, str] | None = None,
    ) -> dict:
        """Create a Next.js project bound to GitHub repository ``owner/name``.

        Raises :class:`ConflictError` if the project already exists.
        """
        body: dict = {
            "name": name,
            "framework": "nextjs",
            "gitRepository": {"type": "github", "repo": repo},
        }
        if env:
            body["environmentVariables"] = [
                {"key": key, "value": value, "type": "plain", "target": _ENV_TARGETS}
                for key, value in env.items()
            ]
        response = await self._request("POST", "/v9/projects", "create project", json=body)
        return response.json()

    async def get_project(self, name: str) -> dict:
        response = await self._request("GET", f"/v9/projects/{name}", "get project")
        return response.json()

    async def delete_project(self, name: str) -> bool:
        """Delete a project.  Returns ``False`` if it was already gone."""
        try:
            await self._request("DELETE", f"/v9/projects/{name}", "delete project")
        except RemoteError as exc:
            if exc.remote_status == 404:
                return False
            raise
        return True

    async def list_projects(self, *, search: str | None = None) -> list[dict]:
        """List every project, following ``pagination.next`` cursors."""
        projects: list[dict] = []
        cursor: int | None = None
        while True:
            params: dict = {"limit": 100}
            if search:
                params["search"] = search
            if cursor is not None:
                params["until"] = cursor
            response = await self._request("GET", "/v9/projects", "list projects", params=params)
            data = response.json()
            projects.extend(data.get("projects", []))
            cursor = (data.get("pagination") or {}).get("next")
            if not cursor:
                break
        return projects

    # ── deployments ─────────────────────────────────────────────────────

    async def trigger_deployment(
        self,
        project: str,
        *,
        repo_id: int,
        ref: str = "main",
    ) -> dict:
        """Start a production build of *ref* from the bound repository."""
        response = await self._request(
            "POST",
            "/v13/deployments",
            "trigger deployment",
            json={
                "name": project,
                "project": project,
                "target": "production",
                "gitSource": {"type": "github", "repoId": repo_id, "ref": ref},
            },
        )
        return response.json()

    async def get_deployment(self, deployment_id: str) -> dict:
        response = await self._request(
            "GET", f"/v13/deployments/{deployment_id}", "get deployment",
        )
        return response.json()

    async def get_deployment_events(self, deployment_id: str) -> object:
        """Raw build events.  The payload shape varies between API versions
        (bare list, ``{"events": [...]}`` or ``{"data": [...]}``)."""
        response = await self._request(
            "GET",
            f"/v2/deployments/{deployment_id}/events",
            "get deployment events",
            params={"builds": 1, "direction": "forward"},
        )
        return response.json()
