"""Capability ports the pipeline depends on.

The concrete clients in this package (Anthropic, GitHub, Vercel) satisfy
these protocols; tests substitute in-memory fakes.
"""

from typing import Protocol


class CompletionPort(Protocol):
    """An LLM text-completion service."""

    async def complete(
        self,
        prompt: str,
        max_tokens: int,
        system_prompt: str | None = None,
    ) -> str: ...


class SourceHostPort(Protocol):
    """A git hosting service reachable through a low-level git data API.

    Every method raises :class:`app.errors.RemoteError` on failure and
    :class:`app.errors.ConflictError` when a created resource exists.
    """

    async def get_authenticated_user(self) -> dict: ...

    async def create_repo(
        self, name: str, *, description: str = "", private: bool = True,
    ) -> dict: ...

    async def get_repo(self, owner: str, name: str) -> dict: ...

    async def get_ref(self, owner: str, name: str, ref: str) -> dict: ...

    async def get_commit(self, owner: str, name: str, sha: str) -> dict: ...

    async def create_blob(self, owner: str, name: str, content: str) -> str: ...

    async def create_tree(
        self, owner: str, name: str, entries: list[dict], *, base_tree: str | None = None,
    ) -> str: ...

    async def create_commit(
        self, owner: str, name: str, message: str, tree: str, parents: list[str],
    ) -> str: ...

    async def update_ref(self, owner: str, name: str, ref: str, sha: str) -> None: ...

    async def delete_repo(self, owner: str, name: str) -> bool: ...

    async def list_repos(self) -> list[dict]: ...


class DeployHostPort(Protocol):
    """A hosting platform that builds projects from a git repository."""

    async def create_project(
        self, name: str, *, repo: str, env: dict[str, str] | None = None,
    ) -> dict: ...

    async def get_project(self, name: str) -> dict: ...

    async def trigger_deployment(
        self, project: str, *, repo_id: int, ref: str = "main",
    ) -> dict: ...

    async def get_deployment(self, deployment_id: str) -> dict: ...

    async def get_deployment_events(self, deployment_id: str) -> object: ...

    async def delete_project(self, name: str) -> bool: ...

    async def list_projects(self, *, search: str | None = None) -> list[dict]: ...
