"""Repository publisher — push a file set to the source host as one commit.

Blobs, then one tree, then one commit, then a single ref update.  The
branch only moves at the final step, so a failure anywhere earlier leaves
the repository exactly as it was.  Re-publishing the same identifier
reuses the repository and adds a commit.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

from app.clients.ports import SourceHostPort
from app.config import settings
from app.errors import ConflictError, RemoteError
from app.services.pipeline.models import FileSet, PublishResult, RemoteRepository
from app.services.pipeline.retry import (
    is_retryable,
    retry_not_found,
    run_with_timeout,
    with_retry,
)
from app.services.pipeline.scaffold import merge_with_scaffold

logger = logging.getLogger(__name__)

DEFAULT_COMMIT_MESSAGE = "Initial commit: Generated ERP app"
_BRANCH_CANDIDATES = ("main", "master")
_FILE_MODE = "100644"

Sleep = Callable[[float], Awaitable[None]]


def repo_name_for(identifier: str, prefix: str | None = None) -> str:
    """Deterministic repository name: prefix + first 8 chars of *identifier*."""
    prefix = settings.REPO_NAME_PREFIX if prefix is None else prefix
    return f"{prefix}{identifier.replace('-', '')[:8].lower()}"


class RepositoryPublisher:
    """Publishes file sets through a :class:`SourceHostPort`."""

    def __init__(
        self,
        host: SourceHostPort,
        *,
        timeout: float | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._host = host
        self.timeout = settings.PUBLISH_TIMEOUT_SECONDS if timeout is None else timeout
        self._sleep = sleep

    async def publish(
        self,
        identifier: str,
        files: FileSet,
        description: str = "",
        *,
        message: str | None = None,
    ) -> PublishResult:
        """Create-or-reuse the repository for *identifier* and commit *files*.

        Raises :class:`StageTimeoutError` if the whole sequence exceeds the
        publish ceiling; the repository may exist regardless.
        """
        name = repo_name_for(identifier)
        return await run_with_timeout(
            self._publish(name, files, description, message or DEFAULT_COMMIT_MESSAGE),
            self.timeout,
            stage="publish",
        )

    async def _publish(
        self,
        name: str,
        files: FileSet,
        description: str,
        message: str,
    ) -> PublishResult:
        user = await self._retry(self._host.get_authenticated_user, "get authenticated user")
        owner = user["login"]
        logger.info("[GITHUB] Publishing %s/%s", owner, name)

        repo = await self._ensure_repo(owner, name, description)
        all_files = merge_with_scaffold(files)

        branch, parent_sha = await self._resolve_tip(repo)
        parent = await self._retry(
            lambda: self._host.get_commit(owner, name, parent_sha), "get commit",
        )
        base_tree = parent["tree"]["sha"]

        entries: list[dict] = []
        for path, content in all_files.items():
            blob_sha = await self._retry(
                lambda c=content: self._host.create_blob(owner, name, c),
                f"create blob {path}",
                attempts=2,
                delay=0.5,
            )
            entries.append({"path": path, "mode": _FILE_MODE, "type": "blob", "sha": blob_sha})
        logger.info("[GITHUB] Created %d blob(s)", len(entries))

        tree_sha = await self._retry(
            lambda: self._host.create_tree(owner, name, entries, base_tree=base_tree),
            "create tree",
        )
        commit_sha = await self._retry(
            lambda: self._host.create_commit(owner, name, message, tree_sha, [parent_sha]),
            "create commit",
        )
        await self._retry(
            lambda: self._host.update_ref(owner, name, f"heads/{branch}", commit_sha),
            "update ref",
        )
        logger.info("[GITHUB] %s/%s@%s -> %s", owner, name, branch, commit_sha[:7])

        return PublishResult(
            repo_url=repo.html_url,
            repo_name=name,
            owner=owner,
            branch=branch,
            commit_sha=commit_sha,
        )

    async def _ensure_repo(self, owner: str, name: str, description: str) -> RemoteRepository:
        try:
            data = await self._retry(
                lambda: self._host.create_repo(
                    name, description=f"ERP app: {description}"[:100], private=True,
                ),
                "create repo",
                delay=2.0,
            )
            logger.info("[GITHUB] Created repository %s/%s", owner, name)
        except ConflictError:
            logger.info("[GITHUB] Repository %s/%s exists, reusing it", owner, name)
            data = await self._retry(
                lambda: self._host.get_repo(owner, name), "get repo", retry_if=retry_not_found,
            )
        return RemoteRepository(
            id=data["id"],
            owner=(data.get("owner") or {}).get("login", owner),
            name=data.get("name", name),
            default_branch=data.get("default_branch") or "main",
            html_url=data["html_url"],
        )

    async def _resolve_tip(self, repo: RemoteRepository) -> tuple[str, str]:
        """Return ``(branch, sha)`` of the branch tip.

        Tries ``main`` then ``master`` then the declared default branch; a
        freshly auto-initialised repository may need a few retries before
        its ref is readable.
        """
        candidates = list(_BRANCH_CANDIDATES)
        if repo.default_branch not in candidates:
            candidates.append(repo.default_branch)
        last_exc: RemoteError | None = None
        for branch in candidates:
            try:
                ref = await self._retry(
                    lambda b=branch: self._host.get_ref(repo.owner, repo.name, f"heads/{b}"),
                    f"get ref heads/{branch}",
                    retry_if=retry_not_found,
                )
            except RemoteError as exc:
                last_exc = exc
                logger.warning("[GITHUB] Branch %s not found, trying next", branch)
                continue
            return branch, ref["object"]["sha"]
        raise RemoteError(
            f"No usable branch in {repo.full_name}: {last_exc}",
            remote_status=last_exc.remote_status if last_exc else None,
        )

    async def _retry(
        self, factory, name: str, *, attempts: int = 3, delay: float = 1.0, retry_if=is_retryable,
    ):
        return await with_retry(
            factory,
            name=f"[GITHUB] {name}",
            attempts=attempts,
            delay=delay,
            sleep=self._sleep,
            retry_if=retry_if,
        )

    # ------------------------------------------------------------------
    # Cleanup
    # ------------------------------------------------------------------

    async def list_managed(self) -> list[dict]:
        """Repositories whose name starts with the managed prefix."""
        prefix = settings.REPO_NAME_PREFIX
        repos = await self._retry(self._host.list_repos, "list repos")
        return [r for r in repos if r.get("name", "").startswith(prefix)]

    async def delete(self, owner: str, name: str) -> bool:
        """Delete one repository.  Returns ``False`` if it was already gone."""
        deleted = await self._retry(lambda: self._host.delete_repo(owner, name), "delete repo")
        if deleted:
            logger.info("[GITHUB] Deleted %s/%s", owner, name)
        else:
            logger.info("[GITHUB] %s/%s already gone", owner, name)
        return deleted
