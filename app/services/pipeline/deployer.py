"""Deployment driver — bind a project to the repository, build, poll.

A deploy has exactly three endings: the build was observed ``READY``
(a :class:`DeployResult` is returned), it was observed ``ERROR`` /
``CANCELED`` (:class:`BuildFailedError`), or polling ran out first
(:class:`DeployTimeoutError`).  A URL is only ever returned for a build
that was seen to be ready.

When an auto-fixer and a publisher are wired in, a failed build can be
repaired from its logs, re-published and rebuilt a bounded number of
times before the failure is reported.
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from typing import Awaitable, Callable

from app.clients.ports import DeployHostPort, SourceHostPort
from app.config import settings
from app.errors import (
    BadRequestError,
    BuildFailedError,
    ConflictError,
    DeployTimeoutError,
    PipelineError,
    RemoteError,
)
from app.services.pipeline.autofix import BuildLogAutoFixer
from app.services.pipeline.models import (
    BuildLogs,
    Deployment,
    DeployResult,
    FileSet,
    ReadyState,
)
from app.services.pipeline.publisher import RepositoryPublisher
from app.services.pipeline.retry import run_with_timeout, with_retry

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]

_REPO_URL_RE = re.compile(r"github\.com[/:]([^/]+)/([^/]+?)(?:\.git)?/?$")

# A freshly created deployment can 404 for a moment; after this many polls
# a 404 means it is really gone.
_NOT_FOUND_GRACE_POLLS = 3


@dataclass(frozen=True)
class AutoFixOptions:
    """What the driver needs to repair and re-publish a failed build."""

    files: FileSet
    prompt: str
    enabled: bool = True


def parse_repo_url(repo_url: str) -> tuple[str, str]:
    """Return ``(owner, repo)`` from a GitHub URL."""
    match = _REPO_URL_RE.search(repo_url.strip())
    if not match:
        raise BadRequestError(f"Invalid GitHub repository URL: {repo_url}")
    return match.group(1), match.group(2)


def project_url(project_name: str) -> str:
    return f"https://{project_name}.vercel.app"


def project_env() -> dict[str, str]:
    """Public environment variables injected into every generated app."""
    env: dict[str, str] = {}
    if settings.SUPABASE_URL:
        env["NEXT_PUBLIC_SUPABASE_URL"] = settings.SUPABASE_URL
    if settings.SUPABASE_ANON_KEY:
        env["NEXT_PUBLIC_SUPABASE_ANON_KEY"] = settings.SUPABASE_ANON_KEY
    return env


def _error_text(error) -> str | None:
    if isinstance(error, dict):
        return error.get("message")
    return str(error) if error else None


def _to_deployment(data: dict, project_name: str) -> Deployment:
    raw_state = data.get("readyState") or data.get("status") or ReadyState.QUEUED.value
    try:
        state = ReadyState(raw_state)
    except ValueError:
        state = ReadyState.BUILDING
    return Deployment(
        id=data.get("id") or data.get("uid") or "",
        project_name=project_name,
        ready_state=state,
        url=data.get("url"),
        error_message=data.get("errorMessage") or _error_text(data.get("error")),
        build_error=(data.get("build") or {}).get("error"),
        inspector_url=data.get("inspectorUrl"),
    )


class DeploymentDriver:
    """Creates the hosting project, triggers builds and polls them."""

    def __init__(
        self,
        deploy_host: DeployHostPort,
        source_host: SourceHostPort,
        *,
        publisher: RepositoryPublisher | None = None,
        autofixer: BuildLogAutoFixer | None = None,
        poll_interval: float | None = None,
        max_polls: int | None = None,
        timeout: float | None = None,
        max_autofix_rounds: int | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._host = deploy_host
        self._source = source_host
        self._publisher = publisher
        self._autofixer = autofixer
        self.poll_interval = (
            settings.DEPLOY_POLL_INTERVAL_SECONDS if poll_interval is None else poll_interval
        )
        self.max_polls = settings.DEPLOY_MAX_POLLS if max_polls is None else max_polls
        self.timeout = settings.DEPLOY_TIMEOUT_SECONDS if timeout is None else timeout
        self.max_autofix_rounds = (
            settings.AUTOFIX_MAX_ROUNDS if max_autofix_rounds is None else max_autofix_rounds
        )
        self._sleep = sleep

    async def deploy(
        self,
        repo_name: str,
        repo_url: str,
        identifier: str,
        *,
        ref: str = "main",
        auto_fix: AutoFixOptions | None = None,
    ) -> DeployResult:
        """Deploy *repo_url* as project *repo_name* and wait for the build.

        Raises :class:`BuildFailedError`, :class:`DeployTimeoutError`, or
        :class:`StageTimeoutError` if the whole stage overruns its ceiling.
        """
        owner, repo = parse_repo_url(repo_url)
        return await run_with_timeout(
            self._deploy(repo_name, owner, repo, identifier, ref, auto_fix),
            self.timeout,
            stage="deploy",
        )

    async def _deploy(
        self,
        project: str,
        owner: str,
        repo: str,
        identifier: str,
        ref: str,
        auto_fix: AutoFixOptions | None,
    ) -> DeployResult:
        await self._ensure_project(project, f"{owner}/{repo}")

        repo_data = await self._retry(lambda: self._source.get_repo(owner, repo), "get repo")
        repo_id = repo_data["id"]

        files = dict(auto_fix.files) if auto_fix else None
        rounds = 0
        while True:
            created = await self._retry(
                lambda: self._host.trigger_deployment(project, repo_id=repo_id, ref=ref),
                "trigger deployment",
                delay=2.0,
            )
            deployment_id = created.get("id") or created.get("uid")
            logger.info("[VERCEL] Deployment %s started for %s", deployment_id, project)

            final = await self._poll(deployment_id, project)
            if final.ready_state is ReadyState.READY:
                url = project_url(project)
                logger.info("[VERCEL] %s is live at %s", project, url)
                return DeployResult(
                    deploy_url=url,
                    deployment_id=deployment_id,
                    autofix_rounds=rounds,
                    fixed_files=files if rounds else None,
                )

            logger.error(
                "[VERCEL] Deployment %s ended %s: %s",
                deployment_id, final.ready_state.value, final.error_message or "no message",
            )
            if self._can_autofix(auto_fix, rounds):
                rounds += 1
                logger.info("[AUTO-FIX] Round %d/%d", rounds, self.max_autofix_rounds)
                fix = await self._autofixer.auto_fix(deployment_id, files, auto_fix.prompt)
                if fix.success:
                    files = fix.fixed_files
                    await self._publisher.publish(
                        identifier,
                        files,
                        message=f"Auto-fix round {rounds}: {fix.explanation[:72]}",
                    )
                    continue
                logger.warning("[AUTO-FIX] No fix produced: %s", fix.explanation)

            raise BuildFailedError(
                final.error_message or f"Build {final.ready_state.value}",
                build_error=final.build_error,
                inspector_url=final.inspector_url,
                deployment_id=deployment_id,
            )

    def _can_autofix(self, auto_fix: AutoFixOptions | None, rounds: int) -> bool:
        return (
            auto_fix is not None
            and auto_fix.enabled
            and settings.AUTOFIX_ENABLED
            and self._autofixer is not None
            and self._publisher is not None
            and rounds < self.max_autofix_rounds
        )

    async def _ensure_project(self, name: str, repo: str) -> None:
        try:
            await self._retry(
                lambda: self._host.create_project(name, repo=repo, env=project_env()),
                "create project",
                delay=2.0,
            )
            logger.info("[VERCEL] Created project %s", name)
        except ConflictError:
            logger.info("[VERCEL] Project %s exists, reusing it", name)

    async def _poll(self, deployment_id: str, project: str) -> Deployment:
        """Poll until a terminal state, at most ``max_polls`` times.

        Only a state reported by the host ends the loop early.  A poll that
        could not be executed or read is logged and the next poll follows.
        """
        for poll in range(1, self.max_polls + 1):
            await self._sleep(self.poll_interval)
            try:
                data = await self._host.get_deployment(deployment_id)
                deployment = _to_deployment(data, project)
            except RemoteError as exc:
                if exc.remote_status == 404 and poll > _NOT_FOUND_GRACE_POLLS:
                    raise BuildFailedError(
                        "Deployment not found", deployment_id=deployment_id,
                    ) from exc
                if exc.transient or exc.remote_status == 404:
                    logger.warning("[VERCEL] Poll %d failed, continuing: %s", poll, exc)
                    continue
                raise
            except PipelineError:
                raise
            except Exception as exc:
                logger.warning(
                    "[VERCEL] Poll %d unreadable (%s: %s), continuing",
                    poll, type(exc).__name__, exc,
                )
                continue

            logger.info(
                "[VERCEL] Poll %d/%d: %s", poll, self.max_polls, deployment.ready_state.value,
            )
            if deployment.ready_state.is_terminal:
                return deployment

        raise DeployTimeoutError(
            deployment_id, self.max_polls, self.max_polls * self.poll_interval,
        )

    async def _retry(self, factory, name: str, *, attempts: int = 3, delay: float = 1.0):
        return await with_retry(
            factory, name=f"[VERCEL] {name}", attempts=attempts, delay=delay, sleep=self._sleep,
        )

    # ------------------------------------------------------------------
    # Logs and cleanup
    # ------------------------------------------------------------------

    async def fetch_logs(self, deployment_id: str) -> BuildLogs:
        """Build logs for *deployment_id*, through the auto-fixer's reader."""
        if self._autofixer is None:
            raise BadRequestError("Build log reader is not configured")
        return await self._autofixer.fetch_build_logs(deployment_id)

    async def list_managed_projects(self) -> list[dict]:
        prefix = settings.REPO_NAME_PREFIX
        projects = await self._retry(
            lambda: self._host.list_projects(search=prefix), "list projects",
        )
        return [p for p in projects if p.get("name", "").startswith(prefix)]

    async def delete_project(self, name: str) -> bool:
        deleted = await self._retry(lambda: self._host.delete_project(name), "delete project")
        logger.info("[VERCEL] %s project %s", "Deleted" if deleted else "Already gone:", name)
        return deleted
