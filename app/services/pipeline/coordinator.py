"""Pipeline coordinator — the per-request saga behind create / modify / promote.

generate-and-repair -> publish -> deploy (with build-log auto-fix) ->
write back URLs and status.  A stage failure never discards the work of
the stages before it: the version row is always written, a published
repository URL is always kept, and a failed deploy is recorded as
``status = failed`` with the error text in ``build_log``.
"""

from __future__ import annotations

import asyncio
import logging
from types import ModuleType
from typing import Any, Awaitable, Callable

from app.config import settings
from app.errors import (
    BadRequestError,
    BuildFailedError,
    ConfigurationError,
    NotFoundError,
    RemoteError,
    StageTimeoutError,
)
from app.repos import module_repo
from app.services.pipeline.deployer import AutoFixOptions, DeploymentDriver
from app.services.pipeline.models import (
    ENVIRONMENT_FIELDS,
    PROMOTION_SOURCE,
    BuildLogs,
    Environment,
    FileSet,
    PipelineResult,
    VersionStatus,
)
from app.services.pipeline.publisher import RepositoryPublisher
from app.services.pipeline.repair_loop import RepairLoop
from app.services.pipeline.templates import select_template

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]

DEPLOY_SKIPPED_WARNING = "VERCEL_TOKEN not configured: deployment skipped"


class PipelineCoordinator:
    """Sequences the pipeline stages and persists what each one produced.

    *store* is anything exposing the :mod:`app.repos.module_repo` functions;
    tests pass an in-memory stand-in.  *deployer* may be ``None`` when no
    deployment host is configured.
    """

    def __init__(
        self,
        repair_loop: RepairLoop,
        publisher: RepositoryPublisher,
        deployer: DeploymentDriver | None = None,
        *,
        store: ModuleType | Any = module_repo,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._repair = repair_loop
        self._publisher = publisher
        self._deployer = deployer
        self._store = store
        self._sleep = sleep

    # ------------------------------------------------------------------
    # create / modify / promote
    # ------------------------------------------------------------------

    async def create_module(
        self,
        prompt: str,
        *,
        name: str | None = None,
        workspace_id: str | None = None,
        environment: Environment = Environment.DEV,
    ) -> PipelineResult:
        """Generate a new module from *prompt* and ship version 1."""
        if not prompt or not prompt.strip():
            raise BadRequestError("prompt is required")

        if workspace_id:
            workspace = await self._store.get_workspace(workspace_id)
            if workspace is None:
                raise NotFoundError("Workspace not found")
        else:
            workspace = await self._store.get_or_create_default_workspace()

        final_name = name or prompt[:50].strip() or "Nuovo Modulo"
        module = await self._store.create_module(
            workspace["id"],
            final_name,
            description=prompt[:200],
            module_type=select_template(prompt).value,
        )
        module_id = str(module["id"])
        logger.info("[PIPELINE] Created module %s (%s)", module_id, final_name)

        repair = await self._repair.generate(prompt, name=final_name)
        if repair.used_fallback:
            logger.warning("[PIPELINE] Module %s uses the safe template: %s", module_id, repair.message)

        version = await self._store.create_version(
            module_id,
            1,
            prompt,
            repair.files,
            status=VersionStatus.DEPLOYING.value,
            used_fallback=repair.used_fallback,
            created_by="Creazione nuovo modulo",
        )
        return await self._ship(
            module,
            version,
            repair.files,
            prompt,
            environment,
            used_fallback=repair.used_fallback,
            changed_files=sorted(repair.files),
            warning=None if repair.success else repair.message,
        )

    async def modify_module(
        self,
        module_id: str,
        prompt: str,
        *,
        environment: Environment = Environment.DEV,
    ) -> PipelineResult:
        """Apply *prompt* as a change on top of the module's current version."""
        if not prompt or not prompt.strip():
            raise BadRequestError("prompt is required")
        module = await self._require_module(module_id)

        pointer = module.get(ENVIRONMENT_FIELDS[environment].version_field)
        current = (
            await self._store.get_version(pointer) if pointer
            else await self._store.get_latest_version(module_id)
        )
        current_files: FileSet = dict(current["files"]) if current else {}

        result = await self._repair.modify(
            prompt,
            current_files,
            module_name=module["name"],
            version_number=current["version_number"] if current else 1,
            last_change=current.get("prompt") if current else None,
            database_schema=current.get("database_schema") if current else None,
        )

        number = await self._store.next_version_number(module_id)
        version = await self._store.create_version(
            module_id,
            number,
            prompt,
            result.files,
            status=VersionStatus.DEPLOYING.value,
            created_by=f"Modifica: {prompt[:100]}",
            parent_version_id=current["id"] if current else None,
            database_schema=current.get("database_schema") if current else None,
        )
        logger.info(
            "[PIPELINE] Module %s v%d changes: %s",
            module_id, number, ", ".join(result.changed_files),
        )
        warning = None
        if not result.repair.success:
            warning = f"Validation failed, edit kept unvalidated: {result.repair.message}"
        return await self._ship(
            module,
            version,
            result.files,
            prompt,
            environment,
            changed_files=result.changed_files,
            explanation=result.edit.explanation,
            warning=warning,
        )

    async def promote(self, module_id: str, environment: Environment) -> PipelineResult:
        """Deploy the version active one environment below *environment*.

        Staging takes the dev version; production takes the staging version.
        """
        source = PROMOTION_SOURCE.get(environment)
        if source is None:
            raise BadRequestError("Only staging or production can be promoted to")
        module = await self._require_module(module_id)

        version_id = module.get(ENVIRONMENT_FIELDS[source].version_field)
        if not version_id:
            raise BadRequestError(f"No {source.value} version to promote")
        version = await self._store.get_version(version_id)
        if version is None:
            raise NotFoundError("Version not found")

        logger.info(
            "[PIPELINE] Promoting module %s v%d %s -> %s",
            module_id, version["version_number"], source.value, environment.value,
        )
        return await self._ship(
            module,
            version,
            dict(version["files"]),
            version["prompt"],
            environment,
            used_fallback=bool(version.get("used_fallback")),
            record_failure_status=False,
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_module(self, module_id: str) -> dict:
        """The module row plus the version active in each environment."""
        module = await self._require_module(module_id)
        active: dict[str, dict | None] = {}
        for env, fields in ENVIRONMENT_FIELDS.items():
            pointer = module.get(fields.version_field)
            active[env.value] = await self._store.get_version(pointer) if pointer else None
        return {"module": module, "active_versions": active}

    async def list_versions(self, module_id: str) -> list[dict]:
        await self._require_module(module_id)
        return await self._store.list_versions(module_id)

    async def fetch_logs(self, deployment_id: str) -> BuildLogs:
        if self._deployer is None:
            raise ConfigurationError(DEPLOY_SKIPPED_WARNING)
        return await self._deployer.fetch_logs(deployment_id)

    # ------------------------------------------------------------------
    # Cleanup
    # ------------------------------------------------------------------

    async def cleanup(self) -> dict:
        """Delete every managed repository and deployment project.

        Failures on one item are recorded and do not stop the rest.
        """
        errors: list[str] = []
        repos_deleted = 0
        for repo in await self._publisher.list_managed():
            owner = (repo.get("owner") or {}).get("login", "")
            try:
                if await self._publisher.delete(owner, repo["name"]):
                    repos_deleted += 1
            except RemoteError as exc:
                logger.error("[CLEANUP] Repository %s: %s", repo["name"], exc)
                errors.append(f"{repo['name']}: {exc}")
            await self._sleep(settings.CLEANUP_PAUSE_SECONDS)

        projects_deleted = 0
        if self._deployer is not None:
            for project in await self._deployer.list_managed_projects():
                try:
                    if await self._deployer.delete_project(project["name"]):
                        projects_deleted += 1
                except RemoteError as exc:
                    logger.error("[CLEANUP] Project %s: %s", project["name"], exc)
                    errors.append(f"{project['name']}: {exc}")
                await self._sleep(settings.CLEANUP_PAUSE_SECONDS)

        logger.info(
            "[CLEANUP] Deleted %d repositories, %d projects (%d errors)",
            repos_deleted, projects_deleted, len(errors),
        )
        return {
            "repositories_deleted": repos_deleted,
            "projects_deleted": projects_deleted,
            "errors": errors,
        }

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _require_module(self, module_id: str) -> dict:
        module = await self._store.get_module(module_id)
        if module is None:
            raise NotFoundError("Module not found")
        return module

    async def _ship(
        self,
        module: dict,
        version: dict,
        files: FileSet,
        prompt: str,
        environment: Environment,
        *,
        used_fallback: bool = False,
        changed_files: list[str] | None = None,
        explanation: str | None = None,
        warning: str | None = None,
        record_failure_status: bool = True,
    ) -> PipelineResult:
        """Publish and deploy *files* for *version*, persisting every outcome."""
        module_id = str(module["id"])
        version_id = str(version["id"])

        def result(**kwargs) -> PipelineResult:
            return PipelineResult(
                module_id=module_id,
                version_id=version_id,
                used_fallback=used_fallback,
                changed_files=changed_files or [],
                explanation=explanation,
                **kwargs,
            )

        async def fail(message: str, *, repo_url: str | None = None, error: str | None = None):
            fields: dict = {"build_log": message}
            if record_failure_status:
                fields["status"] = VersionStatus.FAILED.value
            await self._store.update_version(version_id, **fields)
            notes = "; ".join(n for n in (warning, None if error else message) if n)
            return result(
                success=False,
                repo_url=repo_url,
                deploy_status=VersionStatus.FAILED.value,
                error=error,
                warning=notes or None,
            )

        try:
            published = await self._publisher.publish(
                module_id,
                files,
                description=module["name"],
                message=f"Version {version['version_number']}: {prompt[:60]}",
            )
        except (RemoteError, StageTimeoutError) as exc:
            logger.error("[PIPELINE] Publish failed for module %s: %s", module_id, exc)
            return await fail(f"Publish failed: {exc}", error=str(exc))
        except Exception as exc:
            logger.exception("[PIPELINE] Publish crashed for module %s", module_id)
            message = f"Publish failed: {type(exc).__name__}: {exc}"
            return await fail(message, error=message)

        await self._store.update_version(version_id, github_repo_url=published.repo_url)

        if self._deployer is None:
            logger.warning("[PIPELINE] %s", DEPLOY_SKIPPED_WARNING)
            return await fail(DEPLOY_SKIPPED_WARNING, repo_url=published.repo_url)

        try:
            deployed = await self._deployer.deploy(
                published.repo_name,
                published.repo_url,
                module_id,
                ref=published.branch,
                auto_fix=AutoFixOptions(files=files, prompt=prompt, enabled=settings.AUTOFIX_ENABLED),
            )
        except (BuildFailedError, StageTimeoutError, RemoteError) as exc:
            logger.error("[PIPELINE] Deploy failed for module %s: %s", module_id, exc)
            return await fail(str(exc), repo_url=published.repo_url, error=str(exc))
        except Exception as exc:
            logger.exception("[PIPELINE] Deploy crashed for module %s", module_id)
            message = f"Deploy failed: {type(exc).__name__}: {exc}"
            return await fail(message, repo_url=published.repo_url, error=message)

        if deployed.fixed_files:
            await self._store.update_version(version_id, files=deployed.fixed_files)
        await self._store.set_active_version(
            module_id, version_id, environment, deployed.deploy_url,
        )
        status = ENVIRONMENT_FIELDS[environment].status
        logger.info("[PIPELINE] Module %s %s at %s", module_id, status.value, deployed.deploy_url)
        return result(
            success=True,
            deploy_url=deployed.deploy_url,
            repo_url=published.repo_url,
            deploy_status=status.value,
            warning=warning,
        )
