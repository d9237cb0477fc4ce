"""Modules router -- create, modify, promote and inspect generated ERP modules."""

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field

from app.api.deps import get_coordinator
from app.services.pipeline.coordinator import PipelineCoordinator
from app.services.pipeline.models import Environment, PipelineResult

router = APIRouter(prefix="/modules", tags=["modules"])


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class CreateModuleRequest(BaseModel):
    """Request body for generating a new module."""

    model_config = ConfigDict(populate_by_name=True)

    prompt: str = Field(..., min_length=1, max_length=5000, description="What the module should do")
    name: str | None = Field(None, max_length=255, description="Display name (defaults to the prompt)")
    workspace_id: str | None = Field(None, alias="workspaceId")
    environment: str | None = Field(None, description="dev, staging or production")


class ModifyModuleRequest(BaseModel):
    """Request body for changing an existing module."""

    prompt: str = Field(..., min_length=1, max_length=5000, description="The change to make")
    environment: str | None = Field(None, description="Environment whose version is modified")


class PromoteModuleRequest(BaseModel):
    environment: str = Field(..., description="staging or production")


def _to_response(result: PipelineResult) -> dict:
    """camelCase response shape consumed by the dashboard."""
    body = {
        "success": result.success,
        "moduleId": result.module_id,
        "versionId": result.version_id,
        "deployStatus": result.deploy_status,
        "usedFallback": result.used_fallback,
        "changedFiles": result.changed_files,
    }
    optional = {
        "deployUrl": result.deploy_url,
        "repoUrl": result.repo_url,
        "explanation": result.explanation,
        "error": result.error,
        "warning": result.warning,
    }
    body.update({k: v for k, v in optional.items() if v is not None})
    return body


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.post("")
async def create_module(
    body: CreateModuleRequest,
    coordinator: PipelineCoordinator = Depends(get_coordinator),
) -> dict:
    """Generate, publish and deploy a new module."""
    result = await coordinator.create_module(
        body.prompt,
        name=body.name,
        workspace_id=body.workspace_id,
        environment=Environment.parse(body.environment),
    )
    return _to_response(result)


@router.get("/{module_id}")
async def get_module(
    module_id: str,
    coordinator: PipelineCoordinator = Depends(get_coordinator),
) -> dict:
    return await coordinator.get_module(module_id)


@router.get("/{module_id}/versions")
async def list_versions(
    module_id: str,
    coordinator: PipelineCoordinator = Depends(get_coordinator),
) -> dict:
    """Version history, newest first."""
    return {"versions": await coordinator.list_versions(module_id)}


@router.post("/{module_id}/modify")
async def modify_module(
    module_id: str,
    body: ModifyModuleRequest,
    coordinator: PipelineCoordinator = Depends(get_coordinator),
) -> dict:
    """Apply a natural-language change as a new version and deploy it."""
    result = await coordinator.modify_module(
        module_id,
        body.prompt,
        environment=Environment.parse(body.environment),
    )
    return _to_response(result)


@router.post("/{module_id}/deploy")
async def promote_module(
    module_id: str,
    body: PromoteModuleRequest,
    coordinator: PipelineCoordinator = Depends(get_coordinator),
) -> dict:
    """Promote dev to staging, or staging to production."""
    result = await coordinator.promote(module_id, Environment.parse(body.environment))
    return _to_response(result)
