"""Deployments router -- build logs with a failure classification."""

from fastapi import APIRouter, Depends

from app.api.deps import get_coordinator
from app.services.pipeline.autofix import classify_build_error
from app.services.pipeline.coordinator import PipelineCoordinator

router = APIRouter(prefix="/deployments", tags=["deployments"])


@router.get("/{deployment_id}/logs")
async def get_build_logs(
    deployment_id: str,
    coordinator: PipelineCoordinator = Depends(get_coordinator),
) -> dict:
    """Flattened build output, a one-line summary and the classified error."""
    build_logs = await coordinator.fetch_logs(deployment_id)
    analysis = classify_build_error(build_logs.logs)
    return {
        "logs": build_logs.logs,
        "errorSummary": build_logs.error_summary,
        "analysis": analysis.model_dump(),
    }
