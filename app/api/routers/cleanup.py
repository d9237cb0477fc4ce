"""Cleanup router -- remove every generated repository and hosting project."""

from fastapi import APIRouter, Depends

from app.api.deps import get_coordinator
from app.services.pipeline.coordinator import PipelineCoordinator

router = APIRouter(tags=["cleanup"])


@router.post("/cleanup")
async def cleanup(coordinator: PipelineCoordinator = Depends(get_coordinator)) -> dict:
    """Delete managed repositories and projects; returns counts and per-item errors."""
    return await coordinator.cleanup()
