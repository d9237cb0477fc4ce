"""Pipeline dependency -- builds the coordinator and its clients from settings.

The clients are created on first use and shared by every request; a
missing credential surfaces as :class:`ConfigurationError` before any
pipeline work starts.  Tests replace :func:`get_coordinator` through
``app.dependency_overrides``.
"""

import logging

from app.clients.github_client import GitHubClient
from app.clients.llm_client import AnthropicCompletion
from app.clients.vercel_client import VercelClient
from app.config import settings
from app.services.pipeline.autofix import BuildLogAutoFixer
from app.services.pipeline.coordinator import PipelineCoordinator
from app.services.pipeline.deployer import DeploymentDriver
from app.services.pipeline.publisher import RepositoryPublisher
from app.services.pipeline.repair_loop import RepairLoop

logger = logging.getLogger(__name__)

_clients: list = []
_coordinator: PipelineCoordinator | None = None


def build_coordinator() -> PipelineCoordinator:
    """Wire the pipeline from the current settings."""
    llm = AnthropicCompletion(settings.ANTHROPIC_API_KEY, settings.LLM_MODEL)
    _clients.append(llm)
    github = GitHubClient(settings.GITHUB_TOKEN)
    _clients.append(github)

    publisher = RepositoryPublisher(github)
    deployer = None
    if settings.VERCEL_TOKEN:
        vercel = VercelClient(settings.VERCEL_TOKEN, team_id=settings.VERCEL_TEAM_ID)
        _clients.append(vercel)
        deployer = DeploymentDriver(
            vercel,
            github,
            publisher=publisher,
            autofixer=BuildLogAutoFixer(llm, vercel),
        )
    else:
        logger.warning("VERCEL_TOKEN not set: modules will be published but not deployed")

    return PipelineCoordinator(RepairLoop(llm), publisher, deployer)


def get_coordinator() -> PipelineCoordinator:
    global _coordinator
    if _coordinator is None:
        _coordinator = build_coordinator()
    return _coordinator


async def close_clients() -> None:
    """Close every HTTP client created by :func:`build_coordinator`."""
    global _coordinator
    while _clients:
        await _clients.pop().close()
    _coordinator = None
