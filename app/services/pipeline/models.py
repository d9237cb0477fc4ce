"""Value types shared by the pipeline stages.

Immutable results are frozen pydantic models; a ``FileSet`` is a plain
``dict[str, str]`` (relative path → full file content).
"""

from __future__ import annotations

import posixpath
from dataclasses import dataclass
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from app.errors import UnsafePathError

FileSet = dict[str, str]

SOURCE_EXTENSIONS: tuple[str, ...] = (".ts", ".tsx", ".js", ".jsx")


def normalise_path(path: str) -> str:
    """Return *path* as a clean relative POSIX path.

    Raises :class:`UnsafePathError` for absolute paths, drive letters and
    any ``..`` segment.
    """
    cleaned = path.strip().replace("\\", "/")
    while cleaned.startswith("./"):
        cleaned = cleaned[2:]
    if not cleaned or cleaned.startswith("/") or (len(cleaned) > 1 and cleaned[1] == ":"):
        raise UnsafePathError(path)
    if ".." in cleaned.split("/"):
        raise UnsafePathError(path)
    return posixpath.normpath(cleaned)


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


class Location(BaseModel):
    """1-based line / column of a syntax problem."""

    model_config = ConfigDict(frozen=True)

    line: int
    column: int


class Diagnostic(BaseModel):
    """A single per-file defect found by the static validator."""

    model_config = ConfigDict(frozen=True)

    file: str
    message: str
    location: Location | None = None

    def render(self) -> str:
        if self.location is None:
            return f"{self.file}: {self.message}"
        return f"{self.file}:{self.location.line}:{self.location.column}: {self.message}"


class RepairAttempt(BaseModel):
    """One iteration of the generation-repair loop."""

    model_config = ConfigDict(frozen=True)

    attempt_number: int
    elapsed_ms: int
    files: FileSet
    diagnostics: list[Diagnostic] = Field(default_factory=list)


class RepairResult(BaseModel):
    """Outcome of the generation-repair loop."""

    model_config = ConfigDict(frozen=True)

    success: bool
    files: FileSet
    diagnostics: list[Diagnostic] = Field(default_factory=list)
    used_fallback: bool = False
    attempts: int = 1
    message: str = ""
    history: list[RepairAttempt] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Remote resources
# ---------------------------------------------------------------------------


class RemoteRepository(BaseModel):
    """A repository on the source host."""

    model_config = ConfigDict(frozen=True)

    id: int
    owner: str
    name: str
    default_branch: str = "main"
    html_url: str

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"


class PublishResult(BaseModel):
    """What a successful publish produced."""

    model_config = ConfigDict(frozen=True)

    repo_url: str
    repo_name: str
    owner: str
    branch: str
    commit_sha: str


class ReadyState(str, Enum):
    """Build status reported by the deployment host."""

    QUEUED = "QUEUED"
    INITIALIZING = "INITIALIZING"
    BUILDING = "BUILDING"
    READY = "READY"
    ERROR = "ERROR"
    CANCELED = "CANCELED"

    @property
    def is_terminal(self) -> bool:
        return self in (ReadyState.READY, ReadyState.ERROR, ReadyState.CANCELED)


class Deployment(BaseModel):
    """A single build on the deployment host."""

    model_config = ConfigDict(frozen=True)

    id: str
    project_name: str
    ready_state: ReadyState = ReadyState.QUEUED
    url: str | None = None
    error_message: str | None = None
    build_error: Any = None
    inspector_url: str | None = None


class DeployResult(BaseModel):
    """Result of a successful deploy."""

    model_config = ConfigDict(frozen=True)

    deploy_url: str
    deployment_id: str
    autofix_rounds: int = 0
    fixed_files: FileSet | None = None


class BuildLogs(BaseModel):
    """Flattened build output plus a one-line summary."""

    model_config = ConfigDict(frozen=True)

    logs: str
    error_summary: str


class BuildErrorAnalysis(BaseModel):
    model_config = ConfigDict(frozen=True)

    error_type: str
    details: str
    suggested_fix: str


class AutoFixResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool
    fixed_files: FileSet
    explanation: str = ""
    attempts: int = 1


class EditResponse(BaseModel):
    """Parsed reply to a modification or auto-fix prompt."""

    model_config = ConfigDict(frozen=True)

    files: FileSet = Field(default_factory=dict)
    package_json_update: dict | None = None
    migration: str | None = None
    explanation: str | None = None


# ---------------------------------------------------------------------------
# Environments
# ---------------------------------------------------------------------------


class Environment(str, Enum):
    DEV = "dev"
    STAGING = "staging"
    PRODUCTION = "production"

    @classmethod
    def parse(cls, value: str | None) -> "Environment":
        """Accept ``prod`` as an alias for ``production``; default to dev."""
        if not value:
            return cls.DEV
        value = value.strip().lower()
        if value == "prod":
            return cls.PRODUCTION
        return cls(value)


class VersionStatus(str, Enum):
    DRAFT = "draft"
    DEPLOYING = "deploying"
    DEPLOYED_DEV = "deployed_dev"
    DEPLOYED_STAGING = "deployed_staging"
    DEPLOYED_PROD = "deployed_prod"
    FAILED = "failed"


@dataclass(frozen=True)
class EnvironmentFields:
    """Columns touched when a version becomes active in an environment."""

    version_field: str
    deploy_url_field: str
    status: VersionStatus


ENVIRONMENT_FIELDS: dict[Environment, EnvironmentFields] = {
    Environment.DEV: EnvironmentFields(
        "dev_version_id", "dev_deploy_url", VersionStatus.DEPLOYED_DEV,
    ),
    Environment.STAGING: EnvironmentFields(
        "staging_version_id", "staging_deploy_url", VersionStatus.DEPLOYED_STAGING,
    ),
    Environment.PRODUCTION: EnvironmentFields(
        "prod_version_id", "prod_deploy_url", VersionStatus.DEPLOYED_PROD,
    ),
}

# Promotion source: staging takes the dev version, production the staging one.
PROMOTION_SOURCE: dict[Environment, Environment] = {
    Environment.STAGING: Environment.DEV,
    Environment.PRODUCTION: Environment.STAGING,
}


# ---------------------------------------------------------------------------
# Requests / results
# ---------------------------------------------------------------------------


class PipelineResult(BaseModel):
    """What the front end returns for create / modify / promote."""

    model_config = ConfigDict(frozen=True)

    success: bool
    module_id: str
    version_id: str | None = None
    deploy_url: str | None = None
    repo_url: str | None = None
    deploy_status: str
    used_fallback: bool = False
    changed_files: list[str] = Field(default_factory=list)
    explanation: str | None = None
    error: str | None = None
    warning: str | None = None
