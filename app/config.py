"""Application configuration loaded from environment variables.

Uses ``pydantic-settings`` for automatic env-var loading, type coercion,
and ``.env`` file support.  Validates required settings on import — fails
fast if critical vars are missing outside of tests.
"""

VERSION = "0.1.0"

import sys

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# ---------------------------------------------------------------------------
# Required var names, checked after instantiation (not during) so tests
# that leave them blank still work.
# ---------------------------------------------------------------------------
_REQUIRED_VARS: list[str] = [
    "DATABASE_URL",
    "ANTHROPIC_API_KEY",
    "GITHUB_TOKEN",
]


class Settings(BaseSettings):
    """Application settings — sourced from environment / ``.env`` file.

    Required vars (must be set in production, may be blank in test):
      DATABASE_URL, ANTHROPIC_API_KEY, GITHUB_TOKEN

    ``VERCEL_TOKEN`` is optional: without it modules are generated and
    published but never deployed.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # -- required in production (default empty so tests don't fail) --
    DATABASE_URL: str = ""
    ANTHROPIC_API_KEY: str = ""
    GITHUB_TOKEN: str = ""

    # -- optional with sensible defaults --
    VERCEL_TOKEN: str = ""
    VERCEL_TEAM_ID: str = ""
    # Forwarded to every deployed app as NEXT_PUBLIC_* build variables.
    SUPABASE_URL: str = ""
    SUPABASE_ANON_KEY: str = ""

    FRONTEND_URL: str = "http://localhost:3000"
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = ""

    # -------------------------------------------------------------------------
    # Model used for generation, repair and build-log auto-fix calls.
    # -------------------------------------------------------------------------
    LLM_MODEL: str = "claude-sonnet-4-20250514"
    LLM_GENERATE_MAX_TOKENS: int = 16_000
    LLM_REPAIR_MAX_TOKENS: int = 2_000
    LLM_AUTOFIX_MAX_TOKENS: int = 4_000
    LLM_CALL_TIMEOUT_SECONDS: float = 120.0

    # Generation-repair loop: attempt cap and wall-clock ceiling.
    REPAIR_MAX_ATTEMPTS: int = Field(default=3, ge=1)
    REPAIR_TIMEOUT_SECONDS: float = 180.0

    # Repository publishing
    REPO_NAME_PREFIX: str = "erp-app-"
    PUBLISH_TIMEOUT_SECONDS: float = 120.0
    CLEANUP_PAUSE_SECONDS: float = 1.0

    # Deployment polling
    DEPLOY_TIMEOUT_SECONDS: float = 300.0
    DEPLOY_POLL_INTERVAL_SECONDS: float = 10.0
    DEPLOY_MAX_POLLS: int = Field(default=30, ge=1)

    # Build-log auto-fix.  The round cap bounds how many fix → publish →
    # rebuild cycles a single deploy may run; the attempt cap bounds how many
    # LLM calls one round may spend producing a non-empty change.
    AUTOFIX_ENABLED: bool = True
    AUTOFIX_MAX_ROUNDS: int = Field(default=5, ge=0)
    AUTOFIX_MAX_ATTEMPTS: int = Field(default=2, ge=1)


settings = Settings()


# Validate at import time, but only when NOT running under pytest.
if "pytest" not in sys.modules:
    _missing = [v for v in _REQUIRED_VARS if not getattr(settings, v)]
    if _missing:
        print(
            f"[config] FATAL: missing required environment variables: "
            f"{', '.join(_missing)}",
            file=sys.stderr,
        )
        sys.exit(1)
