"""Tests for config validation."""

import pytest
from pydantic import ValidationError


def test_config_settings_type():
    """Settings object should exist with expected attributes."""
    from app.config import settings

    assert hasattr(settings, "DATABASE_URL")
    assert hasattr(settings, "ANTHROPIC_API_KEY")
    assert hasattr(settings, "GITHUB_TOKEN")
    assert hasattr(settings, "VERCEL_TOKEN")
    assert hasattr(settings, "FRONTEND_URL")


def test_pipeline_bounds_defaults():
    """Repair, deploy and auto-fix bounds have separate settings."""
    from app.config import Settings

    s = Settings(_env_file=None)
    assert s.REPAIR_MAX_ATTEMPTS == 3
    assert s.REPAIR_TIMEOUT_SECONDS == 180.0
    assert s.DEPLOY_MAX_POLLS == 30
    assert s.AUTOFIX_MAX_ROUNDS == 5
    assert s.AUTOFIX_MAX_ATTEMPTS == 2
    assert s.REPO_NAME_PREFIX == "erp-app-"


def test_env_vars_override_defaults(monkeypatch):
    from app.config import Settings

    monkeypatch.setenv("REPAIR_MAX_ATTEMPTS", "5")
    monkeypatch.setenv("AUTOFIX_ENABLED", "false")
    s = Settings(_env_file=None)
    assert s.REPAIR_MAX_ATTEMPTS == 5
    assert s.AUTOFIX_ENABLED is False


def test_repair_attempts_must_be_positive(monkeypatch):
    from app.config import Settings

    monkeypatch.setenv("REPAIR_MAX_ATTEMPTS", "0")
    with pytest.raises(ValidationError):
        Settings(_env_file=None)


def test_version_constant():
    from app.config import VERSION

    assert VERSION == "0.1.0"
