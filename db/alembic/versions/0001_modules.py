"""Modules schema — workspaces, modules and module_versions.

Revision ID: 0001_modules
Revises: None
Create Date: 2026-10-18

Idempotent (IF NOT EXISTS everywhere) so it can run against a database
that already carries the tables.
"""
from typing import Sequence, Union

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0001_modules"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute('CREATE EXTENSION IF NOT EXISTS "pgcrypto"')

    op.execute("""
        CREATE TABLE IF NOT EXISTS workspaces (
            id              UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            user_id         TEXT NOT NULL DEFAULT 'default_user',
            name            TEXT NOT NULL,
            description     TEXT,
            created_at      TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at      TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    """)
    op.execute(
        "CREATE INDEX IF NOT EXISTS idx_workspaces_user ON workspaces(user_id)"
    )

    op.execute("""
        CREATE TABLE IF NOT EXISTS modules (
            id                  UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            workspace_id        UUID REFERENCES workspaces(id) ON DELETE CASCADE,
            name                TEXT NOT NULL,
            slug                TEXT NOT NULL,
            type                VARCHAR(20),
            description         TEXT,
            dev_version_id      UUID,
            staging_version_id  UUID,
            prod_version_id     UUID,
            created_at          TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at          TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    """)
    op.execute(
        "CREATE INDEX IF NOT EXISTS idx_modules_workspace ON modules(workspace_id)"
    )

    op.execute("""
        CREATE TABLE IF NOT EXISTS module_versions (
            id                  UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            module_id           UUID NOT NULL REFERENCES modules(id) ON DELETE CASCADE,
            version_number      INTEGER NOT NULL,
            prompt              TEXT NOT NULL,
            files               JSONB NOT NULL DEFAULT '{}'::jsonb,
            database_schema     JSONB,
            github_repo_url     TEXT,
            dev_deploy_url      TEXT,
            staging_deploy_url  TEXT,
            prod_deploy_url     TEXT,
            status              VARCHAR(20) NOT NULL DEFAULT 'draft',
            used_fallback       BOOLEAN NOT NULL DEFAULT false,
            build_log           TEXT,
            created_by          TEXT,
            parent_version_id   UUID REFERENCES module_versions(id),
            created_at          TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at          TIMESTAMPTZ NOT NULL DEFAULT now(),
            UNIQUE (module_id, version_number)
        )
    """)
    op.execute(
        "CREATE INDEX IF NOT EXISTS idx_module_versions_module "
        "ON module_versions(module_id, version_number DESC)"
    )
    op.execute(
        "CREATE INDEX IF NOT EXISTS idx_module_versions_status ON module_versions(status)"
    )


def downgrade() -> None:
    """Drop the module tables in reverse dependency order."""
    op.execute("DROP TABLE IF EXISTS module_versions CASCADE")
    op.execute("DROP TABLE IF EXISTS modules CASCADE")
    op.execute("DROP TABLE IF EXISTS workspaces CASCADE")
