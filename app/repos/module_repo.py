"""Module repository -- reads and writes for workspaces, modules and module_versions."""

import json
import re
from uuid import UUID

from app.repos.db import get_pool
from app.services.pipeline.models import ENVIRONMENT_FIELDS, Environment

DEFAULT_USER = "default_user"
DEFAULT_WORKSPACE_NAME = "My ERP Workspace"

_VERSION_COLUMNS = """
    id, module_id, version_number, prompt, files, database_schema,
    github_repo_url, dev_deploy_url, staging_deploy_url, prod_deploy_url,
    status, used_fallback, build_log, created_by, parent_version_id,
    created_at, updated_at
"""

# Columns update_version() may touch.
_UPDATABLE_VERSION_FIELDS = frozenset({
    "files",
    "github_repo_url",
    "dev_deploy_url",
    "staging_deploy_url",
    "prod_deploy_url",
    "status",
    "build_log",
    "used_fallback",
})


def slugify(name: str) -> str:
    """``"Gestione Ordini!"`` -> ``"gestione-ordini"``."""
    return re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-") or "modulo"


# ---------------------------------------------------------------------------
# workspaces
# ---------------------------------------------------------------------------


async def get_workspace(workspace_id: UUID | str) -> dict | None:
    pool = await get_pool()
    row = await pool.fetchrow(
        "SELECT id, user_id, name, description, created_at FROM workspaces WHERE id = $1",
        workspace_id,
    )
    return dict(row) if row else None


async def get_or_create_default_workspace() -> dict:
    """Return the default user's oldest workspace, creating one if needed."""
    pool = await get_pool()
    row = await pool.fetchrow(
        """
        SELECT id, user_id, name, description, created_at
        FROM workspaces
        WHERE user_id = $1
        ORDER BY created_at
        LIMIT 1
        """,
        DEFAULT_USER,
    )
    if row:
        return dict(row)
    row = await pool.fetchrow(
        """
        INSERT INTO workspaces (user_id, name, description)
        VALUES ($1, $2, $3)
        RETURNING id, user_id, name, description, created_at
        """,
        DEFAULT_USER,
        DEFAULT_WORKSPACE_NAME,
        "Il mio workspace ERP personalizzato",
    )
    return dict(row)


# ---------------------------------------------------------------------------
# modules
# ---------------------------------------------------------------------------


async def create_module(
    workspace_id: UUID | str,
    name: str,
    description: str | None = None,
    module_type: str | None = None,
) -> dict:
    """Insert a new module. Returns the created row as a dict."""
    pool = await get_pool()
    row = await pool.fetchrow(
        """
        INSERT INTO modules (workspace_id, name, slug, type, description)
        VALUES ($1, $2, $3, $4, $5)
        RETURNING id, workspace_id, name, slug, type, description,
                  dev_version_id, staging_version_id, prod_version_id,
                  created_at, updated_at
        """,
        workspace_id,
        name,
        slugify(name),
        module_type,
        description,
    )
    return dict(row)


async def get_module(module_id: UUID | str) -> dict | None:
    """Fetch a module by primary key. Returns None if not found."""
    pool = await get_pool()
    row = await pool.fetchrow(
        """
        SELECT id, workspace_id, name, slug, type, description,
               dev_version_id, staging_version_id, prod_version_id,
               created_at, updated_at
        FROM modules
        WHERE id = $1
        """,
        module_id,
    )
    return dict(row) if row else None


async def set_active_version(
    module_id: UUID | str,
    version_id: UUID | str,
    environment: Environment,
    deploy_url: str | None,
) -> None:
    """Point *environment* of the module at *version_id* and record its URL.

    Column names come from ``ENVIRONMENT_FIELDS``, never from caller input.
    """
    fields = ENVIRONMENT_FIELDS[environment]
    pool = await get_pool()
    async with pool.acquire() as conn:
        async with conn.transaction():
            await conn.execute(
                f"UPDATE modules SET {fields.version_field} = $2, updated_at = now() "
                "WHERE id = $1",
                module_id,
                version_id,
            )
            await conn.execute(
                f"UPDATE module_versions SET {fields.deploy_url_field} = $2, "
                "status = $3, updated_at = now() WHERE id = $1",
                version_id,
                deploy_url,
                fields.status.value,
            )


# ---------------------------------------------------------------------------
# module_versions
# ---------------------------------------------------------------------------


async def next_version_number(module_id: UUID | str) -> int:
    pool = await get_pool()
    current = await pool.fetchval(
        "SELECT COALESCE(MAX(version_number), 0) FROM module_versions WHERE module_id = $1",
        module_id,
    )
    return int(current) + 1


async def create_version(
    module_id: UUID | str,
    version_number: int,
    prompt: str,
    files: dict[str, str],
    *,
    status: str = "draft",
    used_fallback: bool = False,
    created_by: str | None = None,
    parent_version_id: UUID | str | None = None,
    database_schema: dict | None = None,
) -> dict:
    """Insert a module version. Returns the created row as a dict."""
    pool = await get_pool()
    row = await pool.fetchrow(
        f"""
        INSERT INTO module_versions
            (module_id, version_number, prompt, files, status, used_fallback,
             created_by, parent_version_id, database_schema)
        VALUES ($1, $2, $3, $4::jsonb, $5, $6, $7, $8, $9::jsonb)
        RETURNING {_VERSION_COLUMNS}
        """,
        module_id,
        version_number,
        prompt,
        json.dumps(files),
        status,
        used_fallback,
        created_by,
        parent_version_id,
        json.dumps(database_schema) if database_schema is not None else None,
    )
    return _version_to_dict(row)


async def update_version(version_id: UUID | str, **fields) -> None:
    """Update whitelisted columns of a module version."""
    unknown = set(fields) - _UPDATABLE_VERSION_FIELDS
    if unknown:
        raise ValueError(f"Cannot update module_versions columns: {sorted(unknown)}")
    if not fields:
        return
    assignments = []
    values = []
    for i, (column, value) in enumerate(fields.items(), start=2):
        if column == "files":
            assignments.append(f"files = ${i}::jsonb")
            value = json.dumps(value)
        else:
            assignments.append(f"{column} = ${i}")
        values.append(value)
    pool = await get_pool()
    await pool.execute(
        f"UPDATE module_versions SET {', '.join(assignments)}, updated_at = now() "
        "WHERE id = $1",
        version_id,
        *values,
    )


async def get_version(version_id: UUID | str) -> dict | None:
    pool = await get_pool()
    row = await pool.fetchrow(
        f"SELECT {_VERSION_COLUMNS} FROM module_versions WHERE id = $1",
        version_id,
    )
    return _version_to_dict(row) if row else None


async def get_latest_version(module_id: UUID | str) -> dict | None:
    """Highest-numbered version of a module, or None."""
    pool = await get_pool()
    row = await pool.fetchrow(
        f"""
        SELECT {_VERSION_COLUMNS} FROM module_versions
        WHERE module_id = $1
        ORDER BY version_number DESC
        LIMIT 1
        """,
        module_id,
    )
    return _version_to_dict(row) if row else None


async def list_versions(module_id: UUID | str) -> list[dict]:
    """All versions of a module, newest first, without file contents."""
    pool = await get_pool()
    rows = await pool.fetch(
        """
        SELECT id, module_id, version_number, prompt, github_repo_url,
               dev_deploy_url, staging_deploy_url, prod_deploy_url,
               status, used_fallback, build_log, created_by,
               parent_version_id, created_at, updated_at
        FROM module_versions
        WHERE module_id = $1
        ORDER BY version_number DESC
        """,
        module_id,
    )
    return [dict(r) for r in rows]


def _version_to_dict(row) -> dict:
    """Convert a module_versions row to a dict, parsing JSONB columns."""
    d = dict(row)
    for key in ("files", "database_schema"):
        if isinstance(d.get(key), str):
            d[key] = json.loads(d[key])
    return d
