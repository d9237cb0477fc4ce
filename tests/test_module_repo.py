"""Tests for app/repos/module_repo.py -- workspaces, modules and module_versions CRUD."""

import json
import uuid
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from app.repos import module_repo
from app.services.pipeline.models import Environment


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _fake_pool():
    return AsyncMock()


def _version_row(**overrides):
    """Create a fake module_versions DB row (JSONB as text, as asyncpg returns it)."""
    defaults = {
        "id": uuid.uuid4(),
        "module_id": uuid.uuid4(),
        "version_number": 1,
        "prompt": "Gestione ordini",
        "files": json.dumps({"app/page.tsx": "export default function P() {}"}),
        "database_schema": None,
        "github_repo_url": None,
        "dev_deploy_url": None,
        "staging_deploy_url": None,
        "prod_deploy_url": None,
        "status": "deploying",
        "used_fallback": False,
        "build_log": None,
        "created_by": "Creazione nuovo modulo",
        "parent_version_id": None,
        "created_at": datetime.now(timezone.utc),
        "updated_at": datetime.now(timezone.utc),
    }
    defaults.update(overrides)
    return defaults


def _transactional_pool():
    """Pool whose ``acquire()`` yields a connection with a working transaction()."""
    conn = MagicMock()
    conn.execute = AsyncMock()
    tx = MagicMock()
    tx.__aenter__ = AsyncMock(return_value=None)
    tx.__aexit__ = AsyncMock(return_value=False)
    conn.transaction.return_value = tx

    acquire = MagicMock()
    acquire.__aenter__ = AsyncMock(return_value=conn)
    acquire.__aexit__ = AsyncMock(return_value=False)
    pool = MagicMock()
    pool.acquire.return_value = acquire
    return pool, conn


# ---------------------------------------------------------------------------
# slugify
# ---------------------------------------------------------------------------

@pytest.mark.parametrize(
    "name,slug",
    [
        ("Gestione Ordini!", "gestione-ordini"),
        ("  Magazzino / Scorte  ", "magazzino-scorte"),
        ("???", "modulo"),
    ],
)
def test_slugify(name, slug):
    assert module_repo.slugify(name) == slug


# ---------------------------------------------------------------------------
# workspaces
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
@patch("app.repos.module_repo.get_pool")
async def test_default_workspace_is_reused(mock_get_pool):
    pool = _fake_pool()
    pool.fetchrow.return_value = {"id": uuid.uuid4(), "user_id": "default_user", "name": "WS"}
    mock_get_pool.return_value = pool

    ws = await module_repo.get_or_create_default_workspace()

    assert ws["user_id"] == "default_user"
    pool.fetchrow.assert_called_once()


@pytest.mark.asyncio
@patch("app.repos.module_repo.get_pool")
async def test_default_workspace_is_created(mock_get_pool):
    pool = _fake_pool()
    created = {"id": uuid.uuid4(), "user_id": "default_user", "name": "My ERP Workspace"}
    pool.fetchrow.side_effect = [None, created]
    mock_get_pool.return_value = pool

    ws = await module_repo.get_or_create_default_workspace()

    assert ws == created
    insert = pool.fetchrow.call_args_list[1][0][0]
    assert "INSERT INTO workspaces" in insert


# ---------------------------------------------------------------------------
# modules
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
@patch("app.repos.module_repo.get_pool")
async def test_create_module_stores_slug(mock_get_pool):
    pool = _fake_pool()
    pool.fetchrow.return_value = {"id": uuid.uuid4(), "name": "Gestione Ordini"}
    mock_get_pool.return_value = pool

    await module_repo.create_module(uuid.uuid4(), "Gestione Ordini", module_type="orders")

    args = pool.fetchrow.call_args[0]
    assert args[2] == "Gestione Ordini"
    assert args[3] == "gestione-ordini"
    assert args[4] == "orders"


@pytest.mark.asyncio
@patch("app.repos.module_repo.get_pool")
async def test_get_module_not_found(mock_get_pool):
    pool = _fake_pool()
    pool.fetchrow.return_value = None
    mock_get_pool.return_value = pool

    assert await module_repo.get_module(uuid.uuid4()) is None


@pytest.mark.asyncio
@patch("app.repos.module_repo.get_pool")
async def test_set_active_version_updates_both_tables(mock_get_pool):
    pool, conn = _transactional_pool()
    mock_get_pool.return_value = pool
    module_id, version_id = uuid.uuid4(), uuid.uuid4()

    await module_repo.set_active_version(
        module_id, version_id, Environment.STAGING, "https://erp-app-1.vercel.app",
    )

    assert conn.execute.await_count == 2
    module_sql = conn.execute.call_args_list[0][0]
    assert "staging_version_id = $2" in module_sql[0]
    assert module_sql[1:] == (module_id, version_id)
    version_sql = conn.execute.call_args_list[1][0]
    assert "staging_deploy_url = $2" in version_sql[0]
    assert version_sql[1:] == (version_id, "https://erp-app-1.vercel.app", "deployed_staging")
    conn.transaction.assert_called_once()


# ---------------------------------------------------------------------------
# module_versions
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
@patch("app.repos.module_repo.get_pool")
async def test_next_version_number(mock_get_pool):
    pool = _fake_pool()
    pool.fetchval.return_value = 3
    mock_get_pool.return_value = pool

    assert await module_repo.next_version_number(uuid.uuid4()) == 4


@pytest.mark.asyncio
@patch("app.repos.module_repo.get_pool")
async def test_create_version_serialises_files(mock_get_pool):
    pool = _fake_pool()
    row = _version_row()
    pool.fetchrow.return_value = row
    mock_get_pool.return_value = pool
    files = {"app/page.tsx": "export default function P() {}"}

    result = await module_repo.create_version(
        row["module_id"], 1, "Gestione ordini", files, status="deploying",
    )

    args = pool.fetchrow.call_args[0]
    assert json.loads(args[4]) == files
    assert args[9] is None
    assert result["files"] == files


@pytest.mark.asyncio
@patch("app.repos.module_repo.get_pool")
async def test_update_version_builds_assignments(mock_get_pool):
    pool = _fake_pool()
    mock_get_pool.return_value = pool
    version_id = uuid.uuid4()

    await module_repo.update_version(version_id, status="failed", build_log="Build error")

    query, *args = pool.execute.call_args[0]
    assert "status = $2" in query
    assert "build_log = $3" in query
    assert args == [version_id, "failed", "Build error"]


@pytest.mark.asyncio
@patch("app.repos.module_repo.get_pool")
async def test_update_version_encodes_files(mock_get_pool):
    pool = _fake_pool()
    mock_get_pool.return_value = pool

    await module_repo.update_version(uuid.uuid4(), files={"a.ts": "x"})

    query, _, encoded = pool.execute.call_args[0]
    assert "files = $2::jsonb" in query
    assert json.loads(encoded) == {"a.ts": "x"}


@pytest.mark.asyncio
async def test_update_version_rejects_unknown_columns():
    with pytest.raises(ValueError, match="module_id"):
        await module_repo.update_version(uuid.uuid4(), module_id="x")


@pytest.mark.asyncio
@patch("app.repos.module_repo.get_pool")
async def test_get_latest_version_parses_json(mock_get_pool):
    pool = _fake_pool()
    pool.fetchrow.return_value = _version_row(
        version_number=2, database_schema=json.dumps({"tables": ["ordini"]}),
    )
    mock_get_pool.return_value = pool

    result = await module_repo.get_latest_version(uuid.uuid4())

    assert result["version_number"] == 2
    assert result["database_schema"] == {"tables": ["ordini"]}
    assert isinstance(result["files"], dict)
