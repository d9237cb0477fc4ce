"""Shared test fixtures — in-memory hosts and settings patches.

Provides:
- ``set_test_config`` — autouse fixture that patches common settings
- ``FakeLLM`` — scripted completion port
- ``FakeGitHub`` — in-memory git data API (repos, refs, commits, trees, blobs)
- ``FakeVercel`` — in-memory deployment host with scripted build states
- ``FakeStore`` — in-memory stand-in for :mod:`app.repos.module_repo`
- ``no_sleep`` — awaitable that records requested delays and returns at once
- canned TSX sources (``VALID_PAGE``, ``VALID_FORM``, ``BROKEN_FORM``)
"""

import asyncio
import itertools
import os
import uuid

import pytest

from app.errors import ConflictError, RemoteError
from app.services.pipeline.models import ENVIRONMENT_FIELDS

os.environ.setdefault("TESTING", "1")


def pytest_configure(config):
    """Register custom markers.

    Tests that need a real database or remote host should be decorated with
    ``@pytest.mark.integration`` and are skipped with ``-m 'not integration'``.
    """
    config.addinivalue_line(
        "markers",
        "integration: tests requiring external services (database, GitHub, Vercel)",
    )


# ---------------------------------------------------------------------------
# Environment patching
# ---------------------------------------------------------------------------

_SETTINGS_PATCHES: dict[str, object] = {
    "app.config.settings.ANTHROPIC_API_KEY": "test-key",
    "app.config.settings.GITHUB_TOKEN": "ghp_test",
    "app.config.settings.VERCEL_TOKEN": "vercel-test",
    "app.config.settings.VERCEL_TEAM_ID": "",
    "app.config.settings.SUPABASE_URL": "",
    "app.config.settings.SUPABASE_ANON_KEY": "",
    "app.config.settings.FRONTEND_URL": "http://localhost:3000",
    "app.config.settings.REPO_NAME_PREFIX": "erp-app-",
    "app.config.settings.AUTOFIX_ENABLED": True,
    "app.config.settings.CLEANUP_PAUSE_SECONDS": 0.0,
}


@pytest.fixture(autouse=True)
def set_test_config(monkeypatch):
    """Patch common application settings for a safe test environment."""
    for target, value in _SETTINGS_PATCHES.items():
        monkeypatch.setattr(target, value)


# ---------------------------------------------------------------------------
# Canned sources
# ---------------------------------------------------------------------------

VALID_PAGE = """'use client';

import { useState } from 'react';
import Form from '../components/Form';

export default function Page() {
  const [items, setItems] = useState<string[]>([]);
  return (
    <main className="p-8">
      <h1 className="text-2xl font-bold">Ordini</h1>
      <Form onAdd={(item: string) => setItems([...items, item])} />
      <ul>
        {items.map((item, i) => (
          <li key={i}>{item}</li>
        ))}
      </ul>
    </main>
  );
}"""

VALID_FORM = """'use client';

import { useState } from 'react';

export default function Form({ onAdd }: { onAdd: (item: string) => void }) {
  const [value, setValue] = useState('');
  return (
    <form
      onSubmit={(e) => {
        e.preventDefault();
        onAdd(value);
        setValue('');
      }}
    >
      <input value={value} onChange={(e) => setValue(e.target.value)} />
      <button type="submit">Aggiungi</button>
    </form>
  );
}"""

# Missing closing brace of the component body.
BROKEN_FORM = """'use client';

export default function Form() {
  return <form className="p-4"></form>;
"""


def filename_response(files: dict[str, str]) -> str:
    """A model reply in the ``=== FILENAME ===`` format."""
    return "\n\n".join(f"=== FILENAME: {p} ===\n{c}" for p, c in files.items())


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class Recorder:
    """Collects the delays passed to an injected ``sleep``."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


@pytest.fixture
def no_sleep() -> Recorder:
    return Recorder()


async def hang() -> str:
    await asyncio.sleep(3600)
    return ""


class FakeLLM:
    """Scripted :class:`CompletionPort`.

    Each queued item is returned in order; exceptions are raised and
    coroutine functions (e.g. :func:`hang`) are awaited.
    """

    def __init__(self, *responses) -> None:
        self.responses = list(responses)
        self.calls: list[dict] = []

    async def complete(self, prompt: str, max_tokens: int, system_prompt: str | None = None) -> str:
        self.calls.append(
            {"prompt": prompt, "max_tokens": max_tokens, "system_prompt": system_prompt},
        )
        if not self.responses:
            raise AssertionError("unexpected completion call")
        item = self.responses.pop(0)
        if isinstance(item, BaseException):
            raise item
        if callable(item):
            return await item()
        return item


class FakeGitHub:
    """In-memory source host with git data semantics.

    ``fail(method, *errors)`` queues errors raised by the next calls to
    *method* before it behaves normally.
    """

    def __init__(self, login: str = "octo") -> None:
        self.login = login
        self.repos: dict[str, dict] = {}
        self.refs: dict[tuple[str, str], str] = {}
        self.commits: dict[str, dict] = {}
        self.trees: dict[str, dict[str, str]] = {}
        self.blobs: dict[str, str] = {}
        self.calls: list[str] = []
        self._failures: dict[str, list[Exception]] = {}
        self._ids = itertools.count(1)

    def fail(self, method: str, *errors: Exception) -> None:
        self._failures.setdefault(method, []).extend(errors)

    def _enter(self, method: str) -> None:
        self.calls.append(method)
        queue = self._failures.get(method)
        if queue:
            raise queue.pop(0)

    def _sha(self, kind: str) -> str:
        return f"{kind}{next(self._ids):06d}"

    def add_repo(self, name: str, branch: str = "main") -> dict:
        """Create a repository with one auto-init commit on *branch*."""
        repo = {
            "id": 1000 + len(self.repos),
            "name": name,
            "owner": {"login": self.login},
            "default_branch": branch,
            "html_url": f"https://github.com/{self.login}/{name}",
        }
        self.repos[name] = repo
        readme = self._sha("blob")
        self.blobs[readme] = f"# {name}\n"
        tree = self._sha("tree")
        self.trees[tree] = {"README.md": readme}
        commit = self._sha("commit")
        self.commits[commit] = {"tree": {"sha": tree}, "parents": [], "message": "Initial commit"}
        self.refs[(name, f"heads/{branch}")] = commit
        return repo

    def files_at(self, name: str, branch: str = "main") -> dict[str, str]:
        tip = self.refs[(name, f"heads/{branch}")]
        tree = self.trees[self.commits[tip]["tree"]["sha"]]
        return {path: self.blobs[sha] for path, sha in tree.items()}

    def commit_count(self, name: str, branch: str = "main") -> int:
        count, sha = 0, self.refs.get((name, f"heads/{branch}"))
        while sha:
            count += 1
            parents = self.commits[sha]["parents"]
            sha = parents[0] if parents else None
        return count

    async def get_authenticated_user(self) -> dict:
        self._enter("get_authenticated_user")
        return {"login": self.login, "id": 1}

    async def create_repo(self, name, *, description="", private=True) -> dict:
        self._enter("create_repo")
        if name in self.repos:
            raise ConflictError(f"GitHub create repo: {name} already exists")
        return dict(self.add_repo(name))

    async def get_repo(self, owner, name) -> dict:
        self._enter("get_repo")
        if name not in self.repos:
            raise RemoteError("GitHub get repo failed (404): Not Found", remote_status=404)
        return dict(self.repos[name])

    async def get_ref(self, owner, name, ref) -> dict:
        self._enter("get_ref")
        sha = self.refs.get((name, ref))
        if sha is None:
            raise RemoteError("GitHub get ref failed (404): Not Found", remote_status=404)
        return {"ref": f"refs/{ref}", "object": {"sha": sha}}

    async def get_commit(self, owner, name, sha) -> dict:
        self._enter("get_commit")
        return {"sha": sha, **self.commits[sha]}

    async def create_blob(self, owner, name, content) -> str:
        self._enter("create_blob")
        sha = self._sha("blob")
        self.blobs[sha] = content
        return sha

    async def create_tree(self, owner, name, entries, *, base_tree=None) -> str:
        self._enter("create_tree")
        tree = dict(self.trees.get(base_tree, {}))
        tree.update({e["path"]: e["sha"] for e in entries})
        sha = self._sha("tree")
        self.trees[sha] = tree
        return sha

    async def create_commit(self, owner, name, message, tree, parents) -> str:
        self._enter("create_commit")
        sha = self._sha("commit")
        self.commits[sha] = {"tree": {"sha": tree}, "parents": list(parents), "message": message}
        return sha

    async def update_ref(self, owner, name, ref, sha) -> None:
        self._enter("update_ref")
        self.refs[(name, ref)] = sha

    async def delete_repo(self, owner, name) -> bool:
        self._enter("delete_repo")
        return self.repos.pop(name, None) is not None

    async def list_repos(self) -> list[dict]:
        self._enter("list_repos")
        return [dict(r) for r in self.repos.values()]


class FakeVercel:
    """In-memory deployment host.

    Each positional argument scripts one triggered build as the sequence of
    states returned by successive polls (the last one repeats).  A state may
    be an exception, raised by that poll, or a raw payload (dict or list)
    returned as is.
    """

    def __init__(self, *builds) -> None:
        self.builds = [list(b) for b in builds]
        self.projects: dict[str, dict] = {}
        self.deployments: dict[str, dict] = {}
        self.events: dict[str, object] = {}
        self.triggered: list[dict] = []
        self.polls = 0

    async def create_project(self, name, *, repo, env=None) -> dict:
        if name in self.projects:
            raise ConflictError(f"Vercel create project: {name} already exists")
        self.projects[name] = {"id": f"prj_{name}", "name": name, "repo": repo, "env": env or {}}
        return dict(self.projects[name])

    async def get_project(self, name) -> dict:
        return dict(self.projects[name])

    async def trigger_deployment(self, project, *, repo_id, ref="main") -> dict:
        states = self.builds.pop(0) if self.builds else ["READY"]
        deployment_id = f"dpl_{len(self.deployments) + 1}"
        self.deployments[deployment_id] = {"states": states, "polls": 0}
        self.triggered.append({"project": project, "repo_id": repo_id, "ref": ref})
        return {"id": deployment_id, "readyState": "QUEUED"}

    async def get_deployment(self, deployment_id) -> dict:
        self.polls += 1
        deployment = self.deployments.get(deployment_id)
        if deployment is None:
            raise RemoteError("Vercel get deployment failed (404): Not Found", remote_status=404)
        states = deployment["states"]
        state = states[min(deployment["polls"], len(states) - 1)]
        deployment["polls"] += 1
        if isinstance(state, BaseException):
            raise state
        if isinstance(state, (dict, list)):
            return state
        body = {"id": deployment_id, "readyState": state, "url": f"{deployment_id}.vercel.app"}
        if state == "ERROR":
            body["errorMessage"] = 'Command "npm run build" exited with 1'
            body["inspectorUrl"] = f"https://vercel.com/inspect/{deployment_id}"
        return body

    async def get_deployment_events(self, deployment_id) -> object:
        return self.events.get(deployment_id, [])

    async def delete_project(self, name) -> bool:
        return self.projects.pop(name, None) is not None

    async def list_projects(self, *, search=None) -> list[dict]:
        return [
            dict(p) for p in self.projects.values()
            if not search or search in p["name"]
        ]


class FakeStore:
    """In-memory implementation of the :mod:`app.repos.module_repo` API."""

    def __init__(self) -> None:
        self.workspaces: dict[str, dict] = {}
        self.modules: dict[str, dict] = {}
        self.versions: dict[str, dict] = {}

    async def get_workspace(self, workspace_id):
        return self.workspaces.get(str(workspace_id))

    async def get_or_create_default_workspace(self) -> dict:
        if not self.workspaces:
            ws_id = str(uuid.uuid4())
            self.workspaces[ws_id] = {"id": ws_id, "user_id": "default_user", "name": "My ERP Workspace"}
        return next(iter(self.workspaces.values()))

    async def create_module(self, workspace_id, name, description=None, module_type=None) -> dict:
        module_id = str(uuid.uuid4())
        self.modules[module_id] = {
            "id": module_id,
            "workspace_id": workspace_id,
            "name": name,
            "type": module_type,
            "description": description,
            "dev_version_id": None,
            "staging_version_id": None,
            "prod_version_id": None,
        }
        return dict(self.modules[module_id])

    async def get_module(self, module_id):
        module = self.modules.get(str(module_id))
        return dict(module) if module else None

    async def set_active_version(self, module_id, version_id, environment, deploy_url) -> None:
        fields = ENVIRONMENT_FIELDS[environment]
        self.modules[str(module_id)][fields.version_field] = str(version_id)
        version = self.versions[str(version_id)]
        version[fields.deploy_url_field] = deploy_url
        version["status"] = fields.status.value

    async def next_version_number(self, module_id) -> int:
        numbers = [v["version_number"] for v in self.versions.values() if v["module_id"] == str(module_id)]
        return max(numbers, default=0) + 1

    async def create_version(
        self, module_id, version_number, prompt, files, *, status="draft",
        used_fallback=False, created_by=None, parent_version_id=None, database_schema=None,
    ) -> dict:
        version_id = str(uuid.uuid4())
        self.versions[version_id] = {
            "id": version_id,
            "module_id": str(module_id),
            "version_number": version_number,
            "prompt": prompt,
            "files": dict(files),
            "status": status,
            "used_fallback": used_fallback,
            "created_by": created_by,
            "parent_version_id": parent_version_id,
            "database_schema": database_schema,
            "github_repo_url": None,
            "dev_deploy_url": None,
            "staging_deploy_url": None,
            "prod_deploy_url": None,
            "build_log": None,
        }
        return dict(self.versions[version_id])

    async def update_version(self, version_id, **fields) -> None:
        self.versions[str(version_id)].update(fields)

    async def get_version(self, version_id):
        version = self.versions.get(str(version_id))
        return dict(version) if version else None

    async def get_latest_version(self, module_id):
        mine = [v for v in self.versions.values() if v["module_id"] == str(module_id)]
        return dict(max(mine, key=lambda v: v["version_number"])) if mine else None

    async def list_versions(self, module_id) -> list[dict]:
        mine = [v for v in self.versions.values() if v["module_id"] == str(module_id)]
        return sorted(mine, key=lambda v: v["version_number"], reverse=True)
