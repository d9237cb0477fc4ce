"""Tests for build-log classification and the auto-fixer."""

import json

import pytest

from app.errors import RemoteError
from app.services.pipeline.autofix import (
    BuildLogAutoFixer,
    classify_build_error,
    flatten_events,
    summarize_logs,
)
from app.services.pipeline.models import BuildLogs
from tests.conftest import VALID_FORM, VALID_PAGE, FakeLLM, FakeVercel, hang

FILES = {"app/page.tsx": VALID_PAGE, "components/Form.tsx": VALID_FORM}


# ---------------------------------------------------------------------------
# classify_build_error
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "logs,expected",
    [
        ("Error: Cannot find module 'date-fns'", "missing_module"),
        ("Module not found: Can't resolve '@/lib/db'", "missing_module"),
        ("Type error: Property 'x' does not exist on type 'Ordine'", "type_error"),
        ("Syntax Error: Unexpected character", "syntax_error"),
        ("TypeError: Cannot read properties of undefined (reading 'map')", "runtime_error"),
        ("SyntaxError: Unexpected token '<'", "syntax_error"),
        ("export 'Form' (imported as 'Form') was not found in '../components/Form'", "import_error"),
        ("Error: Hydration failed because the initial UI does not match", "react_error"),
        ("> Build error occurred", "build_error"),
    ],
)
def test_classify_build_error(logs, expected):
    assert classify_build_error(logs).error_type == expected


def test_classify_first_pattern_wins():
    logs = "Build error occurred\nType error: x is not assignable\nCannot find module 'zod'"
    analysis = classify_build_error(logs)
    assert analysis.error_type == "missing_module"
    assert analysis.details == "Cannot find module 'zod'"


def test_classify_unknown_keeps_log_head():
    logs = "x" * 800
    analysis = classify_build_error(logs)
    assert analysis.error_type == "unknown"
    assert analysis.details == "x" * 500


# ---------------------------------------------------------------------------
# Log flattening / summary
# ---------------------------------------------------------------------------


def test_flatten_events():
    events = [
        {"type": "command", "payload": {"text": "npm run build"}},
        {"type": "stdout", "payload": {"text": "Creating an optimized production build"}},
        {"type": "stderr", "payload": {"text": "Type error: bad"}},
        {"type": "delimiter", "payload": {"text": "ignored"}},
        {"type": "exit", "payload": {"code": 1}},
        {"type": "exit", "payload": {"code": 0}},
    ]
    assert flatten_events(events) == (
        "npm run build\n"
        "Creating an optimized production build\n"
        "[ERROR] Type error: bad\n"
        "[EXIT CODE] 1"
    )


def test_summarize_prefers_stderr_line():
    logs = "building\n[ERROR] Type error: bad\n[ERROR] second"
    assert summarize_logs(logs) == "Type error: bad"


def test_summarize_uses_error_pattern():
    assert summarize_logs("step 1\nError: out of memory\n") == "out of memory"


def test_summarize_falls_back_to_tail():
    logs = "\n".join(f"line {i}" for i in range(20))
    summary = summarize_logs(logs)
    assert summary.splitlines() == [f"line {i}" for i in range(10, 20)]


# ---------------------------------------------------------------------------
# fetch_build_logs
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_fetch_build_logs_from_events():
    vercel = FakeVercel()
    vercel.events["dpl_1"] = {"events": [
        {"type": "stdout", "payload": {"text": "Compiling"}},
        {"type": "stderr", "payload": {"text": "Module not found: Can't resolve 'zod'"}},
    ]}
    fixer = BuildLogAutoFixer(FakeLLM(), vercel)

    logs = await fixer.fetch_build_logs("dpl_1")

    assert "[ERROR] Module not found" in logs.logs
    assert logs.error_summary == "Module not found: Can't resolve 'zod'"


@pytest.mark.asyncio
async def test_fetch_build_logs_falls_back_to_deployment():
    vercel = FakeVercel(["ERROR"])
    created = await vercel.trigger_deployment("p", repo_id=1)
    await vercel.get_deployment(created["id"])
    fixer = BuildLogAutoFixer(FakeLLM(), vercel)

    logs = await fixer.fetch_build_logs(created["id"])

    assert logs.logs.startswith("Error: ")
    assert logs.error_summary == 'Command "npm run build" exited with 1'


@pytest.mark.asyncio
async def test_fetch_build_logs_unknown_deployment():
    fixer = BuildLogAutoFixer(FakeLLM(), FakeVercel())

    logs = await fixer.fetch_build_logs("dpl_missing")

    assert "404" in logs.logs
    assert logs.error_summary == "Unknown build error"


# ---------------------------------------------------------------------------
# propose_fix
# ---------------------------------------------------------------------------

LOGS = BuildLogs(logs="[ERROR] Type error: 'qty' is possibly undefined", error_summary="Type error")


@pytest.mark.asyncio
async def test_propose_fix_applies_modified_files():
    fixed_form = VALID_FORM.replace("Aggiungi", "Salva")
    llm = FakeLLM(
        f"=== MODIFIED: components/Form.tsx ===\n{fixed_form}\n"
        "=== EXPLANATION ===\nGestito il valore undefined.\n"
    )
    fixer = BuildLogAutoFixer(llm, FakeVercel(), max_attempts=2, call_timeout=5.0)

    result = await fixer.propose_fix(LOGS, FILES, "Gestione ordini")

    assert result.success is True
    assert result.attempts == 1
    assert result.fixed_files["components/Form.tsx"] == fixed_form
    assert result.fixed_files["app/page.tsx"] == VALID_PAGE
    assert result.explanation == "Gestito il valore undefined."
    prompt = llm.calls[0]["prompt"]
    assert "type_error" in prompt
    assert "Gestione ordini" in prompt


@pytest.mark.asyncio
async def test_propose_fix_merges_package_update():
    llm = FakeLLM('=== PACKAGE_JSON_UPDATE ===\n{"dependencies": {"zod": "^3.23.0"}}\n')
    fixer = BuildLogAutoFixer(llm, FakeVercel(), max_attempts=1, call_timeout=5.0)

    result = await fixer.propose_fix(LOGS, FILES, "ordini")

    assert result.success is True
    manifest = json.loads(result.fixed_files["package.json"])
    assert manifest["dependencies"]["zod"] == "^3.23.0"
    assert manifest["dependencies"]["next"]


@pytest.mark.asyncio
async def test_propose_fix_gives_up_after_attempts():
    llm = FakeLLM("Non vedo errori.", f"=== MODIFIED: app/page.tsx ===\n{VALID_PAGE}\n")
    fixer = BuildLogAutoFixer(llm, FakeVercel(), max_attempts=2, call_timeout=5.0)

    result = await fixer.propose_fix(LOGS, FILES, "ordini")

    assert result.success is False
    assert result.fixed_files == FILES
    assert result.explanation == "Could not auto-fix after 2 attempts"
    assert len(llm.calls) == 2


@pytest.mark.asyncio
async def test_propose_fix_model_error():
    llm = FakeLLM(RemoteError("Anthropic API 500: boom", remote_status=500))
    fixer = BuildLogAutoFixer(llm, FakeVercel(), max_attempts=2, call_timeout=5.0)

    result = await fixer.propose_fix(LOGS, FILES, "ordini")

    assert result.success is False
    assert "boom" in result.explanation


@pytest.mark.asyncio
async def test_propose_fix_call_timeout():
    fixer = BuildLogAutoFixer(FakeLLM(hang), FakeVercel(), max_attempts=2, call_timeout=0.05)

    result = await fixer.propose_fix(LOGS, FILES, "ordini")

    assert result.success is False
    assert "timed out" in result.explanation


@pytest.mark.asyncio
async def test_auto_fix_reads_logs_then_proposes():
    vercel = FakeVercel()
    vercel.events["dpl_9"] = [{"type": "stderr", "payload": {"text": "Cannot find module 'zod'"}}]
    llm = FakeLLM('=== PACKAGE_JSON_UPDATE ===\n{"dependencies": {"zod": "^3"}}\n')
    fixer = BuildLogAutoFixer(llm, vercel, max_attempts=1, call_timeout=5.0)

    result = await fixer.auto_fix("dpl_9", FILES, "ordini")

    assert result.success is True
    assert "Cannot find module 'zod'" in llm.calls[0]["prompt"]
    assert "missing_module" in llm.calls[0]["prompt"]
