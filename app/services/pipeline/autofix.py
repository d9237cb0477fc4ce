"""Build-log auto-fix — turn "why did the build fail" into a candidate fix.

This module never triggers a deployment itself; the deployment driver
publishes whatever file set it returns and starts the next build.
"""

from __future__ import annotations

import json
import logging
import re

from app.clients.ports import CompletionPort, DeployHostPort
from app.config import settings
from app.errors import RemoteError, StageTimeoutError
from app.services.pipeline.models import (
    AutoFixResult,
    BuildErrorAnalysis,
    BuildLogs,
    FileSet,
)
from app.services.pipeline.prompts import build_autofix_prompt
from app.services.pipeline.response_parser import parse_edit_response
from app.services.pipeline.retry import run_with_timeout
from app.services.pipeline.scaffold import PACKAGE_JSON, merge_package_update

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------

# Ordered: the first matching pattern wins.
_ERROR_PATTERNS: list[tuple[re.Pattern[str], str, str]] = [
    (
        re.compile(r"cannot find module ['\"][^'\"]+['\"]", re.IGNORECASE),
        "missing_module",
        "Add the missing dependency to package.json or fix the import path",
    ),
    (
        re.compile(r"module not found:[^\n]*", re.IGNORECASE),
        "missing_module",
        "Add the missing dependency to package.json or fix the import path",
    ),
    (
        re.compile(r"type error[^\n]*", re.IGNORECASE),
        "type_error",
        "Fix the TypeScript type errors",
    ),
    (
        re.compile(r"syntax error[^\n]*", re.IGNORECASE),
        "syntax_error",
        "Fix the syntax errors in the code",
    ),
    (
        re.compile(r"cannot read propert(?:y|ies)[^\n]*", re.IGNORECASE),
        "runtime_error",
        "Guard against null/undefined before accessing properties",
    ),
    (
        re.compile(r"unexpected token[^\n]*", re.IGNORECASE),
        "syntax_error",
        "Fix the JavaScript/TypeScript syntax",
    ),
    (
        re.compile(r"export[^\n]*was not found[^\n]*", re.IGNORECASE),
        "import_error",
        "Fix the module imports/exports",
    ),
    (
        re.compile(r"hydration (?:error|failed|mismatch)[^\n]*", re.IGNORECASE),
        "react_error",
        "Fix the React hydration mismatch between server and client",
    ),
    (
        re.compile(r"build error[^\n]*", re.IGNORECASE),
        "build_error",
        "Fix the build errors (dependencies, configuration, ...)",
    ),
]

_SUMMARY_PATTERNS: list[re.Pattern[str]] = [
    re.compile(r"error:\s*(.+)", re.IGNORECASE),
    re.compile(r"failed\s+to\s+(.+)", re.IGNORECASE),
    re.compile(r"cannot\s+(.+)", re.IGNORECASE),
]


def classify_build_error(logs: str) -> BuildErrorAnalysis:
    """Match *logs* against the known failure patterns."""
    for pattern, error_type, fix in _ERROR_PATTERNS:
        match = pattern.search(logs)
        if match:
            return BuildErrorAnalysis(
                error_type=error_type,
                details=match.group(0).strip(),
                suggested_fix=fix,
            )
    return BuildErrorAnalysis(
        error_type="unknown",
        details=logs[:500],
        suggested_fix="Read the log to identify the specific problem",
    )


def summarize_logs(logs: str) -> str:
    """One-line-ish summary: first stderr line, else a generic error match,
    else the last ten non-empty lines."""
    for line in logs.splitlines():
        if line.startswith("[ERROR] "):
            return line[len("[ERROR] "):][:200]
    for pattern in _SUMMARY_PATTERNS:
        match = pattern.search(logs)
        if match:
            return match.group(1).strip()[:200]
    lines = [ln for ln in logs.splitlines() if ln.strip()]
    return "\n".join(lines[-10:])[:300]


def _event_list(payload: object) -> list[dict]:
    """Normalise the events payload to a list of event dicts."""
    if isinstance(payload, list):
        return [e for e in payload if isinstance(e, dict)]
    if isinstance(payload, dict):
        for key in ("events", "data"):
            if isinstance(payload.get(key), list):
                return payload[key]
        for value in payload.values():
            if isinstance(value, list):
                return value
    return []


def flatten_events(events: list[dict]) -> str:
    lines: list[str] = []
    for event in events:
        kind = event.get("type")
        payload = event.get("payload") or {}
        text = payload.get("text") or event.get("text") or ""
        if kind in ("command", "stdout") and text:
            lines.append(text)
        elif kind == "stderr" and text:
            lines.append(f"[ERROR] {text}")
        elif kind == "exit":
            code = payload.get("code", event.get("code"))
            if code not in (0, None):
                lines.append(f"[EXIT CODE] {code}")
    return "\n".join(lines)


class BuildLogAutoFixer:
    """Fetches build logs and asks the model for a targeted fix."""

    def __init__(
        self,
        llm: CompletionPort,
        deploy_host: DeployHostPort,
        *,
        max_attempts: int | None = None,
        call_timeout: float | None = None,
    ) -> None:
        self._llm = llm
        self._host = deploy_host
        self.max_attempts = (
            settings.AUTOFIX_MAX_ATTEMPTS if max_attempts is None else max_attempts
        )
        self.call_timeout = (
            settings.LLM_CALL_TIMEOUT_SECONDS if call_timeout is None else call_timeout
        )

    async def fetch_build_logs(self, deployment_id: str) -> BuildLogs:
        """Build output for *deployment_id*.

        Falls back to the error fields of the deployment itself when the
        events API is unavailable or empty.
        """
        logger.info("[AUTO-FIX] Fetching build logs for %s", deployment_id)
        try:
            logs = flatten_events(_event_list(await self._host.get_deployment_events(deployment_id)))
        except RemoteError as exc:
            logger.warning("[AUTO-FIX] Events unavailable (%s), using deployment status", exc)
            logs = ""

        if not logs.strip():
            try:
                data = await self._host.get_deployment(deployment_id)
            except RemoteError as exc:
                logger.error("[AUTO-FIX] Could not read deployment %s: %s", deployment_id, exc)
                return BuildLogs(logs=str(exc), error_summary="Unknown build error")
            message = (
                data.get("errorMessage")
                or (data.get("error") or {}).get("message")
                or "Unknown error"
            )
            build_error = (data.get("build") or {}).get("error")
            logs = f"Error: {message}"
            if build_error:
                logs += f"\nBuild Error: {json.dumps(build_error, default=str)}"
            return BuildLogs(logs=logs, error_summary=message)

        summary = summarize_logs(logs)
        logger.info("[AUTO-FIX] %d chars of log, summary: %s", len(logs), summary[:100])
        return BuildLogs(logs=logs, error_summary=summary)

    async def auto_fix(
        self,
        deployment_id: str,
        current_files: FileSet,
        prompt: str,
        *,
        attempt: int = 1,
    ) -> AutoFixResult:
        """Fetch logs for a failed build and propose a fixed file set."""
        build_logs = await self.fetch_build_logs(deployment_id)
        return await self.propose_fix(build_logs, current_files, prompt, attempt=attempt)

    async def propose_fix(
        self,
        build_logs: BuildLogs,
        current_files: FileSet,
        prompt: str,
        *,
        attempt: int = 1,
    ) -> AutoFixResult:
        """Ask the model for a fix until it changes something or attempts run out."""
        analysis = classify_build_error(build_logs.logs)
        logger.info("[AUTO-FIX] Error type: %s", analysis.error_type)
        fix_prompt = build_autofix_prompt(build_logs.logs, analysis, current_files, prompt)

        while attempt <= self.max_attempts:
            logger.info("[AUTO-FIX] Attempt %d: generating fix", attempt)
            try:
                text = await run_with_timeout(
                    self._llm.complete(fix_prompt, settings.LLM_AUTOFIX_MAX_TOKENS),
                    self.call_timeout,
                    stage="autofix",
                )
            except (StageTimeoutError, RemoteError) as exc:
                logger.error("[AUTO-FIX] Fix generation failed: %s", exc)
                return AutoFixResult(
                    success=False,
                    fixed_files=dict(current_files),
                    explanation=str(exc),
                    attempts=attempt,
                )

            edit = parse_edit_response(text)
            fixed = {**current_files, **edit.files}
            if edit.package_json_update:
                fixed[PACKAGE_JSON] = merge_package_update(
                    edit.package_json_update, current_files.get(PACKAGE_JSON),
                )
                logger.info("[AUTO-FIX] package.json updated")

            if fixed != current_files:
                changed = sorted(p for p in fixed if current_files.get(p) != fixed[p])
                logger.info("[AUTO-FIX] Fix touches: %s", ", ".join(changed))
                return AutoFixResult(
                    success=True,
                    fixed_files=fixed,
                    explanation=edit.explanation or "Automatic fix applied",
                    attempts=attempt,
                )

            logger.warning("[AUTO-FIX] Model proposed no change, retrying")
            attempt += 1

        logger.error("[AUTO-FIX] Giving up after %d attempt(s)", self.max_attempts)
        return AutoFixResult(
            success=False,
            fixed_files=dict(current_files),
            explanation=f"Could not auto-fix after {self.max_attempts} attempts",
            attempts=attempt - 1,
        )
