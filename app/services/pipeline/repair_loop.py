"""Generation-repair loop — generate, validate, ask the model to fix, repeat.

The loop is bounded twice: by attempt count and by a wall-clock budget
shared across all attempts.  Exhausting either degrades to the safe
template for the prompt, so callers always receive a valid file set.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable

from app.clients.ports import CompletionPort
from app.config import settings
from app.errors import RemoteError, StageTimeoutError
from app.services.pipeline.models import (
    Diagnostic,
    EditResponse,
    FileSet,
    RepairAttempt,
    RepairResult,
)
from app.services.pipeline.prompts import (
    SYSTEM_PROMPT,
    build_generation_prompt,
    build_modify_prompt,
    build_repair_prompt,
)
from app.services.pipeline.response_parser import parse_edit_response, parse_response
from app.services.pipeline.retry import run_with_timeout
from app.services.pipeline.templates import get_safe_template
from app.services.pipeline.validator import validate_files

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ModificationResult:
    """Outcome of :meth:`RepairLoop.modify`."""

    files: FileSet
    changed_files: list[str]
    repair: RepairResult
    edit: EditResponse


class RepairLoop:
    """Drives the completion port through generation and bounded repair.

    Bounds default to the values in :mod:`app.config`; tests override them
    directly together with *clock*.
    """

    def __init__(
        self,
        llm: CompletionPort,
        *,
        max_attempts: int | None = None,
        total_timeout: float | None = None,
        call_timeout: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._llm = llm
        self.max_attempts = (
            settings.REPAIR_MAX_ATTEMPTS if max_attempts is None else max_attempts
        )
        self.total_timeout = (
            settings.REPAIR_TIMEOUT_SECONDS if total_timeout is None else total_timeout
        )
        self.call_timeout = (
            settings.LLM_CALL_TIMEOUT_SECONDS if call_timeout is None else call_timeout
        )
        self._clock = clock

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def generate(self, prompt: str, *, name: str | None = None) -> RepairResult:
        """Generate a fresh module for *prompt*, then validate and repair it."""
        start = self._clock()
        logger.info("[GENERATE] Generating module code (%d-char prompt)", len(prompt))
        try:
            text = await run_with_timeout(
                self._llm.complete(
                    build_generation_prompt(prompt, name),
                    settings.LLM_GENERATE_MAX_TOKENS,
                    SYSTEM_PROMPT,
                ),
                self.call_timeout,
                stage="generate",
            )
        except (StageTimeoutError, RemoteError) as exc:
            logger.error("[GENERATE] Initial generation failed: %s", exc)
            return self._fallback(prompt, [], 1, f"Generation failed: {exc}", [])

        files = parse_response(text)
        if not files:
            logger.error("[GENERATE] Response contained no files. Using fallback template.")
            return self._fallback(prompt, [], 1, "No files in generated response", [])

        logger.info("[GENERATE] Parsed %d file(s): %s", len(files), ", ".join(files))
        return await self.generate_and_validate(files, prompt, start_time=start)

    async def generate_and_validate(
        self,
        initial_files: FileSet,
        prompt: str,
        *,
        attempt: int = 1,
        start_time: float | None = None,
    ) -> RepairResult:
        """Validate *initial_files*, repairing through the model until clean.

        Terminates on success, on reaching ``max_attempts``, on exceeding
        ``total_timeout`` since *start_time*, or on an unusable model reply.
        A per-call timeout with attempts left moves on to the next attempt
        with the same files.
        """
        start = self._clock() if start_time is None else start_time
        files = initial_files
        diagnostics: list[Diagnostic] = []
        history: list[RepairAttempt] = []

        while True:
            elapsed = self._clock() - start
            if elapsed > self.total_timeout:
                logger.error(
                    "[VALIDATION] Total budget of %.0fs exceeded. Using fallback template.",
                    self.total_timeout,
                )
                return self._fallback(
                    prompt, diagnostics, attempt,
                    f"Validation and repair exceeded {self.total_timeout:.0f}s",
                    history,
                )

            logger.info("[VALIDATION] Attempt %d: validating %d file(s)", attempt, len(files))
            diagnostics = validate_files(files)
            history.append(RepairAttempt(
                attempt_number=attempt,
                elapsed_ms=int(elapsed * 1000),
                files=files,
                diagnostics=diagnostics,
            ))

            if not diagnostics:
                logger.info("[VALIDATION] Code valid after %d attempt(s)", attempt)
                return RepairResult(
                    success=True,
                    files=files,
                    attempts=attempt,
                    message=f"Valid after {attempt} attempt(s)",
                    history=history,
                )

            logger.warning(
                "[VALIDATION] Found %d error(s) in: %s",
                len(diagnostics), ", ".join(d.file for d in diagnostics),
            )
            for d in diagnostics:
                logger.warning("  - %s", d.render())

            if attempt >= self.max_attempts:
                logger.error(
                    "[VALIDATION] Max attempts reached (%d). Using fallback template.",
                    self.max_attempts,
                )
                return self._fallback(
                    prompt, diagnostics, attempt,
                    f"Could not produce valid code after {attempt} attempts",
                    history,
                )

            logger.info(
                "[FIX] Asking model to repair (attempt %d/%d)", attempt + 1, self.max_attempts,
            )
            remaining = max(self.total_timeout - elapsed, 0.0)
            try:
                text = await run_with_timeout(
                    self._llm.complete(
                        build_repair_prompt(prompt, diagnostics),
                        settings.LLM_REPAIR_MAX_TOKENS,
                    ),
                    min(self.call_timeout, remaining),
                    stage="repair",
                )
            except StageTimeoutError:
                logger.warning("[FIX] Repair call timed out; retrying with attempts left")
                attempt += 1
                continue
            except RemoteError as exc:
                logger.error("[FIX] Repair call failed: %s", exc)
                return self._fallback(prompt, diagnostics, attempt, str(exc), history)

            fixed = parse_response(text)
            logger.info("[FIX] Regenerated %d file(s)", len(fixed))
            if not fixed:
                logger.error("[FIX] No files in repair response. Using fallback template.")
                return self._fallback(
                    prompt, diagnostics, attempt, "No files in repair response", history,
                )

            files = fixed
            attempt += 1

    async def modify(
        self,
        request: str,
        current_files: FileSet,
        *,
        module_name: str,
        version_number: int,
        last_change: str | None = None,
        database_schema: object = None,
    ) -> ModificationResult:
        """Apply a natural-language change to an existing file set.

        Only the files the model changed are validated.  If they cannot be
        repaired the model's edit is kept as-is and the failure is reported
        through ``repair.success``.
        """
        logger.info("[MODIFY] Generating change for %s v%d", module_name, version_number)
        text = await run_with_timeout(
            self._llm.complete(
                build_modify_prompt(
                    request,
                    current_files,
                    module_name=module_name,
                    version_number=version_number,
                    last_change=last_change,
                    database_schema=database_schema,
                ),
                settings.LLM_GENERATE_MAX_TOKENS,
                SYSTEM_PROMPT,
            ),
            self.call_timeout,
            stage="modify",
        )
        edit = parse_edit_response(text)
        if not edit.files:
            raise RemoteError("Model returned no modified files")
        if edit.explanation:
            logger.info("[MODIFY] Explanation: %s", edit.explanation[:200])
        if edit.migration:
            logger.info("[MODIFY] Migration SQL proposed (%d chars)", len(edit.migration))

        changed = list(edit.files)
        merged = {**current_files, **edit.files}
        logger.info("[MODIFY] Changed files: %s", ", ".join(changed))

        repair = await self.generate_and_validate(dict(edit.files), request)
        if repair.success:
            merged.update(repair.files)
            changed = sorted(set(changed) | set(repair.files))
        else:
            logger.warning("[MODIFY] Validation failed; keeping the model's edit unchanged")

        return ModificationResult(files=merged, changed_files=changed, repair=repair, edit=edit)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _fallback(
        self,
        prompt: str,
        diagnostics: list[Diagnostic],
        attempt: int,
        message: str,
        history: list[RepairAttempt],
    ) -> RepairResult:
        return RepairResult(
            success=False,
            files=get_safe_template(prompt),
            diagnostics=diagnostics,
            used_fallback=True,
            attempts=attempt,
            message=message,
            history=history,
        )
