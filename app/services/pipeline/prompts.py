"""Prompt builders for generation, repair, modification and build auto-fix.

Every prompt asks for the ``=== FILENAME ===`` / ``=== MODIFIED ===``
delimiter formats understood by :mod:`response_parser`.
"""

from __future__ import annotations

import json

from app.services.pipeline.models import BuildErrorAnalysis, Diagnostic, FileSet

LOG_EXCERPT_LIMIT = 3000
FILES_JSON_LIMIT = 5000

SYSTEM_PROMPT = """You are an expert Next.js and TypeScript developer building modules \
for a small-business ERP.
Generate COMPLETE, COMPILABLE, WORKING code.
Never leave code incomplete or with placeholders.
All types must be complete.
All JSX tags must be closed.
All functions must be fully implemented.
All user-facing text must be in Italian."""

_COMPLETENESS_RULES = """CRITICAL INSTRUCTIONS - READ CAREFULLY:

1. You MUST generate COMPLETE, COMPILABLE code
2. NEVER leave code incomplete or with placeholders
3. ALL type definitions must be complete:
   BAD:  stato: 'bozza' |
   GOOD: stato: 'bozza' | 'confermato' | 'spedito'
4. ALL JSX tags must be properly closed
5. ALL functions must have complete implementations
6. NO comments like '// ... rest of code'
7. Check mentally that the code compiles before responding

If you're unsure, prefer SIMPLE working code over complex broken code."""


def build_generation_prompt(prompt: str, name: str | None = None) -> str:
    """First-pass prompt for a brand-new module."""
    title = f' "{name}"' if name else ""
    return f"""Create a new ERP module{title} with this description: {prompt}

Generate a complete, working Next.js (App Router) application.
Create ONLY these files:
- app/page.tsx (main page, a client component)
- components/Form.tsx (the data-entry form)

Use Tailwind for the UI. Keep data in React state; no backend calls.

Return ONLY code, each file introduced by a line of the form:
=== FILENAME: path/file.tsx ==="""


def build_repair_prompt(prompt: str, diagnostics: list[Diagnostic]) -> str:
    """Ask the model to regenerate every file, fixing *diagnostics*."""
    errors = "\n".join(f"- {d.render()}" for d in diagnostics)
    return f"""{_COMPLETENESS_RULES}

---

The previous code had these errors:
{errors}

Original request: {prompt}

REGENERATE the COMPLETE code fixing these errors.
MAKE SURE that:
- every union type is complete
- every function is closed correctly
- nothing is left incomplete
- every import is correct
- every React component is valid
- every JSX tag is closed
- every TypeScript type is defined

Return ONLY code, separated by === FILENAME: path/file.tsx ==="""


def build_modify_prompt(
    request: str,
    current_files: FileSet,
    *,
    module_name: str,
    version_number: int,
    last_change: str | None = None,
    database_schema: object = None,
) -> str:
    """Context-aware prompt for changing an existing module version."""
    schema = (
        json.dumps(database_schema, indent=2, default=str)
        if database_schema else "No schema defined"
    )
    return f"""SYSTEM: modular ERP modification assistant

WORKSPACE CONTEXT:
- Module: {module_name}
- Version: {version_number}
- Last change: {last_change or 'N/A'}

CURRENT CODE:
{json.dumps(current_files, indent=2)}

CURRENT DATABASE SCHEMA:
{schema}

USER REQUEST:
{request}

CRITICAL INSTRUCTIONS:
1. Change ONLY the files that need it, each as === MODIFIED: path/to/file.tsx ===
2. Keep backwards compatibility where possible
3. If the database schema changes, add a SQL migration as === MIGRATION: migration.sql ===
4. Add sensible business validations
5. All TypeScript types must be complete
6. All JSX tags must be closed
7. All functions must be fully implemented
8. Do NOT leave incomplete code or placeholders

OUTPUT FORMAT:
=== MODIFIED: path/to/file.tsx ===
[the full content of the changed file]

=== MIGRATION: migration.sql ===
[only if the schema changes, otherwise omit this section]

=== EXPLANATION ===
[short explanation of the change, in Italian]"""


def _truncate(text: str, limit: int, marker: str) -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + f"\n... ({marker} truncated)"


def build_autofix_prompt(
    logs: str,
    analysis: BuildErrorAnalysis,
    current_files: FileSet,
    prompt: str,
) -> str:
    """Turn a failed build into a targeted fix request."""
    files_json = _truncate(json.dumps(current_files, indent=2), FILES_JSON_LIMIT, "code")
    return f"""SYSTEM: auto-fix assistant for deployment build errors

IDENTIFIED ERROR:
Type: {analysis.error_type}
Details: {analysis.details}
Suggestion: {analysis.suggested_fix}

BUILD LOG:
```
{_truncate(logs, LOG_EXCERPT_LIMIT, "log")}
```

CURRENT CODE:
```json
{files_json}
```

ORIGINAL REQUEST:
{prompt}

CRITICAL INSTRUCTIONS:
1. Read the build log and find the specific error
2. Change ONLY the files needed to fix it
3. The code must be COMPLETE and COMPILABLE
4. If a module is missing, add it through PACKAGE_JSON_UPDATE
5. Keep compatibility with the rest of the code
6. Do NOT touch files unrelated to the error

OUTPUT FORMAT:
=== MODIFIED: path/to/file.tsx ===
[full content of the changed file]

=== PACKAGE_JSON_UPDATE ===
[only if needed: JSON with "dependencies" / "devDependencies" to add]

=== EXPLANATION ===
[short explanation of the fix, in Italian]"""
