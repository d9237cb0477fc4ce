"""LLM response parser — extract file sets from freeform model output.

The generation prompts ask the model to separate files with marker lines::

    === FILENAME: app/page.tsx ===
    <full file content>

Modification and auto-fix prompts use a sectioned variant
(``=== MODIFIED: path ===``, ``=== PACKAGE_JSON_UPDATE ===``,
``=== MIGRATION: name ===``, ``=== EXPLANATION ===``).

All functions are pure string processors — no I/O, no side effects, and
none of them raise on malformed input.
"""

from __future__ import annotations

import json
import logging
import re

from app.errors import UnsafePathError
from app.services.pipeline.models import EditResponse, FileSet, normalise_path

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_FILENAME_MARKER_RE = re.compile(r"=== FILENAME: (.+?) ===")

# Any line that is only a code fence, with or without a language tag
_FENCE_LINE_RE = re.compile(r"^[ \t]*```[\w.+-]*[ \t]*$")

# Bare path line used by the fallback parser, e.g. ``app/page.tsx:`` or
# ``**components/Form.tsx**``
_PATH_LINE_RE = re.compile(
    r"^[ \t]*(?:#+[ \t]*)?\**`?([\w./-]+\.(?:tsx|ts|jsx|js|json))`?\**:?[ \t]*$",
    re.MULTILINE,
)
_FALLBACK_MIN_CONTENT = 10

_SECTION_RE = re.compile(
    r"^=== (MODIFIED|MIGRATION|PACKAGE_JSON_UPDATE|EXPLANATION)(?:: (.+?))? ===[ \t]*$",
    re.MULTILINE,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def strip_fences(text: str) -> str:
    """Drop every fence-only line from *text* and trim surrounding whitespace."""
    lines = [ln for ln in text.splitlines() if not _FENCE_LINE_RE.match(ln)]
    return "\n".join(lines).strip()


def _safe_path(raw: str) -> str | None:
    try:
        return normalise_path(raw)
    except UnsafePathError:
        logger.warning("Skipping unsafe path in LLM response: %r", raw)
        return None


# ---------------------------------------------------------------------------
# Public functions
# ---------------------------------------------------------------------------


def parse_response(text: str) -> FileSet:
    """Extract a file set from *text*.

    Uses ``=== FILENAME: <path> ===`` markers when present; otherwise falls
    back to bare path lines (see :func:`parse_bare_paths`).  Returns an
    empty dict when nothing recognisable is found.
    """
    if not text:
        return {}

    files: FileSet = {}
    markers = list(_FILENAME_MARKER_RE.finditer(text))
    for i, marker in enumerate(markers):
        end = markers[i + 1].start() if i + 1 < len(markers) else len(text)
        path = _safe_path(marker.group(1))
        content = strip_fences(text[marker.end():end])
        if path and content:
            files[path] = content

    if files:
        return files
    return parse_bare_paths(text)


def parse_bare_paths(text: str) -> FileSet:
    """Fallback parser: a line holding only a source path starts a file.

    Content runs to the next such line.  Candidates with ten characters or
    fewer of content are discarded.
    """
    files: FileSet = {}
    heads = list(_PATH_LINE_RE.finditer(text))
    for i, head in enumerate(heads):
        end = heads[i + 1].start() if i + 1 < len(heads) else len(text)
        content = strip_fences(text[head.end():end])
        if len(content) <= _FALLBACK_MIN_CONTENT:
            continue
        path = _safe_path(head.group(1))
        if path:
            files[path] = content
    return files


def serialize_files(files: FileSet) -> str:
    """Render *files* in the ``=== FILENAME ===`` format understood by
    :func:`parse_response`."""
    blocks = [f"=== FILENAME: {path} ===\n{content}\n" for path, content in files.items()]
    return "\n".join(blocks)


def parse_edit_response(text: str) -> EditResponse:
    """Parse a sectioned modification / auto-fix reply.

    ``MODIFIED`` sections become files.  When the reply has none, the
    ``FILENAME`` format is tried instead.  A ``PACKAGE_JSON_UPDATE`` body
    that is not valid JSON is ignored with a warning.
    """
    if not text:
        return EditResponse()

    files: FileSet = {}
    package_update: dict | None = None
    migration: str | None = None
    explanation: str | None = None

    sections = list(_SECTION_RE.finditer(text))
    for i, section in enumerate(sections):
        end = sections[i + 1].start() if i + 1 < len(sections) else len(text)
        body = strip_fences(text[section.end():end])
        kind = section.group(1)
        if kind == "MODIFIED":
            path = _safe_path(section.group(2) or "")
            if path and body:
                files[path] = body
        elif kind == "MIGRATION":
            if body and migration is None:
                migration = body
        elif kind == "PACKAGE_JSON_UPDATE":
            if not body:
                continue
            try:
                parsed = json.loads(body)
            except json.JSONDecodeError:
                logger.warning("[AUTO-FIX] Could not parse PACKAGE_JSON_UPDATE block")
                continue
            if isinstance(parsed, dict):
                package_update = parsed
        elif kind == "EXPLANATION":
            if body and explanation is None:
                explanation = body

    if not files:
        files = parse_response(text[: sections[0].start()] if sections else text)

    return EditResponse(
        files=files,
        package_json_update=package_update,
        migration=migration,
        explanation=explanation,
    )
