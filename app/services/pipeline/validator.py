"""Static validator — per-file syntax check of generated TypeScript / JSX.

Each source file is parsed in isolation with tree-sitter: the TSX grammar
for markup-capable files (``.tsx``, ``.jsx``, ``.js``) and the plain
TypeScript grammar for ``.ts``.  The first ``ERROR`` or ``MISSING`` node
becomes a :class:`Diagnostic`.

This proves the code is well-formed, nothing more.  Cross-file types,
missing packages and runtime behaviour are left to the deployment build.
"""

from __future__ import annotations

import logging

import tree_sitter_typescript as tsts
from tree_sitter import Language, Node, Parser

from app.services.pipeline.models import (
    SOURCE_EXTENSIONS,
    Diagnostic,
    FileSet,
    Location,
)

logger = logging.getLogger(__name__)

EMPTY_FILE_MESSAGE = "Empty file or missing content"

_TSX = Language(tsts.language_tsx())
_TYPESCRIPT = Language(tsts.language_typescript())

_SNIPPET_LEN = 40


def _language_for(path: str) -> Language:
    return _TYPESCRIPT if path.endswith(".ts") else _TSX


def _first_error(root: Node) -> Node | None:
    """Depth-first search for the first ERROR or MISSING node."""
    stack = [root]
    while stack:
        node = stack.pop()
        if node.is_missing or node.type == "ERROR":
            return node
        if node.has_error:
            # reversed so children are visited in source order
            stack.extend(reversed(node.children))
    return None


def _describe(node: Node) -> str:
    if node.is_missing:
        return f"Syntax error: missing '{node.type}'"
    snippet = (node.text or b"").decode("utf-8", errors="replace").strip()
    snippet = " ".join(snippet.split())[:_SNIPPET_LEN]
    if snippet:
        return f"Syntax error: unexpected '{snippet}'"
    return "Syntax error"


def check_source(path: str, content: str) -> Diagnostic | None:
    """Validate a single source file; ``None`` means it parsed cleanly."""
    if not content or not content.strip():
        return Diagnostic(file=path, message=EMPTY_FILE_MESSAGE)

    parser = Parser(_language_for(path))
    tree = parser.parse(content.encode("utf-8"))
    if not tree.root_node.has_error:
        return None

    node = _first_error(tree.root_node) or tree.root_node
    row, column = node.start_point
    return Diagnostic(
        file=path,
        message=_describe(node),
        location=Location(line=row + 1, column=column + 1),
    )


def validate_files(files: FileSet) -> list[Diagnostic]:
    """Return one diagnostic per failing source file.

    Files whose extension is not a source extension (config, styles,
    markdown, ...) are skipped.
    """
    diagnostics: list[Diagnostic] = []
    for path, content in files.items():
        if not path.endswith(SOURCE_EXTENSIONS):
            continue
        diagnostic = check_source(path, content)
        if diagnostic is not None:
            logger.debug("[VALIDATION] %s", diagnostic.render())
            diagnostics.append(diagnostic)
    return diagnostics
