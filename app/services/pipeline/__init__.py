"""Module generation pipeline — prompt to running preview.

Sub-modules:
    models           — value types shared by every stage
    response_parser  — extract file sets from freeform LLM text
    validator        — per-file syntax check (tree-sitter)
    templates        — deterministic safe-template fallback
    scaffold         — static Next.js project files merged before publish
    prompts          — prompt builders for generation, repair and auto-fix
    retry            — bounded retry with backoff, stage timeouts
    repair_loop      — generate → validate → repair, bounded
    publisher        — single-commit publish to the source host
    autofix          — build-log classification and LLM fix proposals
    deployer         — project creation, build trigger, polling
    coordinator      — create / modify / promote / cleanup sagas
"""
