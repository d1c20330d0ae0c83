"""
Path Normalizer.

Ensures deterministic path comparison between what a worker reports and what
the caller authorized:
1. Separators - backslashes become forward slashes
2. Relative form - leading "./" and "/" are removed, "a/../b" collapses
3. Directory scopes - an authorized entry ending in "/" covers its subtree
"""

import posixpath
from typing import Iterable


def normalize_path(path: str) -> str:
    """Normalize a path to a relative POSIX path."""
    cleaned = path.strip().replace("\\", "/")
    if not cleaned:
        return ""
    normalized = posixpath.normpath(cleaned)
    while normalized.startswith("./"):
        normalized = normalized[2:]
    return normalized.lstrip("/")


def normalize_scope(scope: Iterable[str]) -> frozenset[str]:
    """
    Normalize an authorized scope.

    Directory entries keep a trailing "/" so they match by prefix.
    """
    entries = set()
    for entry in scope:
        normalized = normalize_path(entry)
        if not normalized or normalized == ".":
            continue
        if entry.strip().replace("\\", "/").endswith("/"):
            normalized = normalized.rstrip("/") + "/"
        entries.add(normalized)
    return frozenset(entries)


def is_in_scope(path: str, scope: frozenset[str]) -> bool:
    """Return True if a normalized path is covered by a normalized scope."""
    if path in scope:
        return True
    return any(entry.endswith("/") and path.startswith(entry) for entry in scope)


def out_of_scope(files: Iterable[str], scope: Iterable[str]) -> list[str]:
    """Files not covered by the scope, normalized, sorted and deduplicated."""
    normalized_scope = normalize_scope(scope)
    violations = set()
    for raw_path in files:
        cleaned = raw_path.strip().replace("\\", "/")
        if cleaned.startswith("/"):
            # scope entries are repo-relative; an absolute path is never covered
            violations.add(posixpath.normpath(cleaned))
            continue
        path = normalize_path(cleaned)
        if path and not is_in_scope(path, normalized_scope):
            violations.add(path)
    return sorted(violations)
