"""Required file layout of an SDK tree.

Entries are relative paths or glob patterns under the SDK root. A glob
extension (``main.*``) stands for the SDK's language extension, so one list
covers every language.
"""
from __future__ import annotations

from typing import Iterable, Sequence

from .context import Context

DOC_PAGES = ("installation", "quickstart", "reference", "examples", "architecture", "testing")

REQUIRED_PATHS: tuple[str, ...] = (
    "README.md",
    *(f"docs/{page}.md" for page in DOC_PAGES),
    "runtime/dagger.json",
    "runtime/main.*",
    "runtime/runtime/dag.*",
    "runtime/runtime/dag/core.*",
    "runtime/runtime/dag/wrappers.*",
)


def _is_pattern(entry: str) -> bool:
    return any(char in entry for char in "*?[")


def missing_paths(source: Context, required: Iterable[str] = REQUIRED_PATHS) -> list[str]:
    """Return the required entries that have no match under ``source``."""
    missing: list[str] = []
    for entry in required:
        if _is_pattern(entry):
            if not [match for match in source.glob(entry) if (source.root / match).is_file()]:
                missing.append(entry)
        elif not (source.root / entry).is_file():
            missing.append(entry)
    return missing


def required_paths(extra: Sequence[str] = ()) -> tuple[str, ...]:
    """Built-in layout plus project-specific entries, without duplicates."""
    seen = dict.fromkeys(REQUIRED_PATHS)
    seen.update(dict.fromkeys(extra))
    return tuple(seen)
