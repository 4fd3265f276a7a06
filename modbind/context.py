"""Immutable references to directory and file trees.

A ``Context`` is the only way host-rooted data reaches an operation. It is a
value: narrowing it with ``directory()`` or ``file()`` builds a new value and
never touches the parent. Contexts do not read the filesystem when they are
created; the resolver and the sandbox do that at invocation time.
"""
from __future__ import annotations

import fnmatch
import os
import shutil
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from types import MappingProxyType
from typing import Iterator, Mapping, Sequence


def normalize_subpath(subpath: str) -> str:
    """Normalize a sub-path to a relative posix form.

    Leading slashes are dropped so ``"/"`` means the context root. Returns
    ``"."`` for the root itself.

    Raises:
        ValueError: If the path escapes the root via ``..``
    """
    parts: list[str] = []
    for part in PurePosixPath(subpath.replace("\\", "/")).parts:
        if part in ("/", "."):
            continue
        if part == "..":
            if not parts:
                raise ValueError(f"Path {subpath!r} escapes the context root")
            parts.pop()
            continue
        parts.append(part)
    return "/".join(parts) or "."


def join_subpath(base: str, subpath: str) -> str:
    """Join two normalized sub-paths."""
    if base == ".":
        return normalize_subpath(subpath)
    return normalize_subpath(f"{base}/{subpath}")


def is_ignored(relative: str, patterns: Sequence[str]) -> bool:
    """Check whether a relative posix path or any of its parents matches a pattern."""
    if not patterns:
        return False
    parts = relative.split("/")
    for index in range(len(parts)):
        prefix = "/".join(parts[: index + 1])
        name = parts[index]
        for pattern in patterns:
            if fnmatch.fnmatch(prefix, pattern) or fnmatch.fnmatch(name, pattern):
                return True
    return False


@dataclass(frozen=True, slots=True)
class File:
    """Reference to a single file inside a context."""

    path: Path
    logical_path: str = "."

    @property
    def name(self) -> str:
        return self.path.name

    def read_bytes(self) -> bytes:
        return self.path.read_bytes()

    def read_text(self, encoding: str = "utf-8") -> str:
        return self.path.read_text(encoding=encoding)


@dataclass(frozen=True, slots=True)
class Context:
    """Immutable reference to a directory tree plus named sub-paths.

    Attributes:
        root: Absolute path of the tree on the host.
        logical_path: Sub-path of ``root`` relative to the anchor it was
            derived from (``"."`` for the anchor itself).
        derived_paths: Logical name -> sub-path relative to ``root``.
        ignore: Glob patterns excluded when the tree is walked or mounted.
    """

    root: Path
    logical_path: str = "."
    derived_paths: Mapping[str, str] = field(default_factory=dict)
    ignore: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "root", Path(self.root))
        object.__setattr__(
            self,
            "derived_paths",
            MappingProxyType({k: normalize_subpath(v) for k, v in self.derived_paths.items()}),
        )
        object.__setattr__(self, "ignore", tuple(self.ignore))

    def __hash__(self) -> int:
        return hash((self.root, self.logical_path, tuple(sorted(self.derived_paths.items())), self.ignore))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Context):
            return NotImplemented
        return (
            self.root == other.root
            and self.logical_path == other.logical_path
            and dict(self.derived_paths) == dict(other.derived_paths)
            and self.ignore == other.ignore
        )

    @classmethod
    def of(cls, path: str | Path, **derived_paths: str) -> "Context":
        """Build an anchor context for a host directory."""
        return cls(root=Path(path).expanduser().resolve(), derived_paths=derived_paths)

    def named(self, name: str) -> str:
        """Return the sub-path registered under a logical name."""
        try:
            return self.derived_paths[name]
        except KeyError:
            raise KeyError(
                f"No derived path named {name!r}; known: {', '.join(sorted(self.derived_paths)) or '(none)'}"
            ) from None

    def with_paths(self, **derived_paths: str) -> "Context":
        merged = dict(self.derived_paths)
        merged.update(derived_paths)
        return Context(self.root, self.logical_path, merged, self.ignore)

    def with_ignore(self, patterns: Sequence[str]) -> "Context":
        return Context(self.root, self.logical_path, self.derived_paths, tuple(self.ignore) + tuple(patterns))

    def directory(self, subpath: str) -> "Context":
        """Return a context narrowed to ``subpath``.

        Derived paths that live under the new root are rebased onto it,
        the rest are dropped.
        """
        sub = normalize_subpath(subpath)
        if sub == ".":
            return self
        prefix = sub + "/"
        rebased = {
            name: value[len(prefix):] if value != sub else "."
            for name, value in self.derived_paths.items()
            if value == sub or value.startswith(prefix)
        }
        ignore = tuple(p[len(prefix):] if p.startswith(prefix) else p for p in self.ignore)
        return Context(
            root=self.root / sub,
            logical_path=join_subpath(self.logical_path, sub),
            derived_paths=rebased,
            ignore=ignore,
        )

    def file(self, subpath: str) -> File:
        sub = normalize_subpath(subpath)
        return File(path=self.root / sub, logical_path=join_subpath(self.logical_path, sub))

    def exists(self, subpath: str = ".") -> bool:
        return (self.root / normalize_subpath(subpath)).exists()

    def glob(self, pattern: str) -> list[str]:
        """Return sorted relative paths matching a glob pattern."""
        return sorted(
            p.relative_to(self.root).as_posix()
            for p in self.root.glob(pattern)
            if not is_ignored(p.relative_to(self.root).as_posix(), self.ignore)
        )

    def walk_files(self) -> Iterator[str]:
        """Iterate relative posix paths of all files in sorted order, honoring ``ignore``."""
        found: list[str] = []
        for dirpath, dirnames, filenames in os.walk(self.root):
            rel_dir = Path(dirpath).relative_to(self.root).as_posix()
            rel_dir = "" if rel_dir == "." else rel_dir + "/"
            dirnames[:] = [d for d in dirnames if not is_ignored(rel_dir + d, self.ignore)]
            found.extend(rel_dir + name for name in filenames if not is_ignored(rel_dir + name, self.ignore))
        return iter(sorted(found))

    def export(self, destination: str | Path) -> "Context":
        """Copy the tree (minus ignored paths) to ``destination`` and return a context for it."""
        dest = Path(destination)
        dest.mkdir(parents=True, exist_ok=True)
        for relative in self.walk_files():
            target = dest / relative
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(self.root / relative, target)
        return Context(root=dest.resolve(), logical_path=self.logical_path)


ProjectRoot = Context
