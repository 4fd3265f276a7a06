"""Decorators and ``Annotated`` markers used by modules to declare operations.

Example::

    from typing import Annotated

    from modbind import Context, DefaultPath, Doc, check

    @check
    def check_readme(
        source: Annotated[Context | None, DefaultPath("/", base="sdk"), Doc("SDK tree")] = None,
    ) -> None:
        ...

Decorators only attach a declaration record to the function. The catalog is
built by ``modbind.registry.register``, which validates the metadata.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Iterable, TypeVar, overload

CHECK_TAG = "check"
DECLARATION_ATTR = "__modbind_operation__"

F = TypeVar("F", bound=Callable[..., Any])


@dataclass(frozen=True, slots=True)
class DefaultPath:
    """Default a directory/file parameter to a path under the project anchor.

    Args:
        path: Sub-path applied to the anchor (or to ``base``). ``"/"`` is the
            anchor itself.
        base: Optional logical name from the anchor's derived paths.
    """

    path: str
    base: str | None = None


@dataclass(frozen=True, slots=True, init=False)
class Ignore:
    """Glob patterns excluded from a defaulted directory."""

    patterns: tuple[str, ...]

    def __init__(self, *patterns: str):
        object.__setattr__(self, "patterns", tuple(patterns))


@dataclass(frozen=True, slots=True)
class Doc:
    text: str


@dataclass(frozen=True, slots=True)
class Required:
    """Mark a parameter as explicitly required."""


@dataclass(frozen=True, slots=True)
class OperationDeclaration:
    """Raw declaration attached by the decorators."""

    name: str | None
    tags: frozenset[str]
    description: str | None


def declaration_of(obj: object) -> OperationDeclaration | None:
    return getattr(obj, DECLARATION_ATTR, None)


@overload
def function(fn: F) -> F: ...


@overload
def function(
    fn: None = None,
    *,
    name: str | None = None,
    tags: Iterable[str] = (),
    description: str | None = None,
) -> Callable[[F], F]: ...


def function(
    fn: Callable[..., Any] | None = None,
    *,
    name: str | None = None,
    tags: Iterable[str] = (),
    description: str | None = None,
) -> Any:
    """Expose a module-level function as an operation."""

    def decorate(target: F) -> F:
        existing = declaration_of(target)
        merged_tags = frozenset(tags) | (existing.tags if existing else frozenset())
        setattr(
            target,
            DECLARATION_ATTR,
            OperationDeclaration(
                name=name or (existing.name if existing else None),
                tags=merged_tags,
                description=description or (existing.description if existing else None),
            ),
        )
        return target

    if fn is not None:
        return decorate(fn)  # type: ignore[arg-type]
    return decorate


@overload
def check(fn: F) -> F: ...


@overload
def check(
    fn: None = None,
    *,
    name: str | None = None,
    description: str | None = None,
) -> Callable[[F], F]: ...


def check(
    fn: Callable[..., Any] | None = None,
    *,
    name: str | None = None,
    description: str | None = None,
) -> Any:
    """Expose an operation and tag it as a discoverable check."""
    return function(fn, name=name, tags=(CHECK_TAG,), description=description)


def operation_name(attr: str) -> str:
    """Public operation name for a Python attribute (``check_readme`` -> ``check-readme``)."""
    return attr.strip("_").replace("_", "-")
