"""Function registry: module loading and operation catalog construction.

Operations are module-level functions decorated with ``@function`` or
``@check``. The registry reads their signatures and ``Annotated`` markers
once, at load time, into immutable ``OperationDescriptor`` values. It never
touches the filesystem beyond importing the module itself.
"""
from __future__ import annotations

import collections.abc
import dataclasses
import importlib
import importlib.util
import inspect
import logging
import sys
import types
import typing
from pathlib import Path
from types import ModuleType
from typing import Any, Annotated, Iterable, Iterator, Sequence, Union

from pydantic import BaseModel

from .context import Context, File, normalize_subpath
from .declarations import (
    DefaultPath,
    Doc,
    Ignore,
    OperationDeclaration,
    Required,
    declaration_of,
    operation_name,
)
from .discovery import list_checks, validate_checks
from .errors import LoadError, MalformedDeclaration, UnknownOperationError
from .sandbox.base import ContainerResult, Sandbox, ScratchSandbox
from .types import (
    NO_DEFAULT,
    DefaultPolicy,
    InvocationResult,
    OperationDescriptor,
    ParameterKind,
    ParameterSpec,
    ReturnKind,
)

logger = logging.getLogger(__name__)

BUILTIN_MODULE_ALIASES: dict[str, str] = {
    "sdk": "modbind.sdk",
}

_LOADED_MODULES: dict[Path, ModuleType] = {}


def load_module(path: str | Path) -> ModuleType:
    resolved = Path(path).resolve()
    cached = _LOADED_MODULES.get(resolved)
    if cached is not None:
        return cached
    module_name = (
        f"_modbind_module_{resolved.stem}_{hash(str(resolved)) & 0xFFFFFFFF:08x}"
    )
    spec = importlib.util.spec_from_file_location(module_name, resolved)
    if spec is None or spec.loader is None:
        raise ImportError(f"Cannot load module from {resolved}")
    module = importlib.util.module_from_spec(spec)
    sys.modules[spec.name] = module
    _LOADED_MODULES[resolved] = module
    try:
        spec.loader.exec_module(module)
    except Exception:
        _LOADED_MODULES.pop(resolved, None)
        sys.modules.pop(spec.name, None)
        raise
    return module


def resolve_module(source: ModuleType | str | Path) -> ModuleType:
    """Resolve a module object, ``.py`` path, dotted name, or built-in alias."""
    if isinstance(source, ModuleType):
        return source
    try:
        if isinstance(source, Path) or str(source).endswith(".py"):
            return load_module(source)
        target = BUILTIN_MODULE_ALIASES.get(str(source), str(source))
        return importlib.import_module(target)
    except (ImportError, OSError) as e:
        raise LoadError(f"Cannot load module {str(source)!r}: {e}") from e


class Catalog:
    """Ordered, read-only set of operations exported by one module."""

    def __init__(self, module_name: str, operations: Sequence[OperationDescriptor]):
        self.module_name = module_name
        self._operations = tuple(operations)
        self._by_name = {op.name: op for op in self._operations}

    def __iter__(self) -> Iterator[OperationDescriptor]:
        return iter(self._operations)

    def __len__(self) -> int:
        return len(self._operations)

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and self._lookup(name) is not None

    def __repr__(self) -> str:
        return f"Catalog({self.module_name!r}, {list(self.names)!r})"

    @property
    def names(self) -> tuple[str, ...]:
        return tuple(op.name for op in self._operations)

    def _lookup(self, name: str) -> OperationDescriptor | None:
        return self._by_name.get(name) or self._by_name.get(name.replace("_", "-"))

    def get(self, name: str) -> OperationDescriptor:
        op = self._lookup(name)
        if op is None:
            raise UnknownOperationError(name, self.names)
        return op

    def list_checks(self) -> list[OperationDescriptor]:
        return list_checks(self)


def _split_annotated(hint: Any) -> tuple[Any, tuple[Any, ...]]:
    if typing.get_origin(hint) is Annotated:
        base, *metadata = typing.get_args(hint)
        return base, tuple(metadata)
    return hint, ()


def _unwrap_optional(hint: Any) -> Any:
    origin = typing.get_origin(hint)
    if origin is Union or origin is types.UnionType:
        args = [arg for arg in typing.get_args(hint) if arg is not type(None)]
        if len(args) == 1:
            return args[0]
    return hint


def _is_class(hint: Any) -> bool:
    return isinstance(hint, type) and typing.get_origin(hint) is None


def _is_sandbox(hint: Any) -> bool:
    hint = _unwrap_optional(hint)
    return hint is Sandbox or (_is_class(hint) and issubclass(hint, ScratchSandbox))


def _parameter_kind(hint: Any) -> ParameterKind:
    hint = _unwrap_optional(hint)
    if _is_class(hint):
        if issubclass(hint, Context):
            return ParameterKind.DIRECTORY
        if issubclass(hint, File):
            return ParameterKind.FILE
        if issubclass(hint, BaseModel) or dataclasses.is_dataclass(hint) or issubclass(hint, dict):
            return ParameterKind.RECORD
    if typing.get_origin(hint) in (dict, collections.abc.Mapping):
        return ParameterKind.RECORD
    return ParameterKind.PRIMITIVE


def _return_kind(hint: Any) -> ReturnKind:
    hint = _unwrap_optional(_split_annotated(hint)[0])
    if hint is None or hint is type(None):
        return ReturnKind.NONE
    if _is_class(hint):
        if issubclass(hint, Context):
            return ReturnKind.CONTEXT
        if issubclass(hint, File):
            return ReturnKind.FILE
        if issubclass(hint, ContainerResult):
            return ReturnKind.CONTAINER
        if issubclass(hint, InvocationResult):
            return ReturnKind.RESULT
    return ReturnKind.VALUE


def _build_parameter(operation: str, param: inspect.Parameter, hint: Any) -> ParameterSpec:
    base, metadata = _split_annotated(hint)
    kind = _parameter_kind(base)
    default = NO_DEFAULT if param.default is inspect.Parameter.empty else param.default

    default_paths = [m for m in metadata if isinstance(m, DefaultPath)]
    ignore = tuple(p for m in metadata if isinstance(m, Ignore) for p in m.patterns)
    docs = [m.text for m in metadata if isinstance(m, Doc)]
    explicitly_required = any(isinstance(m, Required) for m in metadata)

    if len(default_paths) > 1:
        raise MalformedDeclaration(operation, f"parameter {param.name!r} has more than one DefaultPath")
    default_path = default_paths[0] if default_paths else None

    if explicitly_required and (default_path is not None or default is not NO_DEFAULT):
        raise MalformedDeclaration(
            operation,
            f"parameter {param.name!r} is marked Required but also declares a default",
        )
    if default_path is not None:
        if not kind.is_context:
            raise MalformedDeclaration(
                operation,
                f"DefaultPath on parameter {param.name!r} requires a Context or File type, got {base!r}",
            )
        if default not in (NO_DEFAULT, None):
            raise MalformedDeclaration(
                operation,
                f"parameter {param.name!r} declares both DefaultPath and the default {default!r}",
            )
        try:
            normalize_subpath(default_path.path)
        except ValueError as e:
            raise MalformedDeclaration(operation, f"parameter {param.name!r}: {e}") from e
    if ignore and kind is not ParameterKind.DIRECTORY:
        raise MalformedDeclaration(operation, f"Ignore on parameter {param.name!r} requires a Context type")

    policy = None
    if default_path is not None:
        policy = DefaultPolicy(subpath=default_path.path, base=default_path.base, ignore=ignore)
        # DefaultPath owns the default; a trailing "= None" is only there for Python callers
        default = NO_DEFAULT

    return ParameterSpec(
        name=param.name,
        kind=kind,
        required=policy is None and default is NO_DEFAULT,
        default_policy=policy,
        default=default,
        annotation=base,
        description=docs[0] if docs else None,
    )


def build_descriptor(attr: str, fn: Any, declaration: OperationDeclaration) -> OperationDescriptor:
    """Build the descriptor for one decorated function."""
    name = declaration.name or operation_name(attr)
    try:
        hints = typing.get_type_hints(fn, include_extras=True)
    except Exception as e:
        raise MalformedDeclaration(name, f"cannot resolve type hints: {e}") from e

    parameters: list[ParameterSpec] = []
    sandbox_param: str | None = None
    for param in inspect.signature(fn).parameters.values():
        if param.kind in (inspect.Parameter.VAR_POSITIONAL, inspect.Parameter.VAR_KEYWORD):
            raise MalformedDeclaration(name, f"variadic parameter {param.name!r} is not supported")
        if param.kind is inspect.Parameter.POSITIONAL_ONLY:
            raise MalformedDeclaration(name, f"positional-only parameter {param.name!r} is not supported")
        hint = hints.get(param.name, Any)
        if _is_sandbox(_split_annotated(hint)[0]):
            if sandbox_param is not None:
                raise MalformedDeclaration(name, "only one sandbox parameter is allowed")
            sandbox_param = param.name
            continue
        parameters.append(_build_parameter(name, param, hint))

    description = declaration.description
    if description is None:
        doc = inspect.getdoc(fn)
        description = doc.splitlines()[0] if doc else None

    return OperationDescriptor(
        name=name,
        attr=attr,
        parameters=tuple(parameters),
        tags=declaration.tags,
        return_kind=_return_kind(hints.get("return", Any)),
        description=description,
        fn=fn,
        sandbox_param=sandbox_param,
        is_async=inspect.iscoroutinefunction(fn),
    )


def _ensure_name_list(raw: object) -> list[str]:
    if not isinstance(raw, (list, tuple)):
        raise LoadError("__all__ must be a list of strings")
    names: list[str] = []
    for item in raw:
        if not isinstance(item, str) or not item.strip():
            raise LoadError("__all__ entries must be non-empty strings")
        names.append(item)
    return names


def _candidates(module: ModuleType) -> Iterable[tuple[str, Any]]:
    all_names = getattr(module, "__all__", None)
    if all_names is not None:
        for attr in _ensure_name_list(all_names):
            yield attr, getattr(module, attr, None)
        return
    for attr, obj in module.__dict__.items():
        if attr.startswith("_"):
            continue
        if getattr(obj, "__module__", None) != module.__name__:
            continue
        yield attr, obj


def discover_operations(module: ModuleType) -> list[OperationDescriptor]:
    operations: list[OperationDescriptor] = []
    seen: dict[str, str] = {}
    for attr, obj in _candidates(module):
        declaration = declaration_of(obj)
        if declaration is None or not callable(obj):
            continue
        descriptor = build_descriptor(attr, obj, declaration)
        if descriptor.name in seen:
            raise MalformedDeclaration(
                descriptor.name,
                f"name is declared by both {seen[descriptor.name]!r} and {attr!r}",
            )
        seen[descriptor.name] = attr
        operations.append(descriptor)
    return operations


def register(module_source: ModuleType | str | Path) -> Catalog:
    """Load a module and build its operation catalog.

    Raises:
        LoadError: If the module cannot be imported
        MalformedDeclaration: If an operation has contradictory metadata or a
            duplicate name
        DeclarationError: If a check has required parameters
    """
    module = resolve_module(module_source)
    operations = discover_operations(module)
    validate_checks(operations)
    logger.debug(f"Registered {len(operations)} operation(s) from {module.__name__}")
    return Catalog(module.__name__, operations)
