"""Error taxonomy for module loading and operation invocation.

Load-time errors (``LoadError`` subclasses) abort module registration before
any operation becomes visible. Invocation errors are raised inside a single
invocation and captured by the invoker into an ``InvocationResult``.
"""
from __future__ import annotations

from pathlib import Path
from typing import Iterable, Sequence


class ModbindError(Exception):
    """Base error for modbind."""
    pass


class LoadError(ModbindError):
    """Raised while loading a module or building its catalog."""
    pass


class MalformedDeclaration(LoadError):
    """Raised when an operation declares contradictory or unusable metadata."""

    def __init__(self, operation: str, message: str):
        self.operation = operation
        super().__init__(f"Malformed declaration for {operation!r}: {message}")


class DeclarationError(LoadError):
    """Raised when a check-tagged operation has required parameters."""

    def __init__(self, operation: str, required: Sequence[str]):
        self.operation = operation
        self.required = tuple(required)
        super().__init__(
            f"Check {operation!r} has required parameter(s) "
            f"{', '.join(self.required)}; checks must be callable without arguments. "
            "Add a DefaultPath or a default value, or drop the check tag."
        )


class UnknownOperationError(LoadError):
    """Raised when an operation name is not in the catalog."""

    def __init__(self, name: str, available: Iterable[str]):
        self.name = name
        self.available = sorted(available)
        super().__init__(
            f"Unknown operation {name!r}. Available: {', '.join(self.available) or '(none)'}"
        )


class InvocationError(ModbindError):
    """Base error for failures scoped to a single invocation."""
    pass


class PathResolutionError(InvocationError):
    """Raised when a default context path cannot be resolved under the anchor."""

    def __init__(self, anchor: Path, subpath: str, reason: str = "does not exist"):
        self.anchor = anchor
        self.subpath = subpath
        self.reason = reason
        super().__init__(f"Cannot resolve {subpath!r} under anchor {str(anchor)!r}: {reason}")


class ArgumentError(InvocationError):
    """Base error for argument binding failures."""
    pass


class MissingArgumentError(ArgumentError):
    """Raised when a required parameter was not supplied."""

    def __init__(self, operation: str, parameter: str):
        self.operation = operation
        self.parameter = parameter
        super().__init__(f"Operation {operation!r} requires argument {parameter!r}")


class InvalidArgumentError(ArgumentError):
    """Raised when a supplied value does not fit the declared parameter type."""

    def __init__(self, operation: str, parameter: str, message: str):
        self.operation = operation
        self.parameter = parameter
        super().__init__(f"Invalid value for {parameter!r} of {operation!r}: {message}")


class UnexpectedArgumentError(ArgumentError):
    """Raised when arguments do not match any declared parameter."""

    def __init__(self, operation: str, names: Iterable[str]):
        self.operation = operation
        self.names = sorted(names)
        super().__init__(
            f"Operation {operation!r} got unexpected argument(s): {', '.join(self.names)}"
        )


class ExecutionError(InvocationError):
    """Raised when sandboxed work finished with a failing outcome."""

    def __init__(self, message: str, *, exit_code: int | None = None, paths: Sequence[str] = ()):
        self.exit_code = exit_code
        self.paths = tuple(paths)
        super().__init__(message)


class CheckFailed(ExecutionError):
    """Raised by operation bodies to report a failing check without a command."""
    pass


class DriftError(InvocationError):
    """Raised when generated output differs from the committed tree."""

    def __init__(self, paths: Sequence[str], message: str | None = None):
        self.paths = tuple(paths)
        super().__init__(
            message or f"Generated output differs in {len(self.paths)} path(s): {', '.join(self.paths)}"
        )


class ConfigError(LoadError):
    """Raised when modbind.toml is invalid."""
    pass
