"""modbind: module operation discovery and context binding.

A host loads a module, lists the operations it exports, and runs them with
contexts resolved from a single project anchor:

- ``register()`` builds an immutable catalog of a module's operations
- ``Catalog.list_checks()`` returns the checks runnable without arguments
- ``Invoker`` binds arguments, resolves default contexts and runs
  operations in a sandbox, one sandbox per invocation
- ``modbind`` CLI: ``list-checks``, ``run-check``, ``check``, ``call``
"""
from __future__ import annotations

from .context import Context, File, ProjectRoot
from .declarations import CHECK_TAG, DefaultPath, Doc, Ignore, Required, check, function
from .errors import (
    CheckFailed,
    ConfigError,
    DeclarationError,
    DriftError,
    ExecutionError,
    InvalidArgumentError,
    LoadError,
    MalformedDeclaration,
    MissingArgumentError,
    ModbindError,
    PathResolutionError,
    UnexpectedArgumentError,
    UnknownOperationError,
)
from .invoker import Invoker, invoke
from .registry import Catalog, register
from .resolver import resolve
from .sandbox import ContainerResult, DockerSandbox, LocalSandbox, Sandbox
from .types import (
    DefaultPolicy,
    Failure,
    FailureKind,
    InvocationResult,
    OperationDescriptor,
    ParameterKind,
    ParameterSpec,
    ReturnKind,
    Status,
)

__all__ = [
    # Contexts
    "Context",
    "File",
    "ProjectRoot",
    # Declarations
    "CHECK_TAG",
    "DefaultPath",
    "Doc",
    "Ignore",
    "Required",
    "check",
    "function",
    # Catalog
    "Catalog",
    "DefaultPolicy",
    "OperationDescriptor",
    "ParameterKind",
    "ParameterSpec",
    "ReturnKind",
    "register",
    # Resolution and invocation
    "Invoker",
    "invoke",
    "resolve",
    # Results
    "Failure",
    "FailureKind",
    "InvocationResult",
    "Status",
    # Sandboxes
    "ContainerResult",
    "DockerSandbox",
    "LocalSandbox",
    "Sandbox",
    # Errors
    "CheckFailed",
    "ConfigError",
    "DeclarationError",
    "DriftError",
    "ExecutionError",
    "InvalidArgumentError",
    "LoadError",
    "MalformedDeclaration",
    "MissingArgumentError",
    "ModbindError",
    "PathResolutionError",
    "UnexpectedArgumentError",
    "UnknownOperationError",
    # Version
    "__version__",
]

__version__ = "0.1.0"
