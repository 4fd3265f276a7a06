"""Catalog and result types shared across modbind.

Descriptors are built once by the registry and never mutated. Results are
built once per invocation.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Callable, Mapping

from .context import Context, File


class ParameterKind(str, Enum):
    DIRECTORY = "directory"
    FILE = "file"
    RECORD = "record"
    PRIMITIVE = "primitive"

    @property
    def is_context(self) -> bool:
        return self in (ParameterKind.DIRECTORY, ParameterKind.FILE)


class ReturnKind(str, Enum):
    NONE = "none"
    CONTEXT = "context"
    FILE = "file"
    CONTAINER = "container"
    RESULT = "result"
    VALUE = "value"


class _NoDefault:
    """Sentinel for parameters without a declared literal default."""

    def __repr__(self) -> str:
        return "NO_DEFAULT"


NO_DEFAULT: Any = _NoDefault()


@dataclass(frozen=True, slots=True)
class DefaultPolicy:
    """How to synthesize a context when the caller omits the argument.

    Evaluated by the resolver at invocation time: look up ``base`` in the
    anchor's derived paths (if set), then apply ``subpath``.
    """

    subpath: str
    base: str | None = None
    ignore: tuple[str, ...] = ()

    def describe(self) -> str:
        if self.base:
            return f"<{self.base}>/{self.subpath.lstrip('/')}".rstrip("/")
        return self.subpath


@dataclass(frozen=True, slots=True)
class ParameterSpec:
    name: str
    kind: ParameterKind
    required: bool
    default_policy: DefaultPolicy | None = None
    default: Any = NO_DEFAULT
    annotation: Any = field(default=None, compare=False)
    description: str | None = None

    @property
    def has_default(self) -> bool:
        return self.default is not NO_DEFAULT


@dataclass(frozen=True, slots=True)
class OperationDescriptor:
    """Registered operation: name, parameters, tags, and the callable itself."""

    name: str
    attr: str
    parameters: tuple[ParameterSpec, ...]
    tags: frozenset[str] = frozenset()
    return_kind: ReturnKind = ReturnKind.VALUE
    description: str | None = None
    fn: Callable[..., Any] | None = field(default=None, compare=False, repr=False)
    sandbox_param: str | None = None
    is_async: bool = False

    @property
    def required_parameters(self) -> tuple[str, ...]:
        return tuple(p.name for p in self.parameters if p.required)

    def parameter(self, name: str) -> ParameterSpec | None:
        for spec in self.parameters:
            if spec.name == name:
                return spec
        return None


class Status(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    NOT_IMPLEMENTED = "not_implemented"


class FailureKind(str, Enum):
    EXECUTION_FAILED = "ExecutionFailed"
    INFRASTRUCTURE = "InfrastructureError"
    TIMEOUT = "Timeout"
    DRIFT = "Drift"
    PATH_RESOLUTION = "PathResolution"
    MISSING_ARGUMENT = "MissingArgument"
    INVALID_ARGUMENT = "InvalidArgument"


EXIT_SUCCESS = 0
EXIT_NOT_IMPLEMENTED = 8
EXIT_LOAD_ERROR = 9

FAILURE_EXIT_CODES: Mapping[FailureKind, int] = MappingProxyType({
    FailureKind.EXECUTION_FAILED: 1,
    FailureKind.INFRASTRUCTURE: 2,
    FailureKind.TIMEOUT: 3,
    FailureKind.DRIFT: 4,
    FailureKind.PATH_RESOLUTION: 5,
    FailureKind.MISSING_ARGUMENT: 6,
    FailureKind.INVALID_ARGUMENT: 7,
})


@dataclass(frozen=True, slots=True)
class Failure:
    kind: FailureKind
    message: str
    paths: tuple[str, ...] = ()


Artifact = Context | File


@dataclass(frozen=True, slots=True)
class InvocationResult:
    """Normalized outcome of one invocation."""

    operation: str
    status: Status
    failure: Failure | None = None
    artifacts: Mapping[str, Artifact] = field(default_factory=dict)
    value: Any = None
    duration: float = 0.0

    @classmethod
    def success(
        cls,
        operation: str,
        *,
        artifacts: Mapping[str, Artifact] | None = None,
        value: Any = None,
    ) -> "InvocationResult":
        return cls(operation, Status.SUCCESS, artifacts=dict(artifacts or {}), value=value)

    @classmethod
    def failed(
        cls,
        operation: str,
        kind: FailureKind,
        message: str,
        paths: tuple[str, ...] | list[str] = (),
    ) -> "InvocationResult":
        return cls(operation, Status.FAILURE, failure=Failure(kind, message, tuple(paths)))

    @classmethod
    def not_implemented(cls, operation: str, message: str = "") -> "InvocationResult":
        return cls(
            operation,
            Status.NOT_IMPLEMENTED,
            failure=Failure(FailureKind.EXECUTION_FAILED, message or "not implemented"),
        )

    @property
    def ok(self) -> bool:
        return self.status is Status.SUCCESS

    @property
    def exit_code(self) -> int:
        if self.status is Status.SUCCESS:
            return EXIT_SUCCESS
        if self.status is Status.NOT_IMPLEMENTED:
            return EXIT_NOT_IMPLEMENTED
        if self.failure is None:
            raise ValueError(f"Result for {self.operation!r} has status {self.status.value!r} but no failure")
        return FAILURE_EXIT_CODES[self.failure.kind]

    def renamed(self, operation: str) -> "InvocationResult":
        return InvocationResult(
            operation, self.status, self.failure, self.artifacts, self.value, self.duration
        )

    def timed(self, duration: float) -> "InvocationResult":
        return InvocationResult(
            self.operation, self.status, self.failure, self.artifacts, self.value, duration
        )

    def to_dict(self) -> dict[str, Any]:
        record: dict[str, Any] = {
            "operation": self.operation,
            "status": self.status.value,
            "exit_code": self.exit_code,
            "duration": round(self.duration, 3),
        }
        if self.failure is not None:
            record["failure"] = {
                "kind": self.failure.kind.value,
                "message": self.failure.message,
                "paths": list(self.failure.paths),
            }
        if self.artifacts:
            record["artifacts"] = {
                name: str(artifact.root if isinstance(artifact, Context) else artifact.path)
                for name, artifact in self.artifacts.items()
            }
        if self.value is not None:
            record["value"] = self.value if isinstance(self.value, (str, int, float, bool, list, dict)) else repr(self.value)
        return record
