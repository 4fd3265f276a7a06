"""Argument binding, execution, and result normalization for operations.

``invoke`` never raises for problems scoped to a single invocation: binding
errors, sandbox failures and timeouts all come back as an
``InvocationResult`` so a CI caller can run many checks and collect every
outcome.
"""
from __future__ import annotations

import asyncio
import inspect
import logging
import shutil
import threading
import time
from pathlib import Path
from typing import Any, Iterable, Mapping

from pydantic import TypeAdapter, ValidationError

from .context import Context, File
from .errors import (
    ArgumentError,
    DriftError,
    ExecutionError,
    InvalidArgumentError,
    MissingArgumentError,
    PathResolutionError,
    UnexpectedArgumentError,
    UnknownOperationError,
)
from .registry import Catalog
from .resolver import resolve_parameter
from .sandbox import LocalSandbox, SandboxFactory
from .sandbox.base import ContainerResult, Sandbox, SandboxError, SandboxProvisioningError, SandboxTimeout
from .sandbox.process import CommandError
from .types import (
    FailureKind,
    InvocationResult,
    OperationDescriptor,
    ParameterKind,
    ParameterSpec,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_PARALLEL = 4


def _explicit_path(anchor: Context, value: str | Path) -> Path:
    # relative paths are anchored at the project root, not the process cwd
    path = Path(value).expanduser()
    if not path.is_absolute():
        path = anchor.root / path
    return path.resolve()


def _coerce(op: OperationDescriptor, spec: ParameterSpec, value: Any, anchor: Context) -> Any:
    if spec.kind is ParameterKind.DIRECTORY:
        if isinstance(value, (str, Path)):
            value = Context(root=_explicit_path(anchor, value))
        if not isinstance(value, Context):
            raise InvalidArgumentError(op.name, spec.name, f"expected a directory, got {type(value).__name__}")
        if not value.root.is_dir():
            reason = "is not a directory" if value.root.exists() else "does not exist"
            raise PathResolutionError(anchor.root, str(value.root), reason)
        return value
    if spec.kind is ParameterKind.FILE:
        if isinstance(value, (str, Path)):
            path = _explicit_path(anchor, value)
            value = File(path=path, logical_path=path.name)
        if not isinstance(value, File):
            raise InvalidArgumentError(op.name, spec.name, f"expected a file, got {type(value).__name__}")
        if not value.path.is_file():
            reason = "is not a file" if value.path.exists() else "does not exist"
            raise PathResolutionError(anchor.root, str(value.path), reason)
        return value
    if spec.annotation in (None, Any, inspect.Parameter.empty):
        return value
    try:
        return TypeAdapter(spec.annotation).validate_python(value)
    except ValidationError as e:
        raise InvalidArgumentError(op.name, spec.name, str(e)) from e


def bind_arguments(
    op: OperationDescriptor,
    args: Mapping[str, Any],
    anchor: Context,
) -> dict[str, Any]:
    """Build keyword arguments for ``op`` from explicit args and defaults.

    Raises:
        UnexpectedArgumentError: If ``args`` names an undeclared parameter
        MissingArgumentError: If a required parameter was not supplied
        InvalidArgumentError: If a supplied value does not fit its parameter
        PathResolutionError: If a default context cannot be resolved
    """
    normalized = {name.replace("-", "_"): value for name, value in args.items()}
    declared = {spec.name for spec in op.parameters}
    unexpected = set(normalized) - declared
    if unexpected:
        raise UnexpectedArgumentError(op.name, unexpected)

    kwargs: dict[str, Any] = {}
    for spec in op.parameters:
        value = normalized.get(spec.name)
        if value is not None:
            kwargs[spec.name] = _coerce(op, spec, value, anchor)
        elif spec.default_policy is not None:
            kwargs[spec.name] = resolve_parameter(spec, None, anchor)
        elif spec.has_default:
            kwargs[spec.name] = spec.default
        else:
            raise MissingArgumentError(op.name, spec.name)
    return kwargs


def _run_in_thread(fn: Any, kwargs: dict[str, Any]) -> asyncio.Future:
    """Run a sync body on a daemon thread and return a future for its outcome.

    A timed-out body keeps running but never blocks loop or interpreter
    shutdown; its late outcome is dropped.
    """
    loop = asyncio.get_running_loop()
    future: asyncio.Future = loop.create_future()

    def deliver(setter: Any, outcome: Any) -> None:
        if not future.done():
            setter(outcome)

    def report(setter: Any, outcome: Any) -> None:
        try:
            loop.call_soon_threadsafe(deliver, setter, outcome)
        except RuntimeError:
            logger.debug(f"Dropping late outcome of {getattr(fn, '__name__', fn)!r}: event loop is closed")

    def target() -> None:
        try:
            value = fn(**kwargs)
        except BaseException as exc:
            report(future.set_exception, exc)
        else:
            report(future.set_result, value)

    threading.Thread(target=target, name=f"modbind-{getattr(fn, '__name__', 'op')}", daemon=True).start()
    return future


async def _call(op: OperationDescriptor, kwargs: dict[str, Any], timeout: float | None) -> Any:
    if op.fn is None:
        raise NotImplementedError(f"Operation {op.name!r} has no implementation")
    # the body is awaited in the caller's task so SystemExit reaches invoke()
    async with asyncio.timeout(timeout):
        if op.is_async:
            return await op.fn(**kwargs)
        return await _run_in_thread(op.fn, kwargs)


def result_from_value(op: OperationDescriptor, value: Any) -> InvocationResult:
    """Normalize an operation's return value into an ``InvocationResult``."""
    if isinstance(value, InvocationResult):
        return value.renamed(op.name)
    if isinstance(value, ContainerResult):
        if not value.ok:
            try:
                value.check()
            except ExecutionError as e:
                return InvocationResult.failed(op.name, FailureKind.EXECUTION_FAILED, str(e))
        return InvocationResult.success(
            op.name,
            artifacts=dict(value.output_mounts),
            value=value.stdout_tail or None,
        )
    if isinstance(value, (Context, File)):
        return InvocationResult.success(op.name, artifacts={"output": value})
    return InvocationResult.success(op.name, value=value)


def result_from_exception(op: OperationDescriptor, exc: BaseException) -> InvocationResult:
    """Map an exception raised during an invocation to a failure result."""
    name = op.name
    if isinstance(exc, PathResolutionError):
        return InvocationResult.failed(name, FailureKind.PATH_RESOLUTION, str(exc), (exc.subpath,))
    if isinstance(exc, MissingArgumentError):
        return InvocationResult.failed(name, FailureKind.MISSING_ARGUMENT, str(exc))
    if isinstance(exc, (ArgumentError, CommandError)):
        return InvocationResult.failed(name, FailureKind.INVALID_ARGUMENT, str(exc))
    if isinstance(exc, DriftError):
        return InvocationResult.failed(name, FailureKind.DRIFT, str(exc), exc.paths)
    if isinstance(exc, ExecutionError):
        return InvocationResult.failed(name, FailureKind.EXECUTION_FAILED, str(exc), exc.paths)
    if isinstance(exc, (SandboxTimeout, asyncio.TimeoutError)):
        return InvocationResult.failed(name, FailureKind.TIMEOUT, str(exc) or "operation timed out")
    if isinstance(exc, SandboxError):
        return InvocationResult.failed(name, FailureKind.INFRASTRUCTURE, str(exc))
    if isinstance(exc, NotImplementedError):
        return InvocationResult.not_implemented(name, str(exc))
    logger.exception(f"Operation {name!r} raised an unexpected error", exc_info=exc)
    return InvocationResult.failed(
        name, FailureKind.EXECUTION_FAILED, f"{type(exc).__name__}: {exc}"
    )


async def invoke(
    op: OperationDescriptor,
    args: Mapping[str, Any] | None,
    anchor: Context,
    *,
    sandbox: Sandbox | None = None,
    timeout: float | None = None,
) -> InvocationResult:
    """Bind arguments, run ``op`` and return its normalized result."""
    started = time.monotonic()
    logger.info(f"Invoking {op.name} (anchor={anchor.root})")
    try:
        kwargs = bind_arguments(op, args or {}, anchor)
        if op.sandbox_param is not None:
            if sandbox is None:
                raise SandboxProvisioningError("", f"operation {op.name!r} needs a sandbox but none was provided")
            kwargs[op.sandbox_param] = sandbox
        result = result_from_value(op, await _call(op, kwargs, timeout))
    except (Exception, SystemExit) as exc:
        result = result_from_exception(op, exc)
    result = result.timed(time.monotonic() - started)
    logger.info(f"{op.name}: {result.status.value} ({result.exit_code})")
    return result


def _artifact_dirname(name: str) -> str:
    return name.strip("/").replace("/", "_") or "root"


class Invoker:
    """Runs operations against one anchor, one fresh sandbox per invocation.

    Args:
        anchor: Project root context supplied by the host.
        sandbox_factory: Builds a new sandbox for each invocation.
        timeout: Per-invocation timeout in seconds.
        export_dir: When set, artifacts are copied here before the sandbox
            is closed and results point at the copies.
        operation_args: Operation name -> explicit args applied before
            caller-supplied args (from configuration).
    """

    def __init__(
        self,
        anchor: Context,
        sandbox_factory: SandboxFactory = LocalSandbox,
        *,
        timeout: float | None = None,
        export_dir: str | Path | None = None,
        operation_args: Mapping[str, Mapping[str, Any]] | None = None,
    ):
        self.anchor = anchor
        self.sandbox_factory = sandbox_factory
        self.timeout = timeout
        self.export_dir = Path(export_dir) if export_dir is not None else None
        self.operation_args = {
            name.replace("_", "-"): dict(values) for name, values in (operation_args or {}).items()
        }

    def _export(self, result: InvocationResult, export_dir: Path) -> InvocationResult:
        exported: dict[str, Context | File] = {}
        for name, artifact in result.artifacts.items():
            target = export_dir / _artifact_dirname(name)
            if isinstance(artifact, Context):
                exported[name] = artifact.export(target)
            else:
                target.mkdir(parents=True, exist_ok=True)
                copied = Path(shutil.copy2(artifact.path, target / artifact.name))
                exported[name] = File(path=copied.resolve(), logical_path=artifact.logical_path)
        return InvocationResult(
            result.operation, result.status, result.failure, exported, result.value, result.duration
        )

    async def invoke(
        self,
        op: OperationDescriptor,
        args: Mapping[str, Any] | None = None,
    ) -> InvocationResult:
        merged = dict(self.operation_args.get(op.name, {}))
        merged.update(args or {})
        sandbox = None
        if op.sandbox_param is not None:
            try:
                sandbox = self.sandbox_factory()
            except Exception as exc:
                if not isinstance(exc, SandboxError):
                    exc = SandboxProvisioningError("", str(exc))
                return result_from_exception(op, exc)
        try:
            result = await invoke(op, merged, self.anchor, sandbox=sandbox, timeout=self.timeout)
            if self.export_dir is not None and result.artifacts:
                result = self._export(result, self.export_dir)
            return result
        finally:
            if sandbox is not None:
                sandbox.close()

    async def run_checks(
        self,
        catalog: Catalog,
        names: Iterable[str] | None = None,
        *,
        max_parallel: int = DEFAULT_MAX_PARALLEL,
    ) -> list[InvocationResult]:
        """Run checks concurrently with bounded parallelism.

        Every check runs in isolation; a failure in one never cancels the
        others. Results come back in the order the checks were requested.

        Raises:
            UnknownOperationError: If a requested name is not a check
        """
        checks = catalog.list_checks()
        if names is not None:
            by_name = {op.name: op for op in checks}
            selected = []
            for name in names:
                op = by_name.get(name) or by_name.get(name.replace("_", "-"))
                if op is None:
                    raise UnknownOperationError(name, by_name)
                selected.append(op)
            checks = selected

        semaphore = asyncio.Semaphore(max(1, max_parallel))

        async def run_one(op: OperationDescriptor) -> InvocationResult:
            async with semaphore:
                return await self.invoke(op)

        outcomes = await asyncio.gather(*(run_one(op) for op in checks), return_exceptions=True)
        results: list[InvocationResult] = []
        for op, outcome in zip(checks, outcomes):
            if isinstance(outcome, (KeyboardInterrupt, asyncio.CancelledError)):
                raise outcome
            if isinstance(outcome, BaseException):
                outcome = result_from_exception(op, outcome)
            results.append(outcome)
        return results
