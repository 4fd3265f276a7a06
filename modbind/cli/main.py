#!/usr/bin/env python
"""Discover and run operations exported by a module.

Usage:
    modbind list-checks MODULE
    modbind run-check MODULE NAME [--context [PARAM=]PATH] [--arg KEY=VALUE]
    modbind check MODULE [NAME...]
    modbind call MODULE NAME [--arg KEY=VALUE] [--export DIR]
    modbind functions MODULE

MODULE is a path to a .py file, a dotted module name, or a built-in alias
(``sdk``). The project root (``--root``, default: current directory) is the
anchor every defaulted context is resolved against.

Exit codes:
    0 success, 1 check failed, 2 infrastructure error, 3 timeout, 4 drift,
    5 path resolution, 6 missing argument, 7 invalid argument,
    8 not implemented, 9 load/configuration error
"""
from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, Sequence

from rich.console import Console
from rich.table import Table
from rich.text import Text

from ..config import ModbindConfig, anchor_from_config, load_config
from ..context import Context
from ..errors import LoadError
from ..invoker import Invoker
from ..registry import Catalog, register
from ..sandbox import SandboxFactory, sandbox_factory
from ..types import EXIT_LOAD_ERROR, InvocationResult, OperationDescriptor, ParameterKind, Status

logger = logging.getLogger(__name__)

_LOG_LEVELS = (logging.WARNING, logging.INFO, logging.DEBUG)


def _configure_logging(verbosity: int) -> None:
    level = _LOG_LEVELS[min(verbosity, len(_LOG_LEVELS) - 1)]
    logging.basicConfig(
        level=level,
        stream=sys.stderr,
        format="%(levelname)s %(name)s: %(message)s",
    )


def _parse_value(raw: str) -> Any:
    """Decode JSON lists/objects; everything else stays a string."""
    if raw[:1] in ("[", "{"):
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            return raw
    return raw


def parse_assignments(values: Sequence[str] | None, flag: str) -> dict[str, Any]:
    parsed: dict[str, Any] = {}
    for item in values or []:
        key, sep, raw = item.partition("=")
        if not sep or not key.strip():
            raise ValueError(f"{flag} expects KEY=VALUE, got {item!r}")
        parsed[key.strip()] = _parse_value(raw)
    return parsed


def context_arguments(op: OperationDescriptor, values: Sequence[str] | None) -> dict[str, Any]:
    """Map ``--context`` values onto an operation's directory/file parameters.

    ``PARAM=PATH`` targets a named parameter; a bare ``PATH`` goes to the
    first directory parameter.
    """
    context_params = [spec for spec in op.parameters if spec.kind.is_context]
    names = {spec.name for spec in context_params}
    assigned: dict[str, Any] = {}
    for value in values or []:
        key, sep, path = value.partition("=")
        key = key.replace("-", "_")
        if sep and key in names:
            assigned[key] = path
            continue
        directories = [spec for spec in context_params if spec.kind is ParameterKind.DIRECTORY]
        if not directories:
            raise ValueError(f"Operation {op.name!r} has no directory parameter for --context")
        assigned[directories[0].name] = value
    return assigned


def _describe_parameters(op: OperationDescriptor) -> str:
    parts = []
    for spec in op.parameters:
        if spec.required:
            parts.append(f"{spec.name}*")
        elif spec.default_policy is not None:
            parts.append(f"{spec.name}={spec.default_policy.describe()}")
        else:
            parts.append(f"{spec.name}={spec.default!r}")
    return ", ".join(parts)


def _render_operations(console: Console, ops: Sequence[OperationDescriptor], *, detailed: bool) -> None:
    table = Table(show_header=True, header_style="bold")
    table.add_column("Name")
    if detailed:
        table.add_column("Tags")
        table.add_column("Parameters")
    table.add_column("Description")
    for op in ops:
        row = [op.name]
        if detailed:
            row += [", ".join(sorted(op.tags)), _describe_parameters(op)]
        row.append(op.description or "")
        table.add_row(*row)
    console.print(table)


def _render_result(console: Console, result: InvocationResult) -> None:
    if result.status is Status.SUCCESS:
        line = Text("PASS ", style="bold green")
    elif result.status is Status.NOT_IMPLEMENTED:
        line = Text("TODO ", style="bold yellow")
    else:
        line = Text("FAIL ", style="bold red")
    line.append(result.operation)
    line.append(f" ({result.duration:.2f}s)", style="dim")
    if result.status is Status.NOT_IMPLEMENTED:
        line.append(f"\n  {result.failure.message}")
    elif result.failure is not None:
        line.append(f"\n  {result.failure.kind.value}: {result.failure.message}")
    for name, artifact in result.artifacts.items():
        location = artifact.root if isinstance(artifact, Context) else artifact.path
        line.append(f"\n  {name} -> {location}", style="dim")
    console.print(line)


def _emit_json(payload: Any) -> None:
    json.dump(payload, sys.stdout, indent=2)
    sys.stdout.write("\n")


def _operation_record(op: OperationDescriptor) -> dict[str, Any]:
    return {
        "name": op.name,
        "description": op.description,
        "tags": sorted(op.tags),
        "parameters": [
            {
                "name": spec.name,
                "kind": spec.kind.value,
                "required": spec.required,
                "default_path": spec.default_policy.describe() if spec.default_policy else None,
            }
            for spec in op.parameters
        ],
    }


def _build_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--root", type=Path, default=None, help="Project root (anchor); default: cwd")
    common.add_argument(
        "--sandbox",
        choices=["local", "docker"],
        default=None,
        help="Sandbox backend (default: modbind.toml or MODBIND_SANDBOX, else local)",
    )
    common.add_argument("--timeout", type=float, default=None, help="Per-invocation timeout in seconds")
    common.add_argument("--json", action="store_true", help="Output JSON instead of rich display")
    common.add_argument("-v", "--verbose", action="count", default=0, help="Increase log verbosity")

    parser = argparse.ArgumentParser(
        prog="modbind",
        description=__doc__,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    sub = parser.add_subparsers(dest="command", required=True)

    functions = sub.add_parser("functions", parents=[common], help="List every operation")
    functions.add_argument("module")

    list_checks = sub.add_parser("list-checks", parents=[common], help="List discoverable checks")
    list_checks.add_argument("module")

    run_check = sub.add_parser("run-check", parents=[common], help="Run one check")
    run_check.add_argument("module")
    run_check.add_argument("name")
    _add_invocation_arguments(run_check)

    check_all = sub.add_parser("check", parents=[common], help="Run checks concurrently")
    check_all.add_argument("module")
    check_all.add_argument("names", nargs="*", help="Checks to run (default: all)")
    check_all.add_argument("--max-parallel", type=int, default=None, help="Concurrent checks")

    call = sub.add_parser("call", parents=[common], help="Run any operation")
    call.add_argument("module")
    call.add_argument("name")
    _add_invocation_arguments(call)
    call.add_argument("--export", type=Path, default=None, help="Copy artifacts to this directory")
    return parser


def _add_invocation_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--context",
        action="append",
        metavar="[PARAM=]PATH",
        help="Explicit context for a directory/file parameter (overrides defaults; relative to --root)",
    )
    parser.add_argument("--arg", action="append", metavar="KEY=VALUE", help="Operation argument")


class _Session:
    """Everything resolved once per CLI run: config, anchor, catalog, invoker."""

    def __init__(
        self,
        args: argparse.Namespace,
        factory: SandboxFactory | None,
        export_dir: Path | None = None,
    ):
        root = (args.root or Path.cwd()).resolve()
        self.config: ModbindConfig = load_config(root)
        self.anchor = anchor_from_config(root, self.config)
        self.catalog: Catalog = register(args.module)
        backend = args.sandbox or self.config.sandbox.backend
        self.invoker = Invoker(
            self.anchor,
            factory or sandbox_factory(backend),
            timeout=args.timeout if args.timeout is not None else self.config.sandbox.timeout,
            export_dir=export_dir,
            operation_args=self.config.operation_arguments(),
        )


async def _run_command(args: argparse.Namespace, factory: SandboxFactory | None) -> int:
    console = Console()
    session = _Session(args, factory, getattr(args, "export", None))
    catalog = session.catalog

    if args.command in ("functions", "list-checks"):
        ops = list(catalog) if args.command == "functions" else catalog.list_checks()
        if args.json:
            if args.command == "functions":
                _emit_json([_operation_record(op) for op in ops])
            else:
                _emit_json([{"name": op.name, "description": op.description} for op in ops])
        else:
            _render_operations(console, ops, detailed=args.command == "functions")
        return 0

    if args.command == "check":
        max_parallel = args.max_parallel or session.config.sandbox.max_parallel
        results = await session.invoker.run_checks(catalog, args.names or None, max_parallel=max_parallel)
    else:
        if args.command == "run-check":
            checks = {op.name: op for op in catalog.list_checks()}
            op = catalog.get(args.name)
            if op.name not in checks:
                raise LoadError(f"{op.name!r} is not a check; use `modbind call` to run it")
        else:
            op = catalog.get(args.name)
        try:
            call_args = parse_assignments(args.arg, "--arg")
            call_args.update(context_arguments(op, args.context))
        except ValueError as e:
            raise LoadError(str(e)) from e
        results = [await session.invoker.invoke(op, call_args)]

    if args.json:
        _emit_json([result.to_dict() for result in results])
    else:
        for result in results:
            _render_result(console, result)
    return max((result.exit_code for result in results), default=0)


def main(argv: Sequence[str] | None = None, *, factory: SandboxFactory | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    _configure_logging(args.verbose)
    try:
        return asyncio.run(_run_command(args, factory))
    except LoadError as e:
        Console(stderr=True).print(Text.assemble(("Error: ", "bold red"), str(e)))
        return EXIT_LOAD_ERROR
    except KeyboardInterrupt:
        Console(stderr=True).print("\n[yellow]Interrupted[/yellow]")
        return 130


if __name__ == "__main__":
    sys.exit(main())
