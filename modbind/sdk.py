"""Built-in operations for SDK repositories (``modbind list-checks sdk``).

Every context parameter defaults to a path under the project anchor's
``sdk`` derived path, so all checks run without arguments while still
accepting an explicit tree.
"""
from __future__ import annotations

from typing import Annotated

from . import codegen
from .context import Context, File
from .declarations import DefaultPath, Doc, Ignore, check, function
from .errors import CheckFailed
from .layout import missing_paths, required_paths
from .sandbox.base import ContainerResult, Sandbox
from .sandbox.process import parse_steps
from .types import InvocationResult

DEFAULT_IMAGE = "python:3.12-slim"
DEFAULT_LINT_COMMAND = "python -m compileall -q ."
DEFAULT_TEST_COMMAND = "python -m unittest discover -s tests"
DEFAULT_GENERATOR_IMAGE = DEFAULT_IMAGE
DEFAULT_GENERATOR_COMMAND = "python -m codegen --introspection {schema} --output {output}"
DEFAULT_GENERATED_SUBPATH = "runtime/runtime"
SOURCE_MOUNT = "/src"

SdkTree = Annotated[
    Context,
    DefaultPath("/", base="sdk"),
    Ignore(".git", "__pycache__", "node_modules", ".venv"),
    Doc("SDK source tree"),
]
Introspection = Annotated[
    File,
    DefaultPath("/", base="introspection"),
    Doc("Schema introspection document"),
]


@check
def check_structure(
    source: SdkTree,
    extra_paths: Annotated[tuple[str, ...], Doc("Additional required paths")] = (),
) -> None:
    """Verify that the SDK tree contains every required file."""
    missing = missing_paths(source, required_paths(extra_paths))
    if missing:
        raise CheckFailed(
            f"Missing required path(s) under {source.logical_path!r}: {', '.join(missing)}",
            paths=missing,
        )


async def _run(sandbox: Sandbox, source: Context, image: str, command: str | list[str]) -> ContainerResult:
    return await sandbox.run_container(
        image, parse_steps(command), {SOURCE_MOUNT: source}, workdir=SOURCE_MOUNT
    )


@check
async def lint(
    sandbox: Sandbox,
    source: SdkTree,
    image: Annotated[str, Doc("Container image")] = DEFAULT_IMAGE,
    command: Annotated[str | list[str], Doc("Lint command(s)")] = DEFAULT_LINT_COMMAND,
) -> ContainerResult:
    """Run the linter over the SDK tree."""
    return await _run(sandbox, source, image, command)


@check(name="test")
async def run_tests(
    sandbox: Sandbox,
    source: SdkTree,
    image: Annotated[str, Doc("Container image")] = DEFAULT_IMAGE,
    command: Annotated[str | list[str], Doc("Test command(s)")] = DEFAULT_TEST_COMMAND,
) -> ContainerResult:
    """Run the SDK test suite."""
    return await _run(sandbox, source, image, command)


@function
async def generate(
    sandbox: Sandbox,
    introspection: Introspection,
    source: SdkTree,
    image: Annotated[str, Doc("Generator image")] = DEFAULT_GENERATOR_IMAGE,
    command: Annotated[str | list[str], Doc("Generator command")] = DEFAULT_GENERATOR_COMMAND,
) -> Context:
    """Generate SDK bindings from the introspection document."""
    return await codegen.generate(introspection, source, sandbox, image=image, command=command)


@check
async def verify_generated(
    sandbox: Sandbox,
    introspection: Introspection,
    source: SdkTree,
    generated: Annotated[str | None, Doc("Committed generated tree, relative to the SDK")] = None,
    image: Annotated[str, Doc("Generator image")] = DEFAULT_GENERATOR_IMAGE,
    command: Annotated[str | list[str], Doc("Generator command")] = DEFAULT_GENERATOR_COMMAND,
) -> InvocationResult:
    """Regenerate bindings and fail if the committed code differs."""
    subpath = generated or source.derived_paths.get("generated", DEFAULT_GENERATED_SUBPATH)
    return await codegen.verify_generated(
        introspection,
        source,
        sandbox,
        generated_subpath=subpath,
        image=image,
        command=command,
    )
