"""Bridge between schema-introspection documents and an external generator.

The generator is a black box: a command run inside the sandbox with the
schema mounted at ``/schema``, the source tree at ``/src`` and an empty
output directory at ``/out``. The generated tree comes back as a Context.
"""
from __future__ import annotations

import filecmp
import json
import logging
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping, Sequence

from .context import Context, File
from .errors import DriftError
from .sandbox.base import Sandbox
from .sandbox.process import parse_steps
from .types import FailureKind, InvocationResult

logger = logging.getLogger(__name__)

SCHEMA_MOUNT = "/schema"
SOURCE_MOUNT = "/src"
OUTPUT_MOUNT = "/out"
SCHEMA_FILENAME = "introspection.json"

Schema = bytes | str | Mapping[str, Any] | File


def schema_bytes(schema: Schema) -> bytes:
    """Serialize a schema document given as bytes, text, a mapping, or a file."""
    if isinstance(schema, File):
        return schema.read_bytes()
    if isinstance(schema, bytes):
        return schema
    if isinstance(schema, str):
        return schema.encode("utf-8")
    return json.dumps(schema, indent=2, sort_keys=True).encode("utf-8")


def render_command(command: str | Sequence[str]) -> list[list[str]]:
    """Parse the generator command and fill the mount placeholders."""
    placeholders = {
        "schema": f"{SCHEMA_MOUNT}/{SCHEMA_FILENAME}",
        "source": SOURCE_MOUNT,
        "output": OUTPUT_MOUNT,
    }
    rendered = []
    for step in parse_steps(command):
        args = []
        for arg in step:
            for name, value in placeholders.items():
                arg = arg.replace("{" + name + "}", value)
            args.append(arg)
        rendered.append(args)
    return rendered


async def generate(
    schema: Schema,
    source: Context,
    sandbox: Sandbox,
    *,
    image: str,
    command: str | Sequence[str],
    timeout: float | None = None,
) -> Context:
    """Run the generator and return its output directory as a new Context.

    Raises:
        ExecutionError: If the generator exits non-zero
        SandboxError: If the sandbox cannot run the generator
    """
    steps = render_command(command)
    with tempfile.TemporaryDirectory(prefix="modbind-codegen-") as tmp:
        schema_dir = Path(tmp) / "schema"
        schema_dir.mkdir()
        (schema_dir / SCHEMA_FILENAME).write_bytes(schema_bytes(schema))
        output_dir = Path(tmp) / "out"
        output_dir.mkdir()
        mounts = {
            SCHEMA_MOUNT: Context(root=schema_dir),
            SOURCE_MOUNT: source,
            OUTPUT_MOUNT: Context(root=output_dir),
        }
        logger.debug(f"Running generator in {image}: {steps}")
        result = await sandbox.run_container(
            image, steps, mounts, workdir=SOURCE_MOUNT, timeout=timeout
        )
    result.check()
    return result.output_mounts[OUTPUT_MOUNT]


@dataclass(frozen=True, slots=True)
class TreeDiff:
    """Structural difference between two trees, as relative posix paths."""

    added: tuple[str, ...] = ()
    removed: tuple[str, ...] = ()
    modified: tuple[str, ...] = ()

    @property
    def paths(self) -> tuple[str, ...]:
        return tuple(sorted(self.added + self.removed + self.modified))

    def __bool__(self) -> bool:
        return bool(self.added or self.removed or self.modified)

    def summary(self) -> str:
        lines = []
        lines.extend(f"+ {path}" for path in self.added)
        lines.extend(f"- {path}" for path in self.removed)
        lines.extend(f"~ {path}" for path in self.modified)
        return "\n".join(lines)


def diff_trees(committed: Context, generated: Context) -> TreeDiff:
    """Compare two trees file by file.

    ``added`` are files only in the committed tree, ``removed`` are files the
    generator produced that are missing from it, ``modified`` differ in
    content.
    """
    committed_files = set(committed.walk_files()) if committed.root.is_dir() else set()
    generated_files = set(generated.walk_files())
    modified = [
        path
        for path in sorted(committed_files & generated_files)
        if not filecmp.cmp(committed.root / path, generated.root / path, shallow=False)
    ]
    return TreeDiff(
        added=tuple(sorted(committed_files - generated_files)),
        removed=tuple(sorted(generated_files - committed_files)),
        modified=tuple(modified),
    )


async def verify_generated(
    schema: Schema,
    source: Context,
    sandbox: Sandbox,
    *,
    generated_subpath: str,
    image: str,
    command: str | Sequence[str],
    timeout: float | None = None,
    operation: str = "verify-generated",
) -> InvocationResult:
    """Regenerate and diff against the committed tree under ``generated_subpath``."""
    generated = await generate(schema, source, sandbox, image=image, command=command, timeout=timeout)
    committed = source.directory(generated_subpath)
    diff = diff_trees(committed, generated)
    if not diff:
        return InvocationResult.success(operation, artifacts={"generated": generated})
    error = DriftError(
        diff.paths,
        f"Generated code under {committed.logical_path!r} is out of date:\n{diff.summary()}",
    )
    logger.info(f"Drift in {len(diff.paths)} path(s) under {committed.logical_path}")
    return InvocationResult.failed(operation, FailureKind.DRIFT, str(error), error.paths)
