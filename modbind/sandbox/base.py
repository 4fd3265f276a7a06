"""Sandbox collaborator interface.

A sandbox accepts an image reference, an ordered list of exec steps and a
set of mounted contexts, runs the steps in isolation and reports the exit
status plus snapshots of the mounted trees.
"""
from __future__ import annotations

import shutil
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Protocol, Sequence, runtime_checkable

from ..context import Context, normalize_subpath
from ..errors import ExecutionError, PathResolutionError

ExecStep = Sequence[str]


class SandboxError(Exception):
    """Base error for sandbox failures unrelated to the command outcome."""
    pass


class SandboxProvisioningError(SandboxError):
    """Raised when the sandbox cannot be set up (image pull, missing engine)."""

    def __init__(self, image: str, message: str):
        self.image = image
        super().__init__(f"Cannot provision sandbox for image {image!r}: {message}")


class SandboxTimeout(SandboxError):
    """Raised when exec steps exceed the sandbox timeout."""

    def __init__(self, timeout: float, step: Sequence[str]):
        self.timeout = timeout
        self.step = tuple(step)
        super().__init__(f"Step {' '.join(self.step)!r} timed out after {timeout:g} seconds")


@dataclass(frozen=True, slots=True)
class ContainerResult:
    exit_code: int
    stderr_tail: str = ""
    stdout_tail: str = ""
    output_mounts: Mapping[str, Context] = field(default_factory=dict)
    failed_step: tuple[str, ...] = ()

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    def check(self) -> "ContainerResult":
        """Return self, or raise ``ExecutionError`` for a non-zero exit."""
        if self.exit_code != 0:
            step = " ".join(self.failed_step) or "exec step"
            detail = self.stderr_tail.strip() or self.stdout_tail.strip()
            message = f"{step!r} exited with code {self.exit_code}"
            if detail:
                message += f"\n{detail}"
            raise ExecutionError(message, exit_code=self.exit_code)
        return self


@runtime_checkable
class Sandbox(Protocol):
    """Structural type for sandbox backends."""

    async def run_container(
        self,
        image: str,
        exec_steps: Sequence[ExecStep],
        mounts: Mapping[str, Context],
        *,
        workdir: str | None = None,
        timeout: float | None = None,
    ) -> ContainerResult: ...

    def close(self) -> None: ...


def mount_point(path: str) -> str:
    """Normalize a container mount path to an absolute posix path."""
    if not path.startswith("/"):
        raise ValueError(f"Mount path must be absolute: {path!r}")
    normalized = normalize_subpath(path)
    return "/" if normalized == "." else "/" + normalized


class ScratchSandbox:
    """Shared scratch-directory handling for sandbox backends.

    Each ``run_container`` call copies its mounts into a fresh scratch
    directory, so runs never observe each other's writes and the host trees
    are never modified. Output mounts reference those copies and stay valid
    until ``close()``.
    """

    def __init__(self, scratch_dir: str | Path | None = None):
        self._owns_scratch = scratch_dir is None
        self.scratch = Path(scratch_dir or tempfile.mkdtemp(prefix="modbind-"))
        self.scratch.mkdir(parents=True, exist_ok=True)
        self._runs = 0

    def _stage_mounts(self, mounts: Mapping[str, Context]) -> dict[str, Path]:
        self._runs += 1
        run_dir = self.scratch / f"run-{self._runs}"
        staged: dict[str, Path] = {}
        for index, (path, context) in enumerate(sorted(mounts.items())):
            target = mount_point(path)
            if target in staged:
                raise ValueError(f"Duplicate mount path: {target}")
            if not context.root.is_dir():
                reason = "is not a directory" if context.root.exists() else "does not exist"
                raise PathResolutionError(context.root, context.logical_path, f"mount source for {target} {reason}")
            copy = context.export(run_dir / f"mount-{index}")
            staged[target] = copy.root
        return staged

    @staticmethod
    def _snapshot(staged: Mapping[str, Path], mounts: Mapping[str, Context]) -> dict[str, Context]:
        snapshots: dict[str, Context] = {}
        for path, context in mounts.items():
            target = mount_point(path)
            snapshots[target] = Context(root=staged[target], logical_path=context.logical_path)
        return snapshots

    def close(self) -> None:
        if self._owns_scratch:
            shutil.rmtree(self.scratch, ignore_errors=True)

    def __enter__(self):
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
