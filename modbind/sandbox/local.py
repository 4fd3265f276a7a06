"""Local sandbox: runs exec steps as host subprocesses against scratch copies.

The image reference is only recorded; the host toolchain stands in for it.
Mount paths that appear in arguments (``/src``, ``/src/file``,
``--out=/out``) are rewritten to the scratch copies, so operations can be
written once against container paths and run under either backend.

Security note: this is an isolation of *inputs*, not a security boundary.
Use ``DockerSandbox`` for kernel-level isolation.
"""
from __future__ import annotations

import asyncio
import logging
import os
import shutil
from pathlib import Path
from typing import Mapping, Sequence

from ..context import Context
from .base import ContainerResult, ExecStep, SandboxProvisioningError, SandboxTimeout, ScratchSandbox
from .process import run_process

logger = logging.getLogger(__name__)

DEFAULT_ENV_KEYS = ("PATH", "LANG", "LC_ALL", "SYSTEMROOT", "TMPDIR")


def translate_argument(arg: str, staged: Mapping[str, Path]) -> str:
    """Rewrite container mount paths inside one argument to host paths."""
    if "=" in arg and not arg.startswith("/"):
        key, _, value = arg.partition("=")
        return f"{key}={translate_argument(value, staged)}"
    for mount in sorted(staged, key=len, reverse=True):
        if mount == "/":
            continue
        if arg == mount:
            return str(staged[mount])
        if arg.startswith(mount + "/"):
            return str(staged[mount] / arg[len(mount) + 1:])
    return arg


class LocalSandbox(ScratchSandbox):
    """Sandbox backend that executes steps with the host toolchain."""

    def __init__(
        self,
        scratch_dir: str | Path | None = None,
        env: Mapping[str, str] | None = None,
    ):
        super().__init__(scratch_dir)
        if env is None:
            env = {key: os.environ[key] for key in DEFAULT_ENV_KEYS if key in os.environ}
        self.env = dict(env)

    def _resolve_workdir(self, workdir: str | None, staged: Mapping[str, Path]) -> Path:
        if workdir is None:
            if len(staged) == 1:
                return next(iter(staged.values()))
            return self.scratch
        translated = Path(translate_argument(workdir, staged))
        if not translated.is_dir():
            raise SandboxProvisioningError("local", f"workdir {workdir!r} is not a mounted directory")
        return translated

    async def run_container(
        self,
        image: str,
        exec_steps: Sequence[ExecStep],
        mounts: Mapping[str, Context],
        *,
        workdir: str | None = None,
        timeout: float | None = None,
    ) -> ContainerResult:
        staged = self._stage_mounts(mounts)
        steps = [[translate_argument(arg, staged) for arg in step] for step in exec_steps]
        for step in steps:
            if not step:
                raise ValueError("Exec steps must not be empty")
            if shutil.which(step[0], path=self.env.get("PATH")) is None and not Path(step[0]).is_file():
                raise SandboxProvisioningError(image, f"executable {step[0]!r} is not available locally")

        cwd = self._resolve_workdir(workdir, staged)
        env = dict(self.env)
        env.setdefault("HOME", str(self.scratch))
        logger.info(f"Local sandbox ({image}): {len(steps)} step(s) in {cwd}")

        last_stdout = last_stderr = ""
        for original, step in zip(exec_steps, steps):
            try:
                result = await run_process(step, cwd=cwd, env=env, timeout=timeout)
            except asyncio.TimeoutError:
                raise SandboxTimeout(timeout or 0, original)
            except FileNotFoundError:
                raise SandboxProvisioningError(image, f"executable {step[0]!r} is not available locally")
            except PermissionError:
                raise SandboxProvisioningError(image, f"permission denied running {step[0]!r}")
            last_stdout, last_stderr = result.stdout, result.stderr
            if result.exit_code != 0:
                logger.debug(f"Step {list(original)} exited with {result.exit_code}")
                return ContainerResult(
                    exit_code=result.exit_code,
                    stderr_tail=result.stderr,
                    stdout_tail=result.stdout,
                    output_mounts=self._snapshot(staged, mounts),
                    failed_step=tuple(original),
                )

        return ContainerResult(
            exit_code=0,
            stderr_tail=last_stderr,
            stdout_tail=last_stdout,
            output_mounts=self._snapshot(staged, mounts),
        )
