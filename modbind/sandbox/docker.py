"""Docker sandbox: runs each exec step in a fresh container of the image.

Mounts are bind-mounted scratch copies, so state written by one step is
visible to the next while the host trees stay untouched.
"""
from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Mapping, Sequence

from ..context import Context
from .base import ContainerResult, ExecStep, SandboxProvisioningError, SandboxTimeout, ScratchSandbox
from .process import ProcessResult, run_process

logger = logging.getLogger(__name__)

# `docker run` reserves 125 for daemon/engine errors
DOCKER_ENGINE_ERROR = 125
DEFAULT_PULL_TIMEOUT = 600


class DockerSandbox(ScratchSandbox):
    """Sandbox backend that shells out to the ``docker`` CLI."""

    def __init__(
        self,
        scratch_dir: str | Path | None = None,
        docker: str = "docker",
        pull_timeout: float = DEFAULT_PULL_TIMEOUT,
        network: str | None = "none",
    ):
        super().__init__(scratch_dir)
        self.docker = docker
        self.pull_timeout = pull_timeout
        self.network = network
        self._ready_images: set[str] = set()

    async def _docker(self, *args: str, timeout: float | None = None) -> ProcessResult:
        try:
            return await run_process([self.docker, *args], timeout=timeout)
        except FileNotFoundError:
            raise SandboxProvisioningError(args[-1] if args else "", f"{self.docker!r} executable not found")

    async def ensure_image(self, image: str) -> None:
        """Pull ``image`` unless it is already present locally."""
        if image in self._ready_images:
            return
        inspect = await self._docker("image", "inspect", image)
        if inspect.exit_code != 0:
            logger.info(f"Pulling image {image}")
            try:
                pull = await self._docker("pull", image, timeout=self.pull_timeout)
            except asyncio.TimeoutError:
                raise SandboxProvisioningError(image, f"pull timed out after {self.pull_timeout:g} seconds")
            if pull.exit_code != 0:
                raise SandboxProvisioningError(image, pull.stderr.strip() or f"docker pull exited with {pull.exit_code}")
        self._ready_images.add(image)

    def build_run_args(
        self,
        image: str,
        step: Sequence[str],
        staged: Mapping[str, Path],
        workdir: str | None,
    ) -> list[str]:
        args = ["run", "--rm"]
        if self.network:
            args += ["--network", self.network]
        for target, host_path in sorted(staged.items()):
            args += ["-v", f"{host_path}:{target}"]
        if workdir is None and len(staged) == 1:
            workdir = next(iter(staged))
        if workdir:
            args += ["-w", workdir]
        args.append(image)
        args.extend(step)
        return args

    async def run_container(
        self,
        image: str,
        exec_steps: Sequence[ExecStep],
        mounts: Mapping[str, Context],
        *,
        workdir: str | None = None,
        timeout: float | None = None,
    ) -> ContainerResult:
        await self.ensure_image(image)
        staged = self._stage_mounts(mounts)
        logger.info(f"Docker sandbox ({image}): {len(exec_steps)} step(s)")

        last: ProcessResult | None = None
        for step in exec_steps:
            if not step:
                raise ValueError("Exec steps must not be empty")
            args = self.build_run_args(image, step, staged, workdir)
            try:
                last = await self._docker(*args, timeout=timeout)
            except asyncio.TimeoutError:
                raise SandboxTimeout(timeout or 0, step)
            if last.exit_code == DOCKER_ENGINE_ERROR:
                raise SandboxProvisioningError(image, last.stderr.strip() or "docker engine error")
            if last.exit_code != 0:
                return ContainerResult(
                    exit_code=last.exit_code,
                    stderr_tail=last.stderr,
                    stdout_tail=last.stdout,
                    output_mounts=self._snapshot(staged, mounts),
                    failed_step=tuple(step),
                )

        return ContainerResult(
            exit_code=0,
            stderr_tail=last.stderr if last else "",
            stdout_tail=last.stdout if last else "",
            output_mounts=self._snapshot(staged, mounts),
        )
