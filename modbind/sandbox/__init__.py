"""Sandbox backends that run operation exec steps against mounted contexts."""
from __future__ import annotations

from typing import Callable

from .base import (
    ContainerResult,
    ExecStep,
    Sandbox,
    SandboxError,
    SandboxProvisioningError,
    SandboxTimeout,
    ScratchSandbox,
    mount_point,
)
from .docker import DockerSandbox
from .local import LocalSandbox
from .process import CommandError, parse_command, parse_steps

SandboxFactory = Callable[[], Sandbox]

SANDBOX_BACKENDS: dict[str, type[ScratchSandbox]] = {
    "local": LocalSandbox,
    "docker": DockerSandbox,
}


def sandbox_factory(backend: str) -> SandboxFactory:
    """Return a factory building a fresh sandbox of the named backend per call."""
    try:
        sandbox_class = SANDBOX_BACKENDS[backend]
    except KeyError:
        raise ValueError(
            f"Unknown sandbox backend: {backend}. Supported: {', '.join(SANDBOX_BACKENDS)}"
        ) from None
    return sandbox_class


__all__ = [
    "CommandError",
    "ContainerResult",
    "DockerSandbox",
    "ExecStep",
    "LocalSandbox",
    "SANDBOX_BACKENDS",
    "Sandbox",
    "SandboxError",
    "SandboxFactory",
    "SandboxProvisioningError",
    "SandboxTimeout",
    "ScratchSandbox",
    "mount_point",
    "parse_command",
    "parse_steps",
    "sandbox_factory",
]
