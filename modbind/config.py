"""Configuration loading for modbind.

Reads an optional ``modbind.toml`` from the project root to control the SDK
layout, the sandbox backend, and explicit arguments for operations.
"""
from __future__ import annotations

import os
import tomllib
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .context import Context, join_subpath, normalize_subpath
from .errors import ConfigError

CONFIG_FILENAMES = ("modbind.toml",)
ENV_SANDBOX_VAR = "MODBIND_SANDBOX"


class ProjectSettings(BaseModel):
    """SDK layout relative to the project root."""

    model_config = ConfigDict(extra="forbid")

    sdk: str = Field(default="sdk", description="SDK tree, relative to the project root")
    introspection: str = Field(
        default="introspection.json", description="Schema document, relative to the SDK tree"
    )
    generated: str = Field(
        default="runtime/runtime", description="Committed generated code, relative to the SDK tree"
    )
    required_paths: List[str] = Field(
        default_factory=list, description="Extra layout entries checked by check-structure"
    )

    @field_validator("sdk", "introspection", "generated")
    @classmethod
    def _relative_path(cls, value: str) -> str:
        return normalize_subpath(value)


class SandboxSettings(BaseModel):
    model_config = ConfigDict(extra="forbid")

    backend: Literal["local", "docker"] = "local"
    timeout: Optional[float] = None
    max_parallel: int = 4

    @field_validator("timeout")
    @classmethod
    def _positive_timeout(cls, value: Optional[float]) -> Optional[float]:
        if value is not None and value <= 0:
            raise ValueError("timeout must be positive")
        return value

    @field_validator("max_parallel")
    @classmethod
    def _positive_parallel(cls, value: int) -> int:
        if value < 1:
            raise ValueError("max_parallel must be at least 1")
        return value


class ModbindConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    project: ProjectSettings = Field(default_factory=ProjectSettings)
    sandbox: SandboxSettings = Field(default_factory=SandboxSettings)
    operations: Dict[str, Dict[str, Any]] = Field(default_factory=dict)
    path: Optional[Path] = None

    def derived_paths(self) -> dict[str, str]:
        sdk = self.project.sdk
        return {
            "sdk": sdk,
            "introspection": join_subpath(sdk, self.project.introspection),
            "generated": join_subpath(sdk, self.project.generated),
        }

    def operation_arguments(self) -> dict[str, dict[str, Any]]:
        """Explicit operation args, with the configured layout settings folded in."""
        arguments = {name: dict(values) for name, values in self.operations.items()}
        if self.project.required_paths:
            structure = arguments.setdefault("check-structure", {})
            structure.setdefault("extra_paths", list(self.project.required_paths))
        if "generated" in self.project.model_fields_set:
            # explicit source trees carry no derived paths
            verify = arguments.setdefault("verify-generated", {})
            verify.setdefault("generated", self.project.generated)
        return arguments


def load_config(base_dir: Path) -> ModbindConfig:
    """Load config from the first matching file in ``base_dir``.

    ``MODBIND_SANDBOX`` overrides the configured sandbox backend.

    Raises:
        ConfigError: If the file is not valid TOML or fails validation
    """
    data: dict[str, Any] = {}
    path: Optional[Path] = None
    for filename in CONFIG_FILENAMES:
        candidate = base_dir / filename
        if not candidate.exists():
            continue
        try:
            with candidate.open("rb") as f:
                data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ConfigError(f"Invalid TOML in {candidate}: {e}") from e
        path = candidate
        break

    env_backend = os.environ.get(ENV_SANDBOX_VAR)
    if env_backend:
        data.setdefault("sandbox", {})["backend"] = env_backend

    try:
        config = ModbindConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration{f' in {path}' if path else ''}: {e}") from e
    return config.model_copy(update={"path": path})


def anchor_from_config(root: str | Path, config: ModbindConfig) -> Context:
    """Build the project anchor with the configured derived paths."""
    return Context.of(root, **config.derived_paths())
