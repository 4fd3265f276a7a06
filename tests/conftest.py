"""Shared fixtures for the modbind test suite."""
from __future__ import annotations

from pathlib import Path

import pytest

from modbind.config import ModbindConfig, anchor_from_config
from modbind.context import Context
from tests.helpers import sdk_files, write_tree


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def project_root(tmp_path) -> Path:
    """A project root with a complete SDK tree under ``sdk/``."""
    root = tmp_path / "project"
    write_tree(root / "sdk", sdk_files())
    return root


@pytest.fixture
def anchor(project_root) -> Context:
    return anchor_from_config(project_root, ModbindConfig())
