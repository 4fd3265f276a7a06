"""Tree builders and fake sandboxes shared by the tests."""
from __future__ import annotations

import json
import textwrap
from pathlib import Path
from typing import Callable, Mapping, Sequence

from modbind.context import Context
from modbind.layout import DOC_PAGES
from modbind.sandbox.base import ContainerResult, SandboxProvisioningError


class RecordingSandbox:
    """Records every run and returns a canned result.

    ``result`` may be a ContainerResult or a callable receiving
    ``(image, steps, mounts)`` and returning one.
    """

    def __init__(
        self,
        result: ContainerResult | Callable[..., ContainerResult] | None = None,
    ):
        self.result = result or ContainerResult(exit_code=0)
        self.runs: list[dict] = []
        self.closed = False

    async def run_container(
        self,
        image: str,
        exec_steps: Sequence[Sequence[str]],
        mounts: Mapping[str, Context],
        *,
        workdir: str | None = None,
        timeout: float | None = None,
    ) -> ContainerResult:
        self.runs.append(
            {
                "image": image,
                "steps": [list(step) for step in exec_steps],
                "mounts": dict(mounts),
                "workdir": workdir,
                "timeout": timeout,
            }
        )
        if callable(self.result):
            return self.result(image, exec_steps, mounts)
        return self.result

    def close(self) -> None:
        self.closed = True


class UnavailableSandbox(RecordingSandbox):
    """Fails to provision, like a registry that refuses the image pull."""

    async def run_container(self, image, exec_steps, mounts, *, workdir=None, timeout=None):
        raise SandboxProvisioningError(image, "pull access denied")


def generator_sandbox(output: Path) -> RecordingSandbox:
    """Sandbox whose generator run produces the tree already at ``output``."""

    def produce(image, exec_steps, mounts):
        return ContainerResult(exit_code=0, output_mounts={"/out": Context(root=output)})

    return RecordingSandbox(produce)


GENERATED_FILES = {
    "dag.py": "# generated\n",
    "dag/core.py": "class Client:\n    pass\n",
    "dag/wrappers.py": "def wrap(value):\n    return value\n",
}


def write_tree(root: Path, files: dict[str, str]) -> Path:
    """Write ``{relative path: text}`` under ``root`` and return ``root``."""
    for relative, text in files.items():
        target = root / relative
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(text)
    return root


def sdk_files() -> dict[str, str]:
    """Every file of a complete SDK tree."""
    files = {
        "README.md": "# SDK\n",
        "introspection.json": json.dumps({"types": ["Query"]}),
        "runtime/dagger.json": "{}\n",
        "runtime/main.py": "print('runtime')\n",
    }
    files.update({f"docs/{page}.md": f"# {page}\n" for page in DOC_PAGES})
    files.update({f"runtime/runtime/{path}": text for path, text in GENERATED_FILES.items()})
    return files


MODULE_HEADER = """\
from typing import Annotated

from pydantic import BaseModel

from modbind import Context, DefaultPath, Doc, File, Ignore, Required, check, function
from modbind.sandbox import ContainerResult, Sandbox
"""


def write_module(directory: Path, body: str, name: str = "ops.py") -> Path:
    """Write an operation module with the common imports prepended."""
    path = directory / name
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(MODULE_HEADER + textwrap.dedent(body))
    return path
