"""Tests for the codegen bridge: generator runs and drift detection."""
from __future__ import annotations

import json
import shlex
import sys

import pytest

from modbind.codegen import (
    diff_trees,
    generate,
    render_command,
    schema_bytes,
    verify_generated,
)
from modbind.context import Context
from modbind.errors import ExecutionError
from modbind.sandbox import LocalSandbox
from modbind.sandbox.base import ContainerResult
from modbind.types import FailureKind
from tests.helpers import GENERATED_FILES, RecordingSandbox, generator_sandbox, write_tree

GENERATOR = """\
import json
import pathlib
import sys

schema = json.loads(pathlib.Path(sys.argv[1]).read_text())
assert schema["types"] == ["Query"], schema
out = pathlib.Path(sys.argv[2])
for relative, text in json.loads(FILES).items():
    target = out / relative
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(text)
"""


@pytest.fixture
def generator_command(tmp_path) -> str:
    script = tmp_path / "tools" / "gen.py"
    script.parent.mkdir(parents=True)
    script.write_text(f"FILES = {json.dumps(GENERATED_FILES)!r}\n" + GENERATOR)
    return f"{shlex.quote(sys.executable)} {shlex.quote(str(script))} {{schema}} {{output}}"


@pytest.fixture
def sdk(anchor) -> Context:
    return anchor.directory("sdk")


class TestSchemaAndCommand:
    def test_schema_bytes(self, sdk):
        assert schema_bytes(b"{}") == b"{}"
        assert schema_bytes("{}") == b"{}"
        assert json.loads(schema_bytes({"b": 1, "a": 2})) == {"a": 2, "b": 1}
        assert json.loads(schema_bytes(sdk.file("introspection.json"))) == {"types": ["Query"]}

    def test_render_command(self):
        assert render_command("gen --in {schema} --src={source} -o {output}") == [
            ["gen", "--in", "/schema/introspection.json", "--src=/src", "-o", "/out"]
        ]

    def test_literal_braces_survive(self):
        assert render_command(["fmt {}", "gen {output}"]) == [["fmt", "{}"], ["gen", "/out"]]


class TestDiffTrees:
    def test_identical(self, tmp_path):
        a = write_tree(tmp_path / "a", {"x.py": "1", "pkg/y.py": "2"})
        b = write_tree(tmp_path / "b", {"x.py": "1", "pkg/y.py": "2"})
        diff = diff_trees(Context.of(a), Context.of(b))
        assert not diff
        assert diff.paths == ()

    def test_added_removed_modified(self, tmp_path):
        committed = write_tree(tmp_path / "committed", {"same.py": "s", "stale.py": "old", "edited.py": "v1"})
        generated = write_tree(tmp_path / "generated", {"same.py": "s", "new.py": "n", "edited.py": "v2"})
        diff = diff_trees(Context.of(committed), Context.of(generated))
        assert diff.added == ("stale.py",)
        assert diff.removed == ("new.py",)
        assert diff.modified == ("edited.py",)
        assert diff.paths == ("edited.py", "new.py", "stale.py")
        assert diff.summary() == "+ stale.py\n- new.py\n~ edited.py"

    def test_missing_committed_tree(self, tmp_path):
        generated = write_tree(tmp_path / "generated", {"a.py": ""})
        diff = diff_trees(Context.of(tmp_path / "absent"), Context.of(generated))
        assert diff.removed == ("a.py",)


@pytest.mark.anyio
class TestGenerate:
    async def test_mounts_and_output(self, sdk, tmp_path):
        output = write_tree(tmp_path / "generated", {"dag.py": ""})
        sandbox = generator_sandbox(output)
        result = await generate({"types": []}, sdk, sandbox, image="gen:1", command="gen {schema} {output}")

        assert result.root == output
        (run,) = sandbox.runs
        assert run["image"] == "gen:1"
        assert run["steps"] == [["gen", "/schema/introspection.json", "/out"]]
        assert run["workdir"] == "/src"
        assert run["mounts"]["/src"] is sdk
        assert set(run["mounts"]) == {"/schema", "/src", "/out"}

    async def test_generator_failure(self, sdk):
        sandbox = RecordingSandbox(ContainerResult(exit_code=1, stderr_tail="bad schema", failed_step=("gen",)))
        with pytest.raises(ExecutionError, match="bad schema"):
            await generate(b"{}", sdk, sandbox, image="gen:1", command="gen")

    async def test_local_generator(self, sdk, generator_command):
        with LocalSandbox() as sandbox:
            output = await generate(
                sdk.file("introspection.json"), sdk, sandbox, image="gen:1", command=generator_command
            )
            assert sorted(output.walk_files()) == sorted(GENERATED_FILES)


@pytest.mark.anyio
class TestVerifyGenerated:
    async def test_unmodified_tree_passes(self, sdk, generator_command):
        with LocalSandbox() as sandbox:
            result = await verify_generated(
                sdk.file("introspection.json"),
                sdk,
                sandbox,
                generated_subpath="runtime/runtime",
                image="gen:1",
                command=generator_command,
            )
        assert result.ok, result.failure

    async def test_extra_committed_file_is_drift(self, sdk, project_root, generator_command):
        write_tree(project_root / "sdk" / "runtime" / "runtime", {"dag/extra.py": "# stale\n"})
        with LocalSandbox() as sandbox:
            result = await verify_generated(
                sdk.file("introspection.json"),
                sdk,
                sandbox,
                generated_subpath="runtime/runtime",
                image="gen:1",
                command=generator_command,
            )
        assert result.failure.kind is FailureKind.DRIFT
        assert result.failure.paths == ("dag/extra.py",)
        assert result.exit_code == 4

    async def test_edited_file_is_drift(self, sdk, tmp_path):
        output = write_tree(tmp_path / "generated", dict(GENERATED_FILES))
        (output / "dag.py").write_text("# regenerated differently\n")
        result = await verify_generated(
            b"{}",
            sdk,
            generator_sandbox(output),
            generated_subpath="runtime/runtime",
            image="gen:1",
            command="gen",
            operation="verify",
        )
        assert result.operation == "verify"
        assert result.failure.paths == ("dag.py",)
        assert "~ dag.py" in result.failure.message
