"""Tests for the modbind command line."""
from __future__ import annotations

import json
import shlex
import sys
import time

import pytest

from modbind.cli.main import context_arguments, main, parse_assignments
from modbind.config import ENV_SANDBOX_VAR
from modbind.registry import register
from modbind.sandbox import LocalSandbox
from tests.helpers import GENERATED_FILES, RecordingSandbox, UnavailableSandbox, write_module


@pytest.fixture(autouse=True)
def clear_sandbox_env(monkeypatch):
    monkeypatch.delenv(ENV_SANDBOX_VAR, raising=False)


def run_json(capsys, *argv, factory=None):
    code = main([*argv, "--json"], factory=factory)
    return code, json.loads(capsys.readouterr().out)


class TestParsing:
    def test_parse_assignments(self):
        assert parse_assignments(["image=node:20", 'paths=["a", "b"]', "note={not json"], "--arg") == {
            "image": "node:20",
            "paths": ["a", "b"],
            "note": "{not json",
        }

    def test_parse_assignments_requires_key(self):
        with pytest.raises(ValueError, match="--arg expects KEY=VALUE"):
            parse_assignments(["novalue"], "--arg")

    def test_context_arguments(self):
        op = register("sdk").get("verify-generated")
        assert context_arguments(op, ["/tmp/sdk"]) == {"source": "/tmp/sdk"}
        assert context_arguments(op, ["introspection=/tmp/schema.json"]) == {"introspection": "/tmp/schema.json"}

    def test_context_arguments_without_directory_parameter(self, tmp_path):
        op = register(write_module(tmp_path, "@function\ndef op(count: int = 1) -> None:\n    pass\n")).get("op")
        with pytest.raises(ValueError, match="no directory parameter"):
            context_arguments(op, ["/tmp"])


class TestListing:
    def test_list_checks(self, capsys, project_root):
        code, checks = run_json(capsys, "list-checks", "sdk", "--root", str(project_root))
        assert code == 0
        assert [check["name"] for check in checks] == ["check-structure", "lint", "test", "verify-generated"]

    def test_functions(self, capsys, project_root):
        code, ops = run_json(capsys, "functions", "sdk", "--root", str(project_root))
        assert code == 0
        generate = next(op for op in ops if op["name"] == "generate")
        assert "check" not in generate["tags"]
        source = next(p for p in generate["parameters"] if p["name"] == "source")
        assert source == {"name": "source", "kind": "directory", "required": False, "default_path": "<sdk>"}

    def test_rich_table(self, capsys, monkeypatch, project_root):
        monkeypatch.setenv("COLUMNS", "200")
        assert main(["list-checks", "sdk", "--root", str(project_root)]) == 0
        out = capsys.readouterr().out
        assert "check-structure" in out
        assert "verify-generated" in out

    def test_declaration_error_is_fatal(self, capsys, tmp_path):
        path = write_module(tmp_path, "@check\ndef check_it(source: Context) -> None:\n    pass\n")
        assert main(["list-checks", str(path), "--root", str(tmp_path)]) == 9
        assert "has required parameter(s) source" in capsys.readouterr().err


class TestRunCheck:
    def test_passes(self, capsys, project_root):
        assert main(["run-check", "sdk", "check-structure", "--root", str(project_root)]) == 0
        assert "PASS check-structure" in capsys.readouterr().out

    def test_missing_required_file(self, capsys, project_root):
        (project_root / "sdk" / "runtime" / "dagger.json").unlink()
        code, (result,) = run_json(capsys, "run-check", "sdk", "check-structure", "--root", str(project_root))
        assert code == 1
        assert result["failure"]["kind"] == "ExecutionFailed"
        assert result["failure"]["paths"] == ["runtime/dagger.json"]

    def test_explicit_context(self, capsys, project_root, tmp_path):
        (tmp_path / "empty").mkdir()
        code, (result,) = run_json(
            capsys, "run-check", "sdk", "check-structure", "--root", str(project_root), "--context", str(tmp_path / "empty")
        )
        assert code == 1
        assert result["status"] == "failure"

    def test_args(self, capsys, project_root):
        code, (result,) = run_json(
            capsys,
            "run-check", "sdk", "check-structure",
            "--root", str(project_root),
            "--arg", 'extra_paths=["CHANGELOG.md"]',
        )
        assert code == 1
        assert result["failure"]["paths"] == ["CHANGELOG.md"]

    def test_not_a_check(self, capsys, project_root):
        assert main(["run-check", "sdk", "generate", "--root", str(project_root)]) == 9
        assert "is not a check" in capsys.readouterr().err

    def test_unknown_operation(self, capsys, project_root):
        assert main(["run-check", "sdk", "deploy", "--root", str(project_root)]) == 9
        assert "Unknown operation 'deploy'" in capsys.readouterr().err

    def test_malformed_arg(self, capsys, project_root):
        assert main(["run-check", "sdk", "lint", "--root", str(project_root), "--arg", "image"]) == 9

    def test_pull_failure_exit_code(self, capsys, project_root):
        code, (result,) = run_json(
            capsys, "run-check", "sdk", "lint", "--root", str(project_root), factory=UnavailableSandbox
        )
        assert code == 2
        assert result["failure"]["kind"] == "InfrastructureError"

    def test_config_required_paths(self, capsys, project_root):
        (project_root / "modbind.toml").write_text('[project]\nrequired_paths = ["CHANGELOG.md"]\n')
        assert main(["run-check", "sdk", "check-structure", "--root", str(project_root)]) == 1

    def test_invalid_config(self, capsys, project_root):
        (project_root / "modbind.toml").write_text('[sandbox]\nbackend = "podman"\n')
        assert main(["list-checks", "sdk", "--root", str(project_root)]) == 9
        assert "Invalid configuration" in capsys.readouterr().err


class TestCheck:
    def test_selected_checks_pass(self, capsys, project_root):
        code, results = run_json(
            capsys, "check", "sdk", "check-structure", "lint", "--root", str(project_root), factory=RecordingSandbox
        )
        assert code == 0
        assert [r["operation"] for r in results] == ["check-structure", "lint"]

    def test_exit_code_is_the_highest(self, capsys, project_root):
        (project_root / "sdk" / "README.md").unlink()
        code, results = run_json(
            capsys, "check", "sdk", "check-structure", "lint", "test",
            "--root", str(project_root), "--max-parallel", "1",
            factory=UnavailableSandbox,
        )
        assert code == 2
        assert [r["exit_code"] for r in results] == [1, 2, 2]


class TestCall:
    def test_generate_with_export(self, capsys, project_root, tmp_path):
        script = tmp_path / "gen.py"
        script.write_text(
            "import json, pathlib, sys\n"
            f"files = json.loads({json.dumps(GENERATED_FILES)!r})\n"
            "for relative, text in files.items():\n"
            "    target = pathlib.Path(sys.argv[1]) / relative\n"
            "    target.parent.mkdir(parents=True, exist_ok=True)\n"
            "    target.write_text(text)\n"
        )
        command = f"{shlex.quote(sys.executable)} {shlex.quote(str(script))} {{output}}"
        export = tmp_path / "export"
        code, (result,) = run_json(
            capsys,
            "call", "sdk", "generate",
            "--root", str(project_root),
            "--arg", f"command={command}",
            "--export", str(export),
            factory=LocalSandbox,
        )
        assert code == 0, result
        assert result["artifacts"]["output"] == str((export / "output").resolve())
        assert (export / "output" / "dag" / "core.py").read_text() == GENERATED_FILES["dag/core.py"]

    def test_missing_argument(self, capsys, tmp_path):
        path = write_module(tmp_path, "@function\ndef greet(name: str) -> str:\n    return name\n")
        code, (result,) = run_json(capsys, "call", str(path), "greet", "--root", str(tmp_path))
        assert code == 6
        assert result["failure"]["kind"] == "MissingArgument"

    def test_value_result(self, capsys, tmp_path):
        path = write_module(tmp_path, "@function\ndef greet(name: str) -> str:\n    return f'hello {name}'\n")
        code, (result,) = run_json(capsys, "call", str(path), "greet", "--root", str(tmp_path), "--arg", "name=ci")
        assert code == 0
        assert result["value"] == "hello ci"

    def test_not_implemented(self, capsys, tmp_path):
        path = write_module(tmp_path, "@function\ndef publish() -> None:\n    raise NotImplementedError\n")
        assert main(["call", str(path), "publish", "--root", str(tmp_path)]) == 8
        assert "TODO publish" in capsys.readouterr().out

    def test_relative_context_is_under_root(self, capsys, project_root):
        code, (result,) = run_json(
            capsys, "call", "sdk", "check-structure", "--root", str(project_root), "--context", "sdk"
        )
        assert code == 0, result

    def test_sync_timeout_exits_promptly(self, capsys, tmp_path):
        path = write_module(tmp_path, "import time\n\n@check\ndef slow() -> None:\n    time.sleep(4)\n")
        started = time.monotonic()
        assert main(["run-check", str(path), "slow", "--root", str(tmp_path), "--timeout", "0.3"]) == 3
        assert time.monotonic() - started < 3
