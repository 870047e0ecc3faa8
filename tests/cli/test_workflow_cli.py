"""Tests for ``testflow workflow`` commands via CliRunner."""

from __future__ import annotations

from typer.testing import CliRunner

from testflow.cli.app import app

runner = CliRunner()


def _write(tmp_path, text, name="test.yaml"):
    path = tmp_path / name
    path.write_text(text, encoding="utf-8")
    return str(path)


MINIMAL_YAML = """\
metadata:
  name: minimal
spec:
  ansiblePlaybookPath: playbooks/minimal.yaml
"""


# ─── Root ────────────────────────────────────────────────────────────────


class TestRoot:
    def test_version(self):
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert result.output.startswith("testflow ")

    def test_help(self):
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        assert "workflow" in result.output


# ─── validate ────────────────────────────────────────────────────────────


class TestValidate:
    def test_valid_file(self, smoke_yaml_file):
        result = runner.invoke(app, ["workflow", "validate", str(smoke_yaml_file)])
        assert result.exit_code == 0
        assert "openstack/smoke: 2 steps" in result.output

    def test_zero_steps(self, tmp_path):
        result = runner.invoke(app, ["workflow", "validate", _write(tmp_path, MINIMAL_YAML)])
        assert result.exit_code == 0
        assert "implicit step" in result.output

    def test_missing_file(self, tmp_path):
        result = runner.invoke(app, ["workflow", "validate", str(tmp_path / "nope.yaml")])
        assert result.exit_code == 1
        assert "not found" in result.output

    def test_schema_error(self, tmp_path):
        path = _write(tmp_path, "metadata:\n  name: smoke\nspec:\n  debug: [1]\n")
        result = runner.invoke(app, ["workflow", "validate", path])
        assert result.exit_code == 1
        assert "Invalid AnsibleTest" in result.output

    def test_yaml_error(self, tmp_path):
        result = runner.invoke(app, ["workflow", "validate", _write(tmp_path, "metadata: [")])
        assert result.exit_code == 1
        assert "Invalid YAML" in result.output


# ─── plan ────────────────────────────────────────────────────────────────


class TestPlan:
    def test_json(self, smoke_yaml_file):
        result = runner.invoke(app, ["workflow", "plan", str(smoke_yaml_file), "--json"])
        assert result.exit_code == 0
        assert '"image": "quay.io/podified/ansible-tests:base"' in result.output
        assert '"image": "quay.io/podified/ansible-tests:debug"' in result.output
        assert '"step_name": "prepare"' in result.output

    def test_table(self, smoke_yaml_file):
        result = runner.invoke(app, ["workflow", "plan", str(smoke_yaml_file)])
        assert result.exit_code == 0
        assert "prepare" in result.output

    def test_no_image(self, tmp_path, monkeypatch):
        monkeypatch.setenv("TESTFLOW_DEFAULT_IMAGES", "{}")
        result = runner.invoke(app, ["workflow", "plan", _write(tmp_path, MINIMAL_YAML)])
        assert result.exit_code == 1
        assert "step 0" in result.output


# ─── simulate ────────────────────────────────────────────────────────────


class TestSimulate:
    def test_completes(self, smoke_yaml_file):
        result = runner.invoke(app, ["workflow", "simulate", str(smoke_yaml_file), "--json"])
        assert result.exit_code == 0
        assert '"completed": true' in result.output
        assert '"smoke-s01"' in result.output

    def test_failing_step(self, smoke_yaml_file):
        result = runner.invoke(
            app, ["workflow", "simulate", str(smoke_yaml_file), "--fail-step", "0", "--json"]
        )
        assert result.exit_code == 1
        assert '"failed": true' in result.output
        assert '"smoke-s01"' not in result.output

    def test_table_output(self, smoke_yaml_file):
        result = runner.invoke(app, ["workflow", "simulate", str(smoke_yaml_file)])
        assert result.exit_code == 0
        assert "completed" in result.output

    def test_max_cycles(self, smoke_yaml_file):
        result = runner.invoke(
            app, ["workflow", "simulate", str(smoke_yaml_file), "--max-cycles", "1"]
        )
        assert result.exit_code == 1
        assert "not finished" in result.output
