"""
Unit tests for the command line interface.
"""
import json
import pytest
from click.testing import CliRunner

from bess_converter import __version__
from bess_converter.cli.main import cli
from bess_converter.cli.utils import console
from bess_converter.core.config import LoggingConfig
from bess_converter.core.logging import setup_logging

# Keeps command output free of log lines
QUIET = ["--log-level", "ERROR"]


@pytest.fixture(autouse=True)
def restore_logging():
    yield
    setup_logging(LoggingConfig(level="WARNING"))


@pytest.fixture
def runner(monkeypatch):
    for name in ("BESS_MAX_WORKERS", "BESS_ON_PARSE_ERROR", "BESS_PROJECT1_CELL_COUNT", "BESS_REPORT_DIR"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr(console, "width", 200)
    return CliRunner()


class TestCliBasics:
    """Test the command group and its global options."""

    def test_help(self, runner):
        result = runner.invoke(cli, ["--help"])

        assert result.exit_code == 0
        for command in ("scan", "convert", "validate", "watch", "show-config"):
            assert command in result.output

    def test_version(self, runner):
        result = runner.invoke(cli, ["--version"])

        assert result.exit_code == 0
        assert __version__ in result.output

    def test_show_config(self, runner):
        result = runner.invoke(cli, QUIET + ["show-config"])

        assert result.exit_code == 0
        assert "BESS Converter Configuration" in result.output
        assert "240 cells" in result.output

    def test_config_env_file(self, runner, monkeypatch, temp_dir):
        monkeypatch.setenv("BESS_PROJECT1_CELL_COUNT", "240")
        env_file = temp_dir / "converter.env"
        env_file.write_text("BESS_PROJECT1_CELL_COUNT=12\n")

        result = runner.invoke(cli, QUIET + ["--config-env", str(env_file), "show-config"])

        assert result.exit_code == 0
        assert "12 cells" in result.output


class TestScanCommand:
    """Test the scan command."""

    def test_scan_json(self, runner, project1_tree):
        result = runner.invoke(cli, QUIET + ["scan", "project1", str(project1_tree), "--json"])

        assert result.exit_code == 0
        data = json.loads(result.output)
        assert set(data["2#"]) == {"Bank01", "Bank02"}
        assert data["15#"] == {}

    def test_scan_table(self, runner, project2_tree):
        result = runner.invoke(cli, QUIET + ["scan", "project2", str(project2_tree)])

        assert result.exit_code == 0
        assert "4 file(s) found" in result.output

    def test_scan_missing_directory(self, runner, temp_dir):
        result = runner.invoke(cli, QUIET + ["scan", "project1", str(temp_dir / "missing")])

        assert result.exit_code == 0
        assert "0 file(s) found" in result.output


class TestConvertCommand:
    """Test the convert command."""

    def test_convert_writes_output(self, runner, project1_tree, temp_dir):
        out_dir = temp_dir / "out"

        result = runner.invoke(cli, QUIET + [
            "convert", "project1", str(project1_tree), "--output", str(out_dir), "--workers", "2"
        ])

        assert result.exit_code == 0, result.output
        written = sorted(path.name for path in out_dir.iterdir())
        assert "project1-14_-Bank01.json" in written
        assert "project1-2_.json" in written
        reports = [name for name in written if name.startswith("conversion_report_")]
        assert len(reports) == 1

        dataset = json.loads((out_dir / "project1-2_.json").read_text(encoding="utf-8"))
        assert dataset["project_id"] == "project1-2#"
        assert [bank["bank_id"] for bank in dataset["banks"]] == ["Bank01", "Bank02"]

    def test_convert_stopped_run_fails(self, runner, temp_dir, project1_csv, project1_row_factory):
        base = temp_dir / "bad"
        project1_csv(base / "2#" / "Bank01_20240105.csv", [project1_row_factory("not a time")])
        project1_csv(base / "2#" / "Bank02_20240105.csv", [project1_row_factory("01/05/2024 08:00")])

        result = runner.invoke(cli, QUIET + [
            "convert", "project1", str(base), "--on-parse-error", "abort", "--workers", "1"
        ])

        assert result.exit_code == 1
        assert "stopped by the error handling strategy" in result.output

    def test_convert_rejects_unknown_policy(self, runner, project1_tree):
        result = runner.invoke(cli, QUIET + [
            "convert", "project1", str(project1_tree), "--on-parse-error", "ignore"
        ])

        assert result.exit_code == 2


class TestValidateCommand:
    """Test the validate command."""

    def test_valid_project1_file(self, runner, project1_tree):
        path = project1_tree / "2#" / "Bank01_20240105.csv"

        result = runner.invoke(cli, QUIET + ["validate", str(path)])

        assert result.exit_code == 0
        assert "valid project1 file" in result.output

    def test_project2_type_from_path(self, runner, project2_tree):
        path = project2_tree / "group1" / "soc" / "soc1_2024_01_05_080000.csv"

        result = runner.invoke(cli, QUIET + ["validate", str(path)])

        assert result.exit_code == 0

    def test_invalid_file(self, runner, temp_dir):
        path = temp_dir / "2#" / "Bank01_20240105.csv"
        path.parent.mkdir()
        path.write_text("a,b,c\n1,2,3\n", encoding="utf-8")

        result = runner.invoke(cli, QUIET + ["validate", str(path)])

        assert result.exit_code == 1
        assert "not a valid project1 file" in result.output

    def test_unknown_project(self, runner, temp_dir):
        path = temp_dir / "loose.csv"
        path.write_text("a,b\n", encoding="utf-8")

        result = runner.invoke(cli, QUIET + ["validate", str(path)])

        assert result.exit_code == 1
        assert "--project" in result.output
