"""Tests for the cargo-prune command (cargo itself is never run)."""

from __future__ import annotations

import json
from unittest.mock import patch

import pytest
from click.testing import CliRunner

from cargo_prune import __version__
from cargo_prune.cli import main

ENV = {"CARGO_PRUNE_LOG_LEVEL": "ERROR"}


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def unused_ws(cargo_ws):
    body = """
        [dependencies]
        alpha = "1"
        gamma = "1"
    """
    cargo_ws.add_package("app", cargo_ws.manifest("app", body), {"src/lib.rs": "use alpha::A;\n"})
    return cargo_ws


def _invoke(runner, ws, *args):
    argv = [str(ws.root), "--metadata-file", str(ws.metadata_file()), *args]
    return runner.invoke(main, argv, env=ENV)


class TestReport:
    def test_findings_exit_one(self, runner, unused_ws):
        result = _invoke(runner, unused_ws)
        assert result.exit_code == 1
        assert "error[unused_dependency] Cargo.toml:8:1: unused dependency `gamma`" in result.output
        assert "cargo-prune: 1 error(s), 0 warning(s), 0 fix(es) applied" in result.output

    def test_clean_exit_zero(self, runner, cargo_ws):
        cargo_ws.add_package("app", cargo_ws.manifest("app"), {"src/lib.rs": "pub fn f() {}\n"})
        result = _invoke(runner, cargo_ws)
        assert result.exit_code == 0
        assert "cargo-prune: no issues found" in result.output

    def test_json(self, runner, unused_ws):
        result = _invoke(runner, unused_ws, "--format", "json")
        assert result.exit_code == 1
        doc = json.loads(result.stdout)
        assert doc["summary"] == {"errors": 1, "warnings": 0, "fixes": 0}
        [finding] = doc["findings"]
        assert finding["file"] == "Cargo.toml"
        assert finding["fix"]["action"] == "remove"

    def test_verbose_prints_phases(self, runner, unused_ws):
        result = _invoke(runner, unused_ws, "-v")
        assert "pipeline summary" in result.output
        assert "[-] fix - fix mode off" in result.output
        assert "cargo-prune: analyze..." in result.output


class TestFix:
    def test_fix_writes_manifest(self, runner, unused_ws):
        result = _invoke(runner, unused_ws, "--fix")
        assert result.exit_code == 1
        assert "[fixed]" in result.output
        assert "1 fix(es) applied" in result.output
        assert "gamma" not in unused_ws.read("Cargo.toml")

        again = _invoke(runner, unused_ws, "--fix")
        assert again.exit_code == 0


class TestErrors:
    def test_unknown_package(self, runner, unused_ws):
        result = _invoke(runner, unused_ws, "-p", "nope")
        assert result.exit_code == 2
        assert "Error: package `nope` is not a member of the workspace" in result.output

    def test_bad_metadata(self, runner, cargo_ws):
        bad = cargo_ws.root.parent / "bad.json"
        bad.write_text("{", encoding="utf-8")
        result = runner.invoke(main, [str(cargo_ws.root), "--metadata-file", str(bad)], env=ENV)
        assert result.exit_code == 2
        assert "Error: metadata is not valid JSON" in result.output

    def test_cargo_failure(self, runner, cargo_ws):
        with patch("cargo_prune.metadata.subprocess.run", side_effect=FileNotFoundError("cargo")):
            result = runner.invoke(main, [str(cargo_ws.root)], env=ENV)
        assert result.exit_code == 2
        assert "Error: failed to run" in result.output

    def test_unexpected_failure(self, runner, unused_ws):
        with patch(
            "cargo_prune.cli.PruneOrchestrator.run", side_effect=RuntimeError("kaput")
        ):
            result = _invoke(runner, unused_ws)
        assert result.exit_code == 2
        assert "Error: unexpected failure: kaput" in result.output

    def test_jobs_must_be_positive(self, runner, unused_ws):
        result = _invoke(runner, unused_ws, "-j", "0")
        assert result.exit_code == 2

    def test_version(self, runner):
        result = runner.invoke(main, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.output
