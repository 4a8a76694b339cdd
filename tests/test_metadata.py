"""Tests for the cargo metadata schema and providers."""

from __future__ import annotations

import json
import os
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from cargo_prune.exceptions import FatalLoadError
from cargo_prune.metadata import (
    cargo_binary,
    load_metadata,
    load_metadata_file,
    parse_metadata,
)

SERDE_ID = "serde 1.0.0 (registry+https://github.com/rust-lang/crates.io-index)"

DOC = {
    "packages": [
        {
            "id": "b 0.1.0 (path+file:///ws/b)",
            "name": "b",
            "manifest_path": "/ws/b/Cargo.toml",
            "dependencies": [{"name": "serde", "kind": None, "rename": None, "req": "^1"}],
            "targets": [{"kind": ["lib"], "name": "b", "src_path": "/ws/b/src/lib.rs"}],
            "features": {},
            "version": "0.1.0",
        },
        {
            "id": "a 0.1.0 (path+file:///ws/a)",
            "name": "a",
            "manifest_path": "/ws/a/Cargo.toml",
            "targets": [],
        },
        {
            "id": SERDE_ID,
            "name": "serde",
            "manifest_path": "/registry/serde/Cargo.toml",
        },
    ],
    "workspace_members": ["b 0.1.0 (path+file:///ws/b)", "a 0.1.0 (path+file:///ws/a)"],
    "workspace_root": "/ws",
    "resolve": {
        "nodes": [
            {
                "id": "b 0.1.0 (path+file:///ws/b)",
                "deps": [
                    {
                        "name": "serde",
                        "pkg": SERDE_ID,
                    }
                ],
            }
        ]
    },
    "target_directory": "/ws/target",
}


class TestParseMetadata:
    def test_members_sorted_by_name(self):
        meta = parse_metadata(json.dumps(DOC))
        assert [p.name for p in meta.members()] == ["a", "b"]

    def test_unknown_fields_ignored(self):
        meta = parse_metadata(json.dumps(DOC))
        assert meta.workspace_root == "/ws"
        assert meta.packages[0].dependencies[0].name == "serde"

    def test_extern_names(self):
        meta = parse_metadata(json.dumps(DOC))
        assert meta.extern_names("b 0.1.0 (path+file:///ws/b)") == {"serde": "serde"}
        assert meta.extern_names("a 0.1.0 (path+file:///ws/a)") == {}

    def test_no_resolve(self):
        doc = dict(DOC, resolve=None)
        assert parse_metadata(json.dumps(doc)).extern_names("b 0.1.0 (path+file:///ws/b)") == {}

    def test_invalid_json(self):
        with pytest.raises(FatalLoadError, match="not valid JSON"):
            parse_metadata("{not json")

    def test_schema_mismatch(self):
        with pytest.raises(FatalLoadError, match="expected schema"):
            parse_metadata(json.dumps({"packages": []}))


class TestProviders:
    def test_cargo_binary_env(self):
        with patch.dict(os.environ, {"CARGO": "/opt/cargo"}):
            assert cargo_binary() == "/opt/cargo"
        with patch.dict(os.environ, {}, clear=False):
            os.environ.pop("CARGO", None)
            assert cargo_binary() == "cargo"

    @patch("cargo_prune.metadata.subprocess.run")
    def test_load_metadata_runs_cargo(self, mock_run):
        mock_run.return_value = MagicMock(returncode=0, stdout=json.dumps(DOC), stderr="")
        with patch.dict(os.environ, {"CARGO": "cargo"}):
            meta = load_metadata(Path("/ws"))

        cmd = mock_run.call_args[0][0]
        assert cmd[:4] == ["cargo", "metadata", "--format-version", "1"]
        assert "--all-features" in cmd
        assert mock_run.call_args.kwargs["cwd"] == Path("/ws")
        assert len(meta.members()) == 2

    @patch("cargo_prune.metadata.subprocess.run")
    def test_load_metadata_failure(self, mock_run):
        mock_run.return_value = MagicMock(returncode=101, stdout="", stderr="error: no manifest\n")
        with pytest.raises(FatalLoadError, match="no manifest"):
            load_metadata(Path("/ws"))

    @patch("cargo_prune.metadata.subprocess.run", side_effect=FileNotFoundError("cargo"))
    def test_cargo_missing(self, _mock_run):
        with pytest.raises(FatalLoadError, match="failed to run"):
            load_metadata(Path("/ws"))

    def test_load_metadata_file(self, tmp_path):
        path = tmp_path / "metadata.json"
        path.write_text(json.dumps(DOC))
        assert load_metadata_file(path).workspace_root == "/ws"

    def test_load_metadata_file_missing(self, tmp_path):
        with pytest.raises(FatalLoadError, match="cannot read metadata file"):
            load_metadata_file(tmp_path / "nope.json")
