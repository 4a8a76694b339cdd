"""Tests for WorkspaceLoader: metadata and manifests into the workspace model."""

from __future__ import annotations

import pytest

from cargo_prune.exceptions import FatalLoadError
from cargo_prune.loader import WorkspaceLoader, ignore_config, parse_feature_value
from cargo_prune.metadata import CargoMetadata
from cargo_prune.models.workspace import DepKind, FeatureRefKind, TargetKind

LIB = {"src/lib.rs": "pub fn f() {}\n"}


def _deps(package):
    return {(d.key, d.table): d for d in package.dependencies}


class TestDependencies:
    def test_tables_and_kinds(self, cargo_ws):
        body = """
            [dependencies]
            serde = "1"

            [dev-dependencies]
            proptest = "1"

            [build-dependencies]
            cc = "1"

            [target.'cfg(unix)'.dependencies]
            nix = "0.27"
        """
        cargo_ws.add_package("app", cargo_ws.manifest("app", body), LIB)
        deps = _deps(cargo_ws.load().package("app"))

        assert deps[("serde", ("dependencies",))].kind is DepKind.NORMAL
        assert deps[("proptest", ("dev-dependencies",))].kind is DepKind.DEV
        assert deps[("cc", ("build-dependencies",))].kind is DepKind.BUILD
        nix = deps[("nix", ("target", "cfg(unix)", "dependencies"))]
        assert nix.kind is DepKind.NORMAL
        assert nix.target_cfg == "cfg(unix)"

    def test_rename_uses_manifest_key(self, cargo_ws):
        body = """
            [dependencies]
            json = { package = "serde_json", version = "1" }
            serde-yaml = "0.9"
        """
        cargo_ws.add_package("app", cargo_ws.manifest("app", body), LIB)
        deps = _deps(cargo_ws.load().package("app"))

        json = deps[("json", ("dependencies",))]
        assert (json.package_name, json.import_name) == ("serde_json", "json")
        yaml = deps[("serde-yaml", ("dependencies",))]
        assert yaml.import_name == "serde_yaml"

    def test_extern_name_from_resolve(self, cargo_ws):
        body = """
            [dependencies]
            rust-ini = "0.20"
        """
        cargo_ws.add_package("app", cargo_ws.manifest("app", body), LIB)
        doc = cargo_ws.metadata()
        registry = {
            "id": "registry+https://github.com/rust-lang/crates.io-index#rust-ini@0.20.0",
            "name": "rust-ini",
            "manifest_path": "/registry/rust-ini/Cargo.toml",
            "targets": [{"kind": ["lib"], "name": "ini", "src_path": "/registry/lib.rs"}],
        }
        doc["packages"] = doc["packages"] + [registry]
        doc["resolve"] = {
            "nodes": [
                {
                    "id": cargo_ws.package_id("app"),
                    "deps": [{"name": "ini", "pkg": registry["id"]}],
                }
            ]
        }
        workspace = WorkspaceLoader(CargoMetadata.model_validate(doc)).load()

        assert [p.name for p in workspace.packages] == ["app"]
        [dep] = workspace.package("app").dependencies
        assert dep.import_name == "ini"

    def test_workspace_inherited_rename(self, cargo_ws):
        cargo_ws.write(
            "Cargo.toml",
            """
            [workspace]
            members = ["crates/a"]

            [workspace.dependencies]
            json = { package = "serde_json", version = "1" }
            """,
        )
        body = """
            [dependencies]
            json = { workspace = true }
        """
        cargo_ws.add_package("a", cargo_ws.manifest("a", body), LIB, rel="crates/a")
        workspace = cargo_ws.load()

        [dep] = workspace.package("a").dependencies
        assert dep.workspace
        assert (dep.package_name, dep.import_name) == ("serde_json", "json")
        [wdep] = workspace.dependencies
        assert (wdep.key, wdep.package_name) == ("json", "serde_json")

    def test_sub_table_and_optional(self, cargo_ws):
        body = """
            [dependencies.tokio]
            version = "1"
            optional = true
        """
        cargo_ws.add_package("app", cargo_ws.manifest("app", body), LIB)
        [dep] = cargo_ws.load().package("app").dependencies
        assert dep.is_table
        assert dep.optional


class TestFeatures:
    def test_feature_refs(self, cargo_ws):
        body = """
            [dependencies]
            serde = { version = "1", optional = true }
            tokio = { version = "1", optional = true }
            log = "0.4"

            [features]
            default = ["std", "tokio"]
            std = ["log/std", "serde?/std"]
            ser = ["dep:serde"]
        """
        cargo_ws.add_package("app", cargo_ws.manifest("app", body), LIB)
        package = cargo_ws.load().package("app")

        refs = {(r.feature, r.value): r.kind for r in package.feature_refs}
        assert refs == {
            ("default", "tokio"): FeatureRefKind.IMPLICIT,
            ("std", "log/std"): FeatureRefKind.DEP_FEATURE,
            ("std", "serde?/std"): FeatureRefKind.WEAK,
            ("ser", "dep:serde"): FeatureRefKind.EXPLICIT,
        }
        deps = {d.key: d for d in package.dependencies}
        assert deps["serde"].features == ("ser", "std")
        assert deps["tokio"].features == ("default",)
        assert package.features["default"] == ("std", "tokio")

    def test_features_are_read_only(self, cargo_ws):
        body = """
            [features]
            default = ["std"]
            std = []
        """
        cargo_ws.add_package("app", cargo_ws.manifest("app", body), LIB)
        package = cargo_ws.load().package("app")

        with pytest.raises(TypeError):
            package.features["extra"] = ()
        assert hash(package) == hash(package)

    def test_parse_feature_value(self):
        assert parse_feature_value("dep:foo") == (FeatureRefKind.EXPLICIT, "foo")
        assert parse_feature_value("foo/bar") == (FeatureRefKind.DEP_FEATURE, "foo")
        assert parse_feature_value("foo?/bar") == (FeatureRefKind.WEAK, "foo")
        assert parse_feature_value("std") is None


class TestTargetsAndConfig:
    def test_targets_from_metadata(self, cargo_ws):
        files = {
            "src/lib.rs": "",
            "src/main.rs": "fn main() {}\n",
            "build.rs": "fn main() {}\n",
            "benches/speed.rs": "fn main() {}\n",
        }
        cargo_ws.add_package("app", cargo_ws.manifest("app"), files)
        package = cargo_ws.load().package("app")
        kinds = {t.kind for t in package.targets}
        assert kinds == {TargetKind.LIB, TargetKind.BIN, TargetKind.BUILD_SCRIPT, TargetKind.BENCH}
        assert package.is_root

    def test_proc_macro_is_lib(self):
        assert TargetKind.from_metadata(["proc-macro"]) is TargetKind.LIB
        assert TargetKind.from_metadata(["rlib", "cdylib"]) is TargetKind.LIB

    def test_ignore_union(self, cargo_ws):
        cargo_ws.write(
            "Cargo.toml",
            """
            [workspace]
            members = ["crates/a"]

            [workspace.metadata.cargo-prune]
            ignored = ["x-crate"]
            ignored-paths = ["crates/*/src/gen/**"]
            """,
        )
        body = """
            [package.metadata.cargo-prune]
            ignored = ["y"]
        """
        cargo_ws.add_package("a", cargo_ws.manifest("a", body), LIB, rel="crates/a")
        workspace = cargo_ws.load()
        package = workspace.package("a")
        assert package.ignored_names == {"x_crate", "y"}
        assert workspace.ignore.paths == ("crates/*/src/gen/**",)

    def test_ignore_config_validation(self):
        with pytest.raises(FatalLoadError, match="list of strings"):
            ignore_config({"ignored": "serde"}, "package")
        with pytest.raises(FatalLoadError, match="must be a table"):
            ignore_config(["serde"], "package")
        assert ignore_config(None, "package").names == ()


class TestFatal:
    def test_invalid_toml(self, cargo_ws):
        cargo_ws.add_package("app", "[package\nname = ", LIB)
        with pytest.raises(FatalLoadError, match="invalid TOML"):
            cargo_ws.load()

    def test_missing_member_manifest(self, cargo_ws):
        cargo_ws.write("Cargo.toml", '[workspace]\nmembers = ["a"]\n')
        cargo_ws.add_package("a", cargo_ws.manifest("a"), LIB, rel="a")
        (cargo_ws.root / "a" / "Cargo.toml").unlink()
        with pytest.raises(FatalLoadError, match="cannot read manifest"):
            cargo_ws.load()
