"""Tests for SourceScanner: file discovery and module reachability."""

from __future__ import annotations

from cargo_prune.models.workspace import TargetKind
from cargo_prune.scanner import SourceScanner


def _rel(cargo_ws, paths):
    return sorted(p.relative_to(cargo_ws.root).as_posix() for p in paths)


def _scan(cargo_ws, name="app"):
    workspace = cargo_ws.load()
    package = workspace.package(name)
    return package, SourceScanner(workspace).scan(package)


class TestReachability:
    def test_unlinked_file(self, cargo_ws):
        files = {
            "src/lib.rs": "mod parser;\npub fn f() {}\n",
            "src/parser.rs": "pub fn parse() {}\n",
            "src/helpers.rs": "pub fn help() {}\n",
        }
        cargo_ws.add_package("app", cargo_ws.manifest("app"), files)
        _, sources = _scan(cargo_ws)

        assert _rel(cargo_ws, sources.files) == ["src/helpers.rs", "src/lib.rs", "src/parser.rs"]
        assert _rel(cargo_ws, sources.reachable) == ["src/lib.rs", "src/parser.rs"]
        assert _rel(cargo_ws, sources.unlinked) == ["src/helpers.rs"]

    def test_nested_modules(self, cargo_ws):
        files = {
            "src/lib.rs": "mod net;\n",
            "src/net/mod.rs": "mod tcp;\n",
            "src/net/tcp.rs": "pub struct Conn;\n",
            "src/util.rs": "mod inner;\n",
            "src/util/inner.rs": "pub fn x() {}\n",
        }
        cargo_ws.add_package("app", cargo_ws.manifest("app"), files)
        _, sources = _scan(cargo_ws)
        assert _rel(cargo_ws, sources.unlinked) == ["src/util.rs", "src/util/inner.rs"]

    def test_path_attribute_outside_src(self, cargo_ws):
        files = {
            "src/lib.rs": '#[path = "../shared/common.rs"]\nmod common;\n',
            "shared/common.rs": "pub fn c() {}\n",
        }
        cargo_ws.add_package("app", cargo_ws.manifest("app"), files)
        _, sources = _scan(cargo_ws)
        assert "shared/common.rs" in _rel(cargo_ws, sources.reachable)
        assert sources.unlinked == []

    def test_every_target_root_is_reachable(self, cargo_ws):
        files = {
            "src/main.rs": "fn main() {}\n",
            "benches/speed.rs": "fn main() {}\n",
            "tests/it.rs": "#[test]\nfn t() {}\n",
            "build.rs": "fn main() {}\n",
        }
        cargo_ws.add_package("app", cargo_ws.manifest("app"), files)
        _, sources = _scan(cargo_ws)
        assert sources.unlinked == []


class TestWalk:
    def test_skips_target_hidden_and_nested_packages(self, cargo_ws):
        files = {
            "src/lib.rs": "",
            "target/debug/build/out.rs": "",
            ".cargo/x.rs": "",
            "vendor/dep/Cargo.toml": '[package]\nname = "dep"\n',
            "vendor/dep/src/lib.rs": "",
        }
        cargo_ws.add_package("app", cargo_ws.manifest("app"), files)
        package, _ = _scan(cargo_ws)
        scanner = SourceScanner(cargo_ws.load())
        assert _rel(cargo_ws, scanner.walk(package)) == ["src/lib.rs"]

    def test_gitignore(self, cargo_ws):
        files = {
            "src/lib.rs": "",
            "src/generated.rs": "",
            "src/gen/out.rs": "",
            ".gitignore": "generated.rs\nsrc/gen/\n",
        }
        cargo_ws.add_package("app", cargo_ws.manifest("app"), files)
        _, sources = _scan(cargo_ws)
        assert _rel(cargo_ws, sources.files) == ["src/lib.rs"]

    def test_member_gitignore(self, cargo_ws):
        cargo_ws.write("Cargo.toml", '[workspace]\nmembers = ["a"]\n')
        files = {"src/lib.rs": "", "src/scratch.rs": "", ".gitignore": "scratch.rs\n"}
        cargo_ws.add_package("a", cargo_ws.manifest("a"), files, rel="a")
        _, sources = _scan(cargo_ws, "a")
        assert _rel(cargo_ws, sources.files) == ["a/src/lib.rs"]


class TestTargetFiles:
    def test_subtree_attribution(self, cargo_ws):
        files = {
            "src/lib.rs": "mod a;\n",
            "src/a.rs": "",
            "benches/speed.rs": "fn main() {}\n",
            "build.rs": "fn main() {}\n",
        }
        cargo_ws.add_package("app", cargo_ws.manifest("app"), files)
        package, sources = _scan(cargo_ws)
        by_kind = {t.kind: _rel(cargo_ws, files) for t, files in sources.target_files.items()}

        assert by_kind[TargetKind.LIB] == ["src/a.rs", "src/lib.rs"]
        assert by_kind[TargetKind.BENCH] == ["benches/speed.rs"]
        # the build script sits at the package root but owns only itself
        assert by_kind[TargetKind.BUILD_SCRIPT] == ["build.rs"]

    def test_parse_error_is_recorded(self, cargo_ws):
        files = {"src/lib.rs": "mod broken;\n", "src/broken.rs": "fn (\n"}
        cargo_ws.add_package("app", cargo_ws.manifest("app"), files)
        _, sources = _scan(cargo_ws)
        [bad] = sources.errors
        assert bad.path.name == "broken.rs"
        assert bad.references == []
