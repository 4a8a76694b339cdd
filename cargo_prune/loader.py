"""Workspace model loader: metadata document and manifests into a frozen model."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Any

import structlog

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

from cargo_prune.exceptions import FatalLoadError
from cargo_prune.manifest import Declaration, ManifestDocument, ManifestSyntaxError
from cargo_prune.metadata import CargoMetadata, MetadataPackage
from cargo_prune.models.workspace import (
    Dependency,
    DepKind,
    FeatureRef,
    FeatureRefKind,
    IgnoreConfig,
    Package,
    Target,
    TargetKind,
    Workspace,
    WorkspaceDependency,
    normalize,
)

log = structlog.get_logger("cargo_prune.loader")

CONFIG_KEY = "cargo-prune"


def read_manifest(path: Path) -> ManifestDocument:
    try:
        return ManifestDocument.load(path)
    except OSError as e:
        raise FatalLoadError(f"cannot read manifest {path}: {e}") from e
    except UnicodeDecodeError as e:
        raise FatalLoadError(f"manifest {path} is not valid UTF-8") from e
    except tomllib.TOMLDecodeError as e:
        raise FatalLoadError(f"invalid TOML in {path}: {e}") from e
    except ManifestSyntaxError as e:
        raise FatalLoadError(f"cannot index {path}: {e}") from e


def ignore_config(table: Any, where: str) -> IgnoreConfig:
    """Read ``ignored`` / ``ignored-paths`` from a metadata table."""
    if table is None:
        return IgnoreConfig()
    if not isinstance(table, dict):
        raise FatalLoadError(f"{where}.metadata.{CONFIG_KEY} must be a table")
    values = {}
    for key in ("ignored", "ignored-paths"):
        raw = table.get(key, [])
        if not isinstance(raw, list) or not all(isinstance(v, str) for v in raw):
            raise FatalLoadError(f"{where}.metadata.{CONFIG_KEY}.{key} must be a list of strings")
        values[key] = tuple(raw)
    return IgnoreConfig(names=values["ignored"], paths=values["ignored-paths"])


class WorkspaceLoader:
    """Build the immutable :class:`Workspace` for one run."""

    def __init__(self, metadata: CargoMetadata) -> None:
        self.metadata = metadata

    def load(self) -> Workspace:
        root = Path(self.metadata.workspace_root)
        root_manifest = root / "Cargo.toml"
        root_doc = read_manifest(root_manifest)
        ws_config = root_doc.value(("workspace", "metadata", CONFIG_KEY))
        ws_ignore = ignore_config(ws_config, "workspace")

        packages = []
        for meta in self.metadata.members():
            packages.append(self._load_package(meta, root_doc, ws_ignore))

        workspace = Workspace(
            root=root,
            manifest_path=root_manifest,
            packages=tuple(packages),
            ignore=ws_ignore,
            dependencies=tuple(_workspace_dependency(d) for d in root_doc.workspace_declarations()),
            manifest_text=root_doc.text,
        )
        log.debug(
            "loader.loaded",
            root=str(root),
            packages=len(workspace.packages),
            workspace_dependencies=len(workspace.dependencies),
        )
        return workspace

    def _load_package(
        self,
        meta: MetadataPackage,
        root_doc: ManifestDocument,
        ws_ignore: IgnoreConfig,
    ) -> Package:
        manifest_path = Path(meta.manifest_path)
        is_root = manifest_path == root_doc.path
        doc = root_doc if is_root else read_manifest(manifest_path)

        extern_names = self.metadata.extern_names(meta.id)
        renames = {d.rename: d.name for d in meta.dependencies if d.rename}

        decls = doc.dependency_declarations()
        dep_keys = {d.key for d in decls}
        optional_keys = {d.key for d in decls if _is_optional(d.value)}
        features = _features(doc)
        feature_refs = _feature_refs(doc, dep_keys, optional_keys, features)

        referencing: dict[str, set[str]] = {}
        for ref in feature_refs:
            referencing.setdefault(ref.dep_key, set()).add(ref.feature)

        dependencies = []
        for decl in decls:
            dependencies.append(
                _dependency(decl, root_doc, renames, extern_names, referencing.get(decl.key, set()))
            )
        dependencies.sort(key=lambda d: (d.spans[0].start, d.key))

        return Package(
            id=meta.id,
            name=meta.name,
            directory=manifest_path.parent,
            manifest_path=manifest_path,
            dependencies=tuple(dependencies),
            targets=tuple(
                Target(
                    kind=TargetKind.from_metadata(t.kind),
                    name=t.name,
                    root=Path(t.src_path),
                )
                for t in meta.targets
            ),
            features=features,
            feature_refs=tuple(feature_refs),
            ignore=ignore_config(doc.value(("package", "metadata", CONFIG_KEY)), "package"),
            workspace_ignore=ws_ignore,
            is_root=is_root,
            manifest_text=doc.text,
        )


def _is_optional(value: Any) -> bool:
    return isinstance(value, dict) and value.get("optional") is True


def _dependency(
    decl: Declaration,
    root_doc: ManifestDocument,
    renames: dict[str, str],
    extern_names: dict[str, str],
    features: set[str],
) -> Dependency:
    value = decl.value if isinstance(decl.value, dict) else {}
    inherited = value.get("workspace") is True

    package_name = value.get("package")
    if package_name is None and inherited:
        ws_value = root_doc.value(("workspace", "dependencies", decl.key))
        if isinstance(ws_value, dict):
            package_name = ws_value.get("package")
    if package_name is None:
        package_name = renames.get(decl.key, decl.key)

    if package_name != decl.key:
        # renamed: code refers to the manifest key
        import_name = normalize(decl.key)
    else:
        import_name = normalize(extern_names.get(package_name, decl.key))

    table = decl.table
    return Dependency(
        key=decl.key,
        package_name=package_name,
        import_name=import_name,
        kind=DepKind.from_table(table[-1]),
        table=table,
        spans=tuple(decl.spans),
        target_cfg=table[1] if table[0] == "target" else None,
        optional=_is_optional(decl.value),
        workspace=inherited,
        header=decl.header,
        features=tuple(sorted(features)),
    )


def _workspace_dependency(decl: Declaration) -> WorkspaceDependency:
    value = decl.value if isinstance(decl.value, dict) else {}
    return WorkspaceDependency(
        key=decl.key,
        package_name=value.get("package", decl.key),
        spans=tuple(decl.spans),
        header=decl.header,
    )


def _features(doc: ManifestDocument) -> dict[str, tuple[str, ...]]:
    table = doc.data.get("features", {})
    if not isinstance(table, dict):
        raise FatalLoadError(f"[features] in {doc.path} must be a table")
    return {
        name: tuple(v for v in values if isinstance(v, str))
        for name, values in table.items()
        if isinstance(values, list)
    }


def parse_feature_value(value: str) -> tuple[FeatureRefKind, str] | None:
    """Classify a ``[features]`` element that may name a dependency."""
    if value.startswith("dep:"):
        return FeatureRefKind.EXPLICIT, value[4:]
    if "/" in value:
        dep, _, _ = value.partition("/")
        if dep.endswith("?"):
            return FeatureRefKind.WEAK, dep[:-1]
        return FeatureRefKind.DEP_FEATURE, dep
    return None


def _feature_refs(
    doc: ManifestDocument,
    dep_keys: set[str],
    optional_keys: set[str],
    features: dict[str, tuple[str, ...]],
) -> list[FeatureRef]:
    entries = doc.feature_entries()
    explicit = {
        v[4:] for values in features.values() for v in values if v.startswith("dep:")
    }
    refs = []
    for entry in entries:
        feature = entry.path[1]
        for element in entry.elements:
            parsed = parse_feature_value(element.value)
            if parsed is None:
                name = element.value
                # a bare optional dep name enables its implicit feature
                if name in features or name not in optional_keys or name in explicit:
                    continue
                parsed = (FeatureRefKind.IMPLICIT, name)
            kind, dep_key = parsed
            if dep_key not in dep_keys:
                continue
            refs.append(
                FeatureRef(
                    feature=feature,
                    value=element.value,
                    dep_key=dep_key,
                    kind=kind,
                    span=element.span,
                )
            )
    return refs
