"""Typed release configuration loading.

The pipeline is driven by a `release.toml` at the project root. It declares
the coordinated packages (manifests, gates, registry), the binding build
targets, and the artifacts to package. This module turns the TOML document
into frozen dataclasses and validates cross references (package ids,
dependency cycles) before any stage runs.

Example:

    [release]
    artifacts_dir = "release-archives"

    [[packages]]
    id = "core"
    path = "core"
    manifests = [{ path = "Cargo.toml" }]
    gates = [{ command = "cargo test" }]

    [[packages]]
    id = "node"
    path = "node"
    depends_on = ["core"]
    manifests = [{ path = "package.json" }]
    publish = { registry = "npm", name = "@scope/node", args = ["--access", "public"] }
"""

from __future__ import annotations

import shlex
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal

from .result import Err, Ok, Result
from .structured import (
    StrDict,
    as_str_dict,
    get_bool,
    get_float,
    get_int,
    get_list,
    get_raw_str,
    get_str,
    get_str_list,
    get_table,
    get_table_list,
)

__all__ = [
    "ArtifactConfig",
    "Command",
    "Config",
    "ConfigError",
    "GateConfig",
    "ManifestConfig",
    "PackageConfig",
    "PatchConfig",
    "PublishConfig",
    "ReleaseSettings",
    "TargetConfig",
    "DEFAULT_CONFIG_NAME",
    "load_config",
]

DEFAULT_CONFIG_NAME = "release.toml"

ManifestFormat = Literal["toml", "json"]
PatchKind = Literal["replace", "insert_after"]
ArtifactMode = Literal["dir", "stage", "files"]
RegistryKind = Literal["npm"]

Command = tuple[str, ...]

_MANIFEST_FORMATS: tuple[ManifestFormat, ...] = ("toml", "json")
_PATCH_KINDS: tuple[PatchKind, ...] = ("replace", "insert_after")
_ARTIFACT_MODES: tuple[ArtifactMode, ...] = ("dir", "stage", "files")
_REGISTRIES: tuple[RegistryKind, ...] = ("npm",)
_HOST_OS = ("linux", "macos", "windows")


@dataclass(frozen=True, slots=True)
class ConfigError:
    """Error when the release config cannot be loaded or is inconsistent."""

    message: str
    path: Path | None = None


@dataclass(frozen=True, slots=True)
class ManifestConfig:
    """A package descriptor whose version field is rewritten.

    `path` is relative to the owning package directory.
    """

    path: str
    format: ManifestFormat
    optional: bool = False


@dataclass(frozen=True, slots=True)
class GateConfig:
    command: Command
    required: bool = True
    # Relative to the package directory; None runs in the package directory.
    cwd: str | None = None


@dataclass(frozen=True, slots=True)
class PublishConfig:
    registry: RegistryKind
    name: str
    args: Command = ()


@dataclass(frozen=True, slots=True)
class PackageConfig:
    id: str
    path: str
    depends_on: tuple[str, ...] = ()
    manifests: tuple[ManifestConfig, ...] = ()
    gates: tuple[GateConfig, ...] = ()
    publish: PublishConfig | None = None
    description: str | None = None


@dataclass(frozen=True, slots=True)
class PatchConfig:
    """Post-generation text fix applied to a generated file.

    `replace` swaps the `find` literal for `replace` when present.
    `insert_after` inserts `block` after the `anchor` literal unless `marker`
    is already in the file.
    """

    path: str
    kind: PatchKind
    find: str = ""
    replace: str = ""
    anchor: str = ""
    block: str = ""
    marker: str = ""


@dataclass(frozen=True, slots=True)
class TargetConfig:
    id: str
    cwd: str = "."
    package: str | None = None
    description: str | None = None
    generate: tuple[Command, ...] = ()
    build: tuple[Command, ...] = ()
    patches: tuple[PatchConfig, ...] = ()
    requires_os: tuple[str, ...] = ()
    requires_env: tuple[str, ...] = ()
    required: bool = True


@dataclass(frozen=True, slots=True)
class ArtifactConfig:
    kind: str
    tag: str
    source: str
    mode: ArtifactMode = "dir"
    pattern: str | None = None
    # Filename substring -> platform tag, checked in order (files mode).
    platforms: tuple[tuple[str, str], ...] = ()


@dataclass(frozen=True, slots=True)
class ReleaseSettings:
    artifacts_dir: str = "release-archives"
    remote: str = "origin"
    # None pushes the branch currently checked out.
    branch: str | None = None
    commit_message: str = "chore: release {version}"
    tag_message: str = "Release v{version}"
    release_title: str = "v{version}"
    host_repo: str | None = None
    propagation_delay: float = 3.0
    propagation_attempts: int = 1
    keep_artifacts: bool = False


@dataclass(frozen=True, slots=True)
class Config:
    release: ReleaseSettings = field(default_factory=ReleaseSettings)
    packages: tuple[PackageConfig, ...] = ()
    targets: tuple[TargetConfig, ...] = ()
    artifacts: tuple[ArtifactConfig, ...] = ()

    def package(self, package_id: str) -> PackageConfig | None:
        for pkg in self.packages:
            if pkg.id == package_id:
                return pkg
        return None

    def packages_in_dependency_order(self) -> tuple[PackageConfig, ...]:
        """Packages sorted so that every package follows its dependencies.

        Declaration order is kept among packages with no ordering constraint.
        Assumes the graph was validated by `load_config`.
        """
        ordered: list[PackageConfig] = []
        done: set[str] = set()
        pending = list(self.packages)
        while pending:
            for pkg in pending:
                if all(dep in done for dep in pkg.depends_on):
                    ordered.append(pkg)
                    done.add(pkg.id)
                    pending.remove(pkg)
                    break
            else:
                raise AssertionError("dependency cycle in validated config")
        return tuple(ordered)

    def publishable(self) -> tuple[PackageConfig, ...]:
        return tuple(p for p in self.packages_in_dependency_order() if p.publish is not None)


class _Invalid(Exception):
    """Internal: aborts parsing with a message. Never escapes this module."""


def _command(value: object, *, where: str) -> Command:
    if isinstance(value, str):
        try:
            parts = shlex.split(value)
        except ValueError as e:
            raise _Invalid(f"{where}: {e}") from e
    elif isinstance(value, list) and all(isinstance(v, str) for v in value):
        parts = [str(v) for v in value]
    else:
        raise _Invalid(f"{where}: command must be a string or a list of strings")
    if not parts:
        raise _Invalid(f"{where}: empty command")
    return tuple(parts)


def _commands(table: Mapping[str, object], key: str, *, where: str) -> tuple[Command, ...]:
    raw = table.get(key)
    if raw is None:
        return ()
    if isinstance(raw, str):
        return (_command(raw, where=f"{where}.{key}"),)
    items = get_list(table, key)
    if items is None:
        raise _Invalid(f"{where}.{key}: expected a command or a list of commands")
    # Each item is one command: a shell-style string or an argv list.
    return tuple(_command(item, where=f"{where}.{key}[{i}]") for i, item in enumerate(items))


def _require_str(table: Mapping[str, object], key: str, *, where: str) -> str:
    value = get_str(table, key)
    if value is None:
        raise _Invalid(f"{where}: missing '{key}'")
    return value


def _str_tuple(table: Mapping[str, object], key: str, *, where: str) -> tuple[str, ...]:
    if key not in table:
        return ()
    values = get_str_list(table, key)
    if values is None:
        raise _Invalid(f"{where}.{key}: expected a list of strings")
    return tuple(values)


def _parse_manifest(data: StrDict, *, where: str) -> ManifestConfig:
    path = _require_str(data, "path", where=where)
    fmt = get_str(data, "format")
    if fmt is None:
        suffix = Path(path).suffix.lower()
        fmt = {".toml": "toml", ".json": "json"}.get(suffix)
        if fmt is None:
            raise _Invalid(f"{where}: cannot infer manifest format for {path}; set 'format'")
    if fmt not in _MANIFEST_FORMATS:
        raise _Invalid(f"{where}: unknown manifest format '{fmt}'")
    return ManifestConfig(path=path, format=fmt, optional=get_bool(data, "optional", False))


def _parse_gate(data: StrDict, *, where: str) -> GateConfig:
    if "command" not in data:
        raise _Invalid(f"{where}: missing 'command'")
    return GateConfig(
        command=_command(data["command"], where=f"{where}.command"),
        required=get_bool(data, "required", True),
        cwd=get_str(data, "cwd"),
    )


def _parse_publish(data: StrDict, *, where: str) -> PublishConfig:
    registry = get_str(data, "registry") or "npm"
    if registry not in _REGISTRIES:
        raise _Invalid(f"{where}: unsupported registry '{registry}'")
    return PublishConfig(
        registry=registry,
        name=_require_str(data, "name", where=where),
        args=_str_tuple(data, "args", where=where),
    )


def _parse_package(data: StrDict, *, index: int) -> PackageConfig:
    where = f"packages[{index}]"
    pkg_id = _require_str(data, "id", where=where)
    where = f"packages.{pkg_id}"

    publish_tbl = get_table(data, "publish")
    return PackageConfig(
        id=pkg_id,
        path=get_str(data, "path") or pkg_id,
        depends_on=_str_tuple(data, "depends_on", where=where),
        manifests=tuple(
            _parse_manifest(m, where=f"{where}.manifests[{i}]")
            for i, m in enumerate(get_table_list(data, "manifests"))
        ),
        gates=tuple(
            _parse_gate(g, where=f"{where}.gates[{i}]")
            for i, g in enumerate(get_table_list(data, "gates"))
        ),
        publish=_parse_publish(publish_tbl, where=f"{where}.publish") if publish_tbl else None,
        description=get_str(data, "description"),
    )


def _parse_patch(data: StrDict, *, where: str) -> PatchConfig:
    path = _require_str(data, "path", where=where)
    kind = get_str(data, "kind") or "replace"
    if kind not in _PATCH_KINDS:
        raise _Invalid(f"{where}: unknown patch kind '{kind}'")

    find = get_raw_str(data, "find") or ""
    anchor = get_raw_str(data, "anchor") or ""
    if kind == "replace" and not find:
        raise _Invalid(f"{where}: replace patch needs 'find'")
    if kind == "insert_after" and not anchor:
        raise _Invalid(f"{where}: insert_after patch needs 'anchor'")

    replacement = get_raw_str(data, "replace") or ""
    if kind == "replace" and find in replacement:
        raise _Invalid(f"{where}: replacement must not contain the 'find' literal")

    block = get_raw_str(data, "block") or ""
    marker = get_raw_str(data, "marker") or block.strip()
    if kind == "insert_after" and (not marker or marker not in block):
        raise _Invalid(f"{where}: 'marker' must be a non-empty part of 'block'")

    return PatchConfig(
        path=path,
        kind=kind,
        find=find,
        replace=replacement,
        anchor=anchor,
        block=block,
        marker=marker,
    )


def _parse_target(data: StrDict, *, index: int) -> TargetConfig:
    where = f"targets[{index}]"
    target_id = _require_str(data, "id", where=where)
    where = f"targets.{target_id}"

    requires_os = _str_tuple(data, "requires_os", where=where)
    for name in requires_os:
        if name not in _HOST_OS:
            raise _Invalid(f"{where}.requires_os: unknown os '{name}' (use {', '.join(_HOST_OS)})")

    return TargetConfig(
        id=target_id,
        cwd=get_str(data, "cwd") or ".",
        package=get_str(data, "package"),
        description=get_str(data, "description"),
        generate=_commands(data, "generate", where=where),
        build=_commands(data, "build", where=where),
        patches=tuple(
            _parse_patch(p, where=f"{where}.patches[{i}]")
            for i, p in enumerate(get_table_list(data, "patches"))
        ),
        requires_os=requires_os,
        requires_env=_str_tuple(data, "requires_env", where=where),
        required=get_bool(data, "required", True),
    )


def _parse_artifact(data: StrDict, *, index: int) -> ArtifactConfig:
    where = f"artifacts[{index}]"
    mode = get_str(data, "mode") or "dir"
    if mode not in _ARTIFACT_MODES:
        raise _Invalid(f"{where}: unknown mode '{mode}'")

    pattern = get_str(data, "pattern")
    if mode in ("stage", "files") and pattern is None:
        raise _Invalid(f"{where}: mode '{mode}' needs 'pattern'")

    platforms: list[tuple[str, str]] = []
    for needle, tag in (get_table(data, "platforms") or {}).items():
        if not isinstance(tag, str) or not tag.strip():
            raise _Invalid(f"{where}.platforms.{needle}: expected a platform tag")
        platforms.append((needle, tag.strip()))

    return ArtifactConfig(
        kind=_require_str(data, "kind", where=where),
        tag=get_str(data, "tag") or "",
        source=_require_str(data, "source", where=where),
        mode=mode,
        pattern=pattern,
        platforms=tuple(platforms),
    )


def _parse_release(data: StrDict) -> ReleaseSettings:
    defaults = ReleaseSettings()
    delay = get_float(data, "propagation_delay")
    attempts = get_int(data, "propagation_attempts")
    if delay is not None and delay < 0:
        raise _Invalid("release.propagation_delay must be >= 0")
    if attempts is not None and attempts < 1:
        raise _Invalid("release.propagation_attempts must be >= 1")

    return ReleaseSettings(
        artifacts_dir=get_str(data, "artifacts_dir") or defaults.artifacts_dir,
        remote=get_str(data, "remote") or defaults.remote,
        branch=get_str(data, "branch"),
        commit_message=get_str(data, "commit_message") or defaults.commit_message,
        tag_message=get_str(data, "tag_message") or defaults.tag_message,
        release_title=get_str(data, "release_title") or defaults.release_title,
        host_repo=get_str(data, "host_repo"),
        propagation_delay=delay if delay is not None else defaults.propagation_delay,
        propagation_attempts=attempts or defaults.propagation_attempts,
        keep_artifacts=get_bool(data, "keep_artifacts", defaults.keep_artifacts),
    )


def _validate(config: Config) -> None:
    ids = [p.id for p in config.packages]
    seen: set[str] = set()
    for pkg_id in ids:
        if pkg_id in seen:
            raise _Invalid(f"duplicate package id: {pkg_id}")
        seen.add(pkg_id)

    for pkg in config.packages:
        for dep in pkg.depends_on:
            if dep not in seen:
                raise _Invalid(f"packages.{pkg.id}: unknown dependency '{dep}'")
            if dep == pkg.id:
                raise _Invalid(f"packages.{pkg.id}: depends on itself")

    # Kahn's algorithm; leftovers are on a cycle.
    remaining = {p.id: set(p.depends_on) for p in config.packages}
    while remaining:
        ready = [pid for pid, deps in remaining.items() if not deps]
        if not ready:
            cycle = ", ".join(sorted(remaining))
            raise _Invalid(f"dependency cycle between packages: {cycle}")
        for pid in ready:
            del remaining[pid]
        for deps in remaining.values():
            deps.difference_update(ready)

    target_ids: set[str] = set()
    for target in config.targets:
        if target.id in target_ids:
            raise _Invalid(f"duplicate target id: {target.id}")
        target_ids.add(target.id)
        if target.package is not None and target.package not in seen:
            raise _Invalid(f"targets.{target.id}: unknown package '{target.package}'")

    names: set[str] = set()
    for art in config.artifacts:
        key = f"{art.kind}-{art.tag}"
        if art.mode != "files" and key in names:
            raise _Invalid(f"duplicate artifact name: {key}")
        names.add(key)


def config_from_dict(data: Mapping[str, object]) -> Result[Config, ConfigError]:
    """Build a validated Config from parsed TOML."""
    try:
        config = Config(
            release=_parse_release(get_table(data, "release") or {}),
            packages=tuple(
                _parse_package(p, index=i) for i, p in enumerate(get_table_list(data, "packages"))
            ),
            targets=tuple(
                _parse_target(t, index=i) for i, t in enumerate(get_table_list(data, "targets"))
            ),
            artifacts=tuple(
                _parse_artifact(a, index=i)
                for i, a in enumerate(get_table_list(data, "artifacts"))
            ),
        )
        if not config.packages:
            raise _Invalid("no [[packages]] declared")
        _validate(config)
    except _Invalid as e:
        return Err(ConfigError(str(e)))
    return Ok(config)


def _parse_toml(path: Path) -> Result[StrDict, ConfigError]:
    import tomllib

    try:
        data_obj: object = tomllib.loads(path.read_bytes().decode("utf-8"))
    except FileNotFoundError:
        return Err(ConfigError(f"Config file not found: {path}", path=path))
    except PermissionError:
        return Err(ConfigError(f"Permission denied reading: {path}", path=path))
    except tomllib.TOMLDecodeError as e:
        return Err(ConfigError(f"Invalid TOML syntax: {e}", path=path))
    except UnicodeDecodeError as e:
        return Err(ConfigError(f"Error reading config: {e}", path=path))

    data = as_str_dict(data_obj)
    if data is None:
        return Err(ConfigError("Config root must be a TOML table", path=path))
    return Ok(data)


def load_config(path: Path) -> Result[Config, ConfigError]:
    """Load and validate the release configuration.

    Args:
        path: Path to release.toml

    Returns:
        Ok(Config) on success, Err(ConfigError) on failure
    """
    parsed = _parse_toml(path)
    if isinstance(parsed, Err):
        return parsed

    result = config_from_dict(parsed.value)
    if isinstance(result, Err):
        return Err(ConfigError(f"Invalid config: {result.error.message}", path=path))
    return result
