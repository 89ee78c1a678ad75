"""Release artifact packaging.

Design goals:

- Deterministic file names: `{kind}-{tag}-{version}{ext}`
- Deterministic bytes: sorted members, zeroed timestamps and owners, gzip
  header mtime 0, so re-running for the same outputs overwrites with
  identical archives
- Flat archive layout, independent of where the build put its outputs
- Absent build outputs are omitted, never an error
"""

from __future__ import annotations

import gzip
import shutil
import tarfile
import tempfile
from dataclasses import dataclass
from pathlib import Path

from unirelease.core.config import ArtifactConfig
from unirelease.core.result import Err, Ok, Result
from unirelease.output.console import ConsoleProtocol, Style
from unirelease.platform.files import display_path, sha256_file
from unirelease.pipeline.errors import PipelineError
from unirelease.pipeline.model import Artifact
from unirelease.pipeline.version import ReleaseVersion

ARCHIVE_EXT = ".tar.gz"
UNKNOWN_PLATFORM = "unknown"


@dataclass(frozen=True, slots=True)
class PackageReport:
    artifacts: tuple[Artifact, ...]
    omitted: tuple[str, ...]


def artifact_filename(kind: str, tag: str, version: ReleaseVersion, ext: str) -> str:
    name = f"{kind}-{tag}" if tag else kind
    return f"{name}-{version}{ext}"


def artifact_label(filename: str, version: ReleaseVersion) -> str:
    """Display label: the filename without its version suffix and extension."""
    marker = f"-{version}"
    idx = filename.rfind(marker)
    if idx > 0:
        return filename[:idx]
    if filename.endswith(ARCHIVE_EXT):
        return filename[: -len(ARCHIVE_EXT)]
    return Path(filename).stem


def platform_tag(filename: str, platforms: tuple[tuple[str, str], ...], default: str) -> str:
    for needle, tag in platforms:
        if needle in filename:
            return tag
    return default or UNKNOWN_PLATFORM


def _normalize(info: tarfile.TarInfo) -> tarfile.TarInfo:
    info.mtime = 0
    info.uid = 0
    info.gid = 0
    info.uname = ""
    info.gname = ""
    info.mode &= 0o7777
    return info


def write_tar_gz(archive: Path, base_dir: Path) -> None:
    """Archive the contents of base_dir (not base_dir itself) reproducibly."""
    archive.parent.mkdir(parents=True, exist_ok=True)
    entries = sorted(base_dir.rglob("*"), key=lambda p: p.relative_to(base_dir).as_posix())
    tmp = archive.with_name(f".{archive.name}.tmp")
    try:
        with tmp.open("wb") as raw:
            with gzip.GzipFile(filename="", mode="wb", fileobj=raw, mtime=0) as gz:
                with tarfile.open(fileobj=gz, mode="w", format=tarfile.GNU_FORMAT) as tar:
                    for path in entries:
                        arcname = path.relative_to(base_dir).as_posix()
                        info = _normalize(tar.gettarinfo(str(path), arcname=arcname))
                        if info.isreg():
                            with path.open("rb") as f:
                                tar.addfile(info, f)
                        else:
                            tar.addfile(info)
        tmp.replace(archive)
    finally:
        tmp.unlink(missing_ok=True)


def _make_artifact(path: Path, tag: str, version: ReleaseVersion) -> Artifact:
    return Artifact(
        tag=tag,
        path=path,
        label=artifact_label(path.name, version),
        size=path.stat().st_size,
        sha256=sha256_file(path),
    )


def _report_created(artifact: Artifact, console: ConsoleProtocol) -> None:
    console.success(f"created {artifact.filename}")
    console.print(f"  size: {artifact.size / 1024 / 1024:.2f} MB  sha256: {artifact.sha256[:16]}", Style.DIM)


def _package_dir(
    cfg: ArtifactConfig, source: Path, out_dir: Path, version: ReleaseVersion
) -> list[tuple[Path, str]]:
    if not any(source.iterdir()):
        return []
    archive = out_dir / artifact_filename(cfg.kind, cfg.tag, version, ARCHIVE_EXT)
    write_tar_gz(archive, source)
    return [(archive, cfg.tag)]


def _package_staged(
    cfg: ArtifactConfig, source: Path, out_dir: Path, version: ReleaseVersion
) -> list[tuple[Path, str]]:
    matches = sorted(source.glob(cfg.pattern or "*"))
    if not matches:
        return []

    archive = out_dir / artifact_filename(cfg.kind, cfg.tag, version, ARCHIVE_EXT)
    out_dir.mkdir(parents=True, exist_ok=True)
    # Removed on success and on failure.
    with tempfile.TemporaryDirectory(prefix=".stage-", dir=out_dir) as tmp:
        stage = Path(tmp)
        for entry in matches:
            if entry.is_dir() and not entry.is_symlink():
                shutil.copytree(entry, stage / entry.name, symlinks=True)
            else:
                shutil.copy2(entry, stage / entry.name, follow_symlinks=False)
        write_tar_gz(archive, stage)
    return [(archive, cfg.tag)]


def _package_files(
    cfg: ArtifactConfig, source: Path, out_dir: Path, version: ReleaseVersion
) -> list[tuple[Path, str]]:
    created: list[tuple[Path, str]] = []
    seen: dict[str, Path] = {}
    for entry in sorted(source.glob(cfg.pattern or "*")):
        if not entry.is_file():
            continue
        tag = platform_tag(entry.name, cfg.platforms, cfg.tag)
        name = artifact_filename(cfg.kind, tag, version, entry.suffix)
        if name in seen:
            raise _DuplicateArtifact(f"{entry.name} and {seen[name].name} both map to {name}")
        seen[name] = entry

        dest = out_dir / name
        out_dir.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(entry, dest)
        created.append((dest, tag))
    return created


class _DuplicateArtifact(Exception):
    pass


def package_artifacts(
    *,
    project_root: Path,
    out_dir: Path,
    configs: tuple[ArtifactConfig, ...],
    version: ReleaseVersion,
    console: ConsoleProtocol,
) -> Result[PackageReport, PipelineError]:
    """Package every present build output into out_dir.

    Returns the artifacts in declaration order; entries whose source is absent
    (or matches nothing) are listed in `omitted`.
    """
    try:
        out_dir.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        return Err(PipelineError(kind="packaging_failed", message=f"cannot create {out_dir}: {e}"))

    artifacts: list[Artifact] = []
    omitted: list[str] = []

    for cfg in configs:
        source = project_root / cfg.source
        name = f"{cfg.kind}-{cfg.tag}" if cfg.tag else cfg.kind
        rel = display_path(source, project_root)
        if not source.is_dir():
            console.print(f"skip {name}: {rel} not found", Style.DIM)
            omitted.append(name)
            continue

        try:
            match cfg.mode:
                case "dir":
                    created = _package_dir(cfg, source, out_dir, version)
                case "stage":
                    created = _package_staged(cfg, source, out_dir, version)
                case "files":
                    created = _package_files(cfg, source, out_dir, version)
            built = [_make_artifact(path, tag, version) for path, tag in created]
        except (OSError, shutil.Error, tarfile.TarError, _DuplicateArtifact) as e:
            return Err(
                PipelineError(
                    kind="packaging_failed",
                    message=f"failed to package {name}: {e}",
                    hint=f"Source: {rel}",
                )
            )

        if not built:
            console.print(f"skip {name}: nothing to package in {rel}", Style.DIM)
            omitted.append(name)
            continue

        for artifact in built:
            _report_created(artifact, console)
        artifacts.extend(built)

    console.print(f"artifacts in: {display_path(out_dir, project_root)}", Style.DIM)
    return Ok(PackageReport(artifacts=tuple(artifacts), omitted=tuple(omitted)))


def remove_artifacts_dir(out_dir: Path) -> None:
    shutil.rmtree(out_dir, ignore_errors=True)
