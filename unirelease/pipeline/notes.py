from __future__ import annotations

from pathlib import Path

from unirelease.core.config import PackageConfig
from unirelease.core.result import Err, Ok, Result
from unirelease.pipeline.errors import PipelineError
from unirelease.pipeline.model import Artifact
from unirelease.pipeline.version import ReleaseVersion

NOTES_FILENAME = "release-notes.md"


def render_notes(
    *,
    version: ReleaseVersion,
    packages: tuple[PackageConfig, ...],
    artifacts: tuple[Artifact, ...],
) -> str:
    lines: list[str] = []
    lines.append(f"## Release {version.tag}")
    lines.append("")

    published = [p for p in packages if p.publish is not None]
    if published:
        lines.append("### Packages Released")
        for pkg in published:
            assert pkg.publish is not None
            suffix = f" - {pkg.description}" if pkg.description else ""
            lines.append(f"- **{pkg.publish.name}**: v{version}{suffix}")
        lines.append("")

    others = [p for p in packages if p.publish is None]
    if others:
        lines.append("### Synchronized")
        for pkg in others:
            lines.append(f"- {pkg.id}: v{version}")
        lines.append("")

    if artifacts:
        lines.append("### Release Artifacts")
        for artifact in artifacts:
            lines.append(f"- `{artifact.label}` ({artifact.filename}, sha256 `{artifact.sha256}`)")
        lines.append("")

    if published:
        lines.append("### Installation")
        for pkg in published:
            assert pkg.publish is not None
            lines.append("")
            lines.append(f"#### {pkg.publish.name}")
            lines.append("```bash")
            lines.append(f"npm install {pkg.publish.name}@{version}")
            lines.append("# or")
            lines.append(f"yarn add {pkg.publish.name}@{version}")
            lines.append("```")

    return "\n".join(lines).rstrip() + "\n"


def write_notes(*, out_dir: Path, text: str) -> Result[Path, PipelineError]:
    # Written to a file to avoid command line length limits.
    path = out_dir / NOTES_FILENAME
    try:
        out_dir.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")
    except OSError as e:
        return Err(
            PipelineError(
                kind="release_failed",
                message=f"failed to write release notes: {e}",
                hint=str(path),
            )
        )
    return Ok(path)
