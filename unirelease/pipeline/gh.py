"""Release host client (GitHub CLI)."""

from __future__ import annotations

import shutil
from pathlib import Path

from unirelease.core.result import Err, Ok, Result
from unirelease.platform.process import format_command
from unirelease.platform.process import run as run_process
from unirelease.pipeline.errors import PipelineError
from unirelease.pipeline.model import Artifact
from unirelease.pipeline.timeouts import GH_TIMEOUT_SECONDS, GH_UPLOAD_TIMEOUT_SECONDS


def ensure_gh_available() -> Result[None, PipelineError]:
    if shutil.which("gh") is None:
        return Err(
            PipelineError(
                kind="precondition_failed",
                message="gh: missing",
                hint="Install GitHub CLI: https://cli.github.com/",
            )
        )
    return Ok(None)


def ensure_gh_auth(*, cwd: Path) -> Result[None, PipelineError]:
    cmd = ["gh", "auth", "status"]
    result = run_process(cmd, cwd=cwd, timeout=GH_TIMEOUT_SECONDS)
    if isinstance(result, Err):
        return Err(
            PipelineError(
                kind="precondition_failed",
                message="gh auth required",
                hint="Run: gh auth login",
                command=format_command(cmd),
                returncode=result.error.returncode,
            )
        )
    return Ok(None)


def release_create_command(
    *,
    tag: str,
    title: str,
    notes_file: Path,
    artifacts: tuple[Artifact, ...],
    prerelease: bool,
    repo: str | None,
) -> list[str]:
    cmd = ["gh", "release", "create", tag, "--title", title, "--notes-file", str(notes_file)]
    if repo:
        cmd += ["--repo", repo]
    if prerelease:
        cmd.append("--prerelease")
    # gh uses `path#label` to set the asset display label.
    cmd += [f"{a.path}#{a.label}" for a in artifacts]
    return cmd


def create_release(
    *,
    cwd: Path,
    tag: str,
    title: str,
    notes_file: Path,
    artifacts: tuple[Artifact, ...],
    prerelease: bool = False,
    repo: str | None = None,
) -> Result[str, PipelineError]:
    """Create the host release; returns its URL (the host release id)."""
    cmd = release_create_command(
        tag=tag,
        title=title,
        notes_file=notes_file,
        artifacts=artifacts,
        prerelease=prerelease,
        repo=repo,
    )
    result = run_process(cmd, cwd=cwd, timeout=GH_UPLOAD_TIMEOUT_SECONDS)
    if isinstance(result, Err):
        e = result.error
        return Err(
            PipelineError(
                kind="release_failed",
                message=f"failed to create release {tag}",
                hint=e.stderr.strip() or None,
                command=format_command(cmd[:4]),
                returncode=e.returncode,
            )
        )

    lines = [ln.strip() for ln in result.value.splitlines() if ln.strip()]
    return Ok(lines[-1] if lines else tag)
