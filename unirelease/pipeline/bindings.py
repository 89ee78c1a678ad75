"""Binding generation and per-target builds.

Each target runs its generation commands, then its post-generation patches,
then its build commands. Whether a target applies to this host is decided by
run-time probes (host OS, toolchain root in the environment); a target that
does not apply is skipped with a warning, never an error.

Patches work around known generator defects (e.g. an include emitted with a
bogus leading slash). They are pure and idempotent: applying a patch to its
own output returns that output unchanged, so re-running this step never
double-patches a file.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from unirelease.core.config import PatchConfig, TargetConfig
from unirelease.core.result import Err, Ok, Result
from unirelease.output.console import ConsoleProtocol, Style
from unirelease.platform.detection import HostInfo
from unirelease.platform.files import atomic_write_text, display_path, read_text_exact
from unirelease.platform.process import format_command
from unirelease.platform.process import run_live as run_command
from unirelease.pipeline.errors import PipelineError


class PatchStatus(Enum):
    APPLIED = "applied"
    ALREADY_APPLIED = "already applied"
    ANCHOR_MISSING = "anchor missing"
    UNSTABLE = "not idempotent"


def patch_text(text: str, patch: PatchConfig) -> tuple[str, PatchStatus]:
    if patch.kind == "replace":
        if patch.find not in text:
            return (text, PatchStatus.ALREADY_APPLIED)
        patched = text.replace(patch.find, patch.replace)
        # Overlapping matches can leave the literal behind: not a fixed point.
        if patch.find in patched:
            return (text, PatchStatus.UNSTABLE)
        return (patched, PatchStatus.APPLIED)

    if patch.marker and patch.marker in text:
        return (text, PatchStatus.ALREADY_APPLIED)
    idx = text.find(patch.anchor)
    if idx < 0:
        return (text, PatchStatus.ANCHOR_MISSING)
    end = idx + len(patch.anchor)
    return (text[:end] + "\n" + patch.block + text[end:], PatchStatus.APPLIED)


def apply_patch(text: str, patch: PatchConfig) -> str:
    """Pure form of a patch: `apply_patch(apply_patch(x, p), p) == apply_patch(x, p)`."""
    return patch_text(text, patch)[0]


@dataclass(frozen=True, slots=True)
class BuildReport:
    built: tuple[str, ...]
    skipped: tuple[str, ...]
    failed: tuple[str, ...]
    warnings: tuple[str, ...]


def skip_reason(target: TargetConfig, host: HostInfo) -> str | None:
    """Why a target does not apply to this host, or None if it does."""
    if not host.supports_os(target.requires_os):
        return f"requires {' or '.join(target.requires_os)}, host is {host.os_name}"
    if target.requires_env and host.first_env(target.requires_env) is None:
        return f"none of {', '.join(target.requires_env)} is set"
    return None


def _run_commands(
    commands: tuple[tuple[str, ...], ...],
    *,
    cwd: Path,
    console: ConsoleProtocol,
    target_id: str,
    phase: str,
) -> Result[None, PipelineError]:
    for cmd in commands:
        line = format_command(cmd)
        console.command(line)
        result = run_command(list(cmd), cwd=cwd)
        if isinstance(result, Err):
            kind = "generation_failed" if phase == "generate" else "build_failed"
            return Err(
                PipelineError(
                    kind=kind,
                    message=f"{target_id}: {phase} failed (exit {result.error.returncode})",
                    hint=result.error.stderr.strip() or None,
                    command=line,
                    returncode=result.error.returncode,
                )
            )
    return Ok(None)


def _apply_patches(
    target: TargetConfig, *, project_root: Path, console: ConsoleProtocol
) -> Result[list[str], PipelineError]:
    notes: list[str] = []
    for patch in target.patches:
        path = project_root / patch.path
        rel = display_path(path, project_root)
        if not path.is_file():
            console.print(f"patch {rel}: file not found, skipped", Style.DIM)
            continue

        try:
            text = read_text_exact(path)
            patched, status = patch_text(text, patch)
            if status is PatchStatus.APPLIED:
                atomic_write_text(path, patched)
        except (OSError, UnicodeDecodeError) as e:
            return Err(
                PipelineError(
                    kind="generation_failed",
                    message=f"{target.id}: failed to patch {rel}: {e}",
                )
            )

        if status is PatchStatus.UNSTABLE:
            return Err(
                PipelineError(
                    kind="generation_failed",
                    message=f"{target.id}: patch for {rel} is not idempotent",
                    hint=f"The replacement leaves {patch.find!r} in the file; use a longer, non-overlapping 'find'.",
                )
            )
        if status is PatchStatus.ANCHOR_MISSING:
            message = f"patch {rel}: anchor not found, nothing inserted"
            console.warning(message)
            notes.append(message)
        elif status is PatchStatus.APPLIED:
            console.success(f"patched {rel}")
        else:
            console.print(f"patch {rel}: {status.value}", Style.DIM)
    return Ok(notes)


def _build_target(
    target: TargetConfig, *, project_root: Path, console: ConsoleProtocol
) -> Result[list[str], PipelineError]:
    cwd = project_root / target.cwd

    generated = _run_commands(
        target.generate, cwd=cwd, console=console, target_id=target.id, phase="generate"
    )
    if isinstance(generated, Err):
        return generated

    patched = _apply_patches(target, project_root=project_root, console=console)
    if isinstance(patched, Err):
        return patched

    built = _run_commands(target.build, cwd=cwd, console=console, target_id=target.id, phase="build")
    if isinstance(built, Err):
        return built
    return patched


def build_targets(
    *,
    project_root: Path,
    targets: tuple[TargetConfig, ...],
    host: HostInfo,
    console: ConsoleProtocol,
) -> Result[BuildReport, PipelineError]:
    built: list[str] = []
    skipped: list[str] = []
    failed: list[str] = []
    warnings: list[str] = []

    for target in targets:
        label = target.description or target.id
        reason = skip_reason(target, host)
        if reason is not None:
            message = f"skipping {label}: {reason}"
            console.warning(message)
            warnings.append(message)
            skipped.append(target.id)
            continue

        console.info(f"{label} ({target.package})" if target.package else label)
        result = _build_target(target, project_root=project_root, console=console)
        if isinstance(result, Ok):
            warnings.extend(result.value)
            built.append(target.id)
            continue

        if target.required:
            return result

        message = f"{label} failed (optional target): {result.error.message}"
        console.warning(message)
        warnings.append(message)
        failed.append(target.id)

    return Ok(
        BuildReport(
            built=tuple(built),
            skipped=tuple(skipped),
            failed=tuple(failed),
            warnings=tuple(warnings),
        )
    )
