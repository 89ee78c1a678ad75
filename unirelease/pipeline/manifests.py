"""Version synchronization across package manifests.

Only the version value changes; every other byte of a manifest (key order,
indentation, comments, trailing newline) is preserved. The rewrite is a pure
text transformation so that it can be tested without touching disk.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from pathlib import Path

from unirelease.core.config import ManifestFormat, PackageConfig
from unirelease.core.result import Err, Ok, Result
from unirelease.output.console import ConsoleProtocol, Style
from unirelease.platform.files import atomic_write_text, display_path, read_text_exact
from unirelease.pipeline.errors import PipelineError
from unirelease.pipeline.version import ReleaseVersion

# Tables whose `version` key is the package version.
_TOML_VERSION_TABLES = {"package", "workspace.package", "project", "tool.poetry"}

_TOML_TOKEN_RE = re.compile(
    r'^[ \t]*\[\[?(?P<table>[^\[\]\n]+)\]\]?[ \t]*(?:#[^\n]*)?\r?$'
    r'|^[ \t]*version[ \t]*=[ \t]*"(?P<value>[^"\n]*)"',
    re.MULTILINE,
)
_JSON_STRING_RE = re.compile(r'"(?:[^"\\]|\\.)*"')
_JSON_COLON_RE = re.compile(r"\s*:\s*")


@dataclass(frozen=True, slots=True)
class SyncedManifest:
    package_id: str
    path: Path
    previous: str
    changed: bool


@dataclass(frozen=True, slots=True)
class SyncReport:
    synced: tuple[SyncedManifest, ...]
    skipped: tuple[Path, ...]


def _toml_version_span(text: str) -> tuple[int, int] | None:
    table: str | None = None
    for m in _TOML_TOKEN_RE.finditer(text):
        if m.group("table") is not None:
            table = m.group("table").strip()
            continue
        if table is None or table in _TOML_VERSION_TABLES:
            return m.span("value")
    return None


def _json_version_span(text: str) -> tuple[int, int] | None:
    """Span of the root object's "version" string value, if any."""
    stack: list[str] = []
    expect_key = False
    i = 0
    n = len(text)
    while i < n:
        ch = text[i]
        if ch == '"':
            m = _JSON_STRING_RE.match(text, i)
            if m is None:
                return None
            if len(stack) == 1 and expect_key and m.group(0) == '"version"':
                colon = _JSON_COLON_RE.match(text, m.end())
                if colon is not None:
                    value = _JSON_STRING_RE.match(text, colon.end())
                    if value is not None:
                        return (value.start() + 1, value.end() - 1)
            expect_key = False
            i = m.end()
            continue
        if ch in "{[":
            stack.append(ch)
            expect_key = ch == "{"
        elif ch in "}]":
            if stack:
                stack.pop()
            expect_key = False
        elif ch == ",":
            expect_key = bool(stack) and stack[-1] == "{"
        i += 1
    return None


def read_version(text: str, fmt: ManifestFormat) -> str | None:
    """Current version value of a manifest, or None if it has none."""
    span = _toml_version_span(text) if fmt == "toml" else _json_version_span(text)
    if span is None:
        return None
    return text[span[0] : span[1]]


def rewrite_version(
    text: str, version: ReleaseVersion, fmt: ManifestFormat
) -> Result[str, PipelineError]:
    """Return `text` with its version value replaced by `version`."""
    if fmt == "json":
        try:
            data: object = json.loads(text)
        except json.JSONDecodeError as e:
            return Err(PipelineError(kind="manifest_invalid", message=f"invalid JSON: {e}"))
        if not isinstance(data, dict) or not isinstance(data.get("version"), str):
            return Err(
                PipelineError(kind="manifest_invalid", message='no top-level "version" string')
            )
        span = _json_version_span(text)
    else:
        span = _toml_version_span(text)

    if span is None:
        return Err(PipelineError(kind="manifest_invalid", message="no version field found"))

    start, end = span
    return Ok(text[:start] + str(version) + text[end:])


def sync_versions(
    *,
    project_root: Path,
    version: ReleaseVersion,
    packages: tuple[PackageConfig, ...],
    console: ConsoleProtocol,
) -> Result[SyncReport, PipelineError]:
    """Rewrite the version field of every declared manifest in place.

    Not transactional: a failure leaves earlier manifests updated.
    """
    synced: list[SyncedManifest] = []
    skipped: list[Path] = []

    for pkg in packages:
        for manifest in pkg.manifests:
            path = project_root / pkg.path / manifest.path
            rel = display_path(path, project_root)

            if not path.is_file():
                if manifest.optional:
                    console.print(f"skip {rel} (optional, not found)", Style.DIM)
                    skipped.append(path)
                    continue
                return Err(
                    PipelineError(
                        kind="manifest_not_found",
                        message=f"manifest not found: {rel}",
                        hint=f"Declared by package '{pkg.id}'; mark it optional if it may be absent.",
                    )
                )

            try:
                text = read_text_exact(path)
            except (OSError, UnicodeDecodeError) as e:
                return Err(
                    PipelineError(kind="manifest_invalid", message=f"failed to read {rel}: {e}")
                )

            previous = read_version(text, manifest.format) or ""
            rewritten = rewrite_version(text, version, manifest.format)
            if isinstance(rewritten, Err):
                e = rewritten.error
                return Err(
                    PipelineError(kind=e.kind, message=f"{rel}: {e.message}", hint=e.hint)
                )

            changed = rewritten.value != text
            if changed:
                try:
                    atomic_write_text(path, rewritten.value)
                except OSError as e:
                    return Err(
                        PipelineError(kind="manifest_invalid", message=f"failed to write {rel}: {e}")
                    )
                console.success(f"{rel}: {previous} -> {version}")
            else:
                console.print(f"{rel}: already {version}", Style.DIM)

            synced.append(SyncedManifest(package_id=pkg.id, path=path, previous=previous, changed=changed))

    return Ok(SyncReport(synced=tuple(synced), skipped=tuple(skipped)))
