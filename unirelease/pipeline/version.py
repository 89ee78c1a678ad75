from __future__ import annotations

import re
from dataclasses import dataclass, field

from unirelease.core.result import Err, Ok, Result
from unirelease.pipeline.errors import PipelineError

_VERSION_RE = re.compile(r"(\d+)\.(\d+)\.(\d+)(?:-([\w.]+))?", re.ASCII)


@dataclass(frozen=True, slots=True)
class ReleaseVersion:
    """Canonical version for one pipeline run (`MAJOR.MINOR.PATCH[-PRERELEASE]`).

    `text` is the version exactly as given; it is what manifests, the tag and
    artifact names carry. Leading zeros are kept: `01.2.3` stays `01.2.3`.
    """

    major: int
    minor: int
    patch: int
    prerelease: str | None = None
    text: str = field(default="", compare=False)

    @property
    def is_prerelease(self) -> bool:
        return self.prerelease is not None

    @property
    def tag(self) -> str:
        return f"v{self}"

    def __str__(self) -> str:
        if self.text:
            return self.text
        base = f"{self.major}.{self.minor}.{self.patch}"
        return f"{base}-{self.prerelease}" if self.prerelease else base


def parse_version(text: str) -> Result[ReleaseVersion, PipelineError]:
    m = _VERSION_RE.fullmatch(text)
    if m is None:
        return Err(
            PipelineError(
                kind="invalid_version",
                message=f"invalid version format: {text!r}",
                hint="Expected: X.Y.Z or X.Y.Z-tag (e.g. 1.2.0, 1.2.0-beta.1)",
            )
        )
    major, minor, patch, pre = m.groups()
    return Ok(ReleaseVersion(int(major), int(minor), int(patch), pre, text=text))
