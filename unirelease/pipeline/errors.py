from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

PipelineErrorKind = Literal[
    "precondition_failed",
    "invalid_version",
    "config_invalid",
    "manifest_not_found",
    "manifest_invalid",
    "gate_failed",
    "generation_failed",
    "build_failed",
    "packaging_failed",
    "git_failed",
    "tag_exists",
    "release_failed",
    "publish_auth_required",
    "publish_failed",
    "propagation_mismatch",
]


@dataclass(frozen=True, slots=True)
class PipelineError:
    kind: PipelineErrorKind
    message: str
    hint: str | None = None
    # The external command that triggered the failure, when there was one.
    command: str | None = None
    returncode: int | None = None
