"""Release pipeline.

Stages, leaves first:
- manifests: version synchronization across package manifests
- gates: per-package test/validation commands
- bindings: binding generation, patches and per-target builds
- packager: deterministic release artifacts
- publisher: commit, tag, push, host release, registry publish
- controller: stage ordering, state tracking and failure recovery output
"""

from __future__ import annotations

from .controller import PipelineController, PipelineReport, run_pipeline
from .errors import PipelineError, PipelineErrorKind
from .model import Artifact, PipelineState, ReleaseRecord
from .version import ReleaseVersion, parse_version

__all__ = [
    "Artifact",
    "PipelineController",
    "PipelineError",
    "PipelineErrorKind",
    "PipelineReport",
    "PipelineState",
    "ReleaseRecord",
    "ReleaseVersion",
    "parse_version",
    "run_pipeline",
]
