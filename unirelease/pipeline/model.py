from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from pathlib import Path


class PipelineState(Enum):
    """States of one release run, in the order they are reached."""

    PENDING = 0
    CLEAN = 1
    VERSION_SYNCED = 2
    GATED = 3
    BOUND_AND_BUILT = 4
    PACKAGED = 5
    COMMITTED = 6
    TAGGED = 7
    PUSHED = 8
    RELEASED = 9
    PUBLISHED = 10
    VERIFIED = 11

    def __str__(self) -> str:
        return "".join(part.capitalize() for part in self.name.split("_"))

    @property
    def is_public(self) -> bool:
        """True once the host release exists; nothing is rolled back from here."""
        return self.value >= PipelineState.RELEASED.value

    def reached(self, other: PipelineState) -> bool:
        return self.value >= other.value


@dataclass(frozen=True, slots=True)
class Artifact:
    """A packaged build output attached to the host release."""

    tag: str
    path: Path
    label: str
    size: int
    sha256: str

    @property
    def filename(self) -> str:
        return self.path.name


@dataclass(frozen=True, slots=True)
class ReleaseRecord:
    """The public commitment of a release. Never retracted once created."""

    version: str
    git_tag: str
    release_id: str
    artifacts: tuple[Artifact, ...]
    published: tuple[str, ...] = ()

    def with_published(self, pair: str) -> ReleaseRecord:
        return replace(self, published=(*self.published, pair))
