"""Host capability probes.

Binding targets are applicable only on some hosts (iOS needs macOS, Android
needs an NDK root in the environment). Probes are evaluated at run time,
never configured statically.
"""

from __future__ import annotations

import os as _os
import platform as _platform
import sys as _sys
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum, auto
from functools import lru_cache

__all__ = [
    "Arch",
    "HostInfo",
    "Platform",
    "detect",
    "detect_arch",
    "detect_platform",
]


class Platform(Enum):
    """Operating system platform."""

    LINUX = auto()
    MACOS = auto()
    WINDOWS = auto()
    UNKNOWN = auto()

    def __str__(self) -> str:
        return self.name.lower()


class Arch(Enum):
    """CPU architecture."""

    X64 = auto()
    ARM64 = auto()
    UNKNOWN = auto()

    def __str__(self) -> str:
        return self.name.lower()


def _empty_env() -> dict[str, str]:
    return {}


@dataclass(frozen=True, slots=True)
class HostInfo:
    """Snapshot of the host the pipeline runs on.

    `env` is captured once so that every probe in a run sees the same values.
    """

    platform: Platform
    arch: Arch
    env: Mapping[str, str] = field(default_factory=_empty_env)

    @property
    def os_name(self) -> str:
        return str(self.platform)

    def supports_os(self, names: tuple[str, ...]) -> bool:
        """True if no OS restriction is given or the host OS is listed."""
        return not names or self.os_name in names

    def first_env(self, names: tuple[str, ...]) -> str | None:
        """Name of the first listed variable that is set and non-empty."""
        for name in names:
            if self.env.get(name, "").strip():
                return name
        return None

    def __str__(self) -> str:
        return f"{self.platform}-{self.arch}"


@lru_cache(maxsize=1)
def detect_platform() -> Platform:
    """Detect the current operating system (cached)."""
    system = _sys.platform.lower()
    if system.startswith("linux"):
        return Platform.LINUX
    if system.startswith("darwin"):
        return Platform.MACOS
    if system.startswith(("win32", "cygwin", "msys")):
        return Platform.WINDOWS
    return Platform.UNKNOWN


@lru_cache(maxsize=1)
def detect_arch() -> Arch:
    """Detect the current CPU architecture (cached)."""
    machine = _platform.machine().lower()
    if machine in ("x86_64", "amd64"):
        return Arch.X64
    if machine in ("aarch64", "arm64"):
        return Arch.ARM64
    return Arch.UNKNOWN


def detect() -> HostInfo:
    """Probe the host now, including a copy of the process environment."""
    return HostInfo(platform=detect_platform(), arch=detect_arch(), env=dict(_os.environ))
