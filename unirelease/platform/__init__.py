"""Platform abstraction layer."""

from .detection import Arch, HostInfo, Platform, detect
from .process import ProcessError, format_command, run, run_live

__all__ = [
    # detection
    "Arch",
    "HostInfo",
    "Platform",
    "detect",
    # process
    "ProcessError",
    "format_command",
    "run",
    "run_live",
]
