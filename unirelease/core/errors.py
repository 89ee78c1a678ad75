"""Process exit codes.

The release pipeline only distinguishes success from failure: any fatal stage
abort or invalid input exits with FAILURE. Warning-only outcomes (optional
gates, skipped platforms, registry propagation mismatches) still exit OK.
"""

from enum import IntEnum

__all__ = ["ErrorCode"]


class ErrorCode(IntEnum):
    """Exit codes for the CLI. Values are stable."""

    OK = 0
    FAILURE = 1

    def __str__(self) -> str:
        return self.name.lower()

    @property
    def is_success(self) -> bool:
        return self == ErrorCode.OK
