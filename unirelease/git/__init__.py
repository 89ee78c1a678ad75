"""Git operations used by the release publisher."""

from unirelease.git.repository import GitError, GitStatus, Repository, StatusEntry

__all__ = [
    "GitError",
    "GitStatus",
    "Repository",
    "StatusEntry",
]
