"""Git repository abstraction.

Wraps the handful of git operations a release needs: porcelain status for
the clean-tree precondition, staging, commit, annotated tags and pushes.
All operations return Result types; none of them retries.

Usage:
    repo = Repository(Path("/path/to/checkout"))

    match repo.status():
        case Ok(status) if status.is_clean:
            print(f"clean on {status.branch}")
        case Ok(status):
            print(f"{len(status.entries)} uncommitted change(s)")
        case Err(e):
            print(f"error: {e.message}")
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path

from unirelease.core.result import Err, Ok, Result
from unirelease.platform.process import ProcessError
from unirelease.platform.process import run as run_process

_GIT_TIMEOUT_SECONDS = 30.0
_GIT_NETWORK_TIMEOUT_SECONDS = 3 * 60.0

__all__ = [
    "GitError",
    "GitStatus",
    "Repository",
    "StatusEntry",
]


@dataclass(frozen=True, slots=True)
class GitError:
    """Error from a git operation.

    Attributes:
        command: The full git command line that failed
        message: Error message (stderr when available)
        returncode: Process return code
    """

    command: str
    message: str
    returncode: int = 1


@dataclass(frozen=True, slots=True)
class StatusEntry:
    """A single `git status --porcelain` entry."""

    xy: str
    path: str

    @property
    def is_untracked(self) -> bool:
        return self.xy == "??"


@dataclass(frozen=True, slots=True)
class GitStatus:
    """Parsed git status.

    Attributes:
        branch: Current branch name ("" when unknown)
        upstream: Upstream branch (e.g., "origin/main"), None if not set
        ahead: Commits ahead of upstream
        behind: Commits behind upstream
        entries: All status entries (staged, unstaged, untracked)
    """

    branch: str
    upstream: str | None = None
    ahead: int = 0
    behind: int = 0
    entries: tuple[StatusEntry, ...] = field(default_factory=tuple)

    @property
    def is_clean(self) -> bool:
        return len(self.entries) == 0


class Repository:
    """A git checkout operated on through `git -C <path>`."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def exists(self) -> bool:
        """Check if this is a git checkout (.git dir or worktree file)."""
        return (self.path / ".git").exists()

    def status(self) -> Result[GitStatus, GitError]:
        """Run `git status --porcelain=v1 -b` and parse it."""
        result = self._run(["status", "--porcelain=v1", "-b"])
        if isinstance(result, Err):
            return Err(self._error(result.error, "git status failed"))
        return Ok(self._parse_status(result.value))

    def current_branch(self) -> str | None:
        """Current branch name; None if detached HEAD or error."""
        result = self._run(["rev-parse", "--abbrev-ref", "HEAD"])
        if isinstance(result, Err):
            return None
        branch = result.value.strip()
        return None if branch in ("", "HEAD") else branch

    def add_all(self, *, exclude: tuple[str, ...] = ()) -> Result[None, GitError]:
        """Stage every working-tree change except the excluded paths."""
        pathspec = ["."] + [f":(exclude){p}" for p in exclude]
        result = self._run(["add", "-A", "--", *pathspec])
        if isinstance(result, Err):
            return Err(self._error(result.error, "git add failed"))
        return Ok(None)

    def commit(self, message: str) -> Result[None, GitError]:
        result = self._run(["commit", "-m", message])
        if isinstance(result, Err):
            return Err(self._error(result.error, "git commit failed"))
        return Ok(None)

    def head_sha(self) -> str | None:
        result = self._run(["rev-parse", "HEAD"])
        if isinstance(result, Err):
            return None
        return result.value.strip() or None

    def tag_exists(self, tag: str) -> bool:
        result = self._run(["rev-parse", "-q", "--verify", f"refs/tags/{tag}"])
        return isinstance(result, Ok)

    def create_annotated_tag(self, tag: str, message: str) -> Result[None, GitError]:
        result = self._run(["tag", "-a", tag, "-m", message])
        if isinstance(result, Err):
            return Err(self._error(result.error, f"git tag {tag} failed"))
        return Ok(None)

    def push(self, remote: str, ref: str) -> Result[None, GitError]:
        """Push one ref (branch or tag) to a remote."""
        result = self._run(["push", remote, ref])
        if isinstance(result, Err):
            return Err(self._error(result.error, f"git push {remote} {ref} failed"))
        return Ok(None)

    def _run(self, args: list[str]) -> Result[str, ProcessError]:
        """Run a git command in this repository."""
        command = args[0] if args else ""
        timeout = (
            _GIT_NETWORK_TIMEOUT_SECONDS
            if command in {"fetch", "pull", "push"}
            else _GIT_TIMEOUT_SECONDS
        )
        return run_process(["git", "-C", str(self.path), *args], cwd=self.path, timeout=timeout)

    @staticmethod
    def _error(error: ProcessError, fallback: str) -> GitError:
        # Drop the "git -C <path>" prefix so messages stay copy-pasteable.
        args = error.command[3:] if error.command[1:2] == ("-C",) else error.command[1:]
        return GitError(
            command="git " + " ".join(args),
            message=error.stderr.strip() or error.stdout.strip() or fallback,
            returncode=error.returncode,
        )

    def _parse_status(self, output: str) -> GitStatus:
        """Parse git status --porcelain=v1 -b output."""
        lines = [ln for ln in output.splitlines() if ln.strip()]
        if not lines:
            return GitStatus(branch="")

        # First line is branch info: ## branch...upstream [ahead N, behind M]
        branch_line = lines[0]
        branch, upstream = self._parse_branch_line(branch_line)
        ahead, behind = self._parse_ahead_behind(branch_line)

        entries: list[StatusEntry] = []
        for line in lines[1:]:
            if len(line) < 4:
                continue
            entries.append(StatusEntry(xy=line[:2], path=line[3:]))

        return GitStatus(
            branch=branch,
            upstream=upstream,
            ahead=ahead,
            behind=behind,
            entries=tuple(entries),
        )

    def _parse_branch_line(self, line: str) -> tuple[str, str | None]:
        s = line.strip()
        if s.startswith("##"):
            s = s[2:].lstrip()

        s = s.split(" [", 1)[0].strip()
        if "..." in s:
            left, right = s.split("...", 1)
            return (left.strip(), right.strip())
        return (s, None)

    def _parse_ahead_behind(self, line: str) -> tuple[int, int]:
        match = re.search(r"\[([^\]]+)\]", line)
        if not match:
            return (0, 0)

        inside = match.group(1)
        ahead_match = re.search(r"ahead\s+(\d+)", inside)
        behind_match = re.search(r"behind\s+(\d+)", inside)
        ahead = int(ahead_match.group(1)) if ahead_match else 0
        behind = int(behind_match.group(1)) if behind_match else 0
        return (ahead, behind)
