"""Externally visible release sequence.

commit -> tag -> push branch -> push tag -> host release -> registry publish
-> propagation check.

Each step is one method returning a Result so that the controller can decide
what a failure means. Nothing here is rolled back automatically: a pushed
tag, a host release and a published package are all public once made.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from time import sleep

from unirelease.core.config import Config, PackageConfig
from unirelease.core.result import Err, Ok, Result
from unirelease.git.repository import GitError, Repository
from unirelease.output.console import ConsoleProtocol, Style
from unirelease.pipeline.errors import PipelineError, PipelineErrorKind
from unirelease.pipeline.gh import create_release
from unirelease.pipeline.model import Artifact, ReleaseRecord
from unirelease.pipeline.notes import render_notes, write_notes
from unirelease.pipeline.registry import ensure_registry_auth, publish_package, published_version
from unirelease.pipeline.timeouts import PROPAGATION_POLL_SECONDS
from unirelease.pipeline.version import ReleaseVersion


@dataclass(frozen=True, slots=True)
class PropagationReport:
    # Registry name -> version the registry reported (None if the query failed).
    observed: tuple[tuple[str, str | None], ...]
    warnings: tuple[str, ...]

    @property
    def converged(self) -> bool:
        return not self.warnings


def _git_error(error: GitError, *, kind: PipelineErrorKind = "git_failed") -> PipelineError:
    return PipelineError(
        kind=kind,
        message=f"{error.command} failed",
        hint=error.message,
        command=error.command,
        returncode=error.returncode,
    )


class ReleasePublisher:
    """Performs the public part of a release for one version.

    Attributes:
        record: The release record once the host release exists, updated as
            packages are published. None before that.
        commit_sha: The release commit, when `commit` created one. None when
            nothing was staged and no commit was made.
    """

    def __init__(
        self,
        *,
        project_root: Path,
        config: Config,
        version: ReleaseVersion,
        console: ConsoleProtocol,
        repo: Repository | None = None,
    ) -> None:
        self.project_root = project_root
        self.config = config
        self.version = version
        self.console = console
        self.repo = repo or Repository(project_root)
        self.record: ReleaseRecord | None = None
        self.commit_sha: str | None = None

    @property
    def artifacts_dir(self) -> Path:
        return self.project_root / self.config.release.artifacts_dir

    def _format(self, template: str) -> str:
        return template.replace("{version}", str(self.version))

    def commit(self) -> Result[str, PipelineError]:
        """Stage everything except the artifacts directory and commit."""
        exclude: tuple[str, ...] = ()
        try:
            exclude = (self.artifacts_dir.relative_to(self.project_root).as_posix(),)
        except ValueError:
            pass

        self.console.command("git add -A")
        added = self.repo.add_all(exclude=exclude)
        if isinstance(added, Err):
            return Err(_git_error(added.error))

        status = self.repo.status()
        if isinstance(status, Err):
            return Err(_git_error(status.error))
        staged = [e for e in status.value.entries if not e.is_untracked]
        if not staged:
            self.console.print("nothing to commit, versions already in place", Style.DIM)
            return Ok(self.repo.head_sha() or "")

        message = self._format(self.config.release.commit_message)
        self.console.command(f'git commit -m "{message}"')
        committed = self.repo.commit(message)
        if isinstance(committed, Err):
            return Err(_git_error(committed.error))

        sha = self.repo.head_sha() or ""
        self.commit_sha = sha
        self.console.success(f"committed {sha[:8]} ({len(staged)} file(s))")
        return Ok(sha)

    def tag(self) -> Result[str, PipelineError]:
        tag = self.version.tag
        if self.repo.tag_exists(tag):
            return Err(
                PipelineError(
                    kind="tag_exists",
                    message=f"tag already exists: {tag}",
                    hint=f"Delete it (git tag -d {tag}) or release a new version.",
                )
            )

        message = self._format(self.config.release.tag_message)
        self.console.command(f'git tag -a {tag} -m "{message}"')
        created = self.repo.create_annotated_tag(tag, message)
        if isinstance(created, Err):
            return Err(_git_error(created.error))
        self.console.success(f"tagged {tag}")
        return Ok(tag)

    def push(self) -> Result[None, PipelineError]:
        """Push the branch, then the tag, as two separate operations."""
        remote = self.config.release.remote
        branch = self.config.release.branch or self.repo.current_branch()
        if branch is None:
            return Err(
                PipelineError(
                    kind="git_failed",
                    message="cannot push: HEAD is detached",
                    hint="Check out the release branch or set release.branch in the config.",
                )
            )

        for ref in (branch, self.version.tag):
            self.console.command(f"git push {remote} {ref}")
            pushed = self.repo.push(remote, ref)
            if isinstance(pushed, Err):
                return Err(_git_error(pushed.error))
        self.console.success(f"pushed {branch} and {self.version.tag} to {remote}")
        return Ok(None)

    def create_release(self, artifacts: tuple[Artifact, ...]) -> Result[ReleaseRecord, PipelineError]:
        text = render_notes(
            version=self.version,
            packages=self.config.packages_in_dependency_order(),
            artifacts=artifacts,
        )
        notes = write_notes(out_dir=self.artifacts_dir, text=text)
        if isinstance(notes, Err):
            return notes

        tag = self.version.tag
        self.console.command(f"gh release create {tag} ({len(artifacts)} asset(s))")
        try:
            created = create_release(
                cwd=self.project_root,
                tag=tag,
                title=self._format(self.config.release.release_title),
                notes_file=notes.value,
                artifacts=artifacts,
                prerelease=self.version.is_prerelease,
                repo=self.config.release.host_repo,
            )
        finally:
            notes.value.unlink(missing_ok=True)

        if isinstance(created, Err):
            return created

        self.record = ReleaseRecord(
            version=str(self.version),
            git_tag=tag,
            release_id=created.value,
            artifacts=artifacts,
        )
        for artifact in artifacts:
            self.console.print(f"  asset {artifact.label} <- {artifact.filename}", Style.DIM)
        self.console.success(f"release created: {created.value}")
        return Ok(self.record)

    def publish(self) -> Result[tuple[str, ...], PipelineError]:
        """Check registry auth for every package, then publish each one."""
        packages = self.config.publishable()

        checked: set[str] = set()
        for pkg in packages:
            assert pkg.publish is not None
            if pkg.publish.registry in checked:
                continue
            self.console.command("npm whoami")
            who = ensure_registry_auth(cwd=self.project_root, publish=pkg.publish)
            if isinstance(who, Err):
                return who
            self.console.print(f"{pkg.publish.registry} user: {who.value}", Style.DIM)
            checked.add(pkg.publish.registry)

        published: list[str] = []
        for pkg in packages:
            assert pkg.publish is not None
            self.console.info(f"publishing {pkg.publish.name}")
            self.console.command(" ".join(["npm", "publish", *pkg.publish.args]))
            done = publish_package(package_dir=self.project_root / pkg.path, publish=pkg.publish)
            if isinstance(done, Err):
                return done

            pair = f"{pkg.publish.name}@{self.version}"
            published.append(pair)
            if self.record is not None:
                self.record = self.record.with_published(pair)
            self.console.success(f"published {pair}")

        return Ok(tuple(published))

    def verify(self) -> Result[PropagationReport, PipelineError]:
        """Compare registry-visible versions with the release version.

        Never fails: publication already happened, so a mismatch or a failed
        query is reported as a warning.
        """
        packages = self.config.publishable()
        if not packages:
            return Ok(PropagationReport(observed=(), warnings=()))

        settings = self.config.release
        observed: dict[str, str | None] = {}
        for attempt in range(settings.propagation_attempts):
            delay = settings.propagation_delay if attempt == 0 else PROPAGATION_POLL_SECONDS
            self.console.print(f"waiting {delay:g}s for registry propagation", Style.DIM)
            sleep(delay)

            observed = self._query_versions(packages)
            if all(v == str(self.version) for v in observed.values()):
                break

        expected = str(self.version)
        warnings: list[str] = []
        if any(v is None for v in observed.values()):
            failed = ", ".join(name for name, v in observed.items() if v is None)
            warnings.append(f"could not verify published versions (registry may be updating): {failed}")
        if any(v is not None and v != expected for v in observed.values()):
            detail = ", ".join(f"{name}: {v or '?'}" for name, v in observed.items())
            warnings.append(f"version mismatch detected (expected {expected}): {detail}")

        for message in warnings:
            self.console.warning(message)
        if not warnings:
            self.console.success(f"all packages visible at {expected}")

        return Ok(PropagationReport(observed=tuple(observed.items()), warnings=tuple(warnings)))

    def _query_versions(self, packages: tuple[PackageConfig, ...]) -> dict[str, str | None]:
        observed: dict[str, str | None] = {}
        for pkg in packages:
            assert pkg.publish is not None
            result = published_version(
                cwd=self.project_root, publish=pkg.publish, version=str(self.version)
            )
            observed[pkg.publish.name] = result.value if isinstance(result, Ok) else None
        return observed
