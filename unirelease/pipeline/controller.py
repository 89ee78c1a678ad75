"""Release pipeline driver.

Runs the ordered stage list once, front to back, stopping at the first fatal
failure. The pipeline state only moves forward; once the host release exists
(state Released) nothing is rolled back and a failure only prints guidance
for finishing by hand.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from unirelease.core.config import DEFAULT_CONFIG_NAME, Config, load_config
from unirelease.core.errors import ErrorCode
from unirelease.core.result import Err, Ok, Result
from unirelease.git.repository import Repository
from unirelease.output.console import ConsoleProtocol, Style
from unirelease.platform.detection import HostInfo, detect
from unirelease.platform.files import display_path
from unirelease.pipeline.bindings import build_targets
from unirelease.pipeline.errors import PipelineError
from unirelease.pipeline.gates import plan_gates, run_gates
from unirelease.pipeline.gh import ensure_gh_auth, ensure_gh_available
from unirelease.pipeline.manifests import sync_versions
from unirelease.pipeline.model import Artifact, PipelineState, ReleaseRecord
from unirelease.pipeline.packager import package_artifacts, remove_artifacts_dir
from unirelease.pipeline.publisher import ReleasePublisher
from unirelease.pipeline.version import ReleaseVersion, parse_version

# Warnings produced by a stage that otherwise succeeded.
type StageResult = Result[tuple[str, ...], PipelineError]


@dataclass(frozen=True, slots=True)
class Stage:
    ordinal: int
    name: str
    description: str
    reaches: PipelineState
    run: Callable[[], StageResult]
    fatal: bool = True


@dataclass(frozen=True, slots=True)
class PipelineReport:
    state: PipelineState
    record: ReleaseRecord | None
    warnings: tuple[str, ...]
    error: PipelineError | None = None

    @property
    def exit_code(self) -> ErrorCode:
        return ErrorCode.OK if self.error is None else ErrorCode.FAILURE


class PipelineController:
    def __init__(
        self,
        *,
        project_root: Path,
        config: Config,
        version: ReleaseVersion,
        console: ConsoleProtocol,
        host: HostInfo | None = None,
        keep_artifacts: bool = False,
        repo: Repository | None = None,
    ) -> None:
        self.project_root = project_root
        self.config = config
        self.version = version
        self.console = console
        self.host = host or detect()
        self.keep_artifacts = keep_artifacts or config.release.keep_artifacts
        self.repo = repo or Repository(project_root)
        self.publisher = ReleasePublisher(
            project_root=project_root,
            config=config,
            version=version,
            console=console,
            repo=self.repo,
        )
        self.state = PipelineState.PENDING
        self.artifacts: tuple[Artifact, ...] = ()

    @property
    def artifacts_dir(self) -> Path:
        return self.project_root / self.config.release.artifacts_dir

    def stages(self) -> tuple[Stage, ...]:
        steps: list[tuple[str, str, PipelineState, Callable[[], StageResult], bool]] = [
            ("preconditions", "Checking preconditions", PipelineState.CLEAN, self._preconditions, True),
            ("version", f"Synchronizing versions to {self.version}", PipelineState.VERSION_SYNCED, self._sync_versions, True),
            ("gates", "Running gates", PipelineState.GATED, self._run_gates, True),
            ("bindings", "Generating bindings and building targets", PipelineState.BOUND_AND_BUILT, self._build, True),
            ("package", "Packaging artifacts", PipelineState.PACKAGED, self._package, True),
            ("commit", "Committing release", PipelineState.COMMITTED, self._commit, True),
            ("tag", f"Tagging {self.version.tag}", PipelineState.TAGGED, self._tag, True),
            ("push", "Pushing branch and tag", PipelineState.PUSHED, self._push, True),
            ("release", "Creating host release", PipelineState.RELEASED, self._release, True),
            ("publish", "Publishing packages", PipelineState.PUBLISHED, self._publish, True),
            ("verify", "Verifying registry propagation", PipelineState.VERIFIED, self._verify, False),
        ]
        return tuple(
            Stage(ordinal=i, name=name, description=desc, reaches=reaches, run=run, fatal=fatal)
            for i, (name, desc, reaches, run, fatal) in enumerate(steps, start=1)
        )

    def run(self) -> PipelineReport:
        stages = self.stages()
        warnings: list[str] = []

        self.console.header(f"Releasing {self.version}")
        for stage in stages:
            self.console.header(f"[{stage.ordinal}/{len(stages)}] {stage.description}")

            outcome = stage.run()
            if isinstance(outcome, Err):
                if stage.fatal:
                    self._report_abort(stage, outcome.error)
                    return PipelineReport(
                        state=self.state,
                        record=self.publisher.record,
                        warnings=tuple(warnings),
                        error=outcome.error,
                    )
                self.console.warning(f"{stage.name}: {outcome.error.message}")
                warnings.append(outcome.error.message)
            else:
                warnings.extend(outcome.value)
            self.state = stage.reaches

        if not self.keep_artifacts:
            remove_artifacts_dir(self.artifacts_dir)
        else:
            self.console.print(
                f"artifacts kept in {display_path(self.artifacts_dir, self.project_root)}", Style.DIM
            )

        return PipelineReport(state=self.state, record=self.publisher.record, warnings=tuple(warnings))

    def _preconditions(self) -> StageResult:
        if not self.repo.exists():
            return Err(
                PipelineError(
                    kind="precondition_failed",
                    message=f"not a git repository: {self.project_root}",
                    hint="Run from the repository root or pass --root.",
                )
            )

        status = self.repo.status()
        if isinstance(status, Err):
            return Err(
                PipelineError(
                    kind="precondition_failed",
                    message="git status failed",
                    hint=status.error.message,
                    command=status.error.command,
                    returncode=status.error.returncode,
                )
            )
        if not status.value.is_clean:
            dirty = ", ".join(e.path for e in status.value.entries[:5])
            more = len(status.value.entries) - 5
            if more > 0:
                dirty += f" (+{more} more)"
            return Err(
                PipelineError(
                    kind="precondition_failed",
                    message=f"working tree is not clean: {dirty}",
                    hint="Commit or stash your changes first.",
                )
            )
        self.console.success(f"working tree clean ({status.value.branch})")

        available = ensure_gh_available()
        if isinstance(available, Err):
            return available
        authed = ensure_gh_auth(cwd=self.project_root)
        if isinstance(authed, Err):
            return authed
        self.console.success("gh authenticated")
        return Ok(())

    def _sync_versions(self) -> StageResult:
        result = sync_versions(
            project_root=self.project_root,
            version=self.version,
            packages=self.config.packages_in_dependency_order(),
            console=self.console,
        )
        if isinstance(result, Err):
            return result
        return Ok(())

    def _run_gates(self) -> StageResult:
        gates = plan_gates(project_root=self.project_root, config=self.config)
        if not gates:
            self.console.print("no gates configured", Style.DIM)
            return Ok(())
        result = run_gates(project_root=self.project_root, gates=gates, console=self.console)
        if isinstance(result, Err):
            return result
        return Ok(result.value.warnings)

    def _build(self) -> StageResult:
        if not self.config.targets:
            self.console.print("no targets configured", Style.DIM)
            return Ok(())
        result = build_targets(
            project_root=self.project_root,
            targets=self.config.targets,
            host=self.host,
            console=self.console,
        )
        if isinstance(result, Err):
            return result
        return Ok(result.value.warnings)

    def _package(self) -> StageResult:
        result = package_artifacts(
            project_root=self.project_root,
            out_dir=self.artifacts_dir,
            configs=self.config.artifacts,
            version=self.version,
            console=self.console,
        )
        if isinstance(result, Err):
            return result
        self.artifacts = result.value.artifacts
        return Ok(())

    def _commit(self) -> StageResult:
        result = self.publisher.commit()
        return result if isinstance(result, Err) else Ok(())

    def _tag(self) -> StageResult:
        result = self.publisher.tag()
        return result if isinstance(result, Err) else Ok(())

    def _push(self) -> StageResult:
        result = self.publisher.push()
        return result if isinstance(result, Err) else Ok(())

    def _release(self) -> StageResult:
        result = self.publisher.create_release(self.artifacts)
        return result if isinstance(result, Err) else Ok(())

    def _publish(self) -> StageResult:
        result = self.publisher.publish()
        return result if isinstance(result, Err) else Ok(())

    def _verify(self) -> StageResult:
        result = self.publisher.verify()
        if isinstance(result, Err):
            return result
        return Ok(result.value.warnings)

    def _report_abort(self, stage: Stage, error: PipelineError) -> None:
        self.console.newline()
        self.console.error(f"{stage.name} failed: {error.message}")
        if error.command:
            status = f" (exit {error.returncode})" if error.returncode is not None else ""
            self.console.print(f"  command: {error.command}{status}", Style.DIM)
        if error.hint:
            self.console.print(f"  {error.hint}", Style.DIM)

        self.console.newline()
        if self.state.is_public:
            for line in self._manual_steps():
                self.console.print(line)
        else:
            for line in self._recovery_checklist(stage):
                self.console.print(line)

    def _recovery_checklist(self, stage: Stage) -> list[str]:
        tag = self.version.tag
        remote = self.config.release.remote
        lines = ["Recovery checklist (nothing has been released):", "  - Check git status"]
        if self.publisher.commit_sha is not None:
            lines.append("  - Undo the release commit, keeping its changes: git reset --soft HEAD~1")
        if self.state.reached(PipelineState.CLEAN):
            lines.append("  - Revert version changes if needed: git restore --staged --worktree -- .")
        if self.state.reached(PipelineState.TAGGED):
            lines.append(f"  - Delete the local tag: git tag -d {tag}")
        if self.state.reached(PipelineState.PUSHED) or stage.reaches is PipelineState.PUSHED:
            lines.append(f"  - Delete the remote tag if it was pushed: git push {remote} :refs/tags/{tag}")
        if stage.reaches is PipelineState.RELEASED:
            lines.append("  - Check the release host for a partial release")
        if self.artifacts_dir.exists():
            lines.append(
                f"  - Inspect, then remove {display_path(self.artifacts_dir, self.project_root)}"
            )
        return lines

    def _manual_steps(self) -> list[str]:
        record = self.publisher.record
        lines = ["The release is public; no rollback was attempted."]
        if record is not None:
            lines.append(f"  release: {record.release_id}")
            for pair in record.published:
                lines.append(f"  published: {pair}")

        done = set(record.published) if record is not None else set()
        remaining = [
            pkg
            for pkg in self.config.publishable()
            if pkg.publish is not None and f"{pkg.publish.name}@{self.version}" not in done
        ]
        if remaining:
            lines.append("Publish the remaining packages manually:")
            for pkg in remaining:
                assert pkg.publish is not None
                args = " ".join(["npm", "publish", *pkg.publish.args])
                lines.append(f"  cd {display_path(self.project_root / pkg.path, self.project_root)} && {args}")
        return lines


def load_release_config(path: Path) -> Result[Config, PipelineError]:
    result = load_config(path)
    if isinstance(result, Err):
        return Err(
            PipelineError(
                kind="config_invalid",
                message=result.error.message,
                hint=f"See examples/{DEFAULT_CONFIG_NAME} for a starting point.",
            )
        )
    return result


def run_pipeline(
    *,
    project_root: Path,
    config: Config,
    version: str,
    console: ConsoleProtocol,
    host: HostInfo | None = None,
    keep_artifacts: bool = False,
) -> PipelineReport:
    """Validate the version, then run the whole pipeline for it.

    An invalid version is reported before any stage runs, so nothing on disk
    or on a remote is touched.
    """
    parsed = parse_version(version)
    if isinstance(parsed, Err):
        console.error(parsed.error.message)
        if parsed.error.hint:
            console.print(parsed.error.hint, Style.DIM)
        return PipelineReport(
            state=PipelineState.PENDING, record=None, warnings=(), error=parsed.error
        )

    controller = PipelineController(
        project_root=project_root,
        config=config,
        version=parsed.value,
        console=console,
        host=host,
        keep_artifacts=keep_artifacts,
    )
    return controller.run()
