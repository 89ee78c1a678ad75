from __future__ import annotations

from pathlib import Path

import pytest

from unirelease.core.config import (
    ArtifactConfig,
    Config,
    GateConfig,
    ManifestConfig,
    PackageConfig,
    PublishConfig,
    ReleaseSettings,
    TargetConfig,
)
from unirelease.core.errors import ErrorCode
from unirelease.core.result import Err, Ok
from unirelease.output.console import MockConsole
from unirelease.pipeline import bindings as bindings_mod
from unirelease.pipeline import controller as controller_mod
from unirelease.pipeline import gates as gates_mod
from unirelease.pipeline import gh as gh_mod
from unirelease.pipeline import publisher as publisher_mod
from unirelease.pipeline import registry as registry_mod
from unirelease.pipeline.controller import PipelineController, load_release_config, run_pipeline
from unirelease.pipeline.model import PipelineState
from unirelease.pipeline.version import ReleaseVersion
from unirelease.platform.detection import Arch, HostInfo, Platform
from unirelease.platform.process import ProcessError

from ._fakes import FakeRepo, FakeTools, _no_sleep

RN = "@bennyblader/ddk-rn"
TS = "@bennyblader/ddk-ts"
HOST = HostInfo(Platform.LINUX, Arch.X64)


def _config(**release: object) -> Config:
    public = ("--access", "public")
    return Config(
        release=ReleaseSettings(**release),  # type: ignore[arg-type]
        packages=(
            PackageConfig(
                id="ddk-ffi",
                path="ddk-ffi",
                manifests=(ManifestConfig(path="Cargo.toml", format="toml"),),
                gates=(GateConfig(command=("cargo", "test")),),
            ),
            PackageConfig(
                id="ddk-rn",
                path="ddk-rn",
                depends_on=("ddk-ffi",),
                manifests=(ManifestConfig(path="package.json", format="json"),),
                publish=PublishConfig(registry="npm", name=RN, args=public),
            ),
            PackageConfig(
                id="ddk-ts",
                path="ddk-ts",
                depends_on=("ddk-ffi",),
                manifests=(ManifestConfig(path="package.json", format="json"),),
                gates=(GateConfig(command=("pnpm", "test")),),
                publish=PublishConfig(registry="npm", name=TS, args=public),
            ),
        ),
        targets=(
            TargetConfig(id="ios", build=(("just", "build-ios"),), requires_os=("macos",)),
            TargetConfig(id="node", cwd="ddk-ts", build=(("pnpm", "build"),)),
        ),
        artifacts=(
            ArtifactConfig(kind="react-native", tag="ios-xcframeworks", source="ddk-rn/ios"),
            ArtifactConfig(
                kind="typescript",
                tag="",
                source="ddk-ts",
                mode="files",
                pattern="*.node",
                platforms=(("linux", "linux-x64"),),
            ),
        ),
    )


MANIFESTS = {
    "ddk-ffi/Cargo.toml": '[package]\nname = "ddk-ffi"\nversion = "1.1.9"\n',
    "ddk-rn/package.json": '{\n  "name": "@bennyblader/ddk-rn",\n  "version": "1.1.9"\n}\n',
    "ddk-ts/package.json": '{\n  "name": "@bennyblader/ddk-ts",\n  "version": "1.1.9"\n}\n',
}


@pytest.fixture
def project(tmp_path: Path) -> Path:
    for rel, text in MANIFESTS.items():
        path = tmp_path / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")
    (tmp_path / "ddk-ts" / "ddk-ts.linux-x64-gnu.node").write_bytes(b"\x7fELF")
    return tmp_path


class Runner:
    """Fake for streamed commands (gates, builds)."""

    def __init__(self, failing: set[str] | None = None) -> None:
        self.calls: list[str] = []
        self.failing = failing or set()

    def __call__(self, cmd: list[str], cwd: Path, env: dict[str, str] | None = None):
        del cwd, env
        line = " ".join(cmd)
        self.calls.append(line)
        if line in self.failing:
            return Err(ProcessError(command=tuple(cmd), returncode=1, stdout="", stderr=""))
        return Ok(None)


@pytest.fixture
def runner(monkeypatch: pytest.MonkeyPatch) -> Runner:
    fake = Runner()
    monkeypatch.setattr(gates_mod, "run_command", fake)
    monkeypatch.setattr(bindings_mod, "run_command", fake)
    return fake


@pytest.fixture
def tools(monkeypatch: pytest.MonkeyPatch) -> FakeTools:
    fake = FakeTools(views={RN: ["1.2.0"], TS: ["1.2.0"]})
    monkeypatch.setattr(gh_mod, "run_process", fake)
    monkeypatch.setattr(registry_mod, "run_process", fake)
    monkeypatch.setattr(publisher_mod, "sleep", _no_sleep)
    monkeypatch.setattr(controller_mod, "ensure_gh_available", lambda: Ok(None))
    return fake


def _controller(
    root: Path,
    *,
    repo: FakeRepo | None = None,
    config: Config | None = None,
    keep_artifacts: bool = False,
) -> tuple[PipelineController, MockConsole]:
    console = MockConsole()
    controller = PipelineController(
        project_root=root,
        config=config or _config(),
        version=ReleaseVersion(1, 2, 0),
        console=console,
        host=HOST,
        keep_artifacts=keep_artifacts,
        repo=repo or FakeRepo(),  # type: ignore[arg-type]
    )
    return controller, console


def test_stage_order(project: Path) -> None:
    controller, _ = _controller(project)
    stages = controller.stages()

    assert [s.name for s in stages] == [
        "preconditions",
        "version",
        "gates",
        "bindings",
        "package",
        "commit",
        "tag",
        "push",
        "release",
        "publish",
        "verify",
    ]
    assert [s.ordinal for s in stages] == list(range(1, 12))
    assert [s.reaches for s in stages] == list(PipelineState)[1:]
    assert [s.name for s in stages if not s.fatal] == ["verify"]


def test_full_release(project: Path, runner: Runner, tools: FakeTools) -> None:
    repo = FakeRepo()
    controller, console = _controller(project, repo=repo)

    report = controller.run()

    assert report.error is None
    assert report.exit_code == ErrorCode.OK
    assert report.state is PipelineState.VERIFIED
    for rel, before in MANIFESTS.items():
        assert (project / rel).read_text(encoding="utf-8") == before.replace("1.1.9", "1.2.0")

    assert runner.calls == ["cargo test", "pnpm test", "pnpm build"]
    assert repo.calls[-4:] == [
        "commit chore: release 1.2.0",
        "tag v1.2.0 Release v1.2.0",
        "push origin master",
        "push origin v1.2.0",
    ]

    record = report.record
    assert record is not None
    assert record.git_tag == "v1.2.0"
    assert [a.label for a in record.artifacts] == ["typescript-linux-x64"]
    assert record.published == (f"{RN}@1.2.0", f"{TS}@1.2.0")

    # ios skipped on linux, ios archive source absent.
    assert any("skipping ios" in w for w in report.warnings)
    assert not (project / "release-archives").exists()
    assert not console.has_error()


def test_keep_artifacts(project: Path, runner: Runner, tools: FakeTools) -> None:
    controller, _ = _controller(project, keep_artifacts=True)

    report = controller.run()

    assert report.exit_code == ErrorCode.OK
    assert (project / "release-archives" / "typescript-linux-x64-1.2.0.node").is_file()


def test_invalid_version_touches_nothing(project: Path, runner: Runner, tools: FakeTools) -> None:
    console = MockConsole()

    report = run_pipeline(project_root=project, config=_config(), version="1.2", console=console, host=HOST)

    assert report.exit_code == ErrorCode.FAILURE
    assert report.state is PipelineState.PENDING
    assert report.error is not None and report.error.kind == "invalid_version"
    assert runner.calls == []
    assert tools.calls == []
    for rel, before in MANIFESTS.items():
        assert (project / rel).read_text(encoding="utf-8") == before
    assert console.has_error()


def test_dirty_tree_aborts_before_any_change(project: Path, runner: Runner, tools: FakeTools) -> None:
    repo = FakeRepo(dirty=("ddk-ffi/src/lib.rs",))
    controller, console = _controller(project, repo=repo)

    report = controller.run()

    assert report.exit_code == ErrorCode.FAILURE
    assert report.state is PipelineState.PENDING
    assert report.error is not None and report.error.kind == "precondition_failed"
    assert "ddk-ffi/src/lib.rs" in report.error.message
    assert (project / "ddk-ffi/Cargo.toml").read_text(encoding="utf-8") == MANIFESTS["ddk-ffi/Cargo.toml"]
    assert runner.calls == []


def test_gh_not_authenticated(project: Path, runner: Runner, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(gh_mod, "run_process", FakeTools(failing={"gh auth status"}))
    monkeypatch.setattr(controller_mod, "ensure_gh_available", lambda: Ok(None))
    controller, _ = _controller(project)

    report = controller.run()

    assert report.error is not None
    assert report.error.kind == "precondition_failed"
    assert report.error.hint == "Run: gh auth login"


def test_required_gate_failure_stops_pipeline(
    project: Path, monkeypatch: pytest.MonkeyPatch, tools: FakeTools
) -> None:
    failing = Runner(failing={"cargo test"})
    monkeypatch.setattr(gates_mod, "run_command", failing)
    monkeypatch.setattr(bindings_mod, "run_command", failing)
    repo = FakeRepo()
    controller, console = _controller(project, repo=repo)

    report = controller.run()

    assert report.exit_code == ErrorCode.FAILURE
    assert report.state is PipelineState.VERSION_SYNCED
    assert report.error is not None and report.error.kind == "gate_failed"
    assert failing.calls == ["cargo test"]
    assert not any(c.startswith(("add", "commit", "tag", "push")) for c in repo.calls)
    assert tools.commands("gh release") == []
    assert tools.commands("npm") == []
    assert not (project / "release-archives").exists()

    assert console.find("gates failed")
    assert console.find("command: cargo test (exit 1)")
    assert console.find("Recovery checklist")
    assert console.find("git restore --staged --worktree -- .")
    assert not console.find("git tag -d")


def test_push_failure_checklist(project: Path, runner: Runner, tools: FakeTools) -> None:
    repo = FakeRepo(fail={"push v1.2.0": "rejected"})
    controller, console = _controller(project, repo=repo)

    report = controller.run()

    assert report.state is PipelineState.TAGGED
    assert report.error is not None and report.error.kind == "git_failed"
    assert console.find("git reset --soft HEAD~1")
    assert console.find("git tag -d v1.2.0")
    assert console.find("git push origin :refs/tags/v1.2.0")
    # Artifacts are left for inspection.
    assert (project / "release-archives").is_dir()


def test_publish_failure_after_release_is_not_rolled_back(
    project: Path, runner: Runner, monkeypatch: pytest.MonkeyPatch
) -> None:
    fake = FakeTools()
    monkeypatch.setattr(gh_mod, "run_process", fake)
    monkeypatch.setattr(controller_mod, "ensure_gh_available", lambda: Ok(None))

    def registry(cmd: list[str], cwd: Path, env: dict[str, str] | None = None, *, timeout: float | None = None):
        if cmd[:2] == ["npm", "publish"] and cwd.name == "ddk-ts":
            return Err(ProcessError(command=tuple(cmd), returncode=1, stdout="", stderr="E403"))
        return fake(cmd, cwd, env, timeout=timeout)

    monkeypatch.setattr(registry_mod, "run_process", registry)
    repo = FakeRepo()
    controller, console = _controller(project, repo=repo)

    report = controller.run()

    assert report.exit_code == ErrorCode.FAILURE
    assert report.state is PipelineState.RELEASED
    assert report.error is not None and report.error.kind == "publish_failed"
    assert report.record is not None
    assert report.record.published == (f"{RN}@1.2.0",)

    assert console.find("The release is public; no rollback was attempted.")
    assert console.find(f"published: {RN}@1.2.0")
    assert console.find("cd ddk-ts && npm publish --access public")
    assert not console.find("Recovery checklist")
    assert not console.find("git tag -d")


def test_propagation_mismatch_is_warning_only(
    project: Path, runner: Runner, tools: FakeTools
) -> None:
    tools.views[TS] = ["1.1.9"]
    controller, console = _controller(project)

    report = controller.run()

    assert report.exit_code == ErrorCode.OK
    assert report.state is PipelineState.VERIFIED
    mismatch = [w for w in report.warnings if "version mismatch" in w]
    assert len(mismatch) == 1
    assert f"{RN}: 1.2.0" in mismatch[0] and f"{TS}: 1.1.9" in mismatch[0]
    assert console.has_warning()


def test_skipped_commit_is_never_undone(project: Path, runner: Runner, tools: FakeTools) -> None:
    repo = FakeRepo(staged_after_add=(), tags={"v1.2.0"})
    controller, console = _controller(project, repo=repo)

    report = controller.run()

    assert report.state is PipelineState.COMMITTED
    assert report.error is not None and report.error.kind == "tag_exists"
    assert not any(c.startswith("commit") for c in repo.calls)
    assert console.find("Recovery checklist")
    assert not console.find("git reset")
    # The existing tag predates this run.
    assert not console.find("  - Delete the local tag")


def test_missing_config_is_config_invalid(tmp_path: Path) -> None:
    result = load_release_config(tmp_path / "release.toml")

    assert isinstance(result, Err)
    assert result.error.kind == "config_invalid"
    assert "not found" in result.error.message
    assert result.error.hint is not None and "examples/release.toml" in result.error.hint


def test_inconsistent_config_is_config_invalid(tmp_path: Path) -> None:
    path = tmp_path / "release.toml"
    path.write_text('[[packages]]\nid = "ddk-rn"\ndepends_on = ["ddk-ffi"]\n', encoding="utf-8")

    result = load_release_config(path)

    assert isinstance(result, Err)
    assert result.error.kind == "config_invalid"
    assert "ddk-ffi" in result.error.message
