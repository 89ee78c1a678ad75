from __future__ import annotations

from pathlib import Path

from unirelease.core.config import ManifestConfig, PackageConfig
from unirelease.core.result import Err, Ok
from unirelease.output.console import MockConsole
from unirelease.pipeline.manifests import read_version, rewrite_version, sync_versions
from unirelease.pipeline.version import ReleaseVersion, parse_version

V120 = ReleaseVersion(1, 2, 0)

CARGO = """\
# core library
[dependencies.serde]
version = "1.0.200"
features = ["derive"]

[package]
name = "ddk-ffi"
version = "1.1.9"  # bumped by release
edition = "2021"

[dependencies]
uniffi = { version = "0.28" }
"""

PACKAGE_JSON = """\
{
  "name": "@bennyblader/ddk-ts",
  "dependencies": {
    "version": "not-this-one"
  },
  "version": "1.1.9",
  "scripts": { "build": "napi build --platform --release" }
}
"""


def _ok(result: object) -> str:
    assert isinstance(result, Ok), result
    return result.value  # type: ignore[no-any-return]


class TestRewriteToml:
    def test_only_package_version_changes(self) -> None:
        out = _ok(rewrite_version(CARGO, V120, "toml"))
        assert out == CARGO.replace('version = "1.1.9"', 'version = "1.2.0"')
        assert 'version = "1.0.200"' in out
        assert 'uniffi = { version = "0.28" }' in out

    def test_top_level_version(self) -> None:
        out = _ok(rewrite_version('version = "0.1.0"\nname = "x"\n', V120, "toml"))
        assert out == 'version = "1.2.0"\nname = "x"\n'

    def test_workspace_package_table(self) -> None:
        text = '[workspace]\nmembers = ["a"]\n\n[workspace.package]\nversion = "1.1.9"\n'
        assert read_version(_ok(rewrite_version(text, V120, "toml")), "toml") == "1.2.0"

    def test_array_table_does_not_count_as_package(self) -> None:
        text = '[[bin]]\nname = "x"\nversion = "9.9.9"\n\n[package]\nversion = "1.1.9"\n'
        out = _ok(rewrite_version(text, V120, "toml"))
        assert 'version = "9.9.9"' in out
        assert out.endswith('[package]\nversion = "1.2.0"\n')

    def test_crlf_preserved(self) -> None:
        text = '[dependencies.serde]\r\nversion = "1.0"\r\n\r\n[package]\r\nname = "x"\r\nversion = "1.1.9"\r\n'
        assert _ok(rewrite_version(text, V120, "toml")) == text.replace("1.1.9", "1.2.0")

    def test_missing_version_is_invalid(self) -> None:
        result = rewrite_version('[package]\nname = "x"\n', V120, "toml")
        assert isinstance(result, Err)
        assert result.error.kind == "manifest_invalid"


class TestRewriteJson:
    def test_root_version_only(self) -> None:
        out = _ok(rewrite_version(PACKAGE_JSON, V120, "json"))
        assert out == PACKAGE_JSON.replace('"version": "1.1.9"', '"version": "1.2.0"')
        assert '"version": "not-this-one"' in out

    def test_compact_json(self) -> None:
        out = _ok(rewrite_version('{"name":"a","version":"1.1.9"}', V120, "json"))
        assert out == '{"name":"a","version":"1.2.0"}'

    def test_escaped_strings_are_skipped(self) -> None:
        text = '{"description": "a \\"version\\": \\"0.0.1\\" note", "version": "1.1.9"}'
        assert read_version(_ok(rewrite_version(text, V120, "json")), "json") == "1.2.0"

    def test_invalid_json(self) -> None:
        result = rewrite_version('{"version": "1.1.9",', V120, "json")
        assert isinstance(result, Err)
        assert result.error.kind == "manifest_invalid"

    def test_no_root_version(self) -> None:
        result = rewrite_version('{"name": "a", "deps": {"version": "1"}}', V120, "json")
        assert isinstance(result, Err)
        assert result.error.kind == "manifest_invalid"


def _write(root: Path, rel: str, text: str) -> Path:
    path = root / rel
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(text.encode("utf-8"))
    return path


def _packages() -> tuple[PackageConfig, ...]:
    return (
        PackageConfig(
            id="ddk-ffi",
            path="ddk-ffi",
            manifests=(ManifestConfig(path="Cargo.toml", format="toml"),),
        ),
        PackageConfig(
            id="ddk-rn",
            path="ddk-rn",
            manifests=(
                ManifestConfig(path="package.json", format="json"),
                ManifestConfig(path="rust/Cargo.toml", format="toml", optional=True),
            ),
        ),
        PackageConfig(
            id="ddk-ts",
            path="ddk-ts",
            manifests=(
                ManifestConfig(path="package.json", format="json"),
                ManifestConfig(path="Cargo.toml", format="toml"),
            ),
        ),
    )


class TestSyncVersions:
    def test_all_manifests_synced_byte_for_byte(self, tmp_path: Path) -> None:
        files = {
            "ddk-ffi/Cargo.toml": CARGO,
            "ddk-rn/package.json": PACKAGE_JSON,
            "ddk-ts/package.json": PACKAGE_JSON,
            "ddk-ts/Cargo.toml": CARGO,
        }
        for rel, text in files.items():
            _write(tmp_path, rel, text)

        console = MockConsole()
        result = sync_versions(
            project_root=tmp_path, version=V120, packages=_packages(), console=console
        )

        assert isinstance(result, Ok)
        report = result.value
        assert [m.previous for m in report.synced] == ["1.1.9"] * 4
        assert all(m.changed for m in report.synced)
        assert report.skipped == (tmp_path / "ddk-rn" / "rust" / "Cargo.toml",)

        for rel, before in files.items():
            after = (tmp_path / rel).read_text(encoding="utf-8")
            assert after == before.replace('"1.1.9"', '"1.2.0"')
            assert read_version(after, "json" if rel.endswith(".json") else "toml") == "1.2.0"

        assert console.find("ddk-ffi/Cargo.toml: 1.1.9 -> 1.2.0")
        assert console.find("skip ddk-rn/rust/Cargo.toml")

    def test_rerun_is_noop(self, tmp_path: Path) -> None:
        path = _write(tmp_path, "ddk-ffi/Cargo.toml", CARGO.replace("1.1.9", "1.2.0"))
        before = path.stat().st_mtime_ns
        packages = _packages()[:1]

        result = sync_versions(
            project_root=tmp_path, version=V120, packages=packages, console=MockConsole()
        )

        assert isinstance(result, Ok)
        assert result.value.synced[0].changed is False
        assert path.stat().st_mtime_ns == before

    def test_missing_required_manifest(self, tmp_path: Path) -> None:
        console = MockConsole()
        result = sync_versions(
            project_root=tmp_path, version=V120, packages=_packages()[:1], console=console
        )

        assert isinstance(result, Err)
        assert result.error.kind == "manifest_not_found"
        assert "ddk-ffi/Cargo.toml" in result.error.message

    def test_manifest_without_version_names_file(self, tmp_path: Path) -> None:
        _write(tmp_path, "ddk-ffi/Cargo.toml", '[package]\nname = "ddk-ffi"\n')
        result = sync_versions(
            project_root=tmp_path, version=V120, packages=_packages()[:1], console=MockConsole()
        )

        assert isinstance(result, Err)
        assert result.error.kind == "manifest_invalid"
        assert result.error.message.startswith("ddk-ffi/Cargo.toml:")

    def test_version_written_as_given(self, tmp_path: Path) -> None:
        path = _write(tmp_path, "ddk-ffi/Cargo.toml", CARGO)
        version = parse_version("01.2.3").unwrap()

        result = sync_versions(
            project_root=tmp_path, version=version, packages=_packages()[:1], console=MockConsole()
        )

        assert isinstance(result, Ok)
        assert read_version(path.read_text(encoding="utf-8"), "toml") == "01.2.3"
