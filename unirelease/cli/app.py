from __future__ import annotations

from pathlib import Path
from typing import NoReturn

import typer

from unirelease import __version__
from unirelease.core.config import DEFAULT_CONFIG_NAME, Config
from unirelease.core.errors import ErrorCode
from unirelease.core.result import Err
from unirelease.output.console import ConsoleProtocol, RichConsole, Style
from unirelease.pipeline.controller import PipelineReport, load_release_config, run_pipeline
from unirelease.pipeline.registry import package_url
from unirelease.pipeline.version import parse_version


app = typer.Typer(
    add_completion=False,
    rich_markup_mode="rich",
    context_settings={"help_option_names": ["-h", "--help"]},
)


def build_console() -> ConsoleProtocol:
    return RichConsole()


def _exit(err: str, *, hint: str | None = None) -> NoReturn:
    typer.echo(f"error: {err}", err=True)
    if hint:
        typer.echo(hint, err=True)
    raise typer.Exit(code=int(ErrorCode.FAILURE))


def _resolve_root(root: Path | None) -> Path:
    try:
        resolved = (root or Path.cwd()).expanduser().resolve()
    except OSError as e:
        _exit(f"invalid --root: {e}")
    if not resolved.is_dir():
        _exit(f"--root '{resolved}' is not a directory")
    return resolved


def _load(root: Path, config_path: Path | None) -> Config:
    path = config_path.expanduser() if config_path is not None else root / DEFAULT_CONFIG_NAME
    result = load_release_config(path)
    if isinstance(result, Err):
        _exit(result.error.message, hint=result.error.hint)
    return result.value


@app.command()
def release(
    version: str | None = typer.Argument(
        None,
        metavar="VERSION",
        help="Version to release: X.Y.Z or X.Y.Z-tag (e.g. 1.2.0, 1.2.0-beta.1).",
        show_default=False,
    ),
    root: Path | None = typer.Option(
        None,
        "--root",
        help="Project root (default: current directory).",
    ),
    config_path: Path | None = typer.Option(
        None,
        "--config",
        help=f"Release config (default: <root>/{DEFAULT_CONFIG_NAME}).",
    ),
    keep_artifacts: bool = typer.Option(
        False,
        "--keep-artifacts",
        help="Keep the packaged artifacts directory after a successful release.",
    ),
    show_version: bool = typer.Option(
        False,
        "--version",
        help="Show version and exit.",
        is_eager=True,
    ),
) -> None:
    """Sync versions, build, package, tag and publish every package in one run.

    [bold]Example:[/bold] unirelease 1.2.0
    """
    if show_version:
        typer.echo(__version__)
        raise typer.Exit(code=int(ErrorCode.OK))

    if version is None:
        _exit("missing version", hint="Usage: unirelease <version>  (e.g. unirelease 1.2.0)")

    parsed = parse_version(version)
    if isinstance(parsed, Err):
        _exit(parsed.error.message, hint=parsed.error.hint)

    project_root = _resolve_root(root)
    config = _load(project_root, config_path)
    console = build_console()

    report = run_pipeline(
        project_root=project_root,
        config=config,
        version=version,
        console=console,
        keep_artifacts=keep_artifacts,
    )

    if report.error is None:
        _print_summary(console, config=config, report=report)
    raise typer.Exit(code=int(report.exit_code))


def _print_summary(console: ConsoleProtocol, *, config: Config, report: PipelineReport) -> None:
    record = report.record
    console.header("Release complete")
    if record is None:
        return

    console.success(f"{record.git_tag} released")
    console.print(f"release: {record.release_id}")
    for pkg in config.publishable():
        if pkg.publish is not None:
            console.print(f"{pkg.publish.name}: {package_url(pkg.publish, record.version)}")
    for artifact in record.artifacts:
        console.print(f"asset: {artifact.label}", Style.DIM)
    for warning in report.warnings:
        console.print(f"warning: {warning}", Style.WARNING)


def main() -> None:
    app()
