"""Validation gates run before any binding work.

Gates run in package dependency order, so a broken core library fails the
release before binding-specific work begins. A required gate failure aborts
the pipeline; an optional gate failure is reported and the run continues
(some packages legitimately have no test suite on every host).
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from unirelease.core.config import Command, Config
from unirelease.core.result import Err, Ok, Result
from unirelease.output.console import ConsoleProtocol
from unirelease.platform.files import display_path
from unirelease.platform.process import format_command
from unirelease.platform.process import run_live as run_command
from unirelease.pipeline.errors import PipelineError


@dataclass(frozen=True, slots=True)
class Gate:
    package_id: str
    cwd: Path
    command: Command
    required: bool


@dataclass(frozen=True, slots=True)
class GateReport:
    passed: tuple[Gate, ...]
    warnings: tuple[str, ...]


def plan_gates(*, project_root: Path, config: Config) -> tuple[Gate, ...]:
    gates: list[Gate] = []
    for pkg in config.packages_in_dependency_order():
        pkg_dir = project_root / pkg.path
        for gate in pkg.gates:
            cwd = pkg_dir / gate.cwd if gate.cwd else pkg_dir
            gates.append(
                Gate(package_id=pkg.id, cwd=cwd, command=gate.command, required=gate.required)
            )
    return tuple(gates)


def run_gates(
    *,
    project_root: Path,
    gates: tuple[Gate, ...],
    console: ConsoleProtocol,
) -> Result[GateReport, PipelineError]:
    passed: list[Gate] = []
    warnings: list[str] = []

    for gate in gates:
        line = format_command(gate.command)
        console.info(f"{gate.package_id}: {line} (in {display_path(gate.cwd, project_root)})")
        console.command(line)

        result = run_command(list(gate.command), cwd=gate.cwd)
        if isinstance(result, Ok):
            passed.append(gate)
            continue

        error = result.error
        if gate.required:
            return Err(
                PipelineError(
                    kind="gate_failed",
                    message=f"{gate.package_id}: gate failed (exit {error.returncode})",
                    hint=error.stderr.strip() or None,
                    command=line,
                    returncode=error.returncode,
                )
            )

        message = f"{gate.package_id}: optional gate failed or unavailable ({line}, exit {error.returncode})"
        console.warning(message)
        warnings.append(message)

    return Ok(GateReport(passed=tuple(passed), warnings=tuple(warnings)))
