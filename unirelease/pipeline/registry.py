"""Package registry client (npm CLI).

Publishing is the only irreversible registry operation and is never retried.
Reads (`whoami`, `view`) are side-effect free.
"""

from __future__ import annotations

from pathlib import Path

from unirelease.core.config import PublishConfig
from unirelease.core.result import Err, Ok, Result
from unirelease.platform.process import format_command
from unirelease.platform.process import run as run_process
from unirelease.pipeline.errors import PipelineError
from unirelease.pipeline.timeouts import PUBLISH_TIMEOUT_SECONDS, REGISTRY_TIMEOUT_SECONDS


def package_url(publish: PublishConfig, version: str) -> str:
    return f"https://www.npmjs.com/package/{publish.name}/v/{version}"


def ensure_registry_auth(*, cwd: Path, publish: PublishConfig) -> Result[str, PipelineError]:
    """Return the logged-in user, or fail with login guidance."""
    cmd = ["npm", "whoami"]
    result = run_process(cmd, cwd=cwd, timeout=REGISTRY_TIMEOUT_SECONDS)
    if isinstance(result, Err):
        return Err(
            PipelineError(
                kind="publish_auth_required",
                message=f"not authenticated with {publish.registry} (needed for {publish.name})",
                hint="Run: npm login",
                command=format_command(cmd),
                returncode=result.error.returncode,
            )
        )
    return Ok(result.value.strip())


def publish_package(
    *, package_dir: Path, publish: PublishConfig
) -> Result[None, PipelineError]:
    cmd = ["npm", "publish", *publish.args]
    result = run_process(cmd, cwd=package_dir, timeout=PUBLISH_TIMEOUT_SECONDS)
    if isinstance(result, Err):
        e = result.error
        return Err(
            PipelineError(
                kind="publish_failed",
                message=f"failed to publish {publish.name}",
                hint=e.stderr.strip() or e.stdout.strip() or None,
                command=format_command(cmd),
                returncode=e.returncode,
            )
        )
    return Ok(None)


def published_version(*, cwd: Path, publish: PublishConfig, version: str) -> Result[str, PipelineError]:
    """The version the registry reports for `name@version`; empty while not visible.

    Independent of dist-tags, so a prerelease published under `next` resolves too.
    """
    cmd = ["npm", "view", f"{publish.name}@{version}", "version"]
    result = run_process(cmd, cwd=cwd, timeout=REGISTRY_TIMEOUT_SECONDS)
    if isinstance(result, Err):
        return Err(
            PipelineError(
                kind="propagation_mismatch",
                message=f"could not query {publish.name}",
                hint=result.error.stderr.strip() or None,
                command=format_command(cmd),
                returncode=result.error.returncode,
            )
        )
    return Ok(result.value.strip())
