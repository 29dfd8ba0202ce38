"""Adapter around the external scaffolding generator.

The generator is a black box: it is invoked with a project name and one flag
per non-default axis value, and it succeeds when it exits 0 *and* leaves a
``package.json`` in the new project directory.
"""

from __future__ import annotations

import time
from collections.abc import Mapping, Sequence
from pathlib import Path

from .config import MANIFEST_FILENAME, PROJECT_PREFIX
from .matrix import MatrixEntry
from .process import run_process
from .results import StepOutcome
from .utils import preview_lines, remove_path, sanitize_name


def project_name_for(entry: MatrixEntry) -> str:
    """Deterministic, filesystem-safe project directory name for *entry*.

    Example::

        react/sqlite/drizzle/none/absoluteAuth, eslint+prettier, tailwind
        -> "test-matrix-react-sqlite-drizzle-none-absoluteauth-eslint-prettier-default-tw"
    """
    parts = [
        entry.frontend,
        entry.database_engine,
        entry.orm,
        entry.database_host,
        entry.auth_provider,
    ]
    if entry.code_quality_tool != "none":
        parts.append(entry.code_quality_tool)
    parts.append(entry.directory_config)
    parts.append("tw" if entry.use_tailwind else "notw")
    return PROJECT_PREFIX + sanitize_name("-".join(parts))


def build_scaffold_command(
    base_command: Sequence[str], project_name: str, entry: MatrixEntry
) -> list[str]:
    """Generator invocation for *entry*; ``--skip`` disables interactive prompts."""
    cmd = [*base_command, project_name, "--skip", f"--{entry.frontend}"]

    if entry.database_engine != "none":
        cmd.extend(["--db", entry.database_engine])
    if entry.orm != "none":
        cmd.extend(["--orm", entry.orm])
    if entry.database_host != "none":
        cmd.extend(["--db-host", entry.database_host])
    if entry.auth_provider != "none":
        cmd.extend(["--auth", entry.auth_provider])
    if entry.code_quality_tool == "eslint+prettier":
        cmd.append("--eslint+prettier")
    if entry.use_tailwind:
        cmd.append("--tailwind")
    if entry.directory_config == "custom":
        cmd.extend(["--directory", "custom"])

    return cmd


class Scaffolder:
    """Runs the generator for one matrix entry.

    Args:
        base_command: Generator executable and leading arguments,
            e.g. ``["bun", "run", "src/index.ts"]``.
        cwd: Directory the generator runs in; projects are created there.
        timeout: Budget for one generator run, in seconds.
        grace_delay: SIGTERM -> SIGKILL delay on timeout.
        preview_lines: Output lines kept in failure messages.
        env: Extra environment for the generator.
    """

    def __init__(
        self,
        base_command: Sequence[str],
        cwd: str | Path,
        timeout: float = 120.0,
        grace_delay: float = 1.0,
        preview_lines: int = 20,
        env: Mapping[str, str] | None = None,
    ) -> None:
        self.base_command = list(base_command)
        self.cwd = Path(cwd)
        self.timeout = timeout
        self.grace_delay = grace_delay
        self.preview_lines = preview_lines
        self.env = dict(env or {})

    def command_for(self, entry: MatrixEntry, project_path: Path) -> list[str]:
        return build_scaffold_command(self.base_command, project_path.name, entry)

    async def scaffold(self, entry: MatrixEntry, project_path: str | Path) -> StepOutcome:
        """Generate the project for *entry* at *project_path*.

        Any leftover directory from a previous run is removed first so the
        generator never sees stale files.
        """
        project = Path(project_path)
        start = time.monotonic()
        remove_path(project)

        result = await run_process(
            self.command_for(entry, project),
            cwd=self.cwd,
            env=self.env,
            timeout=self.timeout,
            grace_delay=self.grace_delay,
        )
        elapsed = time.monotonic() - start

        if result.timed_out:
            return StepOutcome(
                step="scaffold",
                success=False,
                elapsed=elapsed,
                timed_out=True,
                errors=[f"Scaffolding timed out after {self.timeout:g} seconds"],
            )

        if not result.ok:
            message = f"Scaffold command {result.describe()}"
            preview = preview_lines(result.stderr or result.stdout, self.preview_lines)
            if preview:
                message = f"{message}\n{preview}"
            return StepOutcome(step="scaffold", success=False, elapsed=elapsed, errors=[message])

        if not (project / MANIFEST_FILENAME).is_file():
            return StepOutcome(
                step="scaffold",
                success=False,
                elapsed=elapsed,
                errors=[f"{MANIFEST_FILENAME} not found after scaffolding"],
            )

        return StepOutcome(step="scaffold", success=True, elapsed=elapsed)
