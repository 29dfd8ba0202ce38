"""Framework-independent functional checks.

Three checks run in order over every scaffolded project:

* :class:`StructureValidator` -- project directory and manifest exist.
* :class:`BuildValidator` -- the ``typecheck`` script compiles cleanly.
* :class:`ServerValidator` -- the backend entry point and ``dev`` script are
  present; optionally the dev server is booted and polled over HTTP.

:class:`FunctionalChecks` aggregates them into one :class:`ValidationResult`.
"""

from __future__ import annotations

import re
from collections.abc import Mapping, Sequence
from pathlib import Path

from ..config import MANIFEST_FILENAME
from ..matrix import MatrixEntry
from ..process import BackgroundProcess, format_command, run_process
from ..readiness import ReadinessPoller
from ..results import ValidationResult
from ..utils import preview_lines
from .base import ManifestError, Validator, manifest_script, read_manifest

TYPECHECK_SCRIPT = "typecheck"
DEV_SCRIPT = "dev"
SERVER_ENTRY = Path("src") / "backend" / "server.ts"
SERVER_MARKER = "new Elysia()"

_COMPILER_ERROR_PATTERNS = ("error TS", "error:")
_COMPILER_LOCATION = re.compile(r"^[^(]+\(\d+,\d+\):")


def extract_compiler_errors(output: str, max_lines: int = 15) -> str:
    """Pick the diagnostic lines out of compiler output.

    Falls back to a plain preview when no line looks like a diagnostic.
    """
    lines = [line.strip() for line in output.splitlines() if line.strip()]
    relevant = [
        line
        for line in lines
        if any(pattern in line for pattern in _COMPILER_ERROR_PATTERNS)
        or _COMPILER_LOCATION.match(line)
    ]
    if relevant:
        return "\n".join(relevant[:max_lines])
    return preview_lines(output, max_lines)


class StructureValidator(Validator):
    name = "structure"

    async def validate(self, project_path: Path, entry: MatrixEntry) -> ValidationResult:
        project = Path(project_path)
        if not project.exists():
            return ValidationResult.from_messages([f"Project directory not found: {project}"])
        if not project.is_dir():
            return ValidationResult.from_messages([f"Project path is not a directory: {project}"])
        if not (project / MANIFEST_FILENAME).is_file():
            return ValidationResult.from_messages([f"{MANIFEST_FILENAME} not found: {project}"])
        return ValidationResult()


class BuildValidator(Validator):
    """Runs ``<package manager> run typecheck`` under a timeout."""

    name = "build"

    def __init__(
        self,
        package_manager: str = "bun",
        timeout: float = 60.0,
        grace_delay: float = 1.0,
        preview_lines: int = 15,
        env: Mapping[str, str] | None = None,
    ) -> None:
        self.package_manager = package_manager
        self.timeout = timeout
        self.grace_delay = grace_delay
        self.preview_lines = preview_lines
        self.env = dict(env or {})

    async def validate(self, project_path: Path, entry: MatrixEntry) -> ValidationResult:
        project = Path(project_path)
        if not (project / "tsconfig.json").is_file():
            return ValidationResult.from_messages([f"tsconfig.json not found: {project / 'tsconfig.json'}"])

        try:
            manifest = read_manifest(project)
        except ManifestError as exc:
            return ValidationResult.from_messages([str(exc)])
        if manifest_script(manifest, TYPECHECK_SCRIPT) is None:
            return ValidationResult.from_messages(
                [f"No '{TYPECHECK_SCRIPT}' script found in {MANIFEST_FILENAME}"]
            )

        cmd = [self.package_manager, "run", TYPECHECK_SCRIPT]
        result = await run_process(
            cmd, cwd=project, env=self.env, timeout=self.timeout, grace_delay=self.grace_delay
        )
        if result.ok:
            return ValidationResult()
        if result.timed_out:
            return ValidationResult.from_messages(
                [f"TypeScript compilation timed out after {self.timeout:g} seconds"]
            )
        if result.spawn_failed:
            return ValidationResult.from_messages([f"Could not run '{format_command(cmd)}': {result.stderr}"])

        output = result.combined_output
        if output:
            return ValidationResult.from_messages(
                [f"Compilation errors:\n{extract_compiler_errors(output, self.preview_lines)}"]
            )
        return ValidationResult.from_messages(
            [f"TypeScript compilation failed (exit code {result.exit_code})"]
        )


class ServerValidator(Validator):
    """Checks the backend entry point; optionally boots the dev server.

    With ``boot=True`` the ``dev`` script is started in the background with
    ``PORT`` set, and the poller waits for ``http://localhost:<port>/`` to
    answer 200 before the server is stopped again.
    """

    name = "server"

    def __init__(
        self,
        package_manager: str = "bun",
        boot: bool = False,
        port: int = 3000,
        poller: ReadinessPoller | None = None,
        grace_delay: float = 1.0,
        env: Mapping[str, str] | None = None,
    ) -> None:
        self.package_manager = package_manager
        self.boot = boot
        self.port = port
        self.poller = poller or ReadinessPoller()
        self.grace_delay = grace_delay
        self.env = dict(env or {})

    @property
    def url(self) -> str:
        return f"http://localhost:{self.port}/"

    async def validate(self, project_path: Path, entry: MatrixEntry) -> ValidationResult:
        project = Path(project_path)
        server_file = project / SERVER_ENTRY
        if not server_file.is_file():
            return ValidationResult.from_messages([f"Server file not found: {server_file}"])

        try:
            manifest = read_manifest(project)
        except ManifestError as exc:
            return ValidationResult.from_messages([str(exc)])
        if manifest_script(manifest, DEV_SCRIPT) is None:
            return ValidationResult.from_messages([f"No '{DEV_SCRIPT}' script found in {MANIFEST_FILENAME}"])

        try:
            source = server_file.read_text(encoding="utf-8")
        except OSError as exc:
            return ValidationResult.from_messages([f"Failed to read server file: {exc}"])
        if SERVER_MARKER not in source:
            return ValidationResult.from_messages(["Server file missing Elysia initialization"])

        if not self.boot:
            return ValidationResult()
        return await self._boot(project)

    async def _boot(self, project: Path) -> ValidationResult:
        cmd = [self.package_manager, "run", DEV_SCRIPT]
        env = {**self.env, "PORT": str(self.port)}
        async with BackgroundProcess(cmd, cwd=project, env=env, grace_delay=self.grace_delay) as server:
            if server.start_error is not None:
                return ValidationResult.from_messages([server.start_error])
            ready = await self.poller.wait_for_http(self.url)

        if not ready:
            return ValidationResult.from_messages(
                [f"Dev server did not answer on {self.url} after {self.poller.max_attempts} attempts"]
            )
        return ValidationResult()


class FunctionalChecks(Validator):
    """Runs validators in order and concatenates their findings.

    A failing structure check stops the sequence: nothing else can be
    checked without a project directory and manifest.
    """

    name = "functional"

    def __init__(self, validators: Sequence[Validator]) -> None:
        self.validators = list(validators)

    async def validate(self, project_path: Path, entry: MatrixEntry) -> ValidationResult:
        combined = ValidationResult()
        for validator in self.validators:
            result = await validator.validate(project_path, entry)
            combined = combined.merge(result)
            if isinstance(validator, StructureValidator) and not result.passed:
                break
        return combined
