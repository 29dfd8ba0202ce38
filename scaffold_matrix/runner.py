"""Scenario runner.

Drives one matrix entry through a fixed sequence of states::

    PENDING -> SCAFFOLDING -> INSTALLING_DEPENDENCIES -> FUNCTIONAL_CHECKS
            -> DATABASE_VALIDATION -> CLEANUP -> DONE

Skipped entries (constraint violations or missing credentials) jump straight
from ``PENDING`` to ``DONE`` without touching the filesystem.  A failing stage
short-circuits the remaining stages, but ``CLEANUP`` always runs: it tears
down any database container a validator started and removes the project
directory.  Cleanup problems become warnings and never fail a scenario.

Scenarios run strictly one after another.
"""

from __future__ import annotations

import functools
import os
import time
import traceback
from collections.abc import Callable, Iterable, Mapping, Sequence
from enum import Enum
from pathlib import Path
from typing import Optional

from rich.markup import escape
from rich.panel import Panel

from .cache import DependencyCache, DependencyFingerprint, DependencyInstallError
from .config import MANIFEST_FILENAME, Config
from .matrix import MatrixEntry
from .readiness import ReadinessPoller
from .results import RunSummary, ScenarioResult, StepOutcome
from .scaffolder import Scaffolder, project_name_for
from .utils import (
    console,
    format_duration,
    print_error,
    print_header,
    print_step,
    print_step_result,
    print_success,
    print_summary_table,
    print_warning,
    remove_path,
)
from .validators import (
    BuildValidator,
    DatabaseValidator,
    FunctionalChecks,
    ServerValidator,
    StructureValidator,
    Validator,
    database_validator_for,
)

DatabaseValidatorFactory = Callable[[MatrixEntry], Optional[DatabaseValidator]]


class ScenarioState(str, Enum):
    PENDING = "pending"
    SCAFFOLDING = "scaffolding"
    INSTALLING_DEPENDENCIES = "installing_dependencies"
    FUNCTIONAL_CHECKS = "functional_checks"
    DATABASE_VALIDATION = "database_validation"
    CLEANUP = "cleanup"
    DONE = "done"


def fingerprint_for(entry: MatrixEntry) -> DependencyFingerprint:
    """Fields of *entry* that decide which packages get installed."""
    return DependencyFingerprint(
        frontend=entry.frontend,
        database_engine=entry.database_engine,
        orm=entry.orm,
        database_host=entry.database_host,
        auth_provider=entry.auth_provider,
        use_tailwind=entry.use_tailwind,
        code_quality_tool=entry.code_quality_tool,
    )


def missing_env(entry: MatrixEntry, environ: Mapping[str, str]) -> list[str]:
    return [name for name in entry.required_env if not environ.get(name)]


class ScenarioRunner:
    """Runs matrix entries through scaffold, install, checks and cleanup.

    Args:
        config: Harness configuration (work directory, error display limits).
        cache: Dependency cache used for the install stage.
        scaffolder: Generator adapter.
        functional_checks: Validator run in the ``FUNCTIONAL_CHECKS`` state.
        database_validator_factory: Returns the validator for an entry's
            database engine, or ``None`` when the engine has none.
        environ: Environment consulted for ``required_env``; defaults to
            ``os.environ``.
    """

    def __init__(
        self,
        config: Config,
        cache: DependencyCache,
        scaffolder: Scaffolder,
        functional_checks: Validator,
        database_validator_factory: DatabaseValidatorFactory | None = None,
        environ: Mapping[str, str] | None = None,
    ) -> None:
        self.config = config
        self.cache = cache
        self.scaffolder = scaffolder
        self.functional_checks = functional_checks
        self.database_validator_factory = database_validator_factory or (lambda entry: None)
        self.environ = environ if environ is not None else os.environ

    # ------------------------------------------------------------------
    # Single scenario
    # ------------------------------------------------------------------

    async def run_scenario(
        self, entry: MatrixEntry, index: int | None = None, total: int | None = None
    ) -> ScenarioResult:
        """Run one entry to ``DONE`` and return its result.  Never raises."""
        start = time.monotonic()
        result = ScenarioResult(entry=entry, project_name=project_name_for(entry))
        result.states.append(ScenarioState.PENDING.value)

        position = f"[{index}/{total}] " if index is not None and total is not None else ""
        console.print(f"\n[bold]{escape(position)}{escape(entry.label())}[/bold]")

        skip_reason: str | None = None
        if entry.skip:
            skip_reason = entry.skip_reason or "marked as skipped in the matrix"
        else:
            missing = missing_env(entry, self.environ)
            if missing:
                skip_reason = f"missing required environment variables: {', '.join(missing)}"

        if skip_reason is not None:
            result.skipped = True
            result.skip_reason = skip_reason
            result.states.append(ScenarioState.DONE.value)
            console.print(f"  [yellow]skipped[/yellow]: {escape(skip_reason)}")
            return result

        project = self.config.project_path(result.project_name)
        services: list[DatabaseValidator] = []
        try:
            await self._run_stages(entry, project, result, services)
        except Exception as exc:
            result.errors.append(f"Unexpected error: {exc}")
            console.print(f"[dim]{escape(traceback.format_exc())}[/dim]")
        finally:
            result.states.append(ScenarioState.CLEANUP.value)
            cleanup_warnings = await self._cleanup(project, services)
            for warning in cleanup_warnings:
                print_warning(f"  {escape(warning)}")
            result.warnings.extend(cleanup_warnings)

        result.passed = not result.errors and result.all_steps_passed
        result.states.append(ScenarioState.DONE.value)
        result.elapsed = time.monotonic() - start

        if result.passed:
            print_success(f"  PASS ({format_duration(result.elapsed)})")
        else:
            print_error(f"  FAIL ({format_duration(result.elapsed)})")
        return result

    async def _run_stages(
        self,
        entry: MatrixEntry,
        project: Path,
        result: ScenarioResult,
        services: list[DatabaseValidator],
    ) -> None:
        # Scaffold
        result.states.append(ScenarioState.SCAFFOLDING.value)
        print_step("Scaffolding project")
        outcome = await self.scaffolder.scaffold(entry, project)
        self._finish_step(result, outcome)
        if not outcome.success:
            return

        # Install (cache-aware)
        result.states.append(ScenarioState.INSTALLING_DEPENDENCIES.value)
        print_step("Installing dependencies")
        outcome = await self._install(entry, project)
        self._finish_step(result, outcome)
        if not outcome.success:
            return

        # Functional checks
        result.states.append(ScenarioState.FUNCTIONAL_CHECKS.value)
        print_step("Running functional checks")
        check_start = time.monotonic()
        validation = await self.functional_checks.validate(project, entry)
        outcome = StepOutcome.from_messages(
            "functional", validation.errors, validation.warnings, time.monotonic() - check_start
        )
        self._finish_step(result, outcome)
        if not outcome.success:
            return

        # Database
        if entry.database_engine == "none":
            return
        result.states.append(ScenarioState.DATABASE_VALIDATION.value)
        print_step(f"Validating {entry.database_engine} database")
        db_start = time.monotonic()
        validator = self.database_validator_factory(entry)
        if validator is None:
            outcome = StepOutcome.from_messages(
                "database", [], [f"No database validator for engine {entry.database_engine}"]
            )
        else:
            services.append(validator)
            validation = await validator.validate(project, entry)
            outcome = StepOutcome.from_messages(
                "database", validation.errors, validation.warnings, time.monotonic() - db_start
            )
        self._finish_step(result, outcome)

    async def _install(self, entry: MatrixEntry, project: Path) -> StepOutcome:
        start = time.monotonic()
        try:
            resolution = await self.cache.resolve(
                project, fingerprint_for(entry), project / MANIFEST_FILENAME
            )
        except DependencyInstallError as exc:
            return StepOutcome(
                step="install",
                success=False,
                elapsed=time.monotonic() - start,
                timed_out=exc.timed_out,
                errors=[str(exc)],
            )
        return StepOutcome(
            step="install",
            success=True,
            elapsed=resolution.elapsed,
            detail="cached" if resolution.cached else "installed",
        )

    def _finish_step(self, result: ScenarioResult, outcome: StepOutcome) -> None:
        result.record(outcome)
        detail = format_duration(outcome.elapsed)
        if outcome.detail:
            detail = f"{outcome.detail}, {detail}"
        print_step_result(outcome.success, detail)
        for warning in outcome.warnings:
            print_warning(f"     {escape(warning)}")

    async def _cleanup(self, project: Path, services: Sequence[DatabaseValidator]) -> list[str]:
        """Stop started services and delete the project.  Returns warnings; never raises."""
        warnings: list[str] = []
        for service in reversed(services):
            try:
                warnings.extend(await service.teardown())
            except Exception as exc:
                warnings.append(f"Teardown of {service.name} failed: {exc}")
        try:
            remove_path(project)
        except OSError as exc:
            warnings.append(f"Failed to remove {project}: {exc}")
        return warnings

    # ------------------------------------------------------------------
    # Whole run
    # ------------------------------------------------------------------

    async def run_all(self, entries: Iterable[MatrixEntry]) -> RunSummary:
        """Run *entries* sequentially and print the summary."""
        queue = list(entries)
        start = time.monotonic()
        print_header(f"Running {len(queue)} scenario(s)")

        summary = RunSummary()
        for index, entry in enumerate(queue, start=1):
            summary.results.append(await self.run_scenario(entry, index, len(queue)))
        summary.elapsed = time.monotonic() - start

        self.print_summary(summary)
        return summary

    def print_summary(self, summary: RunSummary) -> None:
        print_header("Summary")
        print_summary_table(
            {
                "Total": str(summary.total),
                "Passed": str(summary.passed),
                "Failed": str(summary.failed),
                "Skipped": str(summary.skipped),
                "Success rate": f"{summary.success_rate:.1f}%",
                "Duration": format_duration(summary.elapsed),
            },
            title="Scenario Results",
        )

        failures = summary.failures()
        if failures:
            limit = self.config.max_errors_displayed
            for failed in failures:
                console.print(f"[red]x[/red] {escape(failed.entry.label())}")
                for error in failed.errors[:limit]:
                    first_line = error.splitlines()[0] if error else error
                    console.print(f"    - {escape(first_line)}")
                if len(failed.errors) > limit:
                    console.print(f"    ... and {len(failed.errors) - limit} more")

        status = "[bold green]ALL PASSED[/bold green]" if summary.failed == 0 else "[bold red]FAILURES[/bold red]"
        console.print(
            Panel(
                f"{status}\n"
                f"{summary.passed} passed, {summary.failed} failed, {summary.skipped} skipped "
                f"in {format_duration(summary.elapsed)}",
                title="[bold]Scaffold Matrix[/bold]",
                border_style="green" if summary.failed == 0 else "red",
            )
        )


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------


def build_runner(config: Config, environ: Mapping[str, str] | None = None) -> ScenarioRunner:
    """Construct a runner with the default collaborators for *config*."""
    env = config.child_env()
    grace = config.timeouts.grace_delay
    poller = ReadinessPoller(
        max_attempts=config.readiness.max_attempts,
        interval=config.readiness.interval,
        attempt_timeout=config.readiness.attempt_timeout,
        grace_delay=grace,
    )
    cache = DependencyCache(
        config.cache_path,
        install_command=config.install_command,
        install_timeout=config.timeouts.install,
        preview_lines=config.preview_lines,
        grace_delay=grace,
        env=env,
    )
    scaffolder = Scaffolder(
        config.scaffold_command,
        cwd=config.work_dir,
        timeout=config.timeouts.scaffold,
        grace_delay=grace,
        preview_lines=config.preview_lines,
        env=env,
    )

    validators: list[Validator] = [StructureValidator()]
    if not config.skip_build:
        validators.append(
            BuildValidator(
                config.package_manager,
                timeout=config.timeouts.build,
                grace_delay=grace,
                preview_lines=config.preview_lines,
                env=env,
            )
        )
    if not config.skip_server:
        validators.append(
            ServerValidator(
                config.package_manager,
                boot=config.server_boot,
                port=config.server_port,
                poller=poller,
                grace_delay=grace,
                env=env,
            )
        )

    factory = functools.partial(
        database_validator_for,
        poller=poller,
        timeout=config.timeouts.database,
        grace_delay=grace,
        preview_lines=config.preview_lines,
        env=env,
    )
    return ScenarioRunner(
        config,
        cache,
        scaffolder,
        FunctionalChecks(validators),
        database_validator_factory=factory,
        environ=environ,
    )
