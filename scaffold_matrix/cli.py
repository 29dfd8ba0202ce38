"""Command-line entry point: ``scaffold-matrix`` / ``python -m scaffold_matrix``.

Besides running suites, the CLI exposes the maintenance tasks around a run:
writing and verifying the matrix artifact, listing suites, pruning the
dependency cache and removing generated projects.
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from collections.abc import Sequence
from pathlib import Path

from rich.markup import escape
from rich.table import Table

from .cache import DependencyCache
from .config import PROJECT_PREFIX, Config
from .matrix import MatrixEntry, generate, load_matrix_file, verify_matrix, write_matrix_file
from .process import format_command
from .runner import build_runner
from .scaffolder import build_scaffold_command, project_name_for
from .suites import (
    SUITES,
    SuiteOptions,
    SuiteSelectionError,
    build_suite_queue,
    count_skipped,
    select_entries,
)
from .utils import console, print_error, print_success, print_warning, remove_path, split_csv


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="scaffold-matrix",
        description="Scaffold, install and validate generated projects across a configuration matrix",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "Examples:\n"
            "  scaffold-matrix                         # functional suite\n"
            "  scaffold-matrix --framework react --database sqlite\n"
            "  scaffold-matrix --suite auth --limit 3 --dry-run\n"
            "  scaffold-matrix --provider neon         # implies --cloud\n"
            "  scaffold-matrix --write-matrix          # regenerate test-matrix.json\n"
            "  scaffold-matrix --prune-cache 14\n"
            "\n"
            "Framework and database filters auto-include their suites; combined with\n"
            "--suite or --all they drop other suites of the same kind.\n"
        ),
    )

    selection = parser.add_argument_group("suite selection")
    selection.add_argument("--suite", action="append", default=[], metavar="NAME",
                           help="Suite(s) to run; repeatable and comma-separated")
    selection.add_argument("--framework", action="append", default=[], metavar="NAME",
                           help="Filter or add framework suites (react, vue, svelte, html, htmx)")
    selection.add_argument("--database", action="append", default=[], metavar="NAME",
                           help="Filter or add database suites (sqlite, postgresql, mysql, mongodb)")
    selection.add_argument("--provider", action="append", default=[], metavar="NAME",
                           help="Restrict cloud providers (neon, planetscale, turso); implies --cloud")
    selection.add_argument("--auth", action="store_true", help="Include the auth suite")
    selection.add_argument("--cloud", action="store_true", help="Include the cloud provider suite")
    selection.add_argument("--all", action="store_true", help="Run every suite")
    selection.add_argument("--limit", type=int, default=None, metavar="N",
                           help="At most N scenarios per suite")
    selection.add_argument("--include-skipped", action="store_true",
                           help="Also queue entries annotated as skipped (reported, not run)")
    selection.add_argument("--matrix", default=None, metavar="PATH",
                           help="Read entries from a matrix file instead of generating them")

    run = parser.add_argument_group("run options")
    run.add_argument("--config", default=None, metavar="PATH", help="Load configuration from JSON")
    run.add_argument("--work-dir", default=None, metavar="DIR", help="Where projects are generated")
    run.add_argument("--ci", action="store_true", help="CI mode (sets CI=1 for child processes)")
    run.add_argument("--dry-run", action="store_true", help="Print the commands without running them")
    run.add_argument("--skip-build", action="store_true", help="Skip the typecheck step")
    run.add_argument("--skip-server", action="store_true", help="Skip the server checks")
    run.add_argument("--boot-server", action="store_true",
                     help="Start each dev server and wait for HTTP 200")
    run.add_argument("--report", default=None, metavar="PATH", help="Write the run summary as JSON")

    maintenance = parser.add_argument_group("maintenance")
    maintenance.add_argument("--list", action="store_true", help="List available suites")
    maintenance.add_argument("--clean", action="store_true",
                             help="Remove generated projects and the dependency cache")
    maintenance.add_argument("--write-matrix", nargs="?", const="", default=None, metavar="PATH",
                             help="Write the annotated matrix (default: test-matrix.json)")
    maintenance.add_argument("--verify-matrix", nargs="?", const="", default=None, metavar="PATH",
                             help="Check a matrix file for completeness and stale annotations")
    maintenance.add_argument("--prune-cache", type=float, default=None, metavar="DAYS",
                             help="Delete dependency cache entries older than DAYS")
    return parser


def config_from_args(args: argparse.Namespace) -> Config:
    """Environment/file configuration with command-line overrides applied."""
    config = Config.load(Path(args.config)) if args.config else Config.from_env()
    if args.work_dir:
        config.work_dir = Path(args.work_dir)
    if args.ci:
        config.ci_mode = True
    if args.skip_build:
        config.skip_build = True
    if args.skip_server:
        config.skip_server = True
    if args.boot_server:
        config.server_boot = True
    return config


# ---------------------------------------------------------------------------
# Maintenance commands
# ---------------------------------------------------------------------------


def list_suites() -> None:
    table = Table(title="Available Suites", show_header=True, header_style="bold cyan")
    table.add_column("Name", style="bold", no_wrap=True)
    table.add_column("Group", style="dim")
    table.add_column("Description")
    for suite in SUITES:
        extras = [
            f"{kind}: {', '.join(values)}"
            for kind, values in (
                ("frameworks", suite.frameworks),
                ("databases", suite.databases),
                ("providers", suite.providers),
            )
            if values
        ]
        description = suite.description + (f" ({'; '.join(extras)})" if extras else "")
        table.add_row(suite.name, suite.group, description)
    console.print(table)


def clean(config: Config) -> int:
    """Remove every generated project directory and the dependency cache."""
    removed = 0
    work_dir = config.work_dir
    if work_dir.is_dir():
        for child in sorted(work_dir.iterdir()):
            if child.is_dir() and child.name.startswith(PROJECT_PREFIX):
                remove_path(child)
                removed += 1
    cache = DependencyCache(config.cache_path)
    cache_removed = cache.clear()
    print_success(
        f"Removed {removed} generated project(s)"
        + (f" and the dependency cache at {config.cache_path}" if cache_removed else "")
    )
    return 0


def prune_cache(config: Config, days: float) -> int:
    removed = DependencyCache(config.cache_path).prune(max_age_days=days)
    if removed:
        print_success(f"Pruned {len(removed)} cache entr{'y' if len(removed) == 1 else 'ies'} older than {days:g} days")
        for key in removed:
            console.print(f"  - {key}")
    else:
        console.print(f"No cache entries older than {days:g} days")
    return 0


def write_matrix(path: Path) -> int:
    entries = generate()
    asyncio.run(write_matrix_file(entries, path))
    skipped = sum(1 for entry in entries if entry.skip)
    print_success(
        f"Wrote {len(entries)} entries to {path} ({len(entries) - skipped} runnable, {skipped} skipped)"
    )
    return 0


def verify_matrix_file(path: Path) -> int:
    try:
        entries = load_matrix_file(path)
    except (OSError, ValueError) as exc:
        print_error(f"Could not load {path}: {escape(str(exc))}")
        return 1
    problems = verify_matrix(entries)
    if problems:
        print_error(f"{path}: {len(problems)} problem(s)")
        for problem in problems:
            console.print(f"  - {escape(problem)}")
        return 1
    print_success(f"{path}: {len(entries)} entries, matrix is consistent")
    return 0


def print_dry_run(config: Config, entries: Sequence[MatrixEntry]) -> None:
    console.print("Dry run -- commands to execute:\n")
    for entry in entries:
        name = project_name_for(entry)
        console.print(f"[bold]{escape(entry.label())}[/bold]")
        if entry.skip:
            console.print(f"  [yellow]skipped[/yellow]: {escape(entry.skip_reason or '')}")
            continue
        console.print(f"  * {escape(format_command(build_scaffold_command(config.scaffold_command, name, entry)))}")
        console.print(f"  * (in {name}) {escape(format_command(config.install_command))}")
        if entry.required_env:
            console.print(f"    requires: {', '.join(entry.required_env)}")
    console.print("\nNo commands were executed.")


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main(argv: Sequence[str] | None = None) -> int:
    """Parse *argv*, run the requested action and return the exit code."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.limit is not None and args.limit < 1:
        parser.error("--limit must be at least 1")

    if args.list:
        list_suites()
        return 0

    try:
        config = config_from_args(args)
    except (OSError, ValueError) as exc:
        print_error(f"Invalid configuration: {escape(str(exc))}")
        return 2

    if args.clean:
        return clean(config)
    if args.prune_cache is not None:
        return prune_cache(config, args.prune_cache)
    if args.write_matrix is not None:
        return write_matrix(Path(args.write_matrix) if args.write_matrix else config.matrix_path)
    if args.verify_matrix is not None:
        return verify_matrix_file(Path(args.verify_matrix) if args.verify_matrix else config.matrix_path)

    options = SuiteOptions(
        suites=split_csv(args.suite),
        frameworks=split_csv(args.framework),
        databases=split_csv(args.database),
        providers=split_csv(args.provider),
        include_auth=args.auth,
        include_cloud=args.cloud,
        all=args.all,
    )
    try:
        queue = build_suite_queue(options)
    except SuiteSelectionError as exc:
        print_error(str(exc))
        return 2

    try:
        matrix = load_matrix_file(args.matrix) if args.matrix else generate()
    except (OSError, ValueError) as exc:
        print_error(f"Could not load matrix {args.matrix}: {escape(str(exc))}")
        return 1

    entries = select_entries(
        queue,
        matrix,
        providers=options.normalised().providers,
        limit=args.limit,
        include_skipped=args.include_skipped,
    )
    console.print(f"Suites: {', '.join(queue)} -> {len(entries)} scenario(s)")
    if not args.include_skipped:
        left_out = count_skipped(queue, matrix, providers=options.normalised().providers)
        if left_out:
            console.print(
                f"[dim]{left_out} skip-annotated combination(s) left out; "
                "pass --include-skipped to report them[/dim]"
            )
    if not entries:
        print_warning("No scenarios selected; nothing to run.")
        return 0

    if args.dry_run:
        print_dry_run(config, entries)
        return 0

    runner = build_runner(config)
    summary = asyncio.run(runner.run_all(entries))
    if args.report:
        summary.save(Path(args.report))
    return summary.exit_code


if __name__ == "__main__":
    sys.exit(main())
