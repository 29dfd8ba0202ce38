"""Named suites: curated slices of the configuration matrix.

A suite is a predicate over matrix entries plus some metadata for ``--list``.
:func:`build_suite_queue` turns command-line selections into an ordered list
of suite names and :func:`select_entries` turns that list into the entries
to run.

Queue rules:

* ``--all`` adds every suite in registry order.
* Explicit ``--suite`` names follow, then the suite matching each
  ``--framework`` / ``--database`` filter, then ``auth`` and ``cloud``.
* With nothing selected the ``functional`` suite runs.
* Framework and database filters also drop suites of their group that do not
  match the filter, so ``--all --framework react`` runs ``react`` but not
  ``vue``.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any, Literal

from .matrix import HOST_REQUIRED_ENV, MatrixEntry

SuiteGroup = Literal["core", "framework", "database", "cloud", "auth"]

KNOWN_FRAMEWORKS: tuple[str, ...] = ("react", "vue", "svelte", "html", "htmx")
KNOWN_DATABASES: tuple[str, ...] = ("sqlite", "postgresql", "mysql", "mongodb")
KNOWN_PROVIDERS: tuple[str, ...] = tuple(HOST_REQUIRED_ENV)


class SuiteSelectionError(ValueError):
    """Raised for unknown suite, framework, database or provider names."""


@dataclass(frozen=True)
class Suite:
    name: str
    label: str
    group: SuiteGroup
    description: str
    selector: Callable[[MatrixEntry, Sequence[str]], bool]
    frameworks: tuple[str, ...] = ()
    databases: tuple[str, ...] = ()
    providers: tuple[str, ...] = ()

    def matches(self, entry: MatrixEntry, providers: Sequence[str] = ()) -> bool:
        return self.selector(entry, providers)


# ---------------------------------------------------------------------------
# Selectors
# ---------------------------------------------------------------------------


def _is_baseline(entry: MatrixEntry, providers: Sequence[str]) -> bool:
    """One plain project per frontend: no database, auth, linting or tailwind."""
    return (
        entry.database_engine == "none"
        and entry.auth_provider == "none"
        and entry.code_quality_tool == "none"
        and entry.directory_config == "default"
        and not entry.use_tailwind
    )


def _frontend_is(frontend: str) -> Callable[[MatrixEntry, Sequence[str]], bool]:
    def _select(entry: MatrixEntry, providers: Sequence[str]) -> bool:
        return entry.frontend == frontend

    return _select


def _engine_is(engine: str) -> Callable[[MatrixEntry, Sequence[str]], bool]:
    def _select(entry: MatrixEntry, providers: Sequence[str]) -> bool:
        return entry.database_engine == engine and entry.directory_config == "default"

    return _select


def _on_cloud_host(entry: MatrixEntry, providers: Sequence[str]) -> bool:
    allowed = providers or KNOWN_PROVIDERS
    return entry.database_host in allowed


def _has_auth(entry: MatrixEntry, providers: Sequence[str]) -> bool:
    return entry.auth_provider != "none"


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


SUITES: tuple[Suite, ...] = (
    Suite(
        name="functional",
        label="Functional core",
        group="core",
        description="Scaffold, install, build and server checks for every frontend.",
        selector=_is_baseline,
    ),
    *(
        Suite(
            name=framework,
            label=f"{label} suite",
            group="framework",
            description=f"Runs the full {label} matrix.",
            selector=_frontend_is(framework),
            frameworks=(framework,),
        )
        for framework, label in (
            ("react", "React"),
            ("vue", "Vue"),
            ("svelte", "Svelte"),
            ("html", "HTML"),
            ("htmx", "HTMX"),
        )
    ),
    *(
        Suite(
            name=engine,
            label=f"{label} suite",
            group="database",
            description=f"Runs {label} database validations ({hosts}).",
            selector=_engine_is(engine),
            databases=(engine,),
        )
        for engine, label, hosts in (
            ("sqlite", "SQLite", "local + Turso"),
            ("postgresql", "PostgreSQL", "local + Neon/PlanetScale"),
            ("mysql", "MySQL", "local + PlanetScale"),
            ("mongodb", "MongoDB", "local"),
        )
    ),
    Suite(
        name="cloud",
        label="Cloud providers",
        group="cloud",
        description="Runs supported cloud provider combinations.",
        selector=_on_cloud_host,
        providers=KNOWN_PROVIDERS,
    ),
    Suite(
        name="auth",
        label="Auth suite",
        group="auth",
        description="Runs absoluteAuth matrix validations.",
        selector=_has_auth,
    ),
)

SUITE_MAP: dict[str, Suite] = {suite.name: suite for suite in SUITES}


# ---------------------------------------------------------------------------
# Queue building
# ---------------------------------------------------------------------------


@dataclass
class SuiteOptions:
    """Suite-related command-line selections."""

    suites: list[str] = field(default_factory=list)
    frameworks: list[str] = field(default_factory=list)
    databases: list[str] = field(default_factory=list)
    providers: list[str] = field(default_factory=list)
    include_auth: bool = False
    include_cloud: bool = False
    all: bool = False

    def normalised(self) -> "SuiteOptions":
        """Lowercased copy; a provider filter implies ``include_cloud``."""
        providers = [p.lower() for p in self.providers]
        return SuiteOptions(
            suites=[s.lower() for s in self.suites],
            frameworks=[f.lower() for f in self.frameworks],
            databases=[d.lower() for d in self.databases],
            providers=providers,
            include_auth=self.include_auth,
            include_cloud=self.include_cloud or bool(providers),
            all=self.all,
        )


def _check_known(kind: str, values: Iterable[str], known: Sequence[str]) -> None:
    for value in values:
        if value not in known:
            raise SuiteSelectionError(f"Unknown {kind}: {value} (expected one of {', '.join(known)})")


def _suite_for(group: str, attribute: str, value: str) -> Suite | None:
    for suite in SUITES:
        if suite.group == group and value in getattr(suite, attribute):
            return suite
    return None


def _passes_filters(suite: Suite, frameworks: set[str], databases: set[str]) -> bool:
    if suite.group == "framework" and frameworks:
        return any(f in frameworks for f in suite.frameworks)
    if suite.group == "database" and databases:
        return any(d in databases for d in suite.databases)
    return True


def build_suite_queue(options: SuiteOptions) -> list[str]:
    """Ordered, de-duplicated suite names for *options*.

    Raises:
        SuiteSelectionError: For unknown suite, framework, database or
            provider names.
    """
    opts = options.normalised()
    _check_known("framework", opts.frameworks, KNOWN_FRAMEWORKS)
    _check_known("database", opts.databases, KNOWN_DATABASES)
    _check_known("provider", opts.providers, KNOWN_PROVIDERS)

    ordered: list[str] = []

    def add(name: str) -> None:
        if name not in SUITE_MAP:
            raise SuiteSelectionError(f"Unknown suite: {name}")
        if name not in ordered:
            ordered.append(name)

    if opts.all:
        for suite in SUITES:
            add(suite.name)
    for name in opts.suites:
        add(name)
    for framework in opts.frameworks:
        suite = _suite_for("framework", "frameworks", framework)
        if suite is not None:
            add(suite.name)
    for database in opts.databases:
        suite = _suite_for("database", "databases", database)
        if suite is not None:
            add(suite.name)
    if opts.include_auth:
        add("auth")
    if opts.include_cloud:
        add("cloud")
    if not opts.all and not ordered:
        add("functional")

    frameworks = set(opts.frameworks)
    databases = set(opts.databases)
    return [name for name in ordered if _passes_filters(SUITE_MAP[name], frameworks, databases)]


# ---------------------------------------------------------------------------
# Entry selection
# ---------------------------------------------------------------------------


def select_entries(
    suite_names: Sequence[str],
    entries: Sequence[MatrixEntry],
    providers: Sequence[str] = (),
    limit: int | None = None,
    include_skipped: bool = False,
) -> list[MatrixEntry]:
    """Entries selected by *suite_names*, in suite order then matrix order.

    Each entry appears once even when several suites select it.  *limit*
    caps the number of new entries each suite contributes.  Skip-annotated
    entries are left out unless *include_skipped* is set.
    """
    providers = [p.lower() for p in providers]

    selected: list[MatrixEntry] = []
    seen: set[tuple[Any, ...]] = set()
    for name in suite_names:
        suite = SUITE_MAP.get(name)
        if suite is None:
            raise SuiteSelectionError(f"Unknown suite: {name}")

        taken = 0
        for entry in entries:
            if limit is not None and taken >= limit:
                break
            if entry.skip and not include_skipped:
                continue
            if not suite.matches(entry, providers):
                continue
            key = entry.axis_values()
            if key in seen:
                continue
            seen.add(key)
            selected.append(entry)
            taken += 1
    return selected


def count_skipped(
    suite_names: Sequence[str],
    entries: Sequence[MatrixEntry],
    providers: Sequence[str] = (),
) -> int:
    """Number of distinct skip-annotated entries any of *suite_names* matches."""
    providers = [p.lower() for p in providers]
    suites = [SUITE_MAP[name] for name in suite_names if name in SUITE_MAP]
    return len(
        {
            entry.axis_values()
            for entry in entries
            if entry.skip and any(suite.matches(entry, providers) for suite in suites)
        }
    )
