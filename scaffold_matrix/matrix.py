"""Configuration matrix generation and annotation.

The matrix is the full cartesian product of a fixed, ordered set of axes.
Nothing is filtered out: combinations that cannot work are kept and
*annotated* with ``skip=True`` and a human-readable ``skip_reason``, and
combinations that need credentials are annotated with ``required_env``.
Annotation depends only on the axis values, so re-annotating an entry always
yields the same result.

The JSON artifact (``test-matrix.json``) is an array of flat camelCase
records, one per entry, in generation order.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from math import prod
from pathlib import Path
from typing import Any, Literal, get_args

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .utils import load_json_list, save_json

Frontend = Literal["react", "html", "svelte", "vue", "htmx"]
DatabaseEngine = Literal[
    "postgresql",
    "mysql",
    "sqlite",
    "mongodb",
    "mariadb",
    "gel",
    "singlestore",
    "cockroachdb",
    "mssql",
    "none",
]
Orm = Literal["drizzle", "none"]
DatabaseHost = Literal["neon", "planetscale", "turso", "none"]
AuthProvider = Literal["absoluteAuth", "none"]
CodeQualityTool = Literal["eslint+prettier", "none"]
DirectoryConfig = Literal["default", "custom"]

DRIZZLE_COMPATIBLE_ENGINES: tuple[str, ...] = ("gel", "mysql", "postgresql", "sqlite", "singlestore")
HOST_ENGINES: dict[str, tuple[str, ...]] = {
    "neon": ("postgresql",),
    "planetscale": ("postgresql", "mysql"),
    "turso": ("sqlite",),
}
AUTH_ENGINES: dict[str, tuple[str, ...]] = {
    "absoluteAuth": ("sqlite", "mongodb"),
}
HOST_REQUIRED_ENV: dict[str, tuple[str, ...]] = {
    "neon": ("DATABASE_URL",),
    "planetscale": ("DATABASE_URL",),
    "turso": ("DATABASE_URL", "TURSO_AUTH_TOKEN"),
}


# ---------------------------------------------------------------------------
# Entry model
# ---------------------------------------------------------------------------


class MatrixEntry(BaseModel):
    """One total assignment of the configuration axes plus its annotations."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    frontend: Frontend
    database_engine: DatabaseEngine
    orm: Orm
    database_host: DatabaseHost
    auth_provider: AuthProvider
    code_quality_tool: CodeQualityTool
    directory_config: DirectoryConfig
    use_tailwind: bool

    skip: bool = False
    skip_reason: str | None = None
    required_env: list[str] = Field(default_factory=list)

    def axis_values(self) -> tuple[Any, ...]:
        """The axis assignment in axis order; identifies the entry."""
        return tuple(getattr(self, axis.name) for axis in AXES)

    def label(self) -> str:
        """Short human-readable description used in progress output."""
        parts = [
            self.frontend,
            self.database_engine,
            self.orm,
            self.database_host,
            self.auth_provider,
        ]
        if self.code_quality_tool != "none":
            parts.append(self.code_quality_tool)
        if self.directory_config != "default":
            parts.append(f"{self.directory_config}-dirs")
        parts.append("tailwind" if self.use_tailwind else "no-tailwind")
        return "/".join(parts)

    def to_record(self) -> dict[str, Any]:
        """Flat camelCase record as written to the matrix artifact."""
        return self.model_dump(by_alias=True)


@dataclass(frozen=True)
class Axis:
    """A named configuration dimension with a closed, ordered value set."""

    name: str
    values: tuple[Any, ...]

    def __len__(self) -> int:
        return len(self.values)


AXES: tuple[Axis, ...] = (
    Axis("frontend", get_args(Frontend)),
    Axis("database_engine", get_args(DatabaseEngine)),
    Axis("orm", get_args(Orm)),
    Axis("database_host", get_args(DatabaseHost)),
    Axis("auth_provider", get_args(AuthProvider)),
    Axis("code_quality_tool", get_args(CodeQualityTool)),
    Axis("directory_config", get_args(DirectoryConfig)),
    Axis("use_tailwind", (True, False)),
)


# ---------------------------------------------------------------------------
# Constraints
# ---------------------------------------------------------------------------


class Constraint:
    """Base class for compatibility rules.

    Subclasses override :meth:`check` to return a skip reason (or ``None``)
    and/or :meth:`required_env` to name environment variables the entry
    needs at run time.
    """

    name = "constraint"

    def check(self, entry: MatrixEntry) -> str | None:
        return None

    def required_env(self, entry: MatrixEntry) -> Sequence[str]:
        return ()


class OrmEngineConstraint(Constraint):
    name = "orm-engine"

    def check(self, entry: MatrixEntry) -> str | None:
        if entry.orm == "drizzle" and entry.database_engine not in DRIZZLE_COMPATIBLE_ENGINES:
            return f"ORM drizzle is incompatible with database engine {entry.database_engine}"
        return None


class NoEngineConstraint(Constraint):
    name = "no-engine"

    def check(self, entry: MatrixEntry) -> str | None:
        if entry.database_engine != "none":
            return None
        if entry.orm != "none":
            return f"ORM {entry.orm} requires a database engine"
        if entry.database_host != "none":
            return f"Database host {entry.database_host} requires a database engine"
        return None


class HostEngineConstraint(Constraint):
    name = "host-engine"

    def check(self, entry: MatrixEntry) -> str | None:
        allowed = HOST_ENGINES.get(entry.database_host)
        if allowed is None or entry.database_engine == "none":
            # Engine "none" with a host is reported by NoEngineConstraint.
            return None
        if entry.database_engine not in allowed:
            return (
                f"Database host {entry.database_host} is incompatible with "
                f"database engine {entry.database_engine}"
            )
        return None


class AuthEngineConstraint(Constraint):
    name = "auth-engine"

    def check(self, entry: MatrixEntry) -> str | None:
        allowed = AUTH_ENGINES.get(entry.auth_provider)
        if allowed is not None and entry.database_engine not in allowed:
            return (
                f"Auth provider {entry.auth_provider} is not supported with "
                f"database engine {entry.database_engine}"
            )
        return None


class CloudCredentialsConstraint(Constraint):
    name = "cloud-credentials"

    def required_env(self, entry: MatrixEntry) -> Sequence[str]:
        return HOST_REQUIRED_ENV.get(entry.database_host, ())


CONSTRAINTS: tuple[Constraint, ...] = (
    OrmEngineConstraint(),
    NoEngineConstraint(),
    HostEngineConstraint(),
    AuthEngineConstraint(),
    CloudCredentialsConstraint(),
)


def annotate(entry: MatrixEntry, constraints: Iterable[Constraint] = CONSTRAINTS) -> MatrixEntry:
    """Return a copy of *entry* with annotations recomputed from its axis values.

    Skip reasons from several failing constraints are joined with ``"; "`` in
    constraint order.  Required environment variables are de-duplicated and
    sorted.
    """
    reasons: list[str] = []
    env: set[str] = set()
    for constraint in constraints:
        reason = constraint.check(entry)
        if reason:
            reasons.append(reason)
        env.update(constraint.required_env(entry))

    return entry.model_copy(
        update={
            "skip": bool(reasons),
            "skip_reason": "; ".join(reasons) if reasons else None,
            "required_env": sorted(env),
        }
    )


def annotate_all(
    entries: Iterable[MatrixEntry], constraints: Iterable[Constraint] = CONSTRAINTS
) -> list[MatrixEntry]:
    constraints = tuple(constraints)
    return [annotate(entry, constraints) for entry in entries]


# ---------------------------------------------------------------------------
# Generation
# ---------------------------------------------------------------------------


def expand(axes: Sequence[Axis] = AXES) -> list[dict[str, Any]]:
    """Cartesian product of *axes* as a list of partial assignments.

    Expansion is iterative in axis order: the last axis varies fastest.
    """
    combos: list[dict[str, Any]] = [{}]
    for axis in axes:
        combos = [{**combo, axis.name: value} for combo in combos for value in axis.values]
    return combos


def matrix_size(axes: Sequence[Axis] = AXES) -> int:
    """Number of entries :func:`generate` produces for *axes*."""
    return prod(len(axis) for axis in axes)


def generate(
    axes: Sequence[Axis] = AXES, constraints: Iterable[Constraint] = CONSTRAINTS
) -> list[MatrixEntry]:
    """Produce every combination of *axes*, annotated by *constraints*.

    The result is deterministic and always holds exactly
    :func:`matrix_size` entries.
    """
    return annotate_all((MatrixEntry(**combo) for combo in expand(axes)), constraints)


# ---------------------------------------------------------------------------
# Artifact I/O and verification
# ---------------------------------------------------------------------------


async def write_matrix_file(entries: Iterable[MatrixEntry], path: str | Path) -> Path:
    """Write *entries* as a pretty-printed JSON array and return the path."""
    output = Path(path)
    await save_json([entry.to_record() for entry in entries], output)
    return output


def load_matrix_file(path: str | Path) -> list[MatrixEntry]:
    """Load and validate a matrix artifact.

    Raises:
        FileNotFoundError: If *path* does not exist.
        ValueError: If the file is not a JSON array or a record is invalid
            (``pydantic.ValidationError`` is a ``ValueError``).
    """
    return [MatrixEntry.model_validate(record) for record in load_json_list(path)]


def verify_matrix(
    entries: Sequence[MatrixEntry],
    axes: Sequence[Axis] = AXES,
    constraints: Iterable[Constraint] = CONSTRAINTS,
) -> list[str]:
    """Check a loaded matrix for consistency.

    Returns:
        A list of problems; empty when the matrix is complete, duplicate-free
        and every entry carries the annotations a fresh pass would give it.
    """
    constraints = tuple(constraints)
    problems: list[str] = []

    expected = matrix_size(axes)
    if len(entries) != expected:
        problems.append(f"expected {expected} entries, found {len(entries)}")

    seen: dict[tuple[Any, ...], int] = {}
    for index, entry in enumerate(entries):
        key = entry.axis_values()
        if key in seen:
            problems.append(f"[{index}] duplicate of entry {seen[key]} ({entry.label()})")
        else:
            seen[key] = index

        fresh = annotate(entry, constraints)
        if (fresh.skip, fresh.skip_reason, fresh.required_env) != (
            entry.skip,
            entry.skip_reason,
            entry.required_env,
        ):
            problems.append(
                f"[{index}] stale annotations for {entry.label()}: "
                f"expected skip={fresh.skip} reason={fresh.skip_reason!r} "
                f"env={fresh.required_env}"
            )

    return problems
